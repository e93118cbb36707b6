"""Tests for the exhaustion system."""
import pytest

from skirmish.core.exhaustion import (
    EXHAUSTION_EFFECTS,
    MAX_EXHAUSTION_LEVEL,
    clamp_level,
    exhaustion_modifiers,
)


class TestExhaustionModifiers:
    """Tests for cumulative exhaustion effects."""

    def test_level_zero(self):
        mods = exhaustion_modifiers(0)
        assert mods.level == 0
        assert mods.speed_multiplier == 1.0
        assert mods.reasons() == []

    def test_level_one(self):
        mods = exhaustion_modifiers(1)
        assert mods.disadvantage_on_ability_checks is True
        assert mods.disadvantage_on_attacks is False

    def test_level_two_halves_speed(self):
        assert exhaustion_modifiers(2).speed_multiplier == 0.5

    def test_level_three_attacks_and_saves(self):
        mods = exhaustion_modifiers(3)
        assert mods.disadvantage_on_attacks is True
        assert mods.disadvantage_on_saves is True
        assert mods.disadvantage_on_ability_checks is True

    def test_level_four_halves_hp(self):
        assert exhaustion_modifiers(4).max_hp_multiplier == 0.5

    def test_level_five_speed_zero(self):
        assert exhaustion_modifiers(5).speed_multiplier == 0.0

    def test_level_six_is_death(self):
        assert exhaustion_modifiers(6).is_dead is True

    def test_reasons_list_every_level(self):
        reasons = exhaustion_modifiers(3).reasons()
        assert len(reasons) == 3
        assert reasons[1] == "Exhaustion 2: speed halved"


class TestClampLevel:
    @pytest.mark.parametrize("raw,expected", [(-2, 0), (0, 0), (4, 4), (9, MAX_EXHAUSTION_LEVEL)])
    def test_clamp(self, raw, expected):
        assert clamp_level(raw) == expected

    def test_table_covers_every_level(self):
        assert sorted(EXHAUSTION_EFFECTS) == list(range(1, MAX_EXHAUSTION_LEVEL + 1))
