"""Tests for the dice rolling system."""
import random

import pytest

from skirmish.core.dice import DiceRoller, D20Result, RollResult, parse_dice_notation
from skirmish.core.errors import ValidationError
from skirmish.core.vocabulary import RollMode


class TestParseDiceNotation:
    """Tests for dice notation parsing."""

    def test_simple_notation(self):
        """Parse simple notation like 1d8."""
        assert parse_dice_notation("1d8") == [(1, 8)]

    def test_notation_with_modifier(self):
        """Parse notation with a flat modifier."""
        assert parse_dice_notation("2d6+3") == [(2, 6), (3, 0)]

    def test_negative_modifier(self):
        """Parse notation with a negative modifier."""
        assert parse_dice_notation("3d4-1") == [(3, 4), (-1, 0)]

    def test_multiple_dice_groups(self):
        """Parse notation with several dice groups."""
        assert parse_dice_notation("1d8+1d6") == [(1, 8), (1, 6)]

    def test_implicit_count(self):
        """'d20' means one die."""
        assert parse_dice_notation("d20") == [(1, 20)]

    def test_case_and_spaces(self):
        """Upper case and spaces are accepted."""
        assert parse_dice_notation(" 2D6 + 1 ") == [(2, 6), (1, 0)]

    @pytest.mark.parametrize("notation", ["", "abc", "2d", "1d0", "0d6", "2x6"])
    def test_invalid_notation_raises(self, notation):
        """Malformed notation is a ValidationError."""
        with pytest.raises(ValidationError):
            parse_dice_notation(notation)


class TestD20Roll:
    """Tests for d20 rolls with advantage/disadvantage."""

    def test_basic_roll(self, dice):
        """Basic d20 roll should return a valid result."""
        result = dice.roll_d20()
        assert isinstance(result, D20Result)
        assert 1 <= result.natural <= 20
        assert len(result.rolls) == 1

    def test_roll_with_modifier(self, dice):
        """Modifier should be added to the roll."""
        result = dice.roll_d20(modifier=5)
        assert result.modifier == 5
        assert result.total == result.natural + 5

    def test_advantage_keeps_higher(self, dice):
        """Advantage rolls two dice and keeps the higher."""
        for _ in range(20):
            result = dice.roll_d20(mode=RollMode.ADVANTAGE)
            assert len(result.rolls) == 2
            assert result.natural == max(result.rolls)

    def test_disadvantage_keeps_lower(self, dice):
        """Disadvantage rolls two dice and keeps the lower."""
        for _ in range(20):
            result = dice.roll_d20(mode=RollMode.DISADVANTAGE)
            assert len(result.rolls) == 2
            assert result.natural == min(result.rolls)

    def test_manual_roll(self, dice):
        """A manual roll is used as the natural die."""
        result = dice.roll_d20(modifier=3, manual=17)
        assert result.natural == 17
        assert result.total == 20
        assert result.manual is True

    def test_manual_natural_20_and_1(self, dice):
        """Criticals are read off the natural die."""
        assert dice.roll_d20(manual=20).natural_20
        assert dice.roll_d20(manual=1).natural_1

    @pytest.mark.parametrize("manual", [0, 21, -3])
    def test_manual_roll_out_of_range(self, dice, manual):
        """Manual d20 values must be 1-20."""
        with pytest.raises(ValidationError):
            dice.roll_d20(manual=manual)

    def test_seeded_rolls_repeat(self):
        """Two rollers with the same seed roll the same numbers."""
        a = DiceRoller(random.Random(7))
        b = DiceRoller(random.Random(7))
        assert [a.roll_d20().natural for _ in range(10)] == [b.roll_d20().natural for _ in range(10)]


class TestCombineModes:
    """Tests for advantage and disadvantage cancelling."""

    def test_both_cancel(self):
        assert RollMode.combine(True, True) is RollMode.NORMAL

    def test_single_sources(self):
        assert RollMode.combine(True, False) is RollMode.ADVANTAGE
        assert RollMode.combine(False, True) is RollMode.DISADVANTAGE


class TestRollExpression:
    """Tests for damage and other dice expressions."""

    def test_roll_in_range(self, dice):
        """2d6+3 totals between 5 and 15."""
        for _ in range(50):
            result = dice.roll("2d6+3")
            assert isinstance(result, RollResult)
            assert 5 <= result.total <= 15
            assert len(result.dice) == 2

    def test_critical_doubles_dice(self, dice):
        """Critical hits roll twice as many dice."""
        result = dice.roll("2d6+3", critical=True)
        assert len(result.dice) == 4
        assert result.modifier == 3

    def test_manual_is_dice_sum(self, dice):
        """A manual value replaces the dice; flat modifiers still apply."""
        result = dice.roll("1d8+3", manual=6)
        assert result.total == 9
        assert result.manual is True

    def test_total_never_negative(self, dice):
        """Large negative modifiers floor at 0."""
        result = dice.roll("1d4-10")
        assert result.total == 0

    def test_extra_modifier(self, dice):
        """An extra modifier adds to the expression's own."""
        result = dice.roll("1d6+1", manual=4, modifier=2)
        assert result.total == 7

    def test_advantage_keeps_better_set(self, dice):
        """Rolling an expression with advantage keeps the higher set."""
        result = dice.roll("1d6", mode=RollMode.ADVANTAGE)
        assert len(result.dice) == 2
        assert result.total == max(result.dice)

    def test_manual_negative_rejected(self, dice):
        with pytest.raises(ValidationError):
            dice.roll("1d6", manual=-1)


class TestRollInitiative:
    """Tests for initiative rolling."""

    def test_initiative_adds_modifier(self, dice):
        result = dice.roll_initiative(modifier=3)
        assert result.total == result.natural + 3

    def test_invalid_die(self, dice):
        """Rolling a d0 is rejected."""
        with pytest.raises(ValidationError):
            dice.roll_die(0)
