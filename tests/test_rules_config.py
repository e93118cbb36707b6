"""Tests for the rules configuration system."""
import json
import pytest
from pathlib import Path
import tempfile

from skirmish.core.errors import ValidationError
from skirmish.core.rules_config import (
    NpcZeroHpPolicy,
    RulesConfig,
    get_rules_config,
    set_rules_config,
    reset_rules_config,
    apply_preset,
    apply_rules_file,
    get_rules_summary,
    RulesContext,
    PRESET_CONFIGS,
)
from skirmish.core.vocabulary import DistanceMode


class TestRulesConfig:
    """Test the RulesConfig dataclass."""

    def setup_method(self):
        """Reset config before each test."""
        reset_rules_config()

    def test_default_config(self):
        """Default config uses 5 ft diagonals and kills NPCs at 0 HP."""
        config = RulesConfig()

        assert config.distance_mode == DistanceMode.GRID_5E
        assert config.npc_zero_hp_policy == NpcZeroHpPolicy.INSTANT_DEATH
        assert config.enforce_turn_order is False
        assert config.allow_condition_stacking is False
        assert config.death_save_dc == 10
        assert config.half_cover_bonus == 2
        assert config.three_quarters_cover_bonus == 5

    def test_config_to_dict(self):
        data = RulesConfig().to_dict()

        assert data["distance_mode"] == "grid_5e"
        assert data["npc_zero_hp_policy"] == "instant_death"
        assert data["massive_damage_rule"] is True

    def test_config_from_dict(self):
        """Missing keys fall back to defaults."""
        config = RulesConfig.from_dict({
            "distance_mode": "euclidean",
            "enforce_turn_order": True,
        })

        assert config.distance_mode == DistanceMode.EUCLIDEAN
        assert config.enforce_turn_order is True
        assert config.ranged_in_melee_disadvantage is True

    def test_from_dict_rejects_unknown_keys(self):
        with pytest.raises(ValidationError) as excinfo:
            RulesConfig.from_dict({"flanking": True})
        assert "flanking" in excinfo.value.message

    def test_from_dict_rejects_bad_tokens(self):
        with pytest.raises(ValidationError):
            RulesConfig.from_dict({"distance_mode": "hex"})

    def test_with_overrides_leaves_original(self):
        config = RulesConfig()
        changed = config.with_overrides(death_save_dc=12, npc_zero_hp_policy="death_saves")

        assert changed.death_save_dc == 12
        assert changed.npc_zero_hp_policy == NpcZeroHpPolicy.DEATH_SAVES
        assert config.death_save_dc == 10

    def test_config_load_from_file(self):
        """Config should load from a JSON rules file."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.json', delete=False) as f:
            json.dump({"distance_mode": "grid_alt", "allow_position_stacking": True}, f)
            filepath = Path(f.name)

        try:
            loaded_config = RulesConfig.load_from_file(filepath)

            assert loaded_config.distance_mode == DistanceMode.GRID_ALT
            assert loaded_config.allow_position_stacking is True
            assert loaded_config.npc_zero_hp_policy == NpcZeroHpPolicy.INSTANT_DEATH
        finally:
            filepath.unlink()

    def test_apply_rules_file(self):
        with tempfile.NamedTemporaryFile(mode='w', suffix='.json', delete=False) as f:
            json.dump({"enforce_turn_order": True}, f)
            filepath = Path(f.name)

        try:
            apply_rules_file(filepath)
            assert get_rules_config().enforce_turn_order is True
        finally:
            filepath.unlink()
            reset_rules_config()

    def test_malformed_rules_file(self):
        with tempfile.NamedTemporaryFile(mode='w', suffix='.json', delete=False) as f:
            f.write("{not json")
            filepath = Path(f.name)

        try:
            with pytest.raises(ValidationError):
                RulesConfig.load_from_file(filepath)
        finally:
            filepath.unlink()

    def test_missing_rules_file(self, tmp_path):
        with pytest.raises(ValidationError):
            RulesConfig.load_from_file(tmp_path / "absent.json")


class TestGlobalConfig:
    """Test global configuration functions."""

    def setup_method(self):
        """Reset config before each test."""
        reset_rules_config()

    def test_get_rules_config_returns_default(self):
        config = get_rules_config()
        assert isinstance(config, RulesConfig)
        assert config.enforce_turn_order is False

    def test_set_rules_config(self):
        set_rules_config(RulesConfig(enforce_turn_order=True))

        assert get_rules_config().enforce_turn_order is True

    def test_reset_rules_config(self):
        set_rules_config(RulesConfig(enforce_turn_order=True))
        reset_rules_config()

        assert get_rules_config().enforce_turn_order is False

    def test_encounters_copy_rules_at_creation(self, service, standard_participants):
        """Changing the global rules never alters a running encounter."""
        created = service.create_encounter(participants=standard_participants, terrain={"width": 20, "height": 20})
        set_rules_config(RulesConfig(distance_mode=DistanceMode.EUCLIDEAN))

        view = service.get_encounter(created["encounter_id"], "detailed")
        assert view["rules"]["distance_mode"] == "grid_5e"


class TestPresets:
    """Test preset configurations."""

    def setup_method(self):
        """Reset config before each test."""
        reset_rules_config()

    def test_standard_preset(self):
        assert PRESET_CONFIGS["standard"].to_dict() == RulesConfig().to_dict()

    def test_strict_tactical_preset(self):
        config = PRESET_CONFIGS["strict_tactical"]

        assert config.distance_mode == DistanceMode.GRID_ALT
        assert config.enforce_turn_order is True

    def test_heroic_foes_preset(self):
        config = PRESET_CONFIGS["heroic_foes"]

        assert config.npc_zero_hp_policy == NpcZeroHpPolicy.DEATH_SAVES
        assert config.massive_damage_rule is False

    def test_apply_preset(self):
        assert apply_preset("strict_tactical") is True
        assert get_rules_config().enforce_turn_order is True

    def test_apply_preset_copies(self):
        """Editing the applied config must not leak into the preset table."""
        apply_preset("heroic_foes")
        get_rules_config().death_save_dc = 15

        assert PRESET_CONFIGS["heroic_foes"].death_save_dc == 10

    def test_apply_invalid_preset(self):
        assert apply_preset("gritty_realism") is False
        assert get_rules_config().distance_mode == DistanceMode.GRID_5E


class TestRulesSummary:
    """Test rules summary function."""

    def setup_method(self):
        """Reset config before each test."""
        reset_rules_config()

    def test_default_summary(self):
        summary = get_rules_summary()

        assert summary["distance"] == "Grid, every diagonal 5 ft"
        assert summary["npc_zero_hp"] == "Non-player participants die at 0 HP"
        assert summary["optional_rules"] == ["Massive Damage"]

    def test_summary_shows_optional_rules(self):
        config = RulesConfig(
            distance_mode=DistanceMode.EUCLIDEAN,
            npc_zero_hp_policy=NpcZeroHpPolicy.DEATH_SAVES,
            enforce_turn_order=True,
            allow_condition_stacking=True,
            allow_position_stacking=True,
            massive_damage_rule=False,
            critical_damage_max_first_die=True,
        )
        summary = get_rules_summary(config)

        assert summary["distance"] == "Straight-line distance"
        assert summary["npc_zero_hp"] == "Non-player participants make death saves at 0 HP"
        assert summary["optional_rules"] == [
            "Turn Order Enforced", "Condition Stacking", "Shared Squares", "Maximized Critical Dice",
        ]

    def test_alternating_diagonals(self):
        summary = get_rules_summary(PRESET_CONFIGS["strict_tactical"])
        assert summary["distance"] == "Grid, diagonals alternate 5/10 ft"
        assert "Turn Order Enforced" in summary["optional_rules"]


class TestRulesContext:
    """Test the RulesContext context manager."""

    def setup_method(self):
        """Reset config before each test."""
        reset_rules_config()

    def test_context_temporarily_changes_config(self):
        with RulesContext(enforce_turn_order=True) as config:
            assert config.enforce_turn_order is True
            assert get_rules_config().enforce_turn_order is True

        assert get_rules_config().enforce_turn_order is False

    def test_context_restores_on_exception(self):
        try:
            with RulesContext(death_save_dc=15):
                assert get_rules_config().death_save_dc == 15
                raise ValueError("Test exception")
        except ValueError:
            pass

        assert get_rules_config().death_save_dc == 10

    def test_context_rejects_unknown_options(self):
        with pytest.raises(ValidationError):
            with RulesContext(weapon_mastery=True):
                pass
        assert get_rules_config().to_dict() == RulesConfig().to_dict()

    def test_context_applies_to_new_encounters(self, service, standard_participants):
        with RulesContext(npc_zero_hp_policy="death_saves"):
            created = service.create_encounter(participants=standard_participants,
                                               terrain={"width": 20, "height": 20})

        view = service.get_encounter(created["encounter_id"], "detailed")
        assert view["rules"]["npc_zero_hp_policy"] == "death_saves"
