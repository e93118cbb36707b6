"""
Rules Configuration System.

Manages toggleable rule variants for the encounter engine. Every encounter
takes a copy of the configuration that is current when it is created, so
changing the rules later never alters a fight in progress.
"""
from dataclasses import dataclass
from typing import Dict, Any, Optional
import json
from pathlib import Path

from skirmish.core.errors import ValidationError
from skirmish.core.vocabulary import DistanceMode, TokenEnum


class NpcZeroHpPolicy(TokenEnum):
    """What happens to a non-player participant dropped to 0 HP."""
    INSTANT_DEATH = "instant_death"  # Dies outright
    DEATH_SAVES = "death_saves"  # Falls unconscious and makes death saves like a player


@dataclass
class RulesConfig:
    """
    Configuration for combat rule variants.

    Player-controlled participants always enter the death-save sequence at
    0 HP; ``npc_zero_hp_policy`` decides what happens to everyone else.
    """
    npc_zero_hp_policy: NpcZeroHpPolicy = NpcZeroHpPolicy.INSTANT_DEATH
    distance_mode: DistanceMode = DistanceMode.GRID_5E

    # Encounter bookkeeping
    allow_condition_stacking: bool = False  # Duplicate condition kinds coexist
    allow_position_stacking: bool = False  # Participants may share a square
    enforce_turn_order: bool = False  # Off lets a game master act for anyone

    # Combat Options
    death_save_dc: int = 10
    massive_damage_rule: bool = True  # Damage at 0 HP >= max HP kills outright
    critical_damage_max_first_die: bool = False  # Crit adds max dice instead of rolling them twice
    ranged_in_melee_disadvantage: bool = True
    half_cover_bonus: int = 2
    three_quarters_cover_bonus: int = 5

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary for serialization."""
        return {
            "npc_zero_hp_policy": self.npc_zero_hp_policy.value,
            "distance_mode": self.distance_mode.value,
            "allow_condition_stacking": self.allow_condition_stacking,
            "allow_position_stacking": self.allow_position_stacking,
            "enforce_turn_order": self.enforce_turn_order,
            "death_save_dc": self.death_save_dc,
            "massive_damage_rule": self.massive_damage_rule,
            "critical_damage_max_first_die": self.critical_damage_max_first_die,
            "ranged_in_melee_disadvantage": self.ranged_in_melee_disadvantage,
            "half_cover_bonus": self.half_cover_bonus,
            "three_quarters_cover_bonus": self.three_quarters_cover_bonus,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RulesConfig":
        """Create config from dictionary; unknown keys are rejected."""
        default = cls()
        unknown = set(data) - set(default.to_dict())
        if unknown:
            raise ValidationError("rules", f"Unknown rule options: {', '.join(sorted(unknown))}",
                                  sorted(unknown))
        return cls(
            npc_zero_hp_policy=NpcZeroHpPolicy.parse(
                data.get("npc_zero_hp_policy", default.npc_zero_hp_policy), "npc_zero_hp_policy"),
            distance_mode=DistanceMode.parse(data.get("distance_mode", default.distance_mode), "distance_mode"),
            allow_condition_stacking=bool(data.get("allow_condition_stacking", False)),
            allow_position_stacking=bool(data.get("allow_position_stacking", False)),
            enforce_turn_order=bool(data.get("enforce_turn_order", False)),
            death_save_dc=int(data.get("death_save_dc", 10)),
            massive_damage_rule=bool(data.get("massive_damage_rule", True)),
            critical_damage_max_first_die=bool(data.get("critical_damage_max_first_die", False)),
            ranged_in_melee_disadvantage=bool(data.get("ranged_in_melee_disadvantage", True)),
            half_cover_bonus=int(data.get("half_cover_bonus", 2)),
            three_quarters_cover_bonus=int(data.get("three_quarters_cover_bonus", 5)),
        )

    def with_overrides(self, **overrides) -> "RulesConfig":
        merged = self.to_dict()
        merged.update(overrides)
        return RulesConfig.from_dict(merged)

    @classmethod
    def load_from_file(cls, filepath: Path) -> "RulesConfig":
        """
        Load configuration from JSON file.

        Raises:
            ValidationError: Unreadable file, malformed JSON or unknown rule keys
        """
        try:
            with open(filepath, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise ValidationError("rules_file", f"Cannot read rules file: {exc}", str(filepath))
        if not isinstance(data, dict):
            raise ValidationError("rules_file", "Rules file must hold a JSON object", str(filepath))
        return cls.from_dict(data)


# Default configuration for services that are not given one explicitly
_current_config: Optional[RulesConfig] = None


def get_rules_config() -> RulesConfig:
    """Get the current rules configuration."""
    global _current_config
    if _current_config is None:
        _current_config = RulesConfig()
    return _current_config


def set_rules_config(config: RulesConfig) -> None:
    """Set the current rules configuration."""
    global _current_config
    _current_config = config


def reset_rules_config() -> None:
    """Reset to default rules configuration."""
    global _current_config
    _current_config = RulesConfig()


# Preset configurations for quick setup
PRESET_CONFIGS = {
    "standard": RulesConfig(),
    "strict_tactical": RulesConfig(
        distance_mode=DistanceMode.GRID_ALT,
        enforce_turn_order=True,
    ),
    "heroic_foes": RulesConfig(
        npc_zero_hp_policy=NpcZeroHpPolicy.DEATH_SAVES,
        massive_damage_rule=False,
    ),
}


def apply_preset(preset_name: str) -> bool:
    """
    Apply a preset configuration.

    Args:
        preset_name: One of "standard", "strict_tactical", or "heroic_foes"

    Returns:
        True if preset was applied, False if preset name is invalid
    """
    if preset_name not in PRESET_CONFIGS:
        return False

    set_rules_config(RulesConfig.from_dict(PRESET_CONFIGS[preset_name].to_dict()))
    return True


def apply_rules_file(filepath: Path) -> RulesConfig:
    """Load a rules file and make it the current configuration."""
    config = RulesConfig.load_from_file(filepath)
    set_rules_config(config)
    return config


def get_rules_summary(config: Optional[RulesConfig] = None) -> Dict[str, Any]:
    """
    Get a human-readable summary of a rules configuration.

    Returns:
        Dictionary with readable descriptions of the active rules
    """
    config = config or get_rules_config()

    summary = {
        "distance": {
            DistanceMode.GRID_5E: "Grid, every diagonal 5 ft",
            DistanceMode.GRID_ALT: "Grid, diagonals alternate 5/10 ft",
            DistanceMode.EUCLIDEAN: "Straight-line distance",
        }[config.distance_mode],
        "npc_zero_hp": (
            "Non-player participants die at 0 HP"
            if config.npc_zero_hp_policy is NpcZeroHpPolicy.INSTANT_DEATH
            else "Non-player participants make death saves at 0 HP"
        ),
        "optional_rules": [],
    }

    if config.enforce_turn_order:
        summary["optional_rules"].append("Turn Order Enforced")
    if config.allow_condition_stacking:
        summary["optional_rules"].append("Condition Stacking")
    if config.allow_position_stacking:
        summary["optional_rules"].append("Shared Squares")
    if config.massive_damage_rule:
        summary["optional_rules"].append("Massive Damage")
    if config.critical_damage_max_first_die:
        summary["optional_rules"].append("Maximized Critical Dice")

    return summary


class RulesContext:
    """
    Context manager for temporarily changing rules configuration.

    Useful for testing or temporary rule changes.

    Example:
        with RulesContext(enforce_turn_order=True):
            # Services created here enforce initiative order
            pass
        # Original config is restored
    """

    def __init__(self, **kwargs):
        self.overrides = kwargs
        self.original_config = None

    def __enter__(self):
        self.original_config = get_rules_config()
        set_rules_config(self.original_config.with_overrides(**self.overrides))
        return get_rules_config()

    def __exit__(self, exc_type, exc_val, exc_tb):
        set_rules_config(self.original_config)
        return False
