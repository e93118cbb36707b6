"""
Exhaustion levels.

Implements the 6-level exhaustion mechanic with cumulative effects:
- Level 1: Disadvantage on ability checks
- Level 2: Speed halved
- Level 3: Disadvantage on attack rolls and saving throws
- Level 4: Hit point maximum halved
- Level 5: Speed reduced to 0
- Level 6: Death

Levels from several exhaustion effects on one creature add up, capped at 6.
"""
from dataclasses import dataclass
from typing import Any, Dict, List


MAX_EXHAUSTION_LEVEL = 6


# Effects introduced at each exhaustion level; lower levels still apply
EXHAUSTION_EFFECTS: Dict[int, Dict[str, Any]] = {
    1: {
        "description": "Disadvantage on ability checks",
        "disadvantage_on": ["ability_checks"],
    },
    2: {
        "description": "Speed halved",
        "speed_modifier": 0.5,
    },
    3: {
        "description": "Disadvantage on attack rolls and saving throws",
        "disadvantage_on": ["attack_rolls", "saving_throws"],
    },
    4: {
        "description": "Hit point maximum halved",
        "max_hp_modifier": 0.5,
    },
    5: {
        "description": "Speed reduced to 0",
        "speed_modifier": 0.0,
    },
    6: {
        "description": "Death",
        "death": True,
    },
}


@dataclass
class ExhaustionModifiers:
    """
    Calculated modifiers from exhaustion for easy application.
    """
    level: int = 0
    disadvantage_on_ability_checks: bool = False
    disadvantage_on_attacks: bool = False
    disadvantage_on_saves: bool = False
    speed_multiplier: float = 1.0
    max_hp_multiplier: float = 1.0
    is_dead: bool = False

    def reasons(self) -> List[str]:
        if self.level == 0:
            return []
        return [
            f"Exhaustion {lvl}: {EXHAUSTION_EFFECTS[lvl]['description'].lower()}"
            for lvl in range(1, self.level + 1)
        ]


def clamp_level(level: int) -> int:
    return max(0, min(MAX_EXHAUSTION_LEVEL, int(level)))


def exhaustion_modifiers(level: int) -> ExhaustionModifiers:
    """
    Calculate all modifiers for an exhaustion level.

    Args:
        level: Exhaustion level; values outside 0-6 are clamped

    Returns:
        ExhaustionModifiers with the cumulative effects
    """
    level = clamp_level(level)
    modifiers = ExhaustionModifiers(level=level)

    for lvl in range(1, level + 1):
        effects = EXHAUSTION_EFFECTS[lvl]

        disadvantage_types = effects.get("disadvantage_on", [])
        if "ability_checks" in disadvantage_types:
            modifiers.disadvantage_on_ability_checks = True
        if "attack_rolls" in disadvantage_types:
            modifiers.disadvantage_on_attacks = True
        if "saving_throws" in disadvantage_types:
            modifiers.disadvantage_on_saves = True

        # Take the lowest multiplier seen so far
        modifiers.speed_multiplier = min(modifiers.speed_multiplier, effects.get("speed_modifier", 1.0))
        modifiers.max_hp_multiplier = min(modifiers.max_hp_multiplier, effects.get("max_hp_modifier", 1.0))

        if effects.get("death", False):
            modifiers.is_dead = True

    return modifiers
