"""
Participants and per-turn action economy.

A Participant is one combatant inside one encounter. Its base numbers are
stored here; anything conditions change is derived on demand through the
condition store and never written back.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set
import re

from skirmish.core.condition_effects import BaseStats
from skirmish.core.death_saves import DeathSaveState
from skirmish.core.dice import parse_dice_notation
from skirmish.core.errors import ValidationError
from skirmish.core.geometry import Position
from skirmish.core.vocabulary import Ability, Cover, DamageType, Faction, Size


SKILL_ABILITIES: Dict[str, Ability] = {
    "acrobatics": Ability.DEX,
    "animal_handling": Ability.WIS,
    "arcana": Ability.INT,
    "athletics": Ability.STR,
    "deception": Ability.CHA,
    "history": Ability.INT,
    "insight": Ability.WIS,
    "intimidation": Ability.CHA,
    "investigation": Ability.INT,
    "medicine": Ability.WIS,
    "nature": Ability.INT,
    "perception": Ability.WIS,
    "performance": Ability.CHA,
    "persuasion": Ability.CHA,
    "religion": Ability.INT,
    "sleight_of_hand": Ability.DEX,
    "stealth": Ability.DEX,
    "survival": Ability.WIS,
}


def ability_modifier(score: int) -> int:
    return (score - 10) // 2


@dataclass
class TurnState:
    """Tracks what a participant has done on their turn."""
    movement_used: int = 0
    action_taken: bool = False
    bonus_action_taken: bool = False
    reaction_used: bool = False

    # Extra Attack tracking
    attacks_made: int = 0
    max_attacks: int = 1

    # Transient stances
    dash_count: int = 0
    disengaged: bool = False
    dodging: bool = False  # Lasts until the start of the owner's next turn

    def close(self) -> None:
        """
        Clear the turn's spending when the owner's turn ends.

        Reaction and dodge are kept; they reset at the start of the
        owner's next turn.
        """
        self.movement_used = 0
        self.action_taken = False
        self.bonus_action_taken = False
        self.attacks_made = 0
        self.dash_count = 0
        self.disengaged = False

    def start(self) -> None:
        """Reset what lasts until the start of the owner's turn."""
        self.reaction_used = False
        self.dodging = False

    def can_attack(self) -> bool:
        """Check if the participant can make another attack (Extra Attack)."""
        return not self.action_taken or 0 < self.attacks_made < self.max_attacks

    def use_attack(self) -> int:
        """
        Use one attack. Returns remaining attacks.

        The action is only spent once every attack of the Attack action is used.
        """
        if self.attacks_made == 0:
            self.action_taken = True
        self.attacks_made += 1
        return max(0, self.max_attacks - self.attacks_made)

    def movement_budget(self, speed: int) -> int:
        return speed * (1 + self.dash_count)

    def movement_remaining(self, speed: int) -> int:
        return max(0, self.movement_budget(speed) - self.movement_used)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "movement_used": self.movement_used,
            "action_taken": self.action_taken,
            "bonus_action_taken": self.bonus_action_taken,
            "reaction_used": self.reaction_used,
            "attacks_made": self.attacks_made,
            "max_attacks": self.max_attacks,
            "dashing": self.dash_count > 0,
            "disengaged": self.disengaged,
            "dodging": self.dodging,
        }


@dataclass
class Participant:
    """
    A combatant in one encounter.

    Attributes:
        id: Unique identifier within the encounter
        name: Display name
        faction: Ally or enemy side
        initiative: Rolled initiative; assigned once, never changed
        position: x, y in squares and z (elevation) in feet
        death_saves: Present only while the death-save sequence applies
    """
    id: str
    name: str
    faction: Faction = Faction.ENEMY
    max_hp: int = 10
    current_hp: int = 10
    temp_hp: int = 0
    armor_class: int = 10
    speed: int = 30
    initiative_modifier: int = 0
    initiative: Optional[int] = None
    position: Position = field(default_factory=lambda: Position(0, 0))
    cover: Cover = Cover.NONE
    size: Size = Size.MEDIUM
    reach: int = 5

    abilities: Dict[Ability, int] = field(default_factory=dict)
    save_bonuses: Dict[Ability, int] = field(default_factory=dict)
    skill_bonuses: Dict[str, int] = field(default_factory=dict)

    # Default weapon, used for opportunity attacks
    attack_bonus: int = 0
    damage_expression: str = "1d4"
    damage_type: DamageType = DamageType.BLUDGEONING
    attacks_per_action: int = 1

    spell_slots: Optional[Dict[int, int]] = None  # {level: remaining}
    resistances: Set[DamageType] = field(default_factory=set)
    immunities: Set[DamageType] = field(default_factory=set)
    vulnerabilities: Set[DamageType] = field(default_factory=set)

    player_controlled: Optional[bool] = None
    character_id: Optional[str] = None

    death_saves: Optional[DeathSaveState] = None
    concentration: Optional[str] = None  # Spell being concentrated on
    hidden_stealth: Optional[int] = None  # Stealth total while hidden
    helped_by: Optional[str] = None  # Grants advantage on the next attack
    readied: Optional[Dict[str, Any]] = None
    turn: TurnState = field(default_factory=TurnState)
    join_order: int = 0  # Fixed initiative tiebreak

    def __post_init__(self):
        if self.player_controlled is None:
            self.player_controlled = self.faction is Faction.ALLY
        self.turn.max_attacks = max(1, self.attacks_per_action)

    # -------------------------------------------------------------------------
    # Derived numbers
    # -------------------------------------------------------------------------

    def ability_score(self, ability: Ability) -> int:
        return self.abilities.get(ability, 10)

    def ability_mod(self, ability: Ability) -> int:
        return ability_modifier(self.ability_score(ability))

    def save_modifier(self, ability: Ability) -> int:
        if ability in self.save_bonuses:
            return self.save_bonuses[ability]
        return self.ability_mod(ability)

    def skill_modifier(self, skill: str) -> int:
        key = skill.strip().lower().replace(" ", "_")
        if key in self.skill_bonuses:
            return self.skill_bonuses[key]
        if key not in SKILL_ABILITIES:
            raise ValidationError("skill", f"Unknown skill '{skill}'", skill)
        return self.ability_mod(SKILL_ABILITIES[key])

    def base_stats(self) -> BaseStats:
        return BaseStats(max_hp=self.max_hp, speed=self.speed, armor_class=self.armor_class)

    @property
    def is_dead(self) -> bool:
        """0 HP with no death saves running, or death saves failed."""
        if self.death_saves is not None:
            return self.death_saves.is_dead
        return self.current_hp <= 0

    @property
    def is_dying(self) -> bool:
        return self.current_hp <= 0 and self.death_saves is not None and self.death_saves.is_dying

    @property
    def is_down(self) -> bool:
        return self.current_hp <= 0

    @property
    def hp_percent(self) -> int:
        if self.max_hp <= 0:
            return 0
        return round(100 * self.current_hp / self.max_hp)

    def is_hostile_to(self, other: "Participant") -> bool:
        return self.faction is not other.faction

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "faction": self.faction.value,
            "current_hp": self.current_hp,
            "max_hp": self.max_hp,
            "temp_hp": self.temp_hp,
            "armor_class": self.armor_class,
            "speed": self.speed,
            "initiative": self.initiative,
            "initiative_modifier": self.initiative_modifier,
            "position": self.position.to_dict(),
            "cover": self.cover.value,
            "size": self.size.value,
            "reach": self.reach,
            "player_controlled": self.player_controlled,
            "character_id": self.character_id,
            "resistances": sorted(d.value for d in self.resistances),
            "immunities": sorted(d.value for d in self.immunities),
            "vulnerabilities": sorted(d.value for d in self.vulnerabilities),
            "spell_slots": dict(self.spell_slots) if self.spell_slots is not None else None,
            "death_saves": self.death_saves.to_dict() if self.death_saves else None,
            "concentration": self.concentration,
            "hidden": self.hidden_stealth is not None,
            "turn": self.turn.to_dict(),
        }


# =============================================================================
# INPUT PARSING
# =============================================================================

def _slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", name.strip().lower()).strip("_")


def _int(data: Dict[str, Any], key: str, default: int, minimum: Optional[int] = None) -> int:
    value = data.get(key, default)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
        raise ValidationError(key, f"'{key}' must be an integer", value)
    value = int(value)
    if minimum is not None and value < minimum:
        raise ValidationError(key, f"'{key}' must be at least {minimum}", value)
    return value


def _damage_types(data: Dict[str, Any], key: str) -> Set[DamageType]:
    return {DamageType.parse(v, key) for v in (data.get(key) or [])}


def _ability_map(data: Dict[str, Any], key: str) -> Dict[Ability, int]:
    raw = data.get(key) or {}
    if not isinstance(raw, dict):
        raise ValidationError(key, f"'{key}' must be a mapping of ability to value", raw)
    return {Ability.parse(k, key): _int(raw, k, 0) for k in raw}


def _skill_map(data: Dict[str, Any], key: str) -> Dict[str, int]:
    raw = data.get(key) or {}
    if not isinstance(raw, dict):
        raise ValidationError(key, f"'{key}' must be a mapping of skill to bonus", raw)
    return {_slug(str(k)): _int(raw, k, 0) for k in raw}


def _slot_map(data: Dict[str, Any], key: str) -> Optional[Dict[int, int]]:
    raw = data.get(key)
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ValidationError(key, "Spell slots must map level to remaining slots", raw)
    slots = {}
    for level in raw:
        text = str(level).strip()
        if isinstance(level, bool) or not text.isdigit() or not 1 <= int(text) <= 9:
            raise ValidationError(key, "Spell slot levels must be integers from 1 to 9", level)
        slots[int(text)] = _int(raw, level, 0, 0)
    return slots


def _death_saves(data: Dict[str, Any], current_hp: int) -> Optional[DeathSaveState]:
    raw = data.get("death_saves")
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ValidationError("death_saves", "Death saves must be a mapping of successes and failures", raw)
    if current_hp > 0:
        raise ValidationError("death_saves", "Only a participant at 0 HP can carry death saves", current_hp)
    counts = {key: _int(raw, key, 0, 0) for key in ("successes", "failures")}
    for key, value in counts.items():
        if value > 2:
            raise ValidationError(key, f"A dying participant has at most 2 {key}", value)
    return DeathSaveState.from_dict(dict(counts, is_stable=bool(raw.get("is_stable", False))))


def participant_from_dict(data: Dict[str, Any]) -> Participant:
    """
    Build a Participant from caller-supplied fields.

    Raises:
        ValidationError: If a field is missing, malformed or out of range
    """
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name", "Participant name is required")
    participant_id = (data.get("id") or "").strip() or _slug(name)
    if not participant_id:
        raise ValidationError("id", "Participant id could not be derived from the name", name)

    max_hp = _int(data, "max_hp", _int(data, "current_hp", 10, 0), 1)
    current_hp = _int(data, "current_hp", max_hp, 0)
    if current_hp > max_hp:
        raise ValidationError("current_hp", "Current HP cannot exceed max HP", current_hp, max_hp=max_hp)

    slots = _slot_map(data, "spell_slots")

    damage_expression = data.get("damage_expression") or "1d4"
    parse_dice_notation(damage_expression)

    faction = Faction.parse(data.get("faction", "enemy"), "faction")
    return Participant(
        id=participant_id,
        name=name,
        faction=faction,
        max_hp=max_hp,
        current_hp=current_hp,
        temp_hp=_int(data, "temp_hp", 0, 0),
        armor_class=_int(data, "armor_class", 10, 0),
        speed=_int(data, "speed", 30, 0),
        initiative_modifier=_int(data, "initiative_modifier", 0),
        position=Position.coerce(data.get("position", {"x": 0, "y": 0}), "position"),
        cover=Cover.parse(data.get("cover", "none"), "cover"),
        size=Size.parse(data.get("size", "medium"), "size"),
        reach=_int(data, "reach", 5, 5),
        abilities=_ability_map(data, "abilities"),
        save_bonuses=_ability_map(data, "save_bonuses"),
        skill_bonuses=_skill_map(data, "skill_bonuses"),
        attack_bonus=_int(data, "attack_bonus", 0),
        damage_expression=damage_expression,
        damage_type=DamageType.parse(data.get("damage_type", "bludgeoning"), "damage_type"),
        attacks_per_action=_int(data, "attacks_per_action", 1, 1),
        spell_slots=slots,
        death_saves=_death_saves(data, current_hp),
        resistances=_damage_types(data, "resistances"),
        immunities=_damage_types(data, "immunities"),
        vulnerabilities=_damage_types(data, "vulnerabilities"),
        player_controlled=data.get("player_controlled"),
        character_id=data.get("character_id"),
    )


def find_participant(participants: List[Participant], reference: str) -> Optional[Participant]:
    """
    Resolve an id or case-insensitive name.

    Raises:
        ValidationError: If the name matches more than one participant
    """
    if reference is None:
        return None
    for p in participants:
        if p.id == reference:
            return p
    wanted = str(reference).strip().lower()
    matches = [p for p in participants if p.name.lower() == wanted]
    if len(matches) > 1:
        raise ValidationError("reference", f"Name '{reference}' matches more than one participant",
                              reference, candidates=[p.id for p in matches])
    return matches[0] if matches else None
