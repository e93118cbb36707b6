"""
Action requests and results.

An ActionRequest is the fully parsed form of "actor X does Y"; an
ActionResult is what came of it. Misses, failed saves and lost contests
are successful results. Only malformed or illegal requests raise.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from skirmish.core.errors import ValidationError
from skirmish.core.geometry import Position
from skirmish.core.vocabulary import (
    Ability,
    ActionCost,
    ActionKind,
    AoeShape,
    ConditionKind,
    DamageType,
    ShoveDirection,
    WeaponType,
)


def _opt_int(data: Dict[str, Any], key: str, minimum: Optional[int] = None,
             maximum: Optional[int] = None) -> Optional[int]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(key, f"'{key}' must be an integer", value)
    if minimum is not None and value < minimum:
        raise ValidationError(key, f"'{key}' must be at least {minimum}", value)
    if maximum is not None and value > maximum:
        raise ValidationError(key, f"'{key}' must be at most {maximum}", value)
    return value


def _opt_position(data: Dict[str, Any], key: str) -> Optional[Position]:
    value = data.get(key)
    return Position.coerce(value, key) if value is not None else None


@dataclass
class ActionRequest:
    """One requested action, already parsed and structurally typed."""
    kind: ActionKind
    actor: str
    target: Optional[str] = None
    targets: List[str] = field(default_factory=list)
    cost: Optional[ActionCost] = None
    label: str = ""  # Free-form name for custom and improvised actions
    description: str = ""

    # Movement folded into the action (move, dash, disengage, attack-with-movement)
    move_to: Optional[Position] = None

    # Attacks
    weapon_type: Optional[WeaponType] = None  # Melee for weapon attacks, ranged for spell attacks
    attack_bonus: Optional[int] = None
    damage_expression: Optional[str] = None
    damage_type: Optional[DamageType] = None
    reach: Optional[int] = None
    weapon_range: Optional[int] = None
    long_range: Optional[int] = None
    advantage: bool = False
    disadvantage: bool = False
    manual_attack_roll: Optional[int] = None
    manual_damage_roll: Optional[int] = None
    manual_opportunity_attack_roll: Optional[int] = None
    manual_opportunity_damage_roll: Optional[int] = None

    # Spells
    spell_name: Optional[str] = None
    spell_slot: Optional[int] = None
    spell_range: Optional[int] = None
    spell_damage: Optional[str] = None
    spell_damage_type: Optional[DamageType] = None
    spell_healing: Optional[str] = None
    requires_attack_roll: bool = False
    save_dc: Optional[int] = None
    save_ability: Optional[Ability] = None
    half_on_save: bool = False
    condition_on_fail: Optional[ConditionKind] = None
    condition_duration: Optional[int] = None
    condition_label: Optional[str] = None  # Required when condition_on_fail is custom
    concentration: bool = False
    aoe_shape: Optional[AoeShape] = None
    aoe_size: Optional[int] = None
    aoe_center: Optional[Position] = None
    aoe_direction: Optional[Position] = None
    manual_save_rolls: Dict[str, int] = field(default_factory=dict)
    manual_save_roll: Optional[int] = None

    # Contests and checks
    shove_direction: ShoveDirection = ShoveDirection.AWAY
    manual_check_roll: Optional[int] = None
    manual_contest_roll: Optional[int] = None

    # Ready
    trigger: Optional[str] = None
    readied_action: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActionRequest":
        """
        Parse a request from caller-supplied fields.

        Raises:
            ValidationError: Unknown tokens, wrong types or missing required fields
        """
        token = data.get("action_type") or data.get("action")
        if not token:
            raise ValidationError("action_type", "action_type is required")
        kind = ActionKind.parse(token, "action_type")
        actor = data.get("actor") or data.get("actor_id")
        if not actor:
            raise ValidationError("actor", "An actor id or name is required")

        def enum(key, enum_cls, default=None):
            value = data.get(key)
            return enum_cls.parse(value, key) if value is not None else default

        targets = data.get("targets") or []
        if not isinstance(targets, list):
            raise ValidationError("targets", "targets must be a list of ids or names", targets)

        saves = data.get("manual_save_rolls") or {}
        if not isinstance(saves, dict):
            raise ValidationError("manual_save_rolls", "manual_save_rolls must map participant to roll", saves)
        for ref in saves:
            _opt_int(saves, ref, 1, 20)

        return cls(
            kind=kind,
            actor=str(actor),
            target=data.get("target") or data.get("target_id"),
            targets=[str(t) for t in targets],
            cost=enum("action_cost", ActionCost) or enum("cost", ActionCost),
            label=(data.get("label") or data.get("custom_label") or "").strip(),
            description=(data.get("description") or "").strip(),
            move_to=_opt_position(data, "move_to"),
            weapon_type=enum("weapon_type", WeaponType),
            attack_bonus=_opt_int(data, "attack_bonus"),
            damage_expression=data.get("damage_expression"),
            damage_type=enum("damage_type", DamageType),
            reach=_opt_int(data, "reach", 5),
            weapon_range=_opt_int(data, "weapon_range", 5),
            long_range=_opt_int(data, "long_range", 5),
            advantage=bool(data.get("advantage", False)),
            disadvantage=bool(data.get("disadvantage", False)),
            manual_attack_roll=_opt_int(data, "manual_attack_roll", 1, 20),
            manual_damage_roll=_opt_int(data, "manual_damage_roll", 0),
            manual_opportunity_attack_roll=_opt_int(data, "manual_opportunity_attack_roll", 1, 20),
            manual_opportunity_damage_roll=_opt_int(data, "manual_opportunity_damage_roll", 0),
            spell_name=(data.get("spell_name") or "").strip() or None,
            spell_slot=_opt_int(data, "spell_slot", 0, 9),
            spell_range=_opt_int(data, "spell_range", 0),
            spell_damage=data.get("spell_damage"),
            spell_damage_type=enum("spell_damage_type", DamageType),
            spell_healing=data.get("spell_healing"),
            requires_attack_roll=bool(data.get("requires_attack_roll", False)),
            save_dc=_opt_int(data, "save_dc", 1),
            save_ability=enum("save_ability", Ability),
            half_on_save=bool(data.get("half_on_save", False)),
            condition_on_fail=enum("condition_on_fail", ConditionKind),
            condition_duration=_opt_int(data, "condition_duration", 1),
            condition_label=(data.get("condition_label") or "").strip() or None,
            concentration=bool(data.get("concentration", False)),
            aoe_shape=enum("aoe_shape", AoeShape),
            aoe_size=_opt_int(data, "aoe_size", 1) or _opt_int(data, "aoe_radius", 1),
            aoe_center=_opt_position(data, "aoe_center"),
            aoe_direction=_opt_position(data, "aoe_direction"),
            manual_save_rolls={str(k): int(v) for k, v in saves.items()},
            manual_save_roll=_opt_int(data, "manual_save_roll", 1, 20),
            shove_direction=enum("shove_direction", ShoveDirection, ShoveDirection.AWAY),
            manual_check_roll=_opt_int(data, "manual_check_roll", 1, 20),
            manual_contest_roll=_opt_int(data, "manual_contest_roll", 1, 20),
            trigger=(data.get("trigger") or "").strip() or None,
            readied_action=(data.get("readied_action") or "").strip() or None,
        )

    @property
    def resolved_cost(self) -> ActionCost:
        return self.cost or self.kind.default_cost


@dataclass
class ActionResult:
    """Result of taking an action in an encounter."""
    success: bool
    action_type: str
    description: str
    actor_id: Optional[str] = None
    cost: Optional[str] = None
    damage_dealt: int = 0
    target_id: Optional[str] = None
    effects_applied: List[str] = field(default_factory=list)
    reactions: List["ActionResult"] = field(default_factory=list)
    interrupted: bool = False
    extra_data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "action_type": self.action_type,
            "actor_id": self.actor_id,
            "cost": self.cost,
            "description": self.description,
            "damage_dealt": self.damage_dealt,
            "target_id": self.target_id,
            "effects_applied": list(self.effects_applied),
            "reactions": [r.to_dict() for r in self.reactions],
            "interrupted": self.interrupted,
            "extra_data": self.extra_data,
        }
