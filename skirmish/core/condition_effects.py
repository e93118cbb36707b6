"""
Condition/Effect store.

Keeps the active status effects of every participant in one encounter and
folds them into effective combat statistics:
- Apply advantage/disadvantage to attack rolls
- Apply speed and hit point maximum modifications
- Check for auto-fail conditions on saves
- Check if a participant is incapacitated
- Apply prone-specific melee/ranged modifiers

Effective stats are never stored. They are recomputed from base stats and
the current effect list every time they are needed.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Set, Tuple, Union
import uuid

from skirmish.core.errors import ValidationError
from skirmish.core.exhaustion import MAX_EXHAUSTION_LEVEL, exhaustion_modifiers
from skirmish.core.vocabulary import Ability, ConditionKind, DurationKind


# =============================================================================
# CONDITION DATA
# =============================================================================

@dataclass
class ConditionData:
    """Built-in rules text and effect flags for one condition kind."""
    kind: ConditionKind
    name: str
    description: str
    effects: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.kind.value,
            "name": self.name,
            "description": self.description,
            "effects": self.effects,
        }


_PHYSICAL_SAVES = [Ability.STR, Ability.DEX]

CONDITIONS: Dict[ConditionKind, ConditionData] = {
    c.kind: c for c in [
        ConditionData(
            ConditionKind.BLINDED, "Blinded",
            "Auto-fail sight-based checks, attack disadvantage, attacks have advantage.",
            {"attack_disadvantage": True, "attacks_against_advantage": True},
        ),
        ConditionData(
            ConditionKind.CHARMED, "Charmed",
            "Can't attack the charmer, charmer has advantage on social checks.",
            {"cannot_attack_source": True},
        ),
        ConditionData(
            ConditionKind.DEAFENED, "Deafened",
            "Auto-fail hearing-based checks.",
            {},
        ),
        ConditionData(
            ConditionKind.FRIGHTENED, "Frightened",
            "Disadvantage on ability checks and attacks while the source is visible.",
            {"attack_disadvantage": True, "ability_check_disadvantage": True},
        ),
        ConditionData(
            ConditionKind.GRAPPLED, "Grappled",
            "Speed becomes 0, ends if the grappler is incapacitated or forced apart.",
            {"speed_zero": True},
        ),
        ConditionData(
            ConditionKind.INCAPACITATED, "Incapacitated",
            "Can't take actions or reactions.",
            {"incapacitated": True},
        ),
        ConditionData(
            ConditionKind.INVISIBLE, "Invisible",
            "Attack advantage, attacks against have disadvantage.",
            {"attack_advantage": True, "attacks_against_disadvantage": True},
        ),
        ConditionData(
            ConditionKind.PARALYZED, "Paralyzed",
            "Incapacitated, can't move, auto-fail STR and DEX saves, attacks have advantage, "
            "hits within 5ft are critical.",
            {
                "incapacitated": True,
                "speed_zero": True,
                "auto_fail_saves": _PHYSICAL_SAVES,
                "attacks_against_advantage": True,
                "melee_hits_are_critical": True,
            },
        ),
        ConditionData(
            ConditionKind.PETRIFIED, "Petrified",
            "Transformed to stone, incapacitated, auto-fail STR and DEX saves, attacks have advantage.",
            {
                "incapacitated": True,
                "speed_zero": True,
                "auto_fail_saves": _PHYSICAL_SAVES,
                "attacks_against_advantage": True,
                "resistance_all": True,
            },
        ),
        ConditionData(
            ConditionKind.POISONED, "Poisoned",
            "Disadvantage on attack rolls and ability checks.",
            {"attack_disadvantage": True, "ability_check_disadvantage": True},
        ),
        ConditionData(
            ConditionKind.PRONE, "Prone",
            "Crawl only, attack disadvantage, melee advantage against, ranged disadvantage against.",
            {
                "attack_disadvantage": True,
                "melee_attacks_against_advantage": True,
                "ranged_attacks_against_disadvantage": True,
            },
        ),
        ConditionData(
            ConditionKind.RESTRAINED, "Restrained",
            "Speed 0, attack disadvantage, attacks have advantage, DEX save disadvantage.",
            {
                "speed_zero": True,
                "attack_disadvantage": True,
                "attacks_against_advantage": True,
                "save_disadvantage": [Ability.DEX],
            },
        ),
        ConditionData(
            ConditionKind.STUNNED, "Stunned",
            "Incapacitated, can't move, auto-fail STR and DEX saves, attacks have advantage.",
            {
                "incapacitated": True,
                "speed_zero": True,
                "auto_fail_saves": _PHYSICAL_SAVES,
                "attacks_against_advantage": True,
            },
        ),
        ConditionData(
            ConditionKind.UNCONSCIOUS, "Unconscious",
            "Incapacitated, prone, auto-fail STR and DEX saves, attacks have advantage, "
            "hits within 5ft are critical.",
            {
                "incapacitated": True,
                "speed_zero": True,
                "auto_fail_saves": _PHYSICAL_SAVES,
                "attacks_against_advantage": True,
                "melee_hits_are_critical": True,
            },
        ),
        ConditionData(
            ConditionKind.EXHAUSTION, "Exhaustion",
            "Cumulative levels of exhaustion with escalating penalties.",
            {"exhaustion_levels": True},
        ),
        ConditionData(
            ConditionKind.CUSTOM, "Custom",
            "Free-form effect; only its declared modifiers apply.",
            {},
        ),
    ]
}

# Flat modifiers a custom effect may carry
MODIFIER_KEYS = ("speed", "max_hp", "armor_class")


# =============================================================================
# ACTIVE EFFECTS
# =============================================================================

_DURATION_RANK = {
    DurationKind.ROUNDS: 0,
    DurationKind.UNTIL_LONG_REST: 1,
    DurationKind.UNTIL_DISPELLED: 2,
    DurationKind.PERMANENT: 3,
}


@dataclass
class ConditionEffect:
    """One active condition on one target."""
    target_id: str
    kind: ConditionKind
    label: str = ""  # Display name; the key for custom conditions
    severity: Optional[int] = None  # Exhaustion level
    duration: DurationKind = DurationKind.UNTIL_DISPELLED
    rounds_remaining: Optional[int] = None
    source: str = ""  # What caused it ("Hold Person", "grapple", "0 HP")
    source_id: Optional[str] = None  # Participant that caused it
    modifiers: Dict[str, int] = field(default_factory=dict)
    effect_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])

    def __post_init__(self):
        if not self.label:
            self.label = self.kind.value

    @property
    def key(self) -> Tuple[str, str]:
        if self.kind is ConditionKind.CUSTOM:
            return (self.kind.value, self.label.lower())
        return (self.kind.value, "")

    def outlasts(self, other: "ConditionEffect") -> bool:
        """True if this effect's duration is longer than the other's."""
        mine, theirs = _DURATION_RANK[self.duration], _DURATION_RANK[other.duration]
        if mine != theirs:
            return mine > theirs
        return (self.rounds_remaining or 0) > (other.rounds_remaining or 0)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.effect_id,
            "target_id": self.target_id,
            "kind": self.kind.value,
            "label": self.label,
            "duration": self.duration.value,
            "rounds_remaining": self.rounds_remaining,
            "source": self.source,
        }
        if self.severity is not None:
            data["severity"] = self.severity
        if self.source_id:
            data["source_id"] = self.source_id
        if self.modifiers:
            data["modifiers"] = dict(self.modifiers)
        return data


def parse_duration(
    duration: Union[None, int, str, DurationKind],
) -> Tuple[DurationKind, Optional[int]]:
    """
    Normalize a requested duration.

    Accepts a round count, a DurationKind (or its token), or None for
    "until dispelled".
    """
    if duration is None:
        return DurationKind.UNTIL_DISPELLED, None
    if isinstance(duration, bool):
        raise ValidationError("duration", "Duration must be a round count or a duration kind", duration)
    if isinstance(duration, int):
        if duration < 1:
            raise ValidationError("duration", "Duration in rounds must be at least 1", duration)
        return DurationKind.ROUNDS, duration
    if isinstance(duration, str) and duration.strip().isdigit():
        return parse_duration(int(duration.strip()))
    kind = DurationKind.parse(duration, "duration")
    if kind is DurationKind.ROUNDS:
        raise ValidationError("duration", "A rounds duration needs a round count", duration)
    return kind, None


# =============================================================================
# EFFECTIVE STATS
# =============================================================================

@dataclass(frozen=True)
class BaseStats:
    """The unmodified numbers effective stats are derived from."""
    max_hp: int
    speed: int
    armor_class: int = 10


@dataclass(frozen=True)
class EffectiveStats:
    """Base stats folded with every active effect. Read-only."""
    max_hp: int
    speed: int
    armor_class: int
    attack_advantage: bool = False
    attack_disadvantage: bool = False
    attacked_with_advantage: bool = False
    attacked_with_disadvantage: bool = False
    melee_attacked_with_advantage: bool = False  # Prone
    ranged_attacked_with_disadvantage: bool = False  # Prone
    auto_critical_within_5ft: bool = False
    auto_fail_saves: FrozenSet[Ability] = frozenset()
    save_disadvantage: FrozenSet[Ability] = frozenset()
    ability_check_disadvantage: bool = False
    incapacitated: bool = False
    resistance_all: bool = False
    exhaustion_level: int = 0
    dead: bool = False
    reasons: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_hp": self.max_hp,
            "speed": self.speed,
            "armor_class": self.armor_class,
            "attack_advantage": self.attack_advantage,
            "attack_disadvantage": self.attack_disadvantage,
            "attacked_with_advantage": self.attacked_with_advantage,
            "attacked_with_disadvantage": self.attacked_with_disadvantage,
            "auto_fail_saves": sorted(a.value for a in self.auto_fail_saves),
            "save_disadvantage": sorted(a.value for a in self.save_disadvantage),
            "ability_check_disadvantage": self.ability_check_disadvantage,
            "incapacitated": self.incapacitated,
            "exhaustion_level": self.exhaustion_level,
            "dead": self.dead,
            "reasons": list(self.reasons),
        }


def compute_effective_stats(base: BaseStats, effects: List[ConditionEffect]) -> EffectiveStats:
    """
    Fold active effects into effective stats.

    Multiplicative caps (exhaustion halving) apply before flat modifiers;
    speed zeroing applies last. Any single source of advantage or
    disadvantage is enough, however many there are.
    """
    flags: Dict[str, bool] = {}
    auto_fail: Set[Ability] = set()
    save_dis: Set[Ability] = set()
    reasons: List[str] = []
    flat = {key: 0 for key in MODIFIER_KEYS}
    exhaustion_level = 0

    for effect in effects:
        data = CONDITIONS[effect.kind]
        name = effect.label if effect.kind is ConditionKind.CUSTOM else data.name
        for key in MODIFIER_KEYS:
            if effect.modifiers.get(key):
                flat[key] += int(effect.modifiers[key])
                reasons.append(f"{name}: {key.replace('_', ' ')} {int(effect.modifiers[key]):+d}")
        if effect.kind is ConditionKind.EXHAUSTION:
            exhaustion_level += effect.severity or 1
            continue
        for flag, value in data.effects.items():
            if flag == "auto_fail_saves":
                auto_fail.update(value)
            elif flag == "save_disadvantage":
                save_dis.update(value)
            elif value is True:
                flags[flag] = True
        if data.effects:
            reasons.append(f"{name}: {data.description}")

    exhaustion = exhaustion_modifiers(min(exhaustion_level, MAX_EXHAUSTION_LEVEL))
    reasons.extend(exhaustion.reasons())

    max_hp = int(base.max_hp * exhaustion.max_hp_multiplier) + flat["max_hp"]
    max_hp = max(1, max_hp) if base.max_hp > 0 else 0

    speed = int(base.speed * exhaustion.speed_multiplier) + flat["speed"]
    if flags.get("speed_zero"):
        speed = 0
    speed = max(0, speed)

    if exhaustion.disadvantage_on_saves:
        save_dis.update(Ability)

    return EffectiveStats(
        max_hp=max_hp,
        speed=speed,
        armor_class=base.armor_class + flat["armor_class"],
        attack_advantage=flags.get("attack_advantage", False),
        attack_disadvantage=flags.get("attack_disadvantage", False) or exhaustion.disadvantage_on_attacks,
        attacked_with_advantage=flags.get("attacks_against_advantage", False),
        attacked_with_disadvantage=flags.get("attacks_against_disadvantage", False),
        melee_attacked_with_advantage=flags.get("melee_attacks_against_advantage", False),
        ranged_attacked_with_disadvantage=flags.get("ranged_attacks_against_disadvantage", False),
        auto_critical_within_5ft=flags.get("melee_hits_are_critical", False),
        auto_fail_saves=frozenset(auto_fail),
        save_disadvantage=frozenset(save_dis),
        ability_check_disadvantage=(
            flags.get("ability_check_disadvantage", False) or exhaustion.disadvantage_on_ability_checks
        ),
        incapacitated=flags.get("incapacitated", False),
        resistance_all=flags.get("resistance_all", False),
        exhaustion_level=exhaustion.level,
        dead=exhaustion.is_dead,
        reasons=tuple(reasons),
    )


@dataclass
class AttackModifiers:
    """Advantage/disadvantage modifiers for an attack."""
    advantage: bool = False
    disadvantage: bool = False
    auto_critical: bool = False
    reasons: List[str] = field(default_factory=list)


def get_attack_modifiers(
    attacker: EffectiveStats,
    target: EffectiveStats,
    is_melee: bool = True,
    distance_ft: float = 5,
) -> AttackModifiers:
    """
    Calculate attack advantage/disadvantage from both sides' conditions.

    Args:
        attacker: Effective stats of the attacker
        target: Effective stats of the target
        is_melee: True for melee attacks, False for ranged
        distance_ft: Distance to target in feet

    Returns:
        AttackModifiers with advantage, disadvantage, and reasons
    """
    result = AttackModifiers()
    close = distance_ft <= 5

    if attacker.attack_disadvantage:
        result.disadvantage = True
        result.reasons.append("Attacker has disadvantage from conditions")
    if attacker.attack_advantage:
        result.advantage = True
        result.reasons.append("Attacker has advantage from conditions")
    if target.attacked_with_advantage:
        result.advantage = True
        result.reasons.append("Target's conditions grant advantage")
    if target.attacked_with_disadvantage:
        result.disadvantage = True
        result.reasons.append("Target's conditions impose disadvantage")

    # Prone-specific rules
    if is_melee and close and target.melee_attacked_with_advantage:
        result.advantage = True
        result.reasons.append("Target is Prone (melee advantage)")
    elif target.ranged_attacked_with_disadvantage and not (is_melee and close):
        result.disadvantage = True
        result.reasons.append("Target is Prone (ranged disadvantage)")

    # Paralyzed or unconscious targets are critically hit within 5ft
    if target.auto_critical_within_5ft and close:
        result.auto_critical = True
        result.reasons.append("Target is helpless (auto-crit on hit)")

    return result


# =============================================================================
# STORE
# =============================================================================

class ConditionStore:
    """
    Active condition effects keyed by target id.

    One store belongs to one encounter and is only touched while that
    encounter's lock is held.
    """

    def __init__(self, allow_stacking: bool = False):
        self.allow_stacking = allow_stacking
        self._effects: Dict[str, List[ConditionEffect]] = {}
        self.applied_count: Dict[str, int] = {}  # Conditions applied, by source participant

    @staticmethod
    def validate(
        kind: ConditionKind,
        severity: Optional[int] = None,
        duration: Union[None, int, str, DurationKind] = None,
        label: Optional[str] = None,
        modifiers: Optional[Dict[str, int]] = None,
    ) -> Tuple[DurationKind, Optional[int]]:
        """
        Check the arguments add() would take without touching any target.

        Returns:
            The normalized (duration kind, rounds) pair

        Raises:
            ValidationError: Bad duration, severity or modifier, or an unlabelled custom condition
        """
        duration_kind, rounds = parse_duration(duration)
        if kind is ConditionKind.CUSTOM and not (label and label.strip()):
            raise ValidationError("label", "Custom conditions need a label")
        if severity is not None and (not isinstance(severity, int) or isinstance(severity, bool) or severity < 1):
            raise ValidationError("severity", "Severity must be a positive integer", severity)
        for key in (modifiers or {}):
            if key not in MODIFIER_KEYS:
                raise ValidationError("modifiers", f"Unknown modifier '{key}'", key,
                                      allowed=list(MODIFIER_KEYS))
        return duration_kind, rounds

    def add(
        self,
        target_id: str,
        kind: ConditionKind,
        severity: Optional[int] = None,
        duration: Union[None, int, str, DurationKind] = None,
        source: str = "",
        source_id: Optional[str] = None,
        label: Optional[str] = None,
        modifiers: Optional[Dict[str, int]] = None,
    ) -> ConditionEffect:
        """
        Add a condition to a target.

        Exhaustion severities add up to the maximum level. Any other kind
        already present is not duplicated; the longer duration wins.

        Returns:
            The effect now active on the target (new or merged)
        """
        duration_kind, rounds = self.validate(kind, severity, duration, label, modifiers)
        if kind is ConditionKind.EXHAUSTION:
            severity = min(int(severity or 1), MAX_EXHAUSTION_LEVEL)

        effect = ConditionEffect(
            target_id=target_id,
            kind=kind,
            label=(label or "").strip(),
            severity=severity,
            duration=duration_kind,
            rounds_remaining=rounds,
            source=source,
            source_id=source_id,
            modifiers=dict(modifiers or {}),
        )

        active = self._effects.setdefault(target_id, [])
        existing = next((e for e in active if e.key == effect.key), None)

        if source_id:
            self.applied_count[source_id] = self.applied_count.get(source_id, 0) + 1

        if existing is None or (self.allow_stacking and kind is not ConditionKind.EXHAUSTION):
            active.append(effect)
            return effect

        if kind is ConditionKind.EXHAUSTION:
            existing.severity = min((existing.severity or 1) + severity, MAX_EXHAUSTION_LEVEL)
        if effect.outlasts(existing):
            existing.duration = effect.duration
            existing.rounds_remaining = effect.rounds_remaining
        return existing

    def remove(self, target_id: str, kind: ConditionKind, label: Optional[str] = None) -> List[ConditionEffect]:
        """Remove every instance of a condition kind (or custom label) from a target."""
        active = self._effects.get(target_id, [])
        wanted = (label or "").strip().lower()

        def matches(e: ConditionEffect) -> bool:
            if e.kind is not kind:
                return False
            return kind is not ConditionKind.CUSTOM or not wanted or e.label.lower() == wanted

        removed = [e for e in active if matches(e)]
        self._effects[target_id] = [e for e in active if not matches(e)]
        return removed

    def remove_by_source(
        self,
        source_id: str,
        kind: Optional[ConditionKind] = None,
        source: Optional[str] = None,
    ) -> List[ConditionEffect]:
        """Remove effects a participant caused, optionally narrowed by kind or source label."""
        removed = []
        for target_id, active in self._effects.items():
            keep = []
            for e in active:
                if (e.source_id == source_id
                        and (kind is None or e.kind is kind)
                        and (source is None or e.source == source)):
                    removed.append(e)
                else:
                    keep.append(e)
            self._effects[target_id] = keep
        return removed

    def query(self, target_id: str) -> List[ConditionEffect]:
        return list(self._effects.get(target_id, []))

    def has(self, target_id: str, kind: ConditionKind) -> bool:
        return any(e.kind is kind for e in self._effects.get(target_id, []))

    def kinds(self, target_id: str) -> List[str]:
        """Display labels of the target's active conditions."""
        return [e.label for e in self._effects.get(target_id, [])]

    def clear(self, target_id: str) -> List[ConditionEffect]:
        return self._effects.pop(target_id, [])

    def tick(self, target_id: str) -> List[ConditionEffect]:
        """
        Count down round-based effects on a target whose turn just ended.

        Returns:
            Effects that reached zero and were removed
        """
        expired = []
        keep = []
        for e in self._effects.get(target_id, []):
            if e.duration is DurationKind.ROUNDS and e.rounds_remaining is not None:
                e.rounds_remaining -= 1
                if e.rounds_remaining <= 0:
                    expired.append(e)
                    continue
            keep.append(e)
        if target_id in self._effects:
            self._effects[target_id] = keep
        return expired

    def compute_effective_stats(self, target_id: str, base: BaseStats) -> EffectiveStats:
        return compute_effective_stats(base, self._effects.get(target_id, []))

    def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            target_id: [e.to_dict() for e in active]
            for target_id, active in self._effects.items()
            if active
        }
