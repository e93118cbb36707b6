"""
Shared vocabularies for the encounter engine.

Every kind family is a closed Enum. Families that are open in play
(actions, conditions) carry a CUSTOM member whose free-form label travels
alongside it. Tokens are parsed with ``parse``, which accepts the canonical
value and a small set of aliases and rejects everything else; nothing is
ever silently rerouted to a different member.
"""
from enum import Enum
from typing import Dict, Optional, Type, TypeVar

from skirmish.core.errors import ValidationError


E = TypeVar("E", bound="TokenEnum")


class TokenEnum(str, Enum):
    """String enum parsed from caller-supplied tokens."""

    @classmethod
    def aliases(cls) -> Dict[str, str]:
        return {}

    @classmethod
    def parse(cls: Type[E], token, field: Optional[str] = None) -> E:
        if isinstance(token, cls):
            return token
        if not isinstance(token, str):
            raise ValidationError(field or cls.__name__, f"Expected a {cls.__name__} token", token)
        key = token.strip().lower().replace("-", "_").replace(" ", "_")
        key = cls.aliases().get(key, key)
        try:
            return cls(key)
        except ValueError:
            allowed = ", ".join(m.value for m in cls)
            raise ValidationError(
                field or cls.__name__,
                f"Unknown {cls.__name__} '{token}' (allowed: {allowed})",
                token,
            )


# =============================================================================
# ACTIONS
# =============================================================================

class ActionKind(TokenEnum):
    """Kinds of action a participant can request."""
    ATTACK = "attack"
    CAST_SPELL = "cast_spell"
    MOVE = "move"
    DASH = "dash"
    DISENGAGE = "disengage"
    DODGE = "dodge"
    HELP = "help"
    HIDE = "hide"
    READY = "ready"
    SEARCH = "search"
    USE_OBJECT = "use_object"
    USE_MAGIC_ITEM = "use_magic_item"
    USE_SPECIAL_ABILITY = "use_special_ability"
    GRAPPLE = "grapple"
    SHOVE = "shove"
    IMPROVISE = "improvise"
    TWO_WEAPON_ATTACK = "two_weapon_attack"
    CUSTOM = "custom"

    @classmethod
    def aliases(cls) -> Dict[str, str]:
        return {
            "cast": "cast_spell",
            "spell": "cast_spell",
            "movement": "move",
            "offhand_attack": "two_weapon_attack",
        }

    @property
    def default_cost(self) -> "ActionCost":
        if self is ActionKind.MOVE:
            return ActionCost.MOVEMENT
        if self is ActionKind.TWO_WEAPON_ATTACK:
            return ActionCost.BONUS_ACTION
        return ActionCost.ACTION


class ActionCost(TokenEnum):
    """Action-economy slot an action spends."""
    ACTION = "action"
    BONUS_ACTION = "bonus_action"
    REACTION = "reaction"
    FREE = "free"
    MOVEMENT = "movement"

    @classmethod
    def aliases(cls) -> Dict[str, str]:
        return {"bonus": "bonus_action"}


class WeaponType(TokenEnum):
    """Weapon categories for attack resolution."""
    MELEE = "melee"
    RANGED = "ranged"
    MELEE_FINESSE = "melee_finesse"
    RANGED_THROWN = "ranged_thrown"

    @property
    def is_melee(self) -> bool:
        return self in (WeaponType.MELEE, WeaponType.MELEE_FINESSE)


class ShoveDirection(TokenEnum):
    AWAY = "away"
    PRONE = "prone"

    @classmethod
    def aliases(cls) -> Dict[str, str]:
        return {"push": "away"}


class RollMode(TokenEnum):
    """Roll mode for d20 checks."""
    NORMAL = "normal"
    ADVANTAGE = "advantage"
    DISADVANTAGE = "disadvantage"

    @classmethod
    def combine(cls, advantage: bool, disadvantage: bool) -> "RollMode":
        """Any advantage and any disadvantage cancel to a normal roll."""
        if advantage and not disadvantage:
            return cls.ADVANTAGE
        if disadvantage and not advantage:
            return cls.DISADVANTAGE
        return cls.NORMAL


# =============================================================================
# CONDITIONS
# =============================================================================

class ConditionKind(TokenEnum):
    """Status conditions tracked by the condition store."""
    BLINDED = "blinded"
    CHARMED = "charmed"
    DEAFENED = "deafened"
    FRIGHTENED = "frightened"
    GRAPPLED = "grappled"
    INCAPACITATED = "incapacitated"
    INVISIBLE = "invisible"
    PARALYZED = "paralyzed"
    PETRIFIED = "petrified"
    POISONED = "poisoned"
    PRONE = "prone"
    RESTRAINED = "restrained"
    STUNNED = "stunned"
    UNCONSCIOUS = "unconscious"
    EXHAUSTION = "exhaustion"
    CUSTOM = "custom"

    @classmethod
    def aliases(cls) -> Dict[str, str]:
        return {"exhausted": "exhaustion", "paralysed": "paralyzed"}


class DurationKind(TokenEnum):
    """How a condition's lifetime is measured."""
    ROUNDS = "rounds"
    UNTIL_LONG_REST = "until_long_rest"
    UNTIL_DISPELLED = "until_dispelled"
    PERMANENT = "permanent"


# =============================================================================
# ABILITIES AND DAMAGE
# =============================================================================

class Ability(TokenEnum):
    STR = "str"
    DEX = "dex"
    CON = "con"
    INT = "int"
    WIS = "wis"
    CHA = "cha"

    @classmethod
    def aliases(cls) -> Dict[str, str]:
        return {
            "strength": "str",
            "dexterity": "dex",
            "constitution": "con",
            "intelligence": "int",
            "wisdom": "wis",
            "charisma": "cha",
        }


class DamageType(TokenEnum):
    SLASHING = "slashing"
    PIERCING = "piercing"
    BLUDGEONING = "bludgeoning"
    FIRE = "fire"
    COLD = "cold"
    LIGHTNING = "lightning"
    THUNDER = "thunder"
    ACID = "acid"
    POISON = "poison"
    NECROTIC = "necrotic"
    RADIANT = "radiant"
    FORCE = "force"
    PSYCHIC = "psychic"


class Size(TokenEnum):
    TINY = "tiny"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    HUGE = "huge"
    GARGANTUAN = "gargantuan"

    @property
    def rank(self) -> int:
        return list(Size).index(self)


class Faction(TokenEnum):
    ALLY = "ally"
    ENEMY = "enemy"

    @classmethod
    def aliases(cls) -> Dict[str, str]:
        return {"player": "ally", "friendly": "ally", "hostile": "enemy", "monster": "enemy"}


# =============================================================================
# SPATIAL
# =============================================================================

class CellKind(TokenEnum):
    """Classification of a terrain cell."""
    OPEN = "open"
    OBSTACLE = "obstacle"
    DIFFICULT = "difficult"
    WATER = "water"
    HAZARD = "hazard"

    @classmethod
    def aliases(cls) -> Dict[str, str]:
        return {"normal": "open", "impassable": "obstacle", "wall": "obstacle"}


class Cover(TokenEnum):
    """Cover levels, ordered none < half < three_quarters < full."""
    NONE = "none"
    HALF = "half"
    THREE_QUARTERS = "three_quarters"
    FULL = "full"

    @classmethod
    def aliases(cls) -> Dict[str, str]:
        return {"three_quarter": "three_quarters", "total": "full", "3/4": "three_quarters"}

    @property
    def rank(self) -> int:
        return list(Cover).index(self)

    @classmethod
    def highest(cls, *levels: "Cover") -> "Cover":
        return max(levels, key=lambda c: c.rank, default=cls.NONE)


class ObstacleType(TokenEnum):
    """Shorthand for placing obstacles when editing terrain."""
    WALL = "wall"
    PILLAR = "pillar"
    HALF_COVER = "half_cover"
    THREE_QUARTERS_COVER = "three_quarters_cover"
    TOTAL_COVER = "total_cover"

    @property
    def cover(self) -> Cover:
        if self is ObstacleType.HALF_COVER:
            return Cover.HALF
        if self is ObstacleType.THREE_QUARTERS_COVER:
            return Cover.THREE_QUARTERS
        return Cover.FULL


class Light(TokenEnum):
    BRIGHT = "bright"
    DIM = "dim"
    DARKNESS = "darkness"
    MAGICAL_DARKNESS = "magical_darkness"


class DistanceMode(TokenEnum):
    """Distance metrics: straight line, standard grid, alternating diagonals."""
    EUCLIDEAN = "euclidean"
    GRID_5E = "grid_5e"
    GRID_ALT = "grid_alt"

    @classmethod
    def aliases(cls) -> Dict[str, str]:
        return {"straight": "euclidean", "grid": "grid_5e", "alternating": "grid_alt"}


class MovementQuery(TokenEnum):
    """What a movement query answers: a route, every reachable square, or who is in reach."""
    PATH = "path"
    REACH = "reach"
    ADJACENT = "adjacent"

    @classmethod
    def aliases(cls) -> Dict[str, str]:
        return {"reachable": "reach", "range": "reach", "neighbors": "adjacent"}


class AoeShape(TokenEnum):
    SPHERE = "sphere"
    CUBE = "cube"
    CONE = "cone"
    LINE = "line"
    CYLINDER = "cylinder"

    @classmethod
    def aliases(cls) -> Dict[str, str]:
        return {"radius": "sphere", "circle": "sphere", "square": "cube"}


# =============================================================================
# ENCOUNTER LIFECYCLE AND PROJECTION
# =============================================================================

class EncounterState(TokenEnum):
    ACTIVE = "active"
    ENDED = "ended"


class CombatOutcome(TokenEnum):
    VICTORY = "victory"
    DEFEAT = "defeat"
    FLED = "fled"
    NEGOTIATED = "negotiated"
    OTHER = "other"


class Verbosity(TokenEnum):
    MINIMAL = "minimal"
    SUMMARY = "summary"
    STANDARD = "standard"
    DETAILED = "detailed"


class LegendDetail(TokenEnum):
    NONE = "none"
    COMPACT = "compact"
    FULL = "full"
