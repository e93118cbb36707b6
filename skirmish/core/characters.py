"""
Character lookup.

Participants may reference a stored character by id or name. The engine
does not own character records; it only asks a resolver for the numbers
needed to seed a participant.
"""
from typing import Any, Dict, List, Optional, Protocol
import copy
import threading

from skirmish.core.errors import ErrorCode, NotFoundError


# Fields a character record may contribute to a participant
SEED_FIELDS = (
    "name",
    "faction",
    "max_hp",
    "current_hp",
    "temp_hp",
    "armor_class",
    "speed",
    "initiative_modifier",
    "size",
    "reach",
    "abilities",
    "save_bonuses",
    "skill_bonuses",
    "attack_bonus",
    "damage_expression",
    "damage_type",
    "attacks_per_action",
    "spell_slots",
    "resistances",
    "immunities",
    "vulnerabilities",
    "player_controlled",
)


class CharacterResolver(Protocol):
    """Anything that can turn a character reference into stats."""

    def resolve(self, reference: str) -> Optional[Dict[str, Any]]:
        ...


class CharacterDirectory:
    """
    In-memory character records, looked up by id or case-insensitive name.

    Suitable for tests and single-process deployments.
    """

    def __init__(self, records: Optional[List[Dict[str, Any]]] = None):
        self._lock = threading.Lock()
        self._records: Dict[str, Dict[str, Any]] = {}
        for record in records or []:
            self.register(record)

    def register(self, record: Dict[str, Any]) -> str:
        character_id = str(record.get("id") or "").strip()
        if not character_id:
            raise ValueError("Character records need an id")
        with self._lock:
            self._records[character_id] = copy.deepcopy(record)
        return character_id

    def resolve(self, reference: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            if reference in self._records:
                return copy.deepcopy(self._records[reference])
            wanted = str(reference).strip().lower()
            for record in self._records.values():
                if str(record.get("name", "")).lower() == wanted:
                    return copy.deepcopy(record)
        return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


def seed_participant(data: Dict[str, Any], resolver: Optional[CharacterResolver]) -> Dict[str, Any]:
    """
    Fill participant fields from the referenced character.

    Fields given explicitly in ``data`` win over the character record.

    Raises:
        NotFoundError: If ``character_id`` is set but nothing resolves it
    """
    reference = data.get("character_id")
    if not reference or resolver is None:
        return dict(data)

    record = resolver.resolve(reference)
    if record is None:
        raise NotFoundError("Character", str(reference), code=ErrorCode.CHARACTER_NOT_FOUND)

    seeded = {key: record[key] for key in SEED_FIELDS if key in record}
    seeded.setdefault("faction", "ally")
    seeded.update({k: v for k, v in data.items() if v is not None})
    seeded["character_id"] = record.get("id", reference)
    return seeded
