"""
Encounter registry.

Owns every live encounter. Each encounter sits in its own slot guarded by
its own re-entrant lock, so requests against different encounters never
wait on each other while requests against the same encounter run one at a
time. The registry-level lock only protects the id -> slot map and is
never held while an encounter is being worked on.
"""
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Set
import logging
import threading
import uuid

from skirmish.core.combat_summary import ParticipantTally
from skirmish.core.condition_effects import ConditionStore, EffectiveStats
from skirmish.core.errors import (
    EncounterEndedError,
    EncounterNotFoundError,
    ParticipantNotFoundError,
)
from skirmish.core.geometry import Cell
from skirmish.core.initiative import InitiativeTracker
from skirmish.core.participants import Participant, find_participant
from skirmish.core.rules_config import RulesConfig
from skirmish.core.terrain import Terrain
from skirmish.core.vocabulary import CombatOutcome, EncounterState, Light


logger = logging.getLogger("skirmish.registry")

EVENT_LOG_LIMIT = 500


@dataclass
class CombatEvent:
    """An event that occurred during the encounter."""
    event_type: str
    round_number: int
    participant_id: Optional[str]
    description: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.event_type,
            "round": self.round_number,
            "participant_id": self.participant_id,
            "description": self.description,
            "data": self.data,
        }


@dataclass
class Encounter:
    """
    Complete state of one encounter.

    Invariant: while active, ``tracker.current_turn_index`` is a valid index
    into ``tracker.participants``.
    """
    id: str
    terrain: Terrain
    rules: RulesConfig = field(default_factory=RulesConfig)
    lighting: Light = Light.BRIGHT
    name: str = ""
    tracker: InitiativeTracker = field(default_factory=InitiativeTracker)
    conditions: ConditionStore = field(default_factory=ConditionStore)
    state: EncounterState = EncounterState.ACTIVE
    outcome: Optional[CombatOutcome] = None
    end_notes: str = ""
    events: List[CombatEvent] = field(default_factory=list)
    tallies: Dict[str, ParticipantTally] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    ended_at: Optional[datetime] = None

    @property
    def participants(self) -> List[Participant]:
        return self.tracker.participants

    @property
    def round(self) -> int:
        return self.tracker.current_round

    @property
    def current(self) -> Optional[Participant]:
        return self.tracker.current

    @property
    def is_active(self) -> bool:
        return self.state is EncounterState.ACTIVE

    def require_active(self) -> None:
        if not self.is_active:
            raise EncounterEndedError(self.id)

    def get_participant(self, reference: str) -> Participant:
        """Resolve a participant by id or name, or raise ParticipantNotFoundError."""
        participant = find_participant(self.participants, reference)
        if participant is None:
            raise ParticipantNotFoundError(str(reference), self.id)
        return participant

    def occupant_at(self, cell: Cell, exclude: Optional[str] = None) -> Optional[Participant]:
        """The living participant standing on a cell, if any."""
        for p in self.participants:
            if p.id != exclude and p.position.cell == cell and not p.is_dead:
                return p
        return None

    def effective_stats(self, participant: Participant) -> EffectiveStats:
        return self.conditions.compute_effective_stats(participant.id, participant.base_stats())

    def tally(self, participant_id: str) -> ParticipantTally:
        return self.tallies.setdefault(participant_id, ParticipantTally())

    def add_event(
        self,
        event_type: str,
        description: str,
        participant_id: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None
    ) -> CombatEvent:
        """Add an event to the encounter log."""
        event = CombatEvent(
            event_type=event_type,
            round_number=self.round,
            participant_id=participant_id,
            description=description,
            data=data or {}
        )
        self.events.append(event)
        if len(self.events) > EVENT_LOG_LIMIT:
            del self.events[: len(self.events) - EVENT_LOG_LIMIT]
        return event


class _Slot:
    def __init__(self, encounter: Encounter):
        self.encounter = encounter
        self.lock = threading.RLock()
        self.discarded = False


class EncounterRegistry:
    """
    Map of encounter id to encounter, with one critical section per encounter.

    Args:
        retain_ended: Keep ended encounters queryable instead of discarding them
    """

    def __init__(self, retain_ended: bool = True):
        self.retain_ended = retain_ended
        self._lock = threading.Lock()
        self._slots: Dict[str, _Slot] = {}
        self._issued: Set[str] = set()

    def new_id(self) -> str:
        """Reserve a fresh id. Ids are never handed out twice."""
        with self._lock:
            while True:
                candidate = f"enc-{uuid.uuid4().hex[:8]}"
                if candidate not in self._issued:
                    self._issued.add(candidate)
                    return candidate

    def register(self, encounter: Encounter) -> str:
        with self._lock:
            self._issued.add(encounter.id)
            self._slots[encounter.id] = _Slot(encounter)
        logger.info(f"Encounter {encounter.id} registered with {len(encounter.participants)} participants")
        return encounter.id

    def _slot(self, encounter_id: str) -> _Slot:
        with self._lock:
            slot = self._slots.get(encounter_id)
        if slot is None:
            raise EncounterNotFoundError(encounter_id)
        return slot

    @contextmanager
    def session(self, encounter_id: str, write: bool = False) -> Iterator[Encounter]:
        """
        Critical section for one encounter.

        Args:
            encounter_id: Encounter to lock
            write: If True, an ended encounter raises EncounterEndedError

        Yields:
            The locked Encounter
        """
        slot = self._slot(encounter_id)
        with slot.lock:
            # Discarded while we waited for the lock
            if slot.discarded:
                raise EncounterNotFoundError(encounter_id)
            if write:
                slot.encounter.require_active()
            yield slot.encounter

    def discard(self, encounter_id: str) -> None:
        """Drop an encounter. Callers must hold its session."""
        with self._lock:
            slot = self._slots.pop(encounter_id, None)
        if slot is not None:
            slot.discarded = True
            logger.info(f"Encounter {encounter_id} discarded")

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._slots)

    def __contains__(self, encounter_id: str) -> bool:
        with self._lock:
            return encounter_id in self._slots

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)
