"""
Turn scheduler.

Closes out the current participant's turn and hands the turn to the next
participant in initiative order:
- clears the closing participant's action economy and stances
- counts down that participant's round-based conditions
- skips the dead, never the dying
- raises death-save reminders at the start of a round and on a dying
  participant's own turn
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

from skirmish.core.encounter_registry import Encounter


logger = logging.getLogger("skirmish.turns")


@dataclass
class TurnAdvance:
    """What happened when the turn pointer moved."""
    previous_id: Optional[str]
    current_id: str
    round: int
    round_started: bool
    expired_conditions: List[Dict[str, Any]] = field(default_factory=list)
    reminders: List[str] = field(default_factory=list)
    skipped_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "previous_id": self.previous_id,
            "current_id": self.current_id,
            "round": self.round,
            "round_started": self.round_started,
            "expired_conditions": self.expired_conditions,
            "reminders": self.reminders,
            "skipped_ids": self.skipped_ids,
        }


def advance_turn(encounter: Encounter) -> TurnAdvance:
    """
    Advance an active encounter to the next turn.

    The caller holds the encounter's session and has checked that the
    encounter is active.
    """
    previous = encounter.current
    expired = []
    if previous is not None:
        previous.turn.close()
        for effect in encounter.conditions.tick(previous.id):
            expired.append(effect.to_dict())
            encounter.add_event(
                "condition_expired",
                f"{effect.label} on {previous.name} has expired",
                previous.id,
                {"condition": effect.kind.value, "label": effect.label},
            )

    current, round_started, skipped = encounter.tracker.advance(skip=lambda p: p.is_dead)
    current.turn.start()
    current.readied = None

    reminders = []
    if round_started:
        encounter.add_event("round_start", f"Round {encounter.round} begins")
        for p in encounter.participants:
            if p.is_dying:
                reminders.append(f"{p.name} ({p.id}) is dying and must make a death saving throw")
    if current.is_dying:
        reminder = f"{current.name} ({current.id}) must make a death saving throw this turn"
        if reminder not in reminders:
            reminders.append(reminder)

    encounter.add_event(
        "turn_start",
        f"{current.name}'s turn",
        current.id,
        {"skipped": skipped} if skipped else None,
    )
    logger.debug(
        f"Encounter {encounter.id}: round {encounter.round}, turn passes "
        f"{previous.id if previous else None} -> {current.id}"
    )

    return TurnAdvance(
        previous_id=previous.id if previous else None,
        current_id=current.id,
        round=encounter.round,
        round_started=round_started,
        expired_conditions=expired,
        reminders=reminders,
        skipped_ids=skipped,
    )
