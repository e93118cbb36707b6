"""
Initiative System.

Keeps an encounter's participants in turn order:
- Sorted by initiative total, highest first
- Ties broken by initiative modifier, then by the order participants joined
- Values are fixed once rolled; the order is never re-randomized
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from skirmish.core.participants import Participant


def initiative_key(participant: Participant) -> Tuple[int, int, int]:
    """Sort key: higher initiative first, then higher modifier, then earlier join."""
    return (-(participant.initiative or 0), -participant.initiative_modifier, participant.join_order)


@dataclass
class InitiativeTracker:
    """
    Turn order for one encounter.

    Attributes:
        participants: Participants sorted by initiative_key
        current_turn_index: Index of the participant whose turn it is
        current_round: Round number, starting at 1
    """
    participants: List[Participant] = field(default_factory=list)
    current_turn_index: int = 0
    current_round: int = 1
    _next_join: int = 0

    def add(self, participant: Participant) -> int:
        """
        Insert a participant at its sorted position.

        The current turn stays with the same participant even when the
        newcomer sorts ahead of it.

        Returns:
            The index the participant was inserted at
        """
        participant.join_order = self._next_join
        self._next_join += 1

        current = self.current
        key = initiative_key(participant)
        index = len(self.participants)
        for i, existing in enumerate(self.participants):
            if key < initiative_key(existing):
                index = i
                break
        self.participants.insert(index, participant)

        if current is not None and index <= self.current_turn_index:
            self.current_turn_index += 1
        return index

    def sort(self) -> None:
        self.participants.sort(key=initiative_key)

    @property
    def current(self) -> Optional[Participant]:
        if not self.participants:
            return None
        return self.participants[self.current_turn_index]

    def advance(self, skip: Callable[[Participant], bool]) -> Tuple[Participant, bool, List[str]]:
        """
        Move to the next participant that should act.

        Args:
            skip: Predicate for participants whose turn is passed over

        Returns:
            (new current participant, whether a new round started, skipped ids).
            If every participant is skipped the pointer lands on the next
            participant in order rather than looping forever.
        """
        start_index, start_round = self.current_turn_index, self.current_round
        round_started = False
        skipped: List[str] = []
        total = len(self.participants)

        for _ in range(total):
            round_started = self._step() or round_started
            candidate = self.participants[self.current_turn_index]
            if not skip(candidate):
                return candidate, round_started, skipped
            skipped.append(candidate.id)

        # Everyone is skippable; stop on the participant after the one who just acted
        self.current_turn_index, self.current_round = start_index, start_round
        round_started = self._step()
        return self.participants[self.current_turn_index], round_started, []

    def _step(self) -> bool:
        self.current_turn_index = (self.current_turn_index + 1) % len(self.participants)
        if self.current_turn_index == 0:
            self.current_round += 1
            return True
        return False

    def get_initiative_order(self) -> List[Dict[str, Any]]:
        """
        Get the current initiative order for display.

        Returns:
            List of participant info in initiative order
        """
        return [
            {
                "position": i + 1,
                "id": p.id,
                "name": p.name,
                "initiative": p.initiative,
                "is_current": i == self.current_turn_index,
            }
            for i, p in enumerate(self.participants)
        ]
