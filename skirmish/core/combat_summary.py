"""
Post-encounter statistics.

Per-participant tallies are updated by the action pipeline as things
happen; the summary folds them into totals and picks a most valuable
participant.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


KNOCKOUT_WEIGHT = 10
CONDITION_WEIGHT = 2


@dataclass
class ParticipantTally:
    """Running combat statistics for one participant."""
    damage_dealt: int = 0
    damage_taken: int = 0
    healing_done: int = 0
    attacks_attempted: int = 0
    attacks_hit: int = 0
    critical_hits: int = 0
    conditions_applied: int = 0
    knockouts: int = 0

    @property
    def hit_rate(self) -> float:
        if not self.attacks_attempted:
            return 0.0
        return round(self.attacks_hit / self.attacks_attempted, 3)

    @property
    def score(self) -> int:
        return (
            self.damage_dealt
            + self.healing_done
            + KNOCKOUT_WEIGHT * self.knockouts
            + CONDITION_WEIGHT * self.conditions_applied
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "damage_dealt": self.damage_dealt,
            "damage_taken": self.damage_taken,
            "healing_done": self.healing_done,
            "attacks_attempted": self.attacks_attempted,
            "attacks_hit": self.attacks_hit,
            "critical_hits": self.critical_hits,
            "hit_rate": self.hit_rate,
            "conditions_applied": self.conditions_applied,
            "knockouts": self.knockouts,
            "score": self.score,
        }


def pick_mvp(order: List[str], tallies: Dict[str, ParticipantTally]) -> Optional[str]:
    """
    Highest score wins; ties go to the earlier initiative slot.

    Returns None when nobody scored anything.
    """
    best_id, best_score = None, 0
    for participant_id in order:
        tally = tallies.get(participant_id)
        if tally is not None and tally.score > best_score:
            best_id, best_score = participant_id, tally.score
    return best_id


def build_summary(encounter) -> Dict[str, Any]:
    """
    Summarize an encounter.

    Args:
        encounter: The Encounter to summarize (active or ended)

    Returns:
        Dict with round count, totals, per-participant stats and the MVP
    """
    order = [p.id for p in encounter.participants]
    tallies = {pid: encounter.tally(pid) for pid in order}
    mvp_id = pick_mvp(order, tallies)
    by_id = {p.id: p for p in encounter.participants}

    return {
        "encounter_id": encounter.id,
        "state": encounter.state.value,
        "outcome": encounter.outcome.value if encounter.outcome else None,
        "rounds": encounter.round,
        "totals": {
            "damage_dealt": sum(t.damage_dealt for t in tallies.values()),
            "healing_done": sum(t.healing_done for t in tallies.values()),
            "attacks_attempted": sum(t.attacks_attempted for t in tallies.values()),
            "attacks_hit": sum(t.attacks_hit for t in tallies.values()),
            "conditions_applied": sum(t.conditions_applied for t in tallies.values()),
            "knockouts": sum(t.knockouts for t in tallies.values()),
        },
        "participants": [
            {
                "id": pid,
                "name": by_id[pid].name,
                "faction": by_id[pid].faction.value,
                "final_hp": by_id[pid].current_hp,
                "status": _status(by_id[pid]),
                **tallies[pid].to_dict(),
            }
            for pid in order
        ],
        "mvp": (
            {"id": mvp_id, "name": by_id[mvp_id].name, "score": tallies[mvp_id].score}
            if mvp_id else None
        ),
    }


def _status(participant) -> str:
    if participant.is_dead:
        return "dead"
    if participant.is_down:
        return "stable" if participant.death_saves and participant.death_saves.is_stable else "dying"
    return "standing"
