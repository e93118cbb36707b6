"""
Death Saving Throws.

Implements the death saving throw mechanics:
- DC 10 saving throw when a dying participant's turn comes up
- Natural 20: Regain 1 HP and consciousness
- Natural 1: Counts as 2 failures
- 3 successes: Stabilize (unconscious but no longer dying)
- 3 failures: Death

Also handles:
- Taking damage while at 0 HP (auto-failure, crit = 2 failures)
- Stabilization via Spare the Dying, a healer's kit or a Medicine check
- Regaining consciousness when healed

The d20 itself is rolled by the caller so every outcome can be forced.
"""
from dataclasses import dataclass
from typing import Dict, Any, Optional

from skirmish.core.dice import D20Result
from skirmish.core.errors import ValidationError
from skirmish.core.vocabulary import TokenEnum


DEATH_SAVE_DC = 10
STABILIZE_DC = 10


class DeathSaveOutcome(TokenEnum):
    """Possible outcomes of a death save."""
    CONTINUE = "continue"  # Still dying, need more saves
    STABILIZED = "stabilized"  # 3 successes, unconscious but stable
    REVIVED = "revived"  # Natural 20, regain 1 HP
    DEAD = "dead"  # 3 failures


class StabilizeMethod(TokenEnum):
    SPARE_THE_DYING = "spare_the_dying"
    HEALER_KIT = "healer_kit"
    MEDICINE = "medicine"


@dataclass
class DeathSaveState:
    """
    Tracks death saving throws for a participant at 0 HP.
    """
    successes: int = 0
    failures: int = 0
    is_stable: bool = False
    is_dead: bool = False

    @property
    def is_dying(self) -> bool:
        return not self.is_stable and not self.is_dead

    def reset(self):
        """Reset death save tracking (e.g., when healed)."""
        self.successes = 0
        self.failures = 0
        self.is_stable = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "successes": self.successes,
            "failures": self.failures,
            "is_stable": self.is_stable,
            "is_dead": self.is_dead,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "DeathSaveState":
        return cls(
            successes=data.get("successes", 0),
            failures=data.get("failures", 0),
            is_stable=data.get("is_stable", False),
            is_dead=data.get("is_dead", False),
        )


@dataclass
class DeathSaveResult:
    """Result of a single death saving throw."""
    roll: int  # The natural d20
    modified_roll: int  # Roll + any modifiers
    modifier: int
    dc: int
    success: bool
    critical_success: bool  # Natural 20
    critical_failure: bool  # Natural 1
    total_successes: int  # After this save
    total_failures: int  # After this save
    outcome: DeathSaveOutcome
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "roll": self.roll,
            "modified_roll": self.modified_roll,
            "modifier": self.modifier,
            "dc": self.dc,
            "success": self.success,
            "critical_success": self.critical_success,
            "critical_failure": self.critical_failure,
            "total_successes": self.total_successes,
            "total_failures": self.total_failures,
            "outcome": self.outcome.value,
            "description": self.description,
        }


def roll_death_save(state: DeathSaveState, d20: D20Result, dc: int = DEATH_SAVE_DC) -> DeathSaveResult:
    """
    Resolve a death saving throw.

    Args:
        state: Current death save state (will be modified)
        d20: The rolled (or forced) d20
        dc: Save DC, 10 under the standard rules

    Returns:
        DeathSaveResult with the outcome
    """
    if state.is_dead or state.is_stable:
        raise ValidationError("participant", "Only a dying participant makes death saves",
                              "dead" if state.is_dead else "stable")

    roll = d20.natural

    if d20.natural_20:
        state.reset()
        return DeathSaveResult(
            roll=roll,
            modified_roll=d20.total,
            modifier=d20.modifier,
            dc=dc,
            success=True,
            critical_success=True,
            critical_failure=False,
            total_successes=0,
            total_failures=0,
            outcome=DeathSaveOutcome.REVIVED,
            description="Natural 20! Regains 1 HP and consciousness",
        )

    if d20.natural_1:
        state.failures = min(3, state.failures + 2)
        outcome = DeathSaveOutcome.DEAD if state.failures >= 3 else DeathSaveOutcome.CONTINUE
        if outcome == DeathSaveOutcome.DEAD:
            state.is_dead = True
        return DeathSaveResult(
            roll=roll,
            modified_roll=d20.total,
            modifier=d20.modifier,
            dc=dc,
            success=False,
            critical_success=False,
            critical_failure=True,
            total_successes=state.successes,
            total_failures=state.failures,
            outcome=outcome,
            description=f"Natural 1! Two death save failures ({state.failures}/3)"
            + (" - has died" if outcome == DeathSaveOutcome.DEAD else ""),
        )

    success = d20.total >= dc

    if success:
        state.successes += 1
        if state.successes >= 3:
            state.is_stable = True
            outcome = DeathSaveOutcome.STABILIZED
            description = f"Success! ({state.successes}/3) - now stable"
        else:
            outcome = DeathSaveOutcome.CONTINUE
            description = f"Success! ({state.successes}/3 successes, {state.failures}/3 failures)"
    else:
        state.failures += 1
        if state.failures >= 3:
            state.is_dead = True
            outcome = DeathSaveOutcome.DEAD
            description = f"Failure! ({state.failures}/3) - has died"
        else:
            outcome = DeathSaveOutcome.CONTINUE
            description = f"Failure! ({state.successes}/3 successes, {state.failures}/3 failures)"

    return DeathSaveResult(
        roll=roll,
        modified_roll=d20.total,
        modifier=d20.modifier,
        dc=dc,
        success=success,
        critical_success=False,
        critical_failure=False,
        total_successes=state.successes,
        total_failures=state.failures,
        outcome=outcome,
        description=description,
    )


def take_damage_while_dying(state: DeathSaveState, damage: int, was_critical: bool = False) -> Dict[str, Any]:
    """
    Handle taking damage while at 0 HP.

    Any damage causes an automatic death save failure; a critical hit
    causes two. A stable participant starts dying again.
    """
    failures_added = 2 if was_critical else 1
    state.is_stable = False
    state.failures = min(3, state.failures + failures_added)

    result = {
        "damage_taken": damage,
        "failures_added": failures_added,
        "was_critical": was_critical,
        "total_failures": state.failures,
        "died": False,
    }

    if state.failures >= 3:
        state.is_dead = True
        result["died"] = True
        result["description"] = "The blow proves fatal."
    else:
        result["description"] = (
            f"Damage while dying: {'critical hit, 2 failures' if was_critical else '1 failure'} "
            f"({state.failures}/3 failures)"
        )

    return result


@dataclass
class StabilizationResult:
    """Result of an attempt to stabilize a dying participant."""
    success: bool
    method: StabilizeMethod
    roll: Optional[int] = None
    total: Optional[int] = None
    dc: Optional[int] = None
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "method": self.method.value,
            "roll": self.roll,
            "total": self.total,
            "dc": self.dc,
            "description": self.description,
        }


def stabilize_creature(
    state: DeathSaveState,
    method: StabilizeMethod = StabilizeMethod.MEDICINE,
    check: Optional[D20Result] = None,
) -> StabilizationResult:
    """
    Attempt to stabilize a dying participant.

    Methods:
    - spare_the_dying: Automatic (cantrip)
    - healer_kit: Automatic
    - medicine: DC 10 Wisdom (Medicine) check, rolled by the caller

    Args:
        state: Death save state to modify
        method: Stabilization method
        check: The Medicine check roll, required for the medicine method

    Returns:
        StabilizationResult with outcome
    """
    if state.is_dead:
        return StabilizationResult(success=False, method=method,
                                   description="Cannot stabilize - already dead")

    if state.is_stable:
        return StabilizationResult(success=True, method=method, description="Already stable")

    if method in (StabilizeMethod.SPARE_THE_DYING, StabilizeMethod.HEALER_KIT):
        state.is_stable = True
        state.successes = 0
        state.failures = 0
        label = "Spare the Dying" if method is StabilizeMethod.SPARE_THE_DYING else "Healer's Kit"
        return StabilizationResult(success=True, method=method, description=f"{label} stabilizes the creature")

    if check is None:
        raise ValidationError("check", "A Medicine check roll is required")

    if check.total >= STABILIZE_DC:
        state.is_stable = True
        state.successes = 0
        state.failures = 0
        return StabilizationResult(
            success=True,
            method=method,
            roll=check.natural,
            total=check.total,
            dc=STABILIZE_DC,
            description=f"Medicine check succeeded ({check.total} vs DC {STABILIZE_DC}); now stable",
        )

    return StabilizationResult(
        success=False,
        method=method,
        roll=check.natural,
        total=check.total,
        dc=STABILIZE_DC,
        description=f"Medicine check failed ({check.total} vs DC {STABILIZE_DC}); still dying",
    )


def get_death_save_status(state: DeathSaveState) -> Dict[str, Any]:
    """Formatted status of death saves for display."""
    if state.is_dead:
        status = "dead"
    elif state.is_stable:
        status = "stable"
    else:
        status = "dying"

    return {
        "status": status,
        "successes": state.successes,
        "failures": state.failures,
        "is_stable": state.is_stable,
        "is_dead": state.is_dead,
        "markers": "S" * state.successes + "-" * (3 - state.successes)
        + "/" + "F" * state.failures + "-" * (3 - state.failures),
    }
