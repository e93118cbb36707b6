"""
Skirmish Engine - Custom Error Types
Structured exceptions for engine errors with recovery hints.

Four kinds reach callers: NotFoundError, ValidationError, ConflictError and
RuleViolationError. In-fiction outcomes (a miss, a failed save, a lost
contest, a death) are never raised; they come back inside action results.
"""
from typing import Dict, Any, Optional
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for the engine."""
    # General errors
    UNKNOWN = "UNKNOWN"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    RULE_VIOLATION = "RULE_VIOLATION"

    # Encounter errors
    ENCOUNTER_NOT_FOUND = "ENCOUNTER_NOT_FOUND"
    ENCOUNTER_ENDED = "ENCOUNTER_ENDED"
    PARTICIPANT_NOT_FOUND = "PARTICIPANT_NOT_FOUND"
    DUPLICATE_ID = "DUPLICATE_ID"
    CHARACTER_NOT_FOUND = "CHARACTER_NOT_FOUND"

    # Combat errors
    COMBAT_NOT_YOUR_TURN = "COMBAT_NOT_YOUR_TURN"
    COMBAT_ACTION_USED = "COMBAT_ACTION_USED"
    COMBAT_OUT_OF_RANGE = "COMBAT_OUT_OF_RANGE"
    COMBAT_MOVEMENT_EXCEEDED = "COMBAT_MOVEMENT_EXCEEDED"
    COMBAT_RESOURCE_EXHAUSTED = "COMBAT_RESOURCE_EXHAUSTED"


class GameError(Exception):
    """
    Base exception for all engine errors.

    Provides structured error information with:
    - Error code for programmatic handling
    - Human-readable message
    - Additional context details (offending ids, computed values)
    - Recovery hints for the caller
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.UNKNOWN,
        message: str = "An unexpected error occurred",
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
        recovery_hint: Optional[str] = None,
        http_status: int = 500
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable
        self.recovery_hint = recovery_hint
        self.http_status = http_status

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for JSON response."""
        return {
            "error": {
                "kind": type(self).kind(),
                "code": self.code.value,
                "message": self.message,
                "details": self.details,
                "recoverable": self.recoverable,
                "recovery_hint": self.recovery_hint
            }
        }

    @classmethod
    def kind(cls) -> str:
        """Name of the top-level error kind this exception belongs to."""
        for base in cls.__mro__:
            if base in (NotFoundError, ValidationError, ConflictError, RuleViolationError):
                return base.__name__
        return cls.__name__

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code.value}, message={self.message!r})"


# =============================================================================
# Not Found
# =============================================================================

class NotFoundError(GameError):
    """Unknown encounter, participant or location id."""

    def __init__(
        self,
        resource: str = "Resource",
        identifier: Optional[str] = None,
        code: ErrorCode = ErrorCode.NOT_FOUND,
        **kwargs
    ):
        details = {"resource": resource}
        if identifier:
            details["identifier"] = identifier
        details.update(kwargs.pop("details", {}) or {})
        message = kwargs.pop("message", None) or (
            f"{resource} not found: {identifier}" if identifier else f"{resource} not found"
        )
        super().__init__(
            code=code,
            message=message,
            details=details,
            http_status=404,
            **kwargs
        )


class EncounterNotFoundError(NotFoundError):
    """Raised when an encounter id is unknown or was discarded."""

    def __init__(self, encounter_id: str):
        super().__init__(
            resource="Encounter",
            identifier=encounter_id,
            code=ErrorCode.ENCOUNTER_NOT_FOUND,
            recovery_hint="Create an encounter first or check the encounter id"
        )


class ParticipantNotFoundError(NotFoundError):
    """Raised when an actor or target reference does not resolve."""

    def __init__(self, reference: str, encounter_id: Optional[str] = None):
        details = {}
        if encounter_id:
            details["encounter_id"] = encounter_id
        super().__init__(
            resource="Participant",
            identifier=reference,
            code=ErrorCode.PARTICIPANT_NOT_FOUND,
            details=details,
            recovery_hint="Use a participant id or exact name from the encounter"
        )


# =============================================================================
# Validation
# =============================================================================

class ValidationError(GameError):
    """Malformed or out-of-range input, illegal position, missing field."""

    def __init__(self, field: str, message: str, value: Any = None, **extra: Any):
        details = {"field": field}
        if value is not None:
            details["value"] = str(value)
        details.update(extra)
        super().__init__(
            code=ErrorCode.VALIDATION_ERROR,
            message=message,
            details=details,
            http_status=400,
            recovery_hint=f"Check the value for '{field}'"
        )


# =============================================================================
# Conflict
# =============================================================================

class ConflictError(GameError):
    """Duplicate id, encounter already ended, economy slot already spent."""

    def __init__(
        self,
        message: str = "Request conflicts with current state",
        code: ErrorCode = ErrorCode.CONFLICT,
        details: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        super().__init__(
            code=code,
            message=message,
            details=details,
            http_status=409,
            **kwargs
        )


class DuplicateIdError(ConflictError):
    """Raised when a participant id is already used in the encounter."""

    def __init__(self, participant_id: str, encounter_id: Optional[str] = None):
        details = {"participant_id": participant_id}
        if encounter_id:
            details["encounter_id"] = encounter_id
        super().__init__(
            message=f"Participant id already exists: {participant_id}",
            code=ErrorCode.DUPLICATE_ID,
            details=details,
            recovery_hint="Choose a different participant id"
        )


class EncounterEndedError(ConflictError):
    """Raised when writing to an encounter that has ended."""

    def __init__(self, encounter_id: str):
        super().__init__(
            message=f"Encounter {encounter_id} has already ended",
            code=ErrorCode.ENCOUNTER_ENDED,
            details={"encounter_id": encounter_id},
            recoverable=False,
            recovery_hint="Start a new encounter"
        )


class ActionAlreadyUsedError(ConflictError):
    """Raised when the required action-economy slot is already spent."""

    def __init__(self, participant_id: str, slot: str):
        super().__init__(
            message=f"{participant_id} has already used their {slot.replace('_', ' ')} this turn",
            code=ErrorCode.COMBAT_ACTION_USED,
            details={"participant_id": participant_id, "slot": slot},
            recovery_hint="End the turn or use a different action cost"
        )


# =============================================================================
# Rule Violations
# =============================================================================

class RuleViolationError(GameError):
    """A structurally valid request that the combat rules do not allow."""

    def __init__(
        self,
        message: str = "Action not allowed by the rules",
        code: ErrorCode = ErrorCode.RULE_VIOLATION,
        details: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        super().__init__(
            code=code,
            message=message,
            details=details,
            http_status=422,
            **kwargs
        )


class NotYourTurnError(RuleViolationError):
    """Raised when turn order is enforced and the actor is not current."""

    def __init__(self, actor_id: str, current_id: Optional[str] = None):
        details = {"actor_id": actor_id}
        if current_id:
            details["current_turn"] = current_id
        super().__init__(
            message=f"It is not {actor_id}'s turn",
            code=ErrorCode.COMBAT_NOT_YOUR_TURN,
            details=details,
            recovery_hint="Wait for your turn in the initiative order"
        )


class OutOfRangeError(RuleViolationError):
    """Raised when a target is beyond the declared range or reach."""

    def __init__(self, distance: float, max_range: float, target_id: Optional[str] = None):
        details = {"distance": distance, "max_range": max_range}
        if target_id:
            details["target_id"] = target_id
        super().__init__(
            message=f"Target is out of range (distance {distance:g} ft, range {max_range:g} ft)",
            code=ErrorCode.COMBAT_OUT_OF_RANGE,
            details=details,
            recovery_hint="Move closer or choose a target within range"
        )


class MovementExceededError(RuleViolationError):
    """Raised when a move costs more than the remaining movement budget."""

    def __init__(self, cost: int, remaining: int, destination: Optional[Dict[str, Any]] = None):
        details = {"cost": cost, "remaining": remaining}
        if destination is not None:
            details["destination"] = destination
        super().__init__(
            message=f"Movement of {cost} ft exceeds remaining movement of {remaining} ft",
            code=ErrorCode.COMBAT_MOVEMENT_EXCEEDED,
            details=details,
            recovery_hint="Dash to double your movement or pick a closer square"
        )


class ResourceExhaustedError(RuleViolationError):
    """Raised when a tracked resource (spell slot) is exhausted."""

    def __init__(self, resource_name: str, available: int = 0, required: int = 1):
        super().__init__(
            message=f"Not enough {resource_name}",
            code=ErrorCode.COMBAT_RESOURCE_EXHAUSTED,
            details={
                "resource": resource_name,
                "available": available,
                "required": required
            },
            recovery_hint=f"Use a different {resource_name} or a cantrip"
        )
