"""
Encounter API Routes.

Endpoints for running encounters:
- Create, inspect and end encounters
- Add participants mid-fight
- Execute actions and advance turns
- Edit terrain and manage conditions
- Death saves and stabilizing
- Movement queries and ASCII battlefield rendering

Handlers are plain functions: FastAPI runs them on its worker threads, and
the service serializes work per encounter.
"""
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional

from skirmish.api.dependencies import get_combat_service
from skirmish.services.combat_service import CombatService

router = APIRouter()


# =============================================================================
# Request/Response Models
# =============================================================================

class CreateEncounterRequest(BaseModel):
    """Request to create an encounter."""
    participants: List[Dict[str, Any]]
    terrain: Optional[Dict[str, Any]] = None
    lighting: str = "bright"
    name: str = ""
    rules: Optional[Dict[str, Any]] = None
    preset: Optional[str] = None


class CreateEncounterResponse(BaseModel):
    """Response from creating an encounter."""
    encounter_id: str
    round: int
    current_turn: str
    initiative_order: List[Dict[str, Any]]
    initiative_rolls: List[Dict[str, Any]] = Field(default_factory=list)
    description: str


class AddParticipantRequest(BaseModel):
    """Request to add a participant to a running encounter."""
    participant: Dict[str, Any]
    manual_initiative: Optional[int] = None


class ActionPayload(BaseModel):
    """
    Request to take an action.

    Only the action kind and actor are fixed; every other field is passed
    through to the action parser, which knows what each kind needs.
    """
    model_config = ConfigDict(extra="allow")

    action_type: str
    actor: str


class ActionResponse(BaseModel):
    """Response from taking an action."""
    success: bool
    action_type: str
    actor_id: Optional[str] = None
    cost: Optional[str] = None
    description: str
    damage_dealt: int = 0
    target_id: Optional[str] = None
    effects_applied: List[str] = Field(default_factory=list)
    reactions: List[Dict[str, Any]] = Field(default_factory=list)
    interrupted: bool = False
    extra_data: Dict[str, Any] = Field(default_factory=dict)


class TerrainChangeRequest(BaseModel):
    """Battlefield edits; see CombatService.modify_terrain."""
    cells: List[Dict[str, Any]] = Field(default_factory=list)
    obstacles: List[Dict[str, Any]] = Field(default_factory=list)
    clear: List[Dict[str, Any]] = Field(default_factory=list)
    lighting: Optional[str] = None


class EndEncounterRequest(BaseModel):
    """Request to end an encounter."""
    outcome: str = "other"
    notes: str = ""
    retain: Optional[bool] = None


class AddConditionRequest(BaseModel):
    """Request to put a condition on a participant."""
    condition: str
    severity: Optional[int] = None
    duration: Optional[Any] = None  # Rounds or a duration kind
    source: str = ""
    source_id: Optional[str] = None
    label: Optional[str] = None
    modifiers: Dict[str, int] = Field(default_factory=dict)


class DeathSaveRequest(BaseModel):
    """Request to roll a death save."""
    manual_roll: Optional[int] = None


class StabilizeRequest(BaseModel):
    """Request to stabilize a dying participant."""
    method: str = "spare_the_dying"
    healer_id: Optional[str] = None
    manual_roll: Optional[int] = None


class MovementQueryRequest(BaseModel):
    """Movement question for one participant; see CombatService.calculate_movement."""
    mode: str = "reach"
    destination: Optional[Dict[str, Any]] = None


class RenderRequest(BaseModel):
    """Viewport and legend options for the battlefield map."""
    x: int = 0
    y: int = 0
    width: Optional[int] = None
    height: Optional[int] = None
    legend: str = "compact"


# =============================================================================
# Encounter Lifecycle
# =============================================================================

@router.post("", response_model=CreateEncounterResponse, status_code=status.HTTP_201_CREATED)
def create_encounter(
    request: CreateEncounterRequest,
    service: CombatService = Depends(get_combat_service),
):
    """Create an encounter and roll initiative."""
    return service.create_encounter(
        participants=request.participants,
        terrain=request.terrain,
        lighting=request.lighting,
        name=request.name,
        rules=request.rules,
        preset=request.preset,
    )


@router.get("")
def list_encounters(service: CombatService = Depends(get_combat_service)):
    """Every encounter in memory, with its round and current turn."""
    return service.list_encounters()


@router.get("/{encounter_id}")
def get_encounter(
    encounter_id: str,
    verbosity: str = Query("standard"),
    service: CombatService = Depends(get_combat_service),
):
    """Current encounter state at the requested verbosity."""
    return service.get_encounter(encounter_id, verbosity)


@router.post("/{encounter_id}/participants", status_code=status.HTTP_201_CREATED)
def add_participant(
    encounter_id: str,
    request: AddParticipantRequest,
    service: CombatService = Depends(get_combat_service),
):
    """Add a participant mid-encounter."""
    return service.add_participant(encounter_id, request.participant, request.manual_initiative)


@router.post("/{encounter_id}/end")
def end_encounter(
    encounter_id: str,
    request: EndEncounterRequest,
    service: CombatService = Depends(get_combat_service),
):
    """End the encounter and return its summary."""
    return service.end_encounter(encounter_id, request.outcome, request.notes, request.retain)


@router.get("/{encounter_id}/summary")
def get_summary(
    encounter_id: str,
    service: CombatService = Depends(get_combat_service),
):
    """Running (or final) statistics for the encounter."""
    return service.get_summary(encounter_id)


# =============================================================================
# Turns and Actions
# =============================================================================

@router.post("/{encounter_id}/actions", response_model=ActionResponse)
def execute_action(
    encounter_id: str,
    request: ActionPayload,
    service: CombatService = Depends(get_combat_service),
):
    """Execute one action for one participant."""
    return service.execute_action(encounter_id, request.model_dump(exclude_none=True))


@router.post("/{encounter_id}/advance")
def advance_turn(
    encounter_id: str,
    service: CombatService = Depends(get_combat_service),
):
    """End the current turn and start the next one."""
    return service.advance_turn(encounter_id)


@router.post("/{encounter_id}/participants/{participant_id}/death-save")
def roll_death_save(
    encounter_id: str,
    participant_id: str,
    request: DeathSaveRequest,
    service: CombatService = Depends(get_combat_service),
):
    """Roll a death saving throw for a dying participant."""
    return service.roll_death_save(encounter_id, participant_id, request.manual_roll)


@router.post("/{encounter_id}/participants/{participant_id}/stabilize")
def stabilize(
    encounter_id: str,
    participant_id: str,
    request: StabilizeRequest,
    service: CombatService = Depends(get_combat_service),
):
    """Stabilize a dying participant."""
    return service.stabilize(encounter_id, participant_id, request.method, request.healer_id, request.manual_roll)


# =============================================================================
# Terrain and Conditions
# =============================================================================

@router.patch("/{encounter_id}/terrain")
def modify_terrain(
    encounter_id: str,
    request: TerrainChangeRequest,
    service: CombatService = Depends(get_combat_service),
):
    """Edit cells, place obstacles or change the lighting."""
    return service.modify_terrain(encounter_id, request.model_dump(exclude_none=True))


@router.get("/{encounter_id}/participants/{participant_id}/conditions")
def query_conditions(
    encounter_id: str,
    participant_id: str,
    service: CombatService = Depends(get_combat_service),
):
    """Active conditions and the effective stats they produce."""
    return service.query_conditions(encounter_id, participant_id)


@router.post("/{encounter_id}/participants/{participant_id}/conditions",
             status_code=status.HTTP_201_CREATED)
def add_condition(
    encounter_id: str,
    participant_id: str,
    request: AddConditionRequest,
    service: CombatService = Depends(get_combat_service),
):
    """Put a condition on a participant."""
    return service.add_condition(
        encounter_id,
        participant_id,
        request.condition,
        severity=request.severity,
        duration=request.duration,
        source=request.source,
        source_ref=request.source_id,
        label=request.label,
        modifiers=request.modifiers or None,
    )


@router.delete("/{encounter_id}/participants/{participant_id}/conditions/{condition}")
def remove_condition(
    encounter_id: str,
    participant_id: str,
    condition: str,
    label: Optional[str] = Query(None),
    service: CombatService = Depends(get_combat_service),
):
    """Remove a condition (custom conditions by label)."""
    return service.remove_condition(encounter_id, participant_id, condition, label)


# =============================================================================
# Battlefield
# =============================================================================

@router.post("/{encounter_id}/participants/{participant_id}/movement")
def calculate_movement(
    encounter_id: str,
    participant_id: str,
    request: MovementQueryRequest,
    service: CombatService = Depends(get_combat_service),
):
    """Path cost, reachable squares or adjacent hostiles for a participant."""
    return service.calculate_movement(encounter_id, participant_id, request.mode, request.destination)


@router.post("/{encounter_id}/battlefield")
def render_battlefield(
    encounter_id: str,
    request: RenderRequest,
    service: CombatService = Depends(get_combat_service),
):
    """ASCII map of the battlefield with an optional viewport."""
    viewport = request.model_dump(exclude={"legend"})
    return service.render_battlefield(encounter_id, viewport, request.legend)
