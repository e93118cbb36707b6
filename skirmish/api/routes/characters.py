"""
Character API Routes.

Stored characters that participants can reference by ``character_id``.
"""
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional

from skirmish.api.dependencies import get_character_directory
from skirmish.core.characters import CharacterDirectory
from skirmish.core.errors import ErrorCode, NotFoundError, ValidationError

router = APIRouter()


# =============================================================================
# Request/Response Models
# =============================================================================

class CharacterRecord(BaseModel):
    """A stored character; any participant field may be included."""
    model_config = ConfigDict(extra="allow")

    id: str
    name: str
    max_hp: int = 10
    armor_class: int = 10
    speed: int = 30
    initiative_modifier: int = 0
    abilities: Dict[str, int] = Field(default_factory=dict)
    resistances: List[str] = Field(default_factory=list)
    immunities: List[str] = Field(default_factory=list)
    vulnerabilities: List[str] = Field(default_factory=list)
    player_controlled: Optional[bool] = None


# =============================================================================
# Endpoints
# =============================================================================

@router.post("", status_code=status.HTTP_201_CREATED)
def register_character(
    request: CharacterRecord,
    directory: CharacterDirectory = Depends(get_character_directory),
):
    """Store (or replace) a character record."""
    record = request.model_dump(exclude_none=True)
    try:
        character_id = directory.register(record)
    except ValueError as e:
        raise ValidationError("id", str(e), record.get("id"))
    return {"character_id": character_id, "description": f"Character {request.name} stored as {character_id}"}


@router.get("/{reference}")
def get_character(
    reference: str,
    directory: CharacterDirectory = Depends(get_character_directory),
) -> Dict[str, Any]:
    """Look a character up by id or name."""
    record = directory.resolve(reference)
    if record is None:
        raise NotFoundError("Character", reference, code=ErrorCode.CHARACTER_NOT_FOUND)
    return {"character": record}
