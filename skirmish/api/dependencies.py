"""
FastAPI dependencies for the encounter service.

One service (and one encounter registry) is shared by every request in the
process. Tests swap it out through ``app.dependency_overrides``.
"""
from functools import lru_cache

from skirmish.core.characters import CharacterDirectory
from skirmish.services.combat_service import CombatService


@lru_cache()
def get_character_directory() -> CharacterDirectory:
    """Dependency for the in-process character records."""
    return CharacterDirectory()


@lru_cache()
def get_combat_service() -> CombatService:
    """Dependency for the shared CombatService."""
    return CombatService(characters=get_character_directory())
