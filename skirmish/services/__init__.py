"""Service layer over the encounter registry and combat engine."""

from skirmish.services.combat_service import CombatService

__all__ = ["CombatService"]
