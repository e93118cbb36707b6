"""
Skirmish Engine - Test Configuration and Fixtures
Shared test utilities and fixtures for pytest.
"""
import random
from typing import Any, Dict, List

import pytest

from skirmish.config import Settings
from skirmish.core.dice import DiceRoller
from skirmish.core.encounter_registry import EncounterRegistry
from skirmish.core.rules_config import reset_rules_config
from skirmish.services.combat_service import CombatService


# ==================== Dice Fixtures ====================

@pytest.fixture
def dice() -> DiceRoller:
    """Seeded roller so unforced rolls are repeatable."""
    return DiceRoller(random.Random(42))


# ==================== Participant Fixtures ====================

@pytest.fixture
def fighter() -> Dict[str, Any]:
    """A sturdy ally fighter."""
    return {
        "id": "fighter-1",
        "name": "Thorin",
        "faction": "ally",
        "max_hp": 44,
        "armor_class": 18,
        "speed": 30,
        "initiative_modifier": 1,
        "position": {"x": 5, "y": 5},
        "attack_bonus": 5,
        "damage_expression": "1d8+3",
        "damage_type": "slashing",
        "abilities": {"strength": 16, "dexterity": 12, "constitution": 14, "wisdom": 13},
        "initiative": 20,
    }


@pytest.fixture
def goblin() -> Dict[str, Any]:
    """A goblin standing next to the fighter."""
    return {
        "id": "goblin-1",
        "name": "Goblin Scout",
        "faction": "enemy",
        "max_hp": 7,
        "armor_class": 13,
        "speed": 30,
        "initiative_modifier": 2,
        "position": {"x": 6, "y": 5},
        "attack_bonus": 4,
        "damage_expression": "1d6+2",
        "damage_type": "slashing",
        "abilities": {"strength": 8, "dexterity": 14},
        "initiative": 15,
    }


@pytest.fixture
def archer() -> Dict[str, Any]:
    """A goblin archer well away from the melee."""
    return {
        "id": "goblin-2",
        "name": "Goblin Archer",
        "faction": "enemy",
        "max_hp": 7,
        "armor_class": 12,
        "speed": 30,
        "initiative_modifier": 2,
        "position": {"x": 10, "y": 10},
        "attack_bonus": 4,
        "damage_expression": "1d6+2",
        "damage_type": "piercing",
        "abilities": {"dexterity": 14},
        "initiative": 10,
    }


@pytest.fixture
def standard_participants(fighter, goblin, archer) -> List[Dict[str, Any]]:
    """Initiative order: Thorin (20), Goblin Scout (15), Goblin Archer (10)."""
    return [fighter, goblin, archer]


# ==================== Service Fixtures ====================

@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def service(dice, settings) -> CombatService:
    """A service with its own registry and a seeded roller."""
    reset_rules_config()
    return CombatService(registry=EncounterRegistry(), dice=dice, settings=settings)


@pytest.fixture
def encounter_id(service, standard_participants) -> str:
    """A running 20x20 encounter with the standard participants."""
    created = service.create_encounter(
        participants=standard_participants,
        terrain={"width": 20, "height": 20},
        name="Goblin ambush",
    )
    return created["encounter_id"]


@pytest.fixture
def make_encounter(service):
    """Factory for encounters with custom participants, terrain or rules."""
    def _make(participants, terrain=None, rules=None, preset=None) -> str:
        created = service.create_encounter(
            participants=participants,
            terrain=terrain or {"width": 20, "height": 20},
            rules=rules,
            preset=preset,
        )
        return created["encounter_id"]
    return _make


@pytest.fixture
def peek(service):
    """Read a participant straight from the registry for assertions."""
    def _peek(encounter_id: str, reference: str):
        with service.registry.session(encounter_id) as encounter:
            return encounter.get_participant(reference)
    return _peek
