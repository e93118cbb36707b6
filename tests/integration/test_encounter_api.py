"""
Integration tests for the encounter HTTP API
Runs whole fights through the routes and checks the error envelope.
"""
import pytest
from fastapi.testclient import TestClient

from skirmish.api.dependencies import get_character_directory, get_combat_service
from skirmish.core.characters import CharacterDirectory
from skirmish.core.encounter_registry import EncounterRegistry
from skirmish.main import app
from skirmish.services.combat_service import CombatService


@pytest.fixture
def client(dice, settings):
    directory = CharacterDirectory()
    service = CombatService(registry=EncounterRegistry(), dice=dice, characters=directory, settings=settings)
    app.dependency_overrides[get_combat_service] = lambda: service
    app.dependency_overrides[get_character_directory] = lambda: directory
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def encounter(client, standard_participants):
    response = client.post("/api/encounters", json={
        "participants": standard_participants,
        "terrain": {"width": 20, "height": 20},
        "name": "Goblin ambush",
    })
    assert response.status_code == 201
    return response.json()["encounter_id"]


def error_of(response):
    return response.json()["error"]


# ==================== Happy Paths ====================

class TestEncounterFlow:
    """A fight from creation to summary."""

    def test_root(self, client):
        assert client.get("/").json()["status"] == "online"

    def test_create_and_get(self, client, encounter):
        body = client.get(f"/api/encounters/{encounter}", params={"verbosity": "summary"}).json()
        assert body["name"] == "Goblin ambush"
        assert body["current_turn"] == "fighter-1"

    def test_list(self, client, encounter):
        listed = client.get("/api/encounters").json()
        assert listed["count"] == 1
        assert listed["encounters"][0]["id"] == encounter

    def test_attack_and_advance(self, client, encounter):
        response = client.post(f"/api/encounters/{encounter}/actions", json={
            "action_type": "attack", "actor": "fighter-1", "target": "goblin-1",
            "manual_attack_roll": 18, "manual_damage_roll": 9,
        })
        assert response.status_code == 200
        body = response.json()
        assert body["damage_dealt"] == 12
        assert body["cost"] == "action"

        advanced = client.post(f"/api/encounters/{encounter}/advance").json()
        assert advanced["current_id"] == "goblin-2"
        assert advanced["skipped_ids"] == ["goblin-1"]

    def test_spell_result_serializes(self, client, encounter):
        response = client.post(f"/api/encounters/{encounter}/participants", json={
            "participant": {"id": "wizard-1", "name": "Elara", "faction": "ally", "max_hp": 20,
                            "spell_slots": {"1": 2}, "position": {"x": 2, "y": 2}},
            "manual_initiative": 5,
        })
        assert response.status_code == 201
        response = client.post(f"/api/encounters/{encounter}/actions", json={
            "action_type": "cast_spell", "actor": "wizard-1", "spell_name": "Magic Missile", "spell_slot": 1,
            "target": "goblin-2", "spell_damage": "3d4+3", "manual_damage_roll": 6,
        })
        assert response.status_code == 200
        assert response.json()["extra_data"]["spell_slots"] == {"1": 1}

    def test_conditions(self, client, encounter):
        url = f"/api/encounters/{encounter}/participants/goblin-1/conditions"
        added = client.post(url, json={"condition": "poisoned", "duration": 2, "source_id": "fighter-1"})
        assert added.status_code == 201
        assert client.get(url).json()["conditions"][0]["kind"] == "poisoned"
        removed = client.delete(f"{url}/poisoned")
        assert removed.status_code == 200
        assert client.get(url).json()["conditions"] == []

    def test_terrain_and_map(self, client, encounter):
        patched = client.patch(f"/api/encounters/{encounter}/terrain", json={
            "obstacles": [{"x": 0, "y": 0, "type": "wall"}],
        })
        assert patched.status_code == 200
        rendered = client.post(f"/api/encounters/{encounter}/battlefield", json={
            "x": 0, "y": 0, "width": 3, "height": 1, "legend": "none",
        }).json()
        assert rendered["grid"].split("\n")[1] == "  0  # . ."
        assert rendered["legend"] is None

    def test_movement_query(self, client, encounter):
        url = f"/api/encounters/{encounter}/participants/fighter-1/movement"
        path = client.post(url, json={"mode": "path", "destination": {"x": 5, "y": 8}})
        assert path.status_code == 200
        assert path.json()["total_cost"] == 15
        adjacent = client.post(url, json={"mode": "adjacent"}).json()
        assert adjacent["hostiles_in_reach"][0]["id"] == "goblin-1"
        missing = client.post(url, json={"mode": "path"})
        assert missing.status_code == 400

    def test_death_save_and_stabilize(self, client, encounter):
        client.post(f"/api/encounters/{encounter}/participants", json={
            "participant": {"id": "cleric-1", "name": "Mira", "faction": "ally", "max_hp": 20, "current_hp": 0,
                            "position": {"x": 1, "y": 1}},
            "manual_initiative": 2,
        })
        saved = client.post(f"/api/encounters/{encounter}/participants/cleric-1/death-save", json={"manual_roll": 4})
        assert saved.status_code == 200
        assert saved.json()["death_saves"]["failures"] == 1
        stabilized = client.post(f"/api/encounters/{encounter}/participants/cleric-1/stabilize", json={})
        assert stabilized.json()["death_saves"]["is_stable"] is True

    def test_end_and_summary(self, client, encounter):
        ended = client.post(f"/api/encounters/{encounter}/end", json={"outcome": "negotiated"})
        assert ended.status_code == 200
        assert ended.json()["outcome"] == "negotiated"
        summary = client.get(f"/api/encounters/{encounter}/summary").json()
        assert summary["state"] == "ended"


class TestCharacters:
    def test_register_and_use(self, client):
        created = client.post("/api/characters", json={"id": "char-1", "name": "Lyra", "max_hp": 31})
        assert created.status_code == 201
        assert client.get("/api/characters/lyra").json()["character"]["id"] == "char-1"

        response = client.post("/api/encounters", json={
            "participants": [{"character_id": "char-1", "initiative": 14}],
        })
        assert response.status_code == 201
        eid = response.json()["encounter_id"]
        lyra = client.get(f"/api/encounters/{eid}").json()["participants"][0]
        assert lyra["max_hp"] == 31

    def test_unknown_character(self, client):
        response = client.get("/api/characters/nobody")
        assert response.status_code == 404
        assert error_of(response)["code"] == "CHARACTER_NOT_FOUND"


# ==================== Error Envelope ====================

class TestErrors:
    """Each error kind maps to one HTTP status."""

    def test_not_found(self, client):
        response = client.get("/api/encounters/enc-missing")
        assert response.status_code == 404
        error = error_of(response)
        assert error["kind"] == "NotFoundError"
        assert error["code"] == "ENCOUNTER_NOT_FOUND"
        assert error["error_id"]
        assert error["timestamp"]

    def test_validation(self, client, encounter):
        response = client.post(f"/api/encounters/{encounter}/actions", json={
            "action_type": "teleport", "actor": "fighter-1",
        })
        assert response.status_code == 400
        assert error_of(response)["kind"] == "ValidationError"

    def test_malformed_body(self, client, encounter):
        response = client.post(f"/api/encounters/{encounter}/actions", json={"action_type": "dodge"})
        assert response.status_code == 400
        error = error_of(response)
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"]["errors"][0]["field"] == "body -> actor"

    def test_conflict(self, client, encounter):
        dodge = {"action_type": "dodge", "actor": "fighter-1"}
        client.post(f"/api/encounters/{encounter}/actions", json=dodge)
        response = client.post(f"/api/encounters/{encounter}/actions", json=dodge)
        assert response.status_code == 409
        error = error_of(response)
        assert error["kind"] == "ConflictError"
        assert error["code"] == "COMBAT_ACTION_USED"

    def test_rule_violation(self, client, encounter):
        response = client.post(f"/api/encounters/{encounter}/actions", json={
            "action_type": "attack", "actor": "fighter-1", "target": "goblin-2",
        })
        assert response.status_code == 422
        error = error_of(response)
        assert error["kind"] == "RuleViolationError"
        assert error["code"] == "COMBAT_OUT_OF_RANGE"
        assert error["details"]["target_id"] == "goblin-2"

    def test_ended_encounter(self, client, encounter):
        client.post(f"/api/encounters/{encounter}/end", json={})
        response = client.post(f"/api/encounters/{encounter}/advance")
        assert response.status_code == 409
        assert error_of(response)["code"] == "ENCOUNTER_ENDED"
