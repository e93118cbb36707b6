"""Tests for encounter lifecycle, terrain and condition operations of the service."""
import pytest

from skirmish.core.characters import CharacterDirectory
from skirmish.core.encounter_registry import EncounterRegistry
from skirmish.core.errors import (
    DuplicateIdError,
    EncounterEndedError,
    EncounterNotFoundError,
    NotFoundError,
    NotYourTurnError,
    ParticipantNotFoundError,
    ValidationError,
)
from skirmish.core.rules_config import PRESET_CONFIGS, set_rules_config
from skirmish.services.combat_service import CombatService


class TestCreateEncounter:
    """Tests for creating encounters."""

    def test_create(self, service, standard_participants):
        created = service.create_encounter(standard_participants, terrain={"width": 20, "height": 20})
        assert created["round"] == 1
        assert created["current_turn"] == "fighter-1"
        assert [e["id"] for e in created["initiative_order"]] == ["fighter-1", "goblin-1", "goblin-2"]
        assert created["description"].endswith("Round 1, Thorin acts first (initiative 20)")
        assert all(r["manual"] for r in created["initiative_rolls"])

    def test_rolled_initiative(self, service, fighter, goblin):
        del goblin["initiative"]
        created = service.create_encounter([fighter, goblin])
        roll = created["initiative_rolls"][1]
        assert roll["manual"] is False
        assert roll["initiative"] == roll["roll"]["natural"] + 2

    def test_default_grid(self, service, fighter):
        eid = service.create_encounter([fighter])["encounter_id"]
        assert service.get_encounter(eid)["terrain"]["width"] == 20

    def test_needs_participants(self, service):
        with pytest.raises(ValidationError):
            service.create_encounter([])

    def test_duplicate_ids(self, service, fighter):
        with pytest.raises(ValidationError):
            service.create_encounter([fighter, dict(fighter, position={"x": 1, "y": 1})])

    def test_shared_square(self, service, fighter, goblin):
        goblin["position"] = {"x": 5, "y": 5}
        with pytest.raises(ValidationError):
            service.create_encounter([fighter, goblin])

    def test_shared_square_allowed_by_rules(self, service, fighter, goblin):
        goblin["position"] = {"x": 5, "y": 5}
        created = service.create_encounter([fighter, goblin], rules={"allow_position_stacking": True})
        assert created["round"] == 1

    def test_start_inside_obstacle(self, service, fighter):
        with pytest.raises(ValidationError):
            service.create_encounter([fighter], terrain={"obstacles": [{"x": 5, "y": 5, "type": "pillar"}]})

    def test_start_off_map(self, service, fighter):
        fighter["position"] = {"x": 25, "y": 5}
        with pytest.raises(ValidationError):
            service.create_encounter([fighter])

    def test_terrain_too_large(self, service, fighter):
        with pytest.raises(ValidationError):
            service.create_encounter([fighter], terrain={"width": 500, "height": 10})

    def test_bad_participant(self, service, fighter):
        fighter["max_hp"] = "lots"
        with pytest.raises(ValidationError):
            service.create_encounter([fighter])

    def test_cell_without_coordinates(self, service, fighter):
        with pytest.raises(ValidationError):
            service.create_encounter([fighter], terrain={"cells": [{"y": 1, "kind": "difficult"}]})

    def test_cell_with_text_coordinates(self, service, fighter):
        with pytest.raises(ValidationError):
            service.create_encounter([fighter], terrain={"cells": [{"x": "two", "y": 1, "kind": "difficult"}]})

    def test_bad_skill_bonus(self, service, fighter):
        fighter["skill_bonuses"] = {"stealth": "abc"}
        with pytest.raises(ValidationError):
            service.create_encounter([fighter])

    def test_bad_spell_slot_level(self, service, fighter):
        fighter["spell_slots"] = {"first": 2}
        with pytest.raises(ValidationError):
            service.create_encounter([fighter])

    def test_bad_spell_slot_count(self, service, fighter):
        fighter["spell_slots"] = {"1": "two"}
        with pytest.raises(ValidationError):
            service.create_encounter([fighter])

    def test_unknown_preset(self, service, fighter):
        with pytest.raises(ValidationError):
            service.create_encounter([fighter], preset="chaotic")

    def test_unknown_rule(self, service, fighter):
        with pytest.raises(ValidationError):
            service.create_encounter([fighter], rules={"flanking": True})

    def test_preset(self, service, fighter, goblin):
        eid = service.create_encounter([fighter, goblin], preset="strict_tactical")["encounter_id"]
        rules = service.get_encounter(eid, "detailed")["rules"]
        assert rules["distance_mode"] == "grid_alt"
        assert rules["enforce_turn_order"] is True
        with pytest.raises(NotYourTurnError):
            service.execute_action(eid, {"action_type": "dodge", "actor": "goblin-1"})

    def test_rules_fixed_at_creation(self, service, encounter_id):
        set_rules_config(PRESET_CONFIGS["strict_tactical"])
        rules = service.get_encounter(encounter_id, "detailed")["rules"]
        assert rules["distance_mode"] == "grid_5e"


class TestCharacters:
    @pytest.fixture
    def seeded_service(self, dice, settings):
        directory = CharacterDirectory([
            {"id": "char-7", "name": "Lyra", "max_hp": 30, "armor_class": 15, "speed": 35,
             "abilities": {"dexterity": 16}},
        ])
        return CombatService(registry=EncounterRegistry(), dice=dice, characters=directory, settings=settings)

    def test_participant_from_character(self, seeded_service):
        eid = seeded_service.create_encounter([
            {"character_id": "char-7", "initiative": 12, "position": {"x": 1, "y": 1}},
        ])["encounter_id"]
        lyra = seeded_service.get_encounter(eid, "detailed")["participants"][0]
        assert lyra["name"] == "Lyra"
        assert lyra["faction"] == "ally"
        assert lyra["max_hp"] == 30
        assert lyra["speed"] == 35
        assert lyra["character_id"] == "char-7"

    def test_explicit_fields_win(self, seeded_service):
        eid = seeded_service.create_encounter([
            {"character_id": "lyra", "id": "lyra-clone", "max_hp": 12, "initiative": 3},
        ])["encounter_id"]
        clone = seeded_service.get_encounter(eid)["participants"][0]
        assert clone["id"] == "lyra-clone"
        assert clone["max_hp"] == 12

    def test_unknown_character(self, seeded_service):
        with pytest.raises(NotFoundError):
            seeded_service.create_encounter([{"character_id": "char-99"}])


class TestAddParticipant:
    """Tests for joining a running encounter."""

    def test_join_keeps_current_turn(self, service, encounter_id):
        service.advance_turn(encounter_id)
        joined = service.add_participant(encounter_id, {
            "id": "bugbear-1", "name": "Bugbear", "max_hp": 27, "position": {"x": 12, "y": 12},
        }, manual_initiative=25)
        assert joined["position_in_order"] == 1
        assert joined["description"].startswith("Bugbear added to the encounter with initiative 25")
        assert service.get_encounter(encounter_id, "minimal")["current_turn"] == "goblin-1"

    def test_duplicate_id(self, service, encounter_id):
        with pytest.raises(DuplicateIdError):
            service.add_participant(encounter_id, {"id": "goblin-1", "name": "Goblin", "position": {"x": 1, "y": 1}})

    def test_occupied_square(self, service, encounter_id):
        with pytest.raises(ValidationError):
            service.add_participant(encounter_id, {"name": "Wolf", "position": {"x": 6, "y": 5}})

    def test_id_from_name(self, service, encounter_id):
        joined = service.add_participant(encounter_id, {"name": "Dire Wolf", "position": {"x": 1, "y": 1}})
        assert joined["participant"]["id"] == "dire_wolf"

    def test_unknown_encounter(self, service, fighter):
        with pytest.raises(EncounterNotFoundError):
            service.add_participant("enc-missing", fighter)

    def test_unknown_participant_reference(self, service, encounter_id):
        with pytest.raises(ParticipantNotFoundError):
            service.execute_action(encounter_id, {"action_type": "dodge", "actor": "dragon-1"})

    def test_reference_by_name(self, service, encounter_id):
        result = service.execute_action(encounter_id, {"action_type": "dodge", "actor": "goblin scout"})
        assert result["actor_id"] == "goblin-1"


class TestEndEncounter:
    """Tests for ending encounters and the summary."""

    def test_end_with_summary(self, service, encounter_id):
        service.execute_action(encounter_id, {
            "action_type": "attack", "actor": "fighter-1", "target": "goblin-1",
            "manual_attack_roll": 18, "manual_damage_roll": 9,
        })
        summary = service.end_encounter(encounter_id, "victory", notes="Goblins routed")
        assert summary["state"] == "ended"
        assert summary["outcome"] == "victory"
        assert summary["rounds"] == 1
        assert summary["mvp"] == {"id": "fighter-1", "name": "Thorin", "score": 22}
        assert summary["totals"]["knockouts"] == 1
        assert summary["participants"][1]["status"] == "dead"
        assert summary["retained"] is True
        assert summary["description"].endswith("(victory) after 1 rounds; MVP Thorin")

    def test_no_mvp_without_activity(self, service, encounter_id):
        summary = service.end_encounter(encounter_id)
        assert summary["mvp"] is None
        assert summary["outcome"] == "other"

    def test_retained_encounter_is_read_only(self, service, encounter_id):
        service.end_encounter(encounter_id, "fled")
        assert service.get_encounter(encounter_id, "minimal")["state"] == "ended"
        assert service.get_summary(encounter_id)["outcome"] == "fled"
        with pytest.raises(EncounterEndedError):
            service.execute_action(encounter_id, {"action_type": "dodge", "actor": "fighter-1"})
        with pytest.raises(EncounterEndedError):
            service.end_encounter(encounter_id)

    def test_discarded_when_not_retained(self, service, encounter_id):
        service.end_encounter(encounter_id, "defeat", retain=False)
        with pytest.raises(EncounterNotFoundError):
            service.get_encounter(encounter_id)

    def test_unknown_outcome(self, service, encounter_id):
        with pytest.raises(ValidationError):
            service.end_encounter(encounter_id, "draw")

    def test_list_encounters(self, service, encounter_id, make_encounter, fighter):
        second = make_encounter([fighter])
        listed = service.list_encounters()
        assert listed["count"] == 2
        assert [e["id"] for e in listed["encounters"]] == [encounter_id, second]
        assert listed["encounters"][0]["name"] == "Goblin ambush"
        assert listed["encounters"][0]["current_turn"] == "fighter-1"

        service.end_encounter(second, "fled", retain=False)
        assert [e["id"] for e in service.list_encounters()["encounters"]] == [encounter_id]


class TestTerrain:
    """Tests for editing the battlefield."""

    def test_place_obstacle(self, service, encounter_id):
        result = service.modify_terrain(encounter_id, {"obstacles": [{"x": 8, "y": 8, "type": "wall"}]})
        assert result["changes"] == ["wall placed at (8, 8)"]
        cells = service.get_encounter(encounter_id, "detailed")["terrain"]["cells"]
        assert any(c["x"] == 8 and c["y"] == 8 and c["kind"] == "obstacle" for c in cells)

    def test_cells_and_lighting(self, service, encounter_id):
        result = service.modify_terrain(encounter_id, {
            "cells": [{"x": 3, "y": 3, "kind": "difficult"}],
            "lighting": "dim",
        })
        assert result["changes"] == ["(3, 3) set to difficult", "lighting set to dim"]
        assert service.get_encounter(encounter_id)["lighting"] == "dim"

    def test_clear(self, service, encounter_id):
        service.modify_terrain(encounter_id, {"cells": [{"x": 3, "y": 3, "kind": "water"}]})
        service.modify_terrain(encounter_id, {"clear": [{"x": 3, "y": 3}]})
        assert service.get_encounter(encounter_id, "detailed")["terrain"]["counts"] == {}

    def test_blocking_a_participant_changes_nothing(self, service, encounter_id):
        with pytest.raises(ValidationError):
            service.modify_terrain(encounter_id, {"obstacles": [
                {"x": 8, "y": 8, "type": "wall"},
                {"x": 6, "y": 5, "type": "wall"},
            ]})
        assert service.get_encounter(encounter_id, "detailed")["terrain"]["counts"] == {}

    def test_out_of_bounds(self, service, encounter_id):
        with pytest.raises(ValidationError):
            service.modify_terrain(encounter_id, {"cells": [{"x": 40, "y": 1, "kind": "difficult"}]})

    def test_unknown_change(self, service, encounter_id):
        with pytest.raises(ValidationError):
            service.modify_terrain(encounter_id, {"weather": "rain"})

    def test_hazard_damage_must_be_dice(self, service, encounter_id):
        with pytest.raises(ValidationError):
            service.modify_terrain(encounter_id, {"cells": [
                {"x": 3, "y": 3, "kind": "difficult"},
                {"x": 7, "y": 5, "kind": "hazard", "hazard_damage": "banana"},
            ]})
        assert service.get_encounter(encounter_id, "detailed")["terrain"]["counts"] == {}

    def test_cell_needs_integer_coordinates(self, service, encounter_id):
        with pytest.raises(ValidationError):
            service.modify_terrain(encounter_id, {"cells": [{"x": 1.5, "y": 3, "kind": "difficult"}]})

    def test_difficult_terrain_slows_movement(self, service, encounter_id):
        service.modify_terrain(encounter_id, {"cells": [
            {"x": 11, "y": 10, "kind": "difficult"}, {"x": 11, "y": 9, "kind": "difficult"},
            {"x": 11, "y": 11, "kind": "difficult"},
        ]})
        result = service.execute_action(encounter_id, {
            "action_type": "move", "actor": "goblin-2", "move_to": {"x": 12, "y": 10},
        })
        assert "(15 ft)" in result["description"]


class TestConditions:
    """Tests for adding, removing and querying conditions."""

    def test_add_and_query(self, service, encounter_id):
        added = service.add_condition(encounter_id, "goblin-1", "poisoned", duration=3, source_ref="fighter-1")
        assert added["description"] == "Goblin Scout is poisoned for 3 rounds"
        assert added["condition"]["source_id"] == "fighter-1"
        state = service.query_conditions(encounter_id, "goblin-1")
        assert [c["kind"] for c in state["conditions"]] == ["poisoned"]
        assert service.get_summary(encounter_id)["participants"][0]["conditions_applied"] == 1

    def test_exhaustion(self, service, encounter_id):
        added = service.add_condition(encounter_id, "fighter-1", "exhaustion", severity=2)
        assert "(level 2)" in added["description"]
        assert added["effective_stats"]["speed"] == 15

    def test_custom_condition(self, service, encounter_id):
        added = service.add_condition(encounter_id, "fighter-1", "custom", label="Shield of Faith",
                                      modifiers={"armor_class": 2})
        assert added["effective_stats"]["armor_class"] == 20
        removed = service.remove_condition(encounter_id, "fighter-1", "custom", label="Shield of Faith")
        assert removed["effective_stats"]["armor_class"] == 18

    def test_remove(self, service, encounter_id):
        service.add_condition(encounter_id, "goblin-1", "restrained")
        removed = service.remove_condition(encounter_id, "goblin-1", "restrained")
        assert removed["description"] == "restrained removed from Goblin Scout"
        assert removed["conditions"] == []

    def test_remove_absent(self, service, encounter_id):
        with pytest.raises(NotFoundError):
            service.remove_condition(encounter_id, "goblin-1", "blinded")

    def test_unknown_condition(self, service, encounter_id):
        with pytest.raises(ValidationError):
            service.add_condition(encounter_id, "goblin-1", "sleepy")

    def test_exhaustion_six_kills(self, service, encounter_id, peek):
        service.add_condition(encounter_id, "goblin-1", "exhaustion", severity=6)
        assert peek(encounter_id, "goblin-1").is_dead is True


class TestMovementQueries:
    """Tests for asking where a participant can go."""

    def test_path_cost(self, service, encounter_id, peek):
        result = service.calculate_movement(encounter_id, "fighter-1", "path", {"x": 5, "y": 8})
        assert result["success"] is True
        assert result["total_cost"] == 15
        assert result["within_movement"] is True
        assert result["path"][0] == [5, 5]
        assert result["path"][-1] == [5, 8]
        assert peek(encounter_id, "fighter-1").position.cell == (5, 5)

    def test_path_beyond_movement(self, service, encounter_id):
        result = service.calculate_movement(encounter_id, "goblin-2", "path", {"x": 10, "y": 19})
        assert result["success"] is True
        assert result["total_cost"] == 45
        assert result["within_movement"] is False

    def test_path_to_occupied_square(self, service, encounter_id):
        result = service.calculate_movement(encounter_id, "Thorin", "path", {"x": 6, "y": 5})
        assert result["success"] is False
        assert result["blocked_by"] == "goblin-1"

    def test_path_needs_destination(self, service, encounter_id):
        with pytest.raises(ValidationError):
            service.calculate_movement(encounter_id, "fighter-1", "path")

    def test_path_off_map(self, service, encounter_id):
        with pytest.raises(ValidationError):
            service.calculate_movement(encounter_id, "fighter-1", "path", {"x": 30, "y": 5})

    def test_reachable_squares(self, service, encounter_id):
        result = service.calculate_movement(encounter_id, "goblin-2", "reach")
        assert result["movement_remaining"] == 30
        squares = {(s["x"], s["y"]): s["cost"] for s in result["squares"]}
        assert squares[(16, 10)] == 30
        assert (17, 10) not in squares
        assert (10, 10) not in squares
        assert (5, 5) not in squares
        assert max(squares.values()) <= 30

    def test_reach_shrinks_after_moving(self, service, encounter_id):
        service.execute_action(encounter_id, {
            "action_type": "move", "actor": "goblin-2", "move_to": {"x": 12, "y": 10},
        })
        result = service.calculate_movement(encounter_id, "goblin-2", "reach")
        assert result["movement_remaining"] == 20
        squares = {(s["x"], s["y"]) for s in result["squares"]}
        assert (16, 10) in squares
        assert (17, 10) not in squares

    def test_adjacent(self, service, encounter_id):
        result = service.calculate_movement(encounter_id, "fighter-1", "adjacent")
        assert len(result["squares"]) == 8
        east = next(s for s in result["squares"] if (s["x"], s["y"]) == (6, 5))
        assert east["occupant_id"] == "goblin-1"
        assert [h["id"] for h in result["hostiles_in_reach"]] == ["goblin-1"]

    def test_unknown_mode(self, service, encounter_id):
        with pytest.raises(ValidationError):
            service.calculate_movement(encounter_id, "fighter-1", "teleport")

    def test_works_on_ended_encounter(self, service, encounter_id):
        service.end_encounter(encounter_id, "victory", retain=True)
        result = service.calculate_movement(encounter_id, "fighter-1", "adjacent")
        assert result["participant_id"] == "fighter-1"
