"""Tests for encounter projections and the ASCII battlefield."""
import pytest

from skirmish.core.battlefield import Viewport, assign_markers
from skirmish.core.errors import ValidationError
from skirmish.core.participants import Participant
from skirmish.core.vocabulary import Faction


@pytest.fixture
def small(make_encounter, fighter, goblin, archer):
    fighter["position"] = {"x": 1, "y": 1}
    goblin["position"] = {"x": 2, "y": 1}
    archer["position"] = {"x": 3, "y": 2}
    return make_encounter([fighter, goblin, archer], terrain={
        "width": 5, "height": 4, "obstacles": [{"x": 0, "y": 3, "type": "wall"}],
    })


class TestProjection:
    """Tests for the verbosity levels."""

    def test_minimal(self, service, encounter_id):
        view = service.get_encounter(encounter_id, "minimal")
        assert view == {
            "id": encounter_id,
            "state": "active",
            "round": 1,
            "current_turn": "fighter-1",
            "participant_ids": ["fighter-1", "goblin-1", "goblin-2"],
        }

    def test_summary(self, service, encounter_id):
        view = service.get_encounter(encounter_id, "summary")
        assert view["name"] == "Goblin ambush"
        assert view["participants"][1] == {
            "id": "goblin-1", "name": "Goblin Scout", "faction": "enemy", "hp_percent": 100, "status": "standing",
        }
        assert "terrain" not in view

    def test_standard(self, service, encounter_id):
        service.add_condition(encounter_id, "goblin-1", "prone")
        view = service.get_encounter(encounter_id)
        goblin = view["participants"][1]
        assert goblin["position"] == {"x": 6, "y": 5, "z": 0}
        assert goblin["conditions"] == ["prone"]
        assert goblin["armor_class"] == 13
        assert view["terrain"] == {"width": 20, "height": 20, "feet_per_square": 5}
        assert "events" not in view

    def test_detailed(self, service, encounter_id):
        view = service.get_encounter(encounter_id, "detailed")
        thorin = view["participants"][0]
        assert thorin["effective_stats"]["speed"] == 30
        assert thorin["turn"]["action_taken"] is False
        assert view["rules"]["distance_mode"] == "grid_5e"
        assert view["rules_summary"]["distance"] == "Grid, every diagonal 5 ft"
        assert view["events"][0]["type"] == "encounter_start"
        assert [entry["id"] for entry in view["initiative_order"]] == ["fighter-1", "goblin-1", "goblin-2"]

    def test_status_after_knockout(self, service, encounter_id):
        service.execute_action(encounter_id, {
            "action_type": "attack", "actor": "fighter-1", "target": "goblin-1",
            "manual_attack_roll": 18, "manual_damage_roll": 9,
        })
        view = service.get_encounter(encounter_id, "summary")
        assert view["participants"][1]["status"] == "dead"
        assert view["participants"][1]["hp_percent"] == 0

    def test_unknown_verbosity(self, service, encounter_id):
        with pytest.raises(ValidationError):
            service.get_encounter(encounter_id, "verbose")


class TestMarkers:
    def test_initials_and_clashes(self):
        markers = assign_markers([
            Participant(id="a", name="Thorin", faction=Faction.ALLY),
            Participant(id="b", name="goblin"),
            Participant(id="c", name="Gnoll"),
            Participant(id="d", name="Xerxes"),
        ])
        # "x" already means dead on the map
        assert markers == {"a": "T", "b": "g", "c": "1", "d": "2"}


class TestAsciiMap:
    """Tests for the rendered grid."""

    def test_grid(self, service, small):
        rendered = service.render_battlefield(small)
        assert rendered["grid"].split("\n") == [
            "     0 1 2 3 4",
            "  0  . . . . .",
            "  1  .>T g . .",
            "  2  . . . 1 .",
            "  3  # . . . .",
        ]
        assert rendered["viewport"] == {"x": 0, "y": 0, "width": 5, "height": 4}
        assert rendered["current_turn"] == "fighter-1"

    def test_current_marker_moves(self, service, small):
        service.advance_turn(small)
        grid = service.render_battlefield(small)["grid"].split("\n")
        assert grid[2] == "  1  . T>g . ."

    def test_dead_drawn_as_x(self, service, small):
        service.execute_action(small, {
            "action_type": "attack", "actor": "fighter-1", "target": "goblin-1",
            "manual_attack_roll": 18, "manual_damage_roll": 9,
        })
        rendered = service.render_battlefield(small)
        assert rendered["grid"].split("\n")[2] == "  1  .>T x . ."
        assert "x=dead" in rendered["legend"]
        assert "Goblin Scout" not in rendered["legend"]

    def test_viewport(self, service, small):
        rendered = service.render_battlefield(small, viewport={"x": 1, "y": 1, "width": 2, "height": 2})
        assert rendered["grid"].split("\n") == [
            "     1 2",
            "  1 >T g",
            "  2  . .",
        ]

    def test_viewport_clipped_to_terrain(self, service, small):
        rendered = service.render_battlefield(small, viewport={"x": 3, "y": 2, "width": 10, "height": 10})
        assert rendered["viewport"] == {"x": 3, "y": 2, "width": 2, "height": 2}

    def test_viewport_outside_terrain(self, service, small):
        with pytest.raises(ValidationError):
            service.render_battlefield(small, viewport={"x": 30, "y": 30, "width": 2, "height": 2})

    def test_bad_viewport_values(self):
        with pytest.raises(ValidationError):
            Viewport.from_dict({"x": "left"})


class TestLegend:
    def test_compact(self, service, small):
        legend = service.render_battlefield(small)["legend"]
        assert legend == "T=Thorin 44/44 | g=Goblin Scout 7/7 | 1=Goblin Archer 7/7 | #=obstacle"

    def test_none(self, service, small):
        assert service.render_battlefield(small, legend="none")["legend"] is None

    def test_full(self, service, small):
        service.add_condition(small, "goblin-1", "poisoned")
        lines = service.render_battlefield(small, legend="full")["legend"].split("\n")
        assert lines[0] == "Round 1, lighting bright"
        assert lines[1] == ">T Thorin [ally] HP 44/44 AC 18 at (1, 1) - standing"
        assert lines[2] == " g Goblin Scout [enemy] HP 7/7 AC 13 at (2, 1) - standing (poisoned)"
        assert lines[-1] == "'>' marks the participant whose turn it is"
