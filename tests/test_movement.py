"""Tests for the movement and pathfinding system."""
import pytest

from skirmish.core.geometry import Position
from skirmish.core.movement import (
    Occupancy,
    Threat,
    find_path,
    opportunity_attack_triggers,
    path_cost_until,
    reachable_squares,
)
from skirmish.core.terrain import Terrain
from skirmish.core.vocabulary import CellKind, DistanceMode


@pytest.fixture
def open_field():
    return Terrain(width=10, height=10)


class TestFindPath:
    """Tests for A* pathfinding."""

    def test_straight_line(self, open_field):
        result = find_path(open_field, (0, 0), (3, 0))
        assert result.success is True
        assert result.path[0] == (0, 0)
        assert result.path[-1] == (3, 0)
        assert result.total_cost == 15

    def test_diagonal_costs_five(self, open_field):
        result = find_path(open_field, (0, 0), (3, 3))
        assert result.total_cost == 15

    def test_alternating_diagonals(self, open_field):
        result = find_path(open_field, (0, 0), (2, 2), mode=DistanceMode.GRID_ALT)
        assert result.total_cost == 15

    def test_difficult_terrain_doubles_cost(self):
        corridor = Terrain(width=5, height=1)
        corridor.set_cell(1, 0, CellKind.DIFFICULT)
        result = find_path(corridor, (0, 0), (3, 0))
        assert result.total_cost == 20

    def test_detour_around_wall(self):
        terrain = Terrain(width=5, height=3)
        terrain.set_cell(2, 0, CellKind.OBSTACLE)
        terrain.set_cell(2, 1, CellKind.OBSTACLE)
        result = find_path(terrain, (0, 1), (4, 1))
        assert result.success is True
        assert (2, 2) in result.path
        assert result.total_cost == 20

    def test_impassable_destination(self, open_field):
        open_field.set_cell(3, 3, CellKind.OBSTACLE)
        result = find_path(open_field, (0, 0), (3, 3))
        assert result.success is False
        assert "impassable" in result.description

    def test_out_of_bounds(self, open_field):
        assert find_path(open_field, (0, 0), (10, 0)).success is False

    def test_hostile_squares_block(self):
        corridor = Terrain(width=5, height=1)
        occupancy = Occupancy(hostile={(1, 0): "goblin-1"})
        result = find_path(corridor, (0, 0), (3, 0), occupancy)
        assert result.success is False

    def test_friendly_squares_can_be_crossed(self):
        corridor = Terrain(width=5, height=1)
        occupancy = Occupancy(friendly={(1, 0): "cleric-1"})
        result = find_path(corridor, (0, 0), (3, 0), occupancy)
        assert result.success is True
        assert (1, 0) in result.path

    def test_cannot_end_on_ally(self, open_field):
        occupancy = Occupancy(friendly={(2, 0): "cleric-1"})
        result = find_path(open_field, (0, 0), (2, 0), occupancy)
        assert result.success is False
        assert result.blocked_by == "cleric-1"
        assert "ally" in result.description


class TestReachableSquares:
    """Tests for the set of reachable squares."""

    def test_one_step(self, open_field):
        reachable = reachable_squares(open_field, (0, 0), 5)
        assert reachable == {(1, 0): 5, (0, 1): 5, (1, 1): 5}

    def test_origin_excluded(self, open_field):
        assert (4, 4) not in reachable_squares(open_field, (4, 4), 30)

    def test_difficult_terrain_limits_reach(self):
        terrain = Terrain(width=5, height=1)
        terrain.set_cell(1, 0, CellKind.DIFFICULT)
        reachable = reachable_squares(terrain, (0, 0), 10)
        assert reachable == {(1, 0): 10}


class TestOpportunityTriggers:
    """Tests for leaving a hostile's reach."""

    def test_leaving_reach_triggers(self):
        path = [(6, 5), (7, 5), (8, 5)]
        triggers = opportunity_attack_triggers(path, [Threat("goblin-1", Position(5, 5))])
        assert len(triggers) == 1
        assert triggers[0].attacker_id == "goblin-1"
        assert triggers[0].step_index == 0
        assert triggers[0].cell == (6, 5)

    def test_moving_within_reach_does_not_trigger(self):
        path = [(6, 5), (6, 6), (5, 6)]
        assert opportunity_attack_triggers(path, [Threat("goblin-1", Position(5, 5))]) == []

    def test_long_reach(self):
        path = [(6, 5), (7, 5), (8, 5)]
        threat = Threat("ogre-1", Position(5, 5), reach=10)
        triggers = opportunity_attack_triggers(path, [threat])
        assert triggers[0].step_index == 1

    def test_ordered_by_step(self):
        path = [(6, 5), (7, 5), (8, 5), (9, 5)]
        threats = [Threat("far", Position(6, 4)), Threat("near", Position(5, 5))]
        triggers = opportunity_attack_triggers(path, threats)
        assert [t.attacker_id for t in triggers] == ["near", "far"]


class TestPathCost:
    def test_cost_until_index(self, open_field):
        path = [(0, 0), (1, 0), (2, 0), (3, 0)]
        assert path_cost_until(open_field, path, 2) == 10
        assert path_cost_until(open_field, path, 0) == 0
