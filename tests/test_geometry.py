"""Tests for distance, area templates and line of sight."""
import pytest

from skirmish.core.errors import ValidationError
from skirmish.core.geometry import (
    Position,
    bresenham,
    distance,
    is_within,
    line_of_sight,
    points_in_shape,
)
from skirmish.core.terrain import Terrain
from skirmish.core.vocabulary import AoeShape, CellKind, Cover, DistanceMode


class TestPosition:
    """Tests for coercing caller positions."""

    def test_from_mapping(self):
        assert Position.coerce({"x": 2, "y": 3}) == Position(2, 3, 0)

    def test_from_sequence(self):
        assert Position.coerce([1, 2, 10]) == Position(1, 2, 10)

    def test_invalid(self):
        with pytest.raises(ValidationError):
            Position.coerce({"x": "a"})

    def test_fractional_coordinates_rejected(self):
        with pytest.raises(ValidationError):
            Position.coerce({"x": 1.7, "y": 2})
        with pytest.raises(ValidationError):
            Position.coerce([1, 2.5])

    def test_whole_floats_accepted(self):
        assert Position.coerce({"x": 3.0, "y": 4}) == Position(3, 4, 0)


class TestDistance:
    """Tests for the three distance metrics."""

    def test_grid_5e_diagonals_cost_one_square(self):
        """Every diagonal is 5 ft: distance is the longer axis."""
        assert distance((0, 0), (3, 4)) == 20

    def test_grid_alt_alternates(self):
        """Diagonals alternate 5-10-5."""
        assert distance((0, 0), (3, 4), DistanceMode.GRID_ALT) == 25
        assert distance((0, 0), (2, 2), DistanceMode.GRID_ALT) == 15

    def test_euclidean(self):
        """Straight-line distance in feet."""
        assert distance((0, 0), (3, 4), DistanceMode.EUCLIDEAN) == pytest.approx(25.0)

    def test_adjacent_is_five_feet(self):
        assert distance((5, 5), (6, 6)) == 5

    def test_elevation_rounds_up_to_squares(self):
        """12 ft up counts as three squares on the grid."""
        assert distance(Position(0, 0, 0), Position(0, 0, 12)) == 15

    def test_feet_per_square(self):
        assert distance((0, 0), (2, 0), feet_per_square=10) == 20

    def test_is_within(self):
        assert is_within((0, 0), (1, 0), 5)
        assert not is_within((0, 0), (2, 0), 5)


class TestAreaOfEffect:
    """Tests for area template membership."""

    def test_sphere_radius_one_square(self):
        """A 5 ft sphere covers the centre and its four orthogonal neighbours."""
        cells = points_in_shape((5, 5), AoeShape.SPHERE, 5)
        assert cells == {(5, 5), (4, 5), (6, 5), (5, 4), (5, 6)}

    def test_sphere_radius_two_squares(self):
        cells = points_in_shape((5, 5), AoeShape.SPHERE, 10)
        assert len(cells) == 13
        assert (7, 5) in cells
        assert (7, 7) not in cells

    def test_odd_cube_is_centred(self):
        cells = points_in_shape((5, 5), AoeShape.CUBE, 15)
        assert cells == {(x, y) for x in (4, 5, 6) for y in (4, 5, 6)}

    def test_even_cube_extends_toward_positive(self):
        cells = points_in_shape((5, 5), AoeShape.CUBE, 10)
        assert cells == {(5, 5), (6, 5), (5, 6), (6, 6)}

    def test_line(self):
        """A line is one square wide and excludes the origin."""
        cells = points_in_shape((5, 5), AoeShape.LINE, 15, direction=(10, 5))
        assert cells == {(6, 5), (7, 5), (8, 5)}

    def test_cone_widens(self):
        cells = points_in_shape((5, 5), AoeShape.CONE, 15, direction=(10, 5))
        assert (5, 5) not in cells
        assert (6, 5) in cells
        assert {(7, 4), (7, 6), (8, 4), (8, 6)} <= cells
        assert len(cells) == 7

    def test_cone_requires_direction(self):
        with pytest.raises(ValidationError):
            points_in_shape((5, 5), AoeShape.CONE, 15)

    def test_direction_must_differ_from_origin(self):
        with pytest.raises(ValidationError):
            points_in_shape((5, 5), AoeShape.LINE, 15, direction=(5, 5))

    def test_size_must_be_positive(self):
        with pytest.raises(ValidationError):
            points_in_shape((5, 5), AoeShape.SPHERE, 0)

    def test_bounds_clip(self):
        """Cells off the map are dropped."""
        terrain = Terrain(width=10, height=10)
        cells = points_in_shape((0, 0), AoeShape.SPHERE, 5, bounds=terrain)
        assert cells == {(0, 0), (1, 0), (0, 1)}


class TestLineOfSight:
    """Tests for line of sight and cover."""

    def test_bresenham_includes_endpoints(self):
        cells = bresenham((0, 0), (3, 0))
        assert cells == [(0, 0), (1, 0), (2, 0), (3, 0)]

    def test_clear_line(self):
        los = line_of_sight((0, 0), (5, 0), Terrain(width=10, height=10))
        assert los.blocked is False
        assert los.cover is Cover.NONE

    def test_wall_blocks(self):
        terrain = Terrain(width=10, height=10)
        terrain.set_cell(5, 5, CellKind.OBSTACLE)
        los = line_of_sight((3, 5), (7, 5), terrain)
        assert los.blocked is True
        assert los.cover is Cover.FULL

    def test_half_cover(self):
        terrain = Terrain(width=10, height=10)
        terrain.set_cell(5, 5, CellKind.OPEN, cover=Cover.HALF, label="low wall")
        los = line_of_sight((3, 5), (7, 5), terrain)
        assert los.blocked is False
        assert los.cover is Cover.HALF

    def test_endpoints_ignored(self):
        """Cover on the target's own square does not count."""
        terrain = Terrain(width=10, height=10)
        terrain.set_cell(7, 5, CellKind.OPEN, cover=Cover.HALF, label="crate")
        assert line_of_sight((3, 5), (7, 5), terrain).cover is Cover.NONE
