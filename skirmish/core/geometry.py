"""
Spatial calculations for tactical combat.

Pure functions over positions and terrain:
- distance between two points under one of three metrics
- area-of-effect template membership (sphere, cube, cone, line, cylinder)
- line of sight and the cover it passes through

Nothing here reads or writes encounter state.
"""
import math
from dataclasses import dataclass, field
from typing import Any, List, Optional, Set, Tuple, Union

from skirmish.core.errors import ValidationError
from skirmish.core.terrain import Terrain
from skirmish.core.vocabulary import AoeShape, Cover, DistanceMode


Cell = Tuple[int, int]


@dataclass(frozen=True)
class Position:
    """Grid position: x and y in squares, z (elevation) in feet."""
    x: int
    y: int
    z: int = 0

    @property
    def cell(self) -> Cell:
        return (self.x, self.y)

    def to_dict(self):
        return {"x": self.x, "y": self.y, "z": self.z}

    @classmethod
    def coerce(cls, value: Any, field_name: str = "position") -> "Position":
        """Build a Position from a Position, a mapping or an (x, y[, z]) sequence."""
        if isinstance(value, Position):
            return value
        if isinstance(value, dict):
            parts = [value.get("x"), value.get("y"), value.get("z") or 0]
        elif isinstance(value, (list, tuple)) and len(value) in (2, 3):
            parts = list(value)
        else:
            raise ValidationError(field_name, "Position must have integer x and y", value)
        for part in parts:
            # Whole floats (2.0) are accepted, fractions are not
            if isinstance(part, bool) or not isinstance(part, (int, float)) \
                    or (isinstance(part, float) and not part.is_integer()):
                raise ValidationError(field_name, "Position must have integer x and y", value)
        return cls(*(int(p) for p in parts))


PointLike = Union[Position, Tuple[int, int], Tuple[int, int, int]]


@dataclass
class LineOfSight:
    """Result of a line-of-sight check."""
    blocked: bool
    cover: Cover
    cells: List[Cell] = field(default_factory=list)  # Intermediate cells walked

    def to_dict(self):
        return {
            "blocked": self.blocked,
            "cover": self.cover.value,
            "cells": [list(c) for c in self.cells],
        }


# =============================================================================
# DISTANCE
# =============================================================================

def _alternating_squares(straight: int, diagonals: int) -> int:
    # Every second diagonal counts as two squares: 1-2-1-2
    return straight + (diagonals // 2) * 3 + (diagonals % 2)


def distance(
    a: PointLike,
    b: PointLike,
    mode: DistanceMode = DistanceMode.GRID_5E,
    feet_per_square: int = 5,
) -> float:
    """
    Calculate distance between two points in feet.

    Args:
        a, b: Positions (x, y in squares; z in feet)
        mode: grid_5e (every diagonal 5 ft), grid_alt (diagonals 5-10-5-10)
            or euclidean (straight line)
        feet_per_square: Size of one grid square

    Returns:
        Distance in feet. Grid modes round elevation up to whole squares.
    """
    a = Position.coerce(a, "from")
    b = Position.coerce(b, "to")
    dx = abs(a.x - b.x)
    dy = abs(a.y - b.y)
    dz_ft = abs(a.z - b.z)

    if mode is DistanceMode.EUCLIDEAN:
        return math.sqrt((dx * feet_per_square) ** 2 + (dy * feet_per_square) ** 2 + dz_ft ** 2)

    dz = math.ceil(dz_ft / feet_per_square)
    longest, middle, _ = sorted((dx, dy, dz), reverse=True)

    if mode is DistanceMode.GRID_5E:
        return float(longest * feet_per_square)

    return float(_alternating_squares(longest - middle, middle) * feet_per_square)


def is_within(a: PointLike, b: PointLike, feet: float, mode: DistanceMode = DistanceMode.GRID_5E,
              feet_per_square: int = 5) -> bool:
    return distance(a, b, mode, feet_per_square) <= feet + 1e-9


# =============================================================================
# AREA OF EFFECT
# =============================================================================

def points_in_shape(
    origin: PointLike,
    shape: AoeShape,
    size: float,
    direction: Optional[PointLike] = None,
    bounds: Optional[Terrain] = None,
    feet_per_square: int = 5,
) -> Set[Cell]:
    """
    Get the grid cells covered by an area-of-effect template.

    Args:
        origin: Point of origin of the effect
        shape: Template shape
        size: Radius (sphere, cylinder), side (cube) or length (cone, line) in feet
        direction: Point the cone or line is aimed at (required for those shapes)
        bounds: Optional terrain; cells outside it are dropped
        feet_per_square: Size of one grid square

    Returns:
        Set of (x, y) cells. Cones and lines never include the origin cell.
    """
    origin = Position.coerce(origin, "center")
    if size is None or size <= 0:
        raise ValidationError("size", "Area size must be positive", size)
    squares = size / feet_per_square

    if shape in (AoeShape.SPHERE, AoeShape.CYLINDER):
        cells = _radius_cells(origin, squares)
    elif shape is AoeShape.CUBE:
        cells = _cube_cells(origin, max(1, int(squares)))
    else:
        if direction is None:
            raise ValidationError("direction", f"A {shape.value} needs a direction point")
        target = Position.coerce(direction, "direction")
        if target.cell == origin.cell:
            raise ValidationError("direction", "Direction point must differ from the origin",
                                  f"{target.x},{target.y}")
        half_width = None if shape is AoeShape.CONE else 0.5
        cells = _directional_cells(origin, target, squares, half_width)

    if bounds is not None:
        cells = {c for c in cells if bounds.in_bounds(*c)}
    return cells


def _radius_cells(origin: Position, radius: float) -> Set[Cell]:
    reach = int(math.floor(radius))
    cells = set()
    for dx in range(-reach, reach + 1):
        for dy in range(-reach, reach + 1):
            if math.hypot(dx, dy) <= radius + 1e-9:
                cells.add((origin.x + dx, origin.y + dy))
    return cells


def _cube_cells(origin: Position, side: int) -> Set[Cell]:
    # Odd sides are centred exactly; even sides extend one extra square toward +x/+y
    low = -((side - 1) // 2)
    high = low + side
    return {
        (origin.x + dx, origin.y + dy)
        for dx in range(low, high)
        for dy in range(low, high)
    }


def _directional_cells(origin: Position, target: Position, length: float,
                       half_width: Optional[float]) -> Set[Cell]:
    vx, vy = target.x - origin.x, target.y - origin.y
    norm = math.hypot(vx, vy)
    ux, uy = vx / norm, vy / norm
    reach = int(math.ceil(length))
    cells = set()
    for dx in range(-reach, reach + 1):
        for dy in range(-reach, reach + 1):
            if dx == 0 and dy == 0:
                continue
            along = dx * ux + dy * uy
            if along <= 0 or along > length + 1e-9:
                continue
            across = abs(dx * uy - dy * ux)
            # Cone width at distance d equals d
            limit = along / 2 if half_width is None else half_width
            if across <= limit + 1e-9:
                cells.add((origin.x + dx, origin.y + dy))
    return cells


# =============================================================================
# LINE OF SIGHT
# =============================================================================

def bresenham(a: Cell, b: Cell) -> List[Cell]:
    """All cells on the line from a to b, both endpoints included."""
    x1, y1 = a
    x2, y2 = b
    cells = []

    dx = abs(x2 - x1)
    dy = abs(y2 - y1)
    sx = 1 if x1 < x2 else -1
    sy = 1 if y1 < y2 else -1
    err = dx - dy

    x, y = x1, y1
    while True:
        cells.append((x, y))
        if x == x2 and y == y2:
            break
        e2 = 2 * err
        if e2 > -dy:
            err -= dy
            x += sx
        if e2 < dx:
            err += dx
            y += sy

    return cells


def line_of_sight(a: PointLike, b: PointLike, terrain: Terrain) -> LineOfSight:
    """
    Check line of sight between two points.

    Walks the Bresenham line between the two cells, ignoring the endpoints,
    and reports the highest cover level of any cell it passes through.
    Full cover means the line is blocked.
    """
    start = Position.coerce(a, "from").cell
    end = Position.coerce(b, "to").cell
    between = bresenham(start, end)[1:-1]
    cover = Cover.highest(*(terrain.cover_at(x, y) for x, y in between))
    return LineOfSight(blocked=cover is Cover.FULL, cover=cover, cells=between)
