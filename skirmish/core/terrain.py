"""
Terrain grid for encounters.

A bounded width x height grid of square cells. Only cells that differ from
open ground are stored; everything else reads back as an open cell.
"""
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple, Any, List

from skirmish.core.dice import parse_dice_notation
from skirmish.core.errors import ValidationError
from skirmish.core.vocabulary import CellKind, Cover, ObstacleType


def cell_coords(entry: Any, field_name: str = "cells") -> Tuple[int, int]:
    """Integer (x, y) of a cell entry, or a ValidationError naming the list it came from."""
    if not isinstance(entry, dict):
        raise ValidationError(field_name, "Each entry needs integer x and y", entry)
    x, y = entry.get("x"), entry.get("y")
    if isinstance(x, bool) or isinstance(y, bool) or not isinstance(x, int) or not isinstance(y, int):
        raise ValidationError(field_name, "Each entry needs integer x and y", entry)
    return x, y


@dataclass
class TerrainCell:
    """A single cell in the terrain grid."""
    x: int
    y: int
    kind: CellKind = CellKind.OPEN
    cover: Cover = Cover.NONE  # Cover granted to lines passing through this cell
    label: str = ""  # Obstacle type or free-form description
    hazard_damage: str = ""  # Damage dice if hazard (e.g., "1d6")

    @property
    def is_passable(self) -> bool:
        """Obstacles can never be entered."""
        return self.kind != CellKind.OBSTACLE

    @property
    def cost_multiplier(self) -> int:
        """Multiplier on the cost of entering this cell (difficult terrain costs double)."""
        if self.kind in (CellKind.DIFFICULT, CellKind.WATER):
            return 2
        return 1

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "x": self.x,
            "y": self.y,
            "kind": self.kind.value,
            "cover": self.cover.value,
        }
        if self.label:
            data["label"] = self.label
        if self.hazard_damage:
            data["hazard_damage"] = self.hazard_damage
        return data


@dataclass
class Terrain:
    """
    The tactical grid an encounter is fought on.

    Coordinates are zero-based: 0 <= x < width and 0 <= y < height.
    """
    width: int = 20
    height: int = 20
    cells: Dict[Tuple[int, int], TerrainCell] = field(default_factory=dict)
    feet_per_square: int = 5

    def __post_init__(self):
        if not isinstance(self.width, int) or not isinstance(self.height, int):
            raise ValidationError("terrain", "Terrain dimensions must be integers",
                                  f"{self.width}x{self.height}")
        if self.width < 1 or self.height < 1:
            raise ValidationError("terrain", "Terrain dimensions must be at least 1x1",
                                  f"{self.width}x{self.height}")
        if not isinstance(self.feet_per_square, int) or isinstance(self.feet_per_square, bool) \
                or self.feet_per_square < 1:
            raise ValidationError("feet_per_square", "Feet per square must be positive",
                                  self.feet_per_square)

    def in_bounds(self, x: int, y: int) -> bool:
        """Check if coordinates are within the grid."""
        return 0 <= x < self.width and 0 <= y < self.height

    def require_in_bounds(self, x: int, y: int, field_name: str = "position") -> None:
        if not self.in_bounds(x, y):
            raise ValidationError(
                field_name,
                f"Position ({x}, {y}) is outside the {self.width}x{self.height} terrain",
                f"{x},{y}",
                width=self.width,
                height=self.height,
            )

    def cell(self, x: int, y: int) -> TerrainCell:
        """Get a cell by coordinates; unstored cells are open ground."""
        return self.cells.get((x, y)) or TerrainCell(x=x, y=y)

    def is_passable(self, x: int, y: int) -> bool:
        return self.in_bounds(x, y) and self.cell(x, y).is_passable

    def cover_at(self, x: int, y: int) -> Cover:
        if not self.in_bounds(x, y):
            return Cover.NONE
        return self.cell(x, y).cover

    def set_cell(
        self,
        x: int,
        y: int,
        kind: CellKind,
        cover: Optional[Cover] = None,
        label: str = "",
        hazard_damage: str = "",
    ) -> TerrainCell:
        """
        Set the classification of a cell.

        Obstacles default to full cover; every other kind defaults to none.
        Setting a cell back to plain open ground with no cover removes it.
        """
        self.require_in_bounds(x, y)
        if hazard_damage:
            parse_dice_notation(hazard_damage)
            hazard_damage = str(hazard_damage).strip()
        if cover is None:
            cover = Cover.FULL if kind == CellKind.OBSTACLE else Cover.NONE
        if kind == CellKind.OPEN and cover == Cover.NONE and not label:
            self.cells.pop((x, y), None)
            return TerrainCell(x=x, y=y)
        new_cell = TerrainCell(x=x, y=y, kind=kind, cover=cover, label=label,
                               hazard_damage=hazard_damage)
        self.cells[(x, y)] = new_cell
        return new_cell

    def place_obstacle(self, x: int, y: int, obstacle: ObstacleType) -> TerrainCell:
        """Place an obstacle object; its type decides the cover it grants."""
        return self.set_cell(x, y, CellKind.OBSTACLE, cover=obstacle.cover, label=obstacle.value)

    def clear_cell(self, x: int, y: int) -> None:
        self.require_in_bounds(x, y)
        self.cells.pop((x, y), None)

    def neighbors(self, x: int, y: int) -> List[Tuple[int, int]]:
        """All in-bounds adjacent cells, cardinal directions first."""
        result = []
        for dx, dy in ((0, 1), (0, -1), (1, 0), (-1, 0), (1, 1), (1, -1), (-1, 1), (-1, -1)):
            nx, ny = x + dx, y + dy
            if self.in_bounds(nx, ny):
                result.append((nx, ny))
        return result

    def counts(self) -> Dict[str, int]:
        """Number of stored cells per kind."""
        totals: Dict[str, int] = {}
        for stored in self.cells.values():
            totals[stored.kind.value] = totals.get(stored.kind.value, 0) + 1
        return totals

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the grid for transmission."""
        return {
            "width": self.width,
            "height": self.height,
            "feet_per_square": self.feet_per_square,
            "cells": [c.to_dict() for _, c in sorted(self.cells.items())],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Terrain":
        """Deserialize a grid from dictionary."""
        terrain = cls(
            width=data.get("width", 20),
            height=data.get("height", 20),
            feet_per_square=data.get("feet_per_square", 5),
        )
        cells = data.get("cells") or []
        if not isinstance(cells, list):
            raise ValidationError("cells", "cells must be a list of cell entries", cells)
        for cell_data in cells:
            x, y = cell_coords(cell_data)
            kind = CellKind.parse(cell_data.get("kind", "open"), "kind")
            cover = cell_data.get("cover")
            terrain.set_cell(
                x, y,
                kind,
                cover=Cover.parse(cover, "cover") if cover is not None else None,
                label=cell_data.get("label", ""),
                hazard_damage=cell_data.get("hazard_damage", ""),
            )
        return terrain
