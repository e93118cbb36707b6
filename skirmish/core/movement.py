"""
Movement System.

Handles grid-based movement and pathfinding over encounter terrain.
Uses A* pathfinding for movement validation and Dijkstra for the set of
reachable squares. Both walk the same state space: a cell plus, under the
alternating diagonal rule, whether the next diagonal step is the costly one.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple
import heapq

from skirmish.core.geometry import Cell, Position, distance
from skirmish.core.terrain import Terrain
from skirmish.core.vocabulary import DistanceMode


@dataclass
class PathNode:
    """A node in the pathfinding graph."""
    x: int
    y: int
    parity: int = 0  # Diagonal steps taken so far, mod 2 (alternating rule only)
    g_cost: int = 0  # Cost from start
    h_cost: int = 0  # Heuristic (estimated cost to goal)
    parent: Optional["PathNode"] = None

    @property
    def f_cost(self) -> int:
        """Total estimated cost."""
        return self.g_cost + self.h_cost

    @property
    def key(self) -> Tuple[int, int, int]:
        return (self.x, self.y, self.parity)

    def __lt__(self, other: "PathNode") -> bool:
        """For heap comparison."""
        return (self.f_cost, self.g_cost) < (other.f_cost, other.g_cost)


@dataclass
class PathResult:
    """Result of a pathfinding attempt."""
    success: bool
    path: List[Cell]
    total_cost: int
    description: str
    blocked_by: Optional[str] = None  # Participant ID if the destination is occupied

    def to_dict(self):
        return {
            "success": self.success,
            "path": [list(c) for c in self.path],
            "total_cost": self.total_cost,
            "description": self.description,
        }


@dataclass
class Occupancy:
    """
    Who stands where, from the mover's point of view.

    Hostile squares cannot be entered; friendly squares can be crossed but
    not ended on.
    """
    hostile: Dict[Cell, str] = field(default_factory=dict)
    friendly: Dict[Cell, str] = field(default_factory=dict)

    def occupant(self, cell: Cell) -> Optional[str]:
        return self.hostile.get(cell) or self.friendly.get(cell)


def step_cost(
    terrain: Terrain,
    to_cell: Cell,
    diagonal: bool,
    parity: int,
    mode: DistanceMode = DistanceMode.GRID_5E,
) -> Tuple[int, int]:
    """
    Cost in feet of stepping into a neighbouring cell.

    Returns:
        (cost, new_parity)
    """
    base = terrain.feet_per_square
    new_parity = parity
    if diagonal and mode is DistanceMode.GRID_ALT:
        # 5-10-5-10: the second diagonal of each pair costs double
        if parity == 1:
            base *= 2
        new_parity = 1 - parity
    return base * terrain.cell(*to_cell).cost_multiplier, new_parity


def heuristic(a: Cell, b: Cell, feet_per_square: int = 5) -> int:
    """Heuristic for A* (Chebyshev distance in feet)."""
    return max(abs(b[0] - a[0]), abs(b[1] - a[1])) * feet_per_square


def _expand(terrain: Terrain, node_cell: Cell, occupancy: Occupancy) -> Iterable[Tuple[Cell, bool]]:
    x, y = node_cell
    for nx, ny in terrain.neighbors(x, y):
        if not terrain.cell(nx, ny).is_passable:
            continue
        if (nx, ny) in occupancy.hostile:
            continue
        yield (nx, ny), (nx != x and ny != y)


def find_path(
    terrain: Terrain,
    start: Cell,
    end: Cell,
    occupancy: Optional[Occupancy] = None,
    mode: DistanceMode = DistanceMode.GRID_5E,
) -> PathResult:
    """
    Find the cheapest path between two cells using A*.

    Args:
        terrain: The encounter terrain
        start: Starting cell
        end: Target cell
        occupancy: Hostile and friendly occupied cells
        mode: Distance mode; grid_alt prices alternate diagonals at double cost

    Returns:
        PathResult with the path (start included) and its cost in feet
    """
    occupancy = occupancy or Occupancy()

    if not terrain.in_bounds(*start):
        return PathResult(success=False, path=[], total_cost=0, description="Invalid start position")

    if not terrain.in_bounds(*end):
        return PathResult(success=False, path=[], total_cost=0, description="Invalid end position")

    if not terrain.cell(*end).is_passable:
        return PathResult(success=False, path=[], total_cost=0, description="Destination is impassable")

    # Can't end movement on any occupied cell (ally or enemy)
    occupant = occupancy.occupant(end)
    if occupant and end != start:
        return PathResult(
            success=False,
            path=[],
            total_cost=0,
            description="Destination is occupied" + (" by an ally" if end in occupancy.friendly else ""),
            blocked_by=occupant,
        )

    if start == end:
        return PathResult(success=True, path=[start], total_cost=0, description="Already at destination")

    fps = terrain.feet_per_square
    start_node = PathNode(x=start[0], y=start[1], h_cost=heuristic(start, end, fps))
    open_set: List[PathNode] = [start_node]
    best: Dict[Tuple[int, int, int], int] = {start_node.key: 0}
    closed: Set[Tuple[int, int, int]] = set()

    while open_set:
        current = heapq.heappop(open_set)
        if current.key in closed:
            continue
        closed.add(current.key)

        if (current.x, current.y) == end:
            path = []
            node = current
            while node:
                path.append((node.x, node.y))
                node = node.parent
            path.reverse()
            return PathResult(
                success=True,
                path=path,
                total_cost=current.g_cost,
                description=f"Path found: {current.g_cost}ft",
            )

        for cell, diagonal in _expand(terrain, (current.x, current.y), occupancy):
            cost, parity = step_cost(terrain, cell, diagonal, current.parity, mode)
            new_g = current.g_cost + cost
            key = (cell[0], cell[1], parity)
            if key in closed or best.get(key, float("inf")) <= new_g:
                continue
            best[key] = new_g
            heapq.heappush(open_set, PathNode(
                x=cell[0],
                y=cell[1],
                parity=parity,
                g_cost=new_g,
                h_cost=heuristic(cell, end, fps),
                parent=current,
            ))

    return PathResult(success=False, path=[], total_cost=0, description="No path found")


def reachable_squares(
    terrain: Terrain,
    origin: Cell,
    budget: int,
    occupancy: Optional[Occupancy] = None,
    mode: DistanceMode = DistanceMode.GRID_5E,
) -> Dict[Cell, int]:
    """
    Get all cells reachable with the given movement.

    Args:
        terrain: The encounter terrain
        origin: Starting cell
        budget: Available movement in feet
        occupancy: Hostile and friendly occupied cells
        mode: Distance mode

    Returns:
        Mapping of each valid destination cell to its cheapest cost in feet.
        The origin and cells holding another participant are not included.
    """
    occupancy = occupancy or Occupancy()
    best: Dict[Tuple[int, int, int], int] = {(origin[0], origin[1], 0): 0}
    queue = [(0, origin[0], origin[1], 0)]
    reachable: Dict[Cell, int] = {}

    while queue:
        cost, x, y, parity = heapq.heappop(queue)
        if cost > best.get((x, y, parity), float("inf")):
            continue

        for cell, diagonal in _expand(terrain, (x, y), occupancy):
            move_cost, new_parity = step_cost(terrain, cell, diagonal, parity, mode)
            new_cost = cost + move_cost
            if new_cost > budget:
                continue
            key = (cell[0], cell[1], new_parity)
            if best.get(key, float("inf")) <= new_cost:
                continue
            best[key] = new_cost
            heapq.heappush(queue, (new_cost, cell[0], cell[1], new_parity))

            if cell != origin and cell not in occupancy.friendly:
                if new_cost < reachable.get(cell, float("inf")):
                    reachable[cell] = new_cost

    return reachable


# =============================================================================
# OPPORTUNITY ATTACKS
# =============================================================================

@dataclass
class Threat:
    """A hostile that could punish movement out of its reach."""
    participant_id: str
    position: Position
    reach: int = 5


@dataclass
class OpportunityTrigger:
    """A hostile whose reach the mover leaves along a path."""
    attacker_id: str
    step_index: int  # Index in the path of the last cell inside reach
    cell: Cell


def opportunity_attack_triggers(
    path: List[Cell],
    threats: List[Threat],
    mover_z: int = 0,
    mode: DistanceMode = DistanceMode.GRID_5E,
    feet_per_square: int = 5,
) -> List[OpportunityTrigger]:
    """
    Check if movement along a path provokes opportunity attacks.

    A threat is triggered the first time the mover steps from a cell inside
    its reach to a cell outside it. Each threat triggers at most once.
    Disengage and reaction availability are the caller's concern.

    Returns:
        Triggers in the order the mover leaves each reach
    """
    triggers = []
    for threat in threats:
        inside = [
            distance(Position(x, y, mover_z), threat.position, mode, feet_per_square) <= threat.reach
            for x, y in path
        ]
        for index in range(len(path) - 1):
            if inside[index] and not inside[index + 1]:
                triggers.append(OpportunityTrigger(threat.participant_id, index, path[index]))
                break
    triggers.sort(key=lambda t: t.step_index)
    return triggers


def path_cost_until(terrain: Terrain, path: List[Cell], index: int,
                    mode: DistanceMode = DistanceMode.GRID_5E) -> int:
    """Cost in feet of walking the path from its start to path[index]."""
    cost = 0
    parity = 0
    for (x1, y1), cell in zip(path[:index], path[1:index + 1]):
        step, parity = step_cost(terrain, cell, x1 != cell[0] and y1 != cell[1], parity, mode)
        cost += step
    return cost
