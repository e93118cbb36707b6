"""
Read-only views of an encounter.

Projections at four verbosity levels and an ASCII battlefield map. Nothing
here mutates the encounter; callers hold its session while projecting so a
view never sees a half-applied action.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from skirmish.core.encounter_registry import Encounter
from skirmish.core.errors import ValidationError
from skirmish.core.participants import Participant
from skirmish.core.rules_config import get_rules_summary
from skirmish.core.vocabulary import CellKind, Cover, Faction, LegendDetail, Verbosity


EVENT_TAIL = 20

CELL_SYMBOLS = {
    CellKind.OPEN: ".",
    CellKind.OBSTACLE: "#",
    CellKind.DIFFICULT: "~",
    CellKind.WATER: "w",
    CellKind.HAZARD: "^",
}

COVER_SYMBOLS = {
    Cover.HALF: "+",
    Cover.THREE_QUARTERS: "=",
}

SYMBOL_MEANINGS = {
    ".": "open",
    "#": "obstacle",
    "~": "difficult terrain",
    "w": "water",
    "^": "hazard",
    "+": "half cover",
    "=": "three-quarters cover",
    "x": "dead",
}

_SPARE_MARKERS = "123456789"


# =============================================================================
# PROJECTIONS
# =============================================================================

def participant_status(participant: Participant) -> str:
    if participant.is_dead:
        return "dead"
    if participant.is_down:
        if participant.death_saves and participant.death_saves.is_stable:
            return "stable"
        return "dying"
    return "standing"


def _summary_view(encounter: Encounter, p: Participant) -> Dict[str, Any]:
    return {
        "id": p.id,
        "name": p.name,
        "faction": p.faction.value,
        "hp_percent": p.hp_percent,
        "status": participant_status(p),
    }


def _standard_view(encounter: Encounter, p: Participant) -> Dict[str, Any]:
    view = _summary_view(encounter, p)
    view.update({
        "initiative": p.initiative,
        "current_hp": p.current_hp,
        "max_hp": p.max_hp,
        "armor_class": p.armor_class,
        "position": p.position.to_dict(),
        "conditions": encounter.conditions.kinds(p.id),
        "death_saves": p.death_saves.to_dict() if p.death_saves else None,
    })
    return view


def _detailed_view(encounter: Encounter, p: Participant) -> Dict[str, Any]:
    view = _standard_view(encounter, p)
    stats = encounter.effective_stats(p)
    view.update({
        "speed": p.speed,
        "temp_hp": p.temp_hp,
        "cover": p.cover.value,
        "size": p.size.value,
        "reach": p.reach,
        "player_controlled": p.player_controlled,
        "character_id": p.character_id,
        "resistances": sorted(d.value for d in p.resistances),
        "immunities": sorted(d.value for d in p.immunities),
        "vulnerabilities": sorted(d.value for d in p.vulnerabilities),
        "spell_slots": dict(p.spell_slots) if p.spell_slots is not None else None,
        "concentration": p.concentration,
        "hidden": p.hidden_stealth is not None,
        "readied": p.readied,
        "turn": p.turn.to_dict(),
        "conditions": [e.to_dict() for e in encounter.conditions.query(p.id)],
        "effective_stats": stats.to_dict(),
    })
    return view


_VIEWS = {
    Verbosity.SUMMARY: _summary_view,
    Verbosity.STANDARD: _standard_view,
    Verbosity.DETAILED: _detailed_view,
}


def project_encounter(encounter: Encounter, verbosity: Verbosity = Verbosity.STANDARD) -> Dict[str, Any]:
    """
    Project an encounter at a verbosity level.

    minimal: ids, round, current turn and state
    summary: adds names, factions and HP percentages
    standard: adds initiative, HP, AC, positions, conditions and death saves
    detailed: adds everything else, plus terrain, rules and recent events
    """
    current = encounter.current
    view: Dict[str, Any] = {
        "id": encounter.id,
        "state": encounter.state.value,
        "round": encounter.round,
        "current_turn": current.id if current else None,
    }

    if verbosity is Verbosity.MINIMAL:
        view["participant_ids"] = [p.id for p in encounter.participants]
        return view

    render = _VIEWS[verbosity]
    view["name"] = encounter.name
    view["current_turn_name"] = current.name if current else None
    view["participants"] = [render(encounter, p) for p in encounter.participants]
    if encounter.outcome is not None:
        view["outcome"] = encounter.outcome.value

    if verbosity in (Verbosity.STANDARD, Verbosity.DETAILED):
        view["lighting"] = encounter.lighting.value
        view["terrain"] = {
            "width": encounter.terrain.width,
            "height": encounter.terrain.height,
            "feet_per_square": encounter.terrain.feet_per_square,
        }

    if verbosity is Verbosity.DETAILED:
        view["terrain"] = encounter.terrain.to_dict()
        view["terrain"]["counts"] = encounter.terrain.counts()
        view["rules"] = encounter.rules.to_dict()
        view["rules_summary"] = get_rules_summary(encounter.rules)
        view["initiative_order"] = encounter.tracker.get_initiative_order()
        view["events"] = [e.to_dict() for e in encounter.events[-EVENT_TAIL:]]
        view["created_at"] = encounter.created_at.isoformat()
        if encounter.ended_at is not None:
            view["ended_at"] = encounter.ended_at.isoformat()
            view["end_notes"] = encounter.end_notes

    return view


# =============================================================================
# ASCII MAP
# =============================================================================

@dataclass
class Viewport:
    """A rectangular window onto the terrain, in squares."""
    x: int = 0
    y: int = 0
    width: Optional[int] = None
    height: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Viewport":
        if not data:
            return cls()
        try:
            return cls(
                x=int(data.get("x", 0)),
                y=int(data.get("y", 0)),
                width=int(data["width"]) if data.get("width") is not None else None,
                height=int(data["height"]) if data.get("height") is not None else None,
            )
        except (TypeError, ValueError):
            raise ValidationError("viewport", "Viewport values must be integers", data)

    def clip(self, width: int, height: int) -> "Viewport":
        """Intersect with the terrain; an empty intersection is a ValidationError."""
        x0, y0 = max(0, self.x), max(0, self.y)
        x1 = min(width, self.x + self.width) if self.width is not None else width
        y1 = min(height, self.y + self.height) if self.height is not None else height
        if x1 <= x0 or y1 <= y0:
            raise ValidationError("viewport", "Viewport does not overlap the terrain",
                                  {"x": self.x, "y": self.y, "width": self.width, "height": self.height})
        return Viewport(x0, y0, x1 - x0, y1 - y0)


def assign_markers(participants: List[Participant]) -> Dict[str, str]:
    """
    One map character per participant.

    Allies use their upper-case initial, enemies their lower-case initial;
    clashes fall back to digits, in initiative order.
    """
    markers: Dict[str, str] = {}
    used = set(SYMBOL_MEANINGS)
    spare = iter(_SPARE_MARKERS)
    for p in participants:
        initial = (p.name.strip()[:1] or "?")
        marker = initial.upper() if p.faction is Faction.ALLY else initial.lower()
        if marker in used:
            marker = next(spare, "?")
        used.add(marker)
        markers[p.id] = marker
    return markers


def _terrain_symbol(encounter: Encounter, x: int, y: int) -> str:
    cell = encounter.terrain.cell(x, y)
    if cell.cover in COVER_SYMBOLS:
        return COVER_SYMBOLS[cell.cover]
    return CELL_SYMBOLS[cell.kind]


def render_battlefield(
    encounter: Encounter,
    viewport: Optional[Viewport] = None,
    legend: LegendDetail = LegendDetail.COMPACT,
) -> Dict[str, Any]:
    """
    Draw the encounter as an ASCII grid.

    Each square is two characters wide: a marker for whoever stands there
    (or the terrain symbol), preceded by ``>`` for the participant whose
    turn it is. Dead participants are drawn as ``x``. Row and column
    headers give the last digit of each coordinate.

    Returns:
        Dict with the grid text, the legend (None when omitted) and the
        viewport actually drawn
    """
    terrain = encounter.terrain
    view = (viewport or Viewport()).clip(terrain.width, terrain.height)
    markers = assign_markers(encounter.participants)
    current = encounter.current

    # Living participants drawn over the dead when they share a square
    occupants: Dict[tuple, Participant] = {}
    for p in sorted(encounter.participants, key=lambda q: not q.is_dead):
        occupants[p.position.cell] = p

    xs = range(view.x, view.x + view.width)
    ys = range(view.y, view.y + view.height)
    rows = ["    " + "".join(f" {x % 10}" for x in xs)]
    present = set()
    for y in ys:
        line = f"{y:>3} "
        for x in xs:
            occupant = occupants.get((x, y))
            if occupant is None:
                symbol = _terrain_symbol(encounter, x, y)
                present.add(symbol)
                line += f" {symbol}"
                continue
            symbol = "x" if occupant.is_dead else markers[occupant.id]
            if occupant.is_dead:
                present.add("x")
            prefix = ">" if current is not None and occupant.id == current.id else " "
            line += f"{prefix}{symbol}"
        rows.append(line.rstrip())

    return {
        "grid": "\n".join(rows),
        "legend": _legend(encounter, markers, present, legend),
        "viewport": {"x": view.x, "y": view.y, "width": view.width, "height": view.height},
        "round": encounter.round,
        "current_turn": current.id if current else None,
    }


def _legend(encounter: Encounter, markers: Dict[str, str], present: set,
            detail: LegendDetail) -> Optional[str]:
    if detail is LegendDetail.NONE:
        return None

    if detail is LegendDetail.COMPACT:
        parts = [
            f"{markers[p.id]}={p.name} {p.current_hp}/{p.max_hp}"
            for p in encounter.participants if not p.is_dead
        ]
        parts.extend(f"{s}={SYMBOL_MEANINGS[s]}" for s in sorted(present) if s != ".")
        return " | ".join(parts)

    lines = [f"Round {encounter.round}, lighting {encounter.lighting.value}"]
    current = encounter.current
    for p in encounter.participants:
        flag = ">" if current is not None and p.id == current.id else " "
        conditions = encounter.conditions.kinds(p.id)
        line = (
            f"{flag}{markers[p.id]} {p.name} [{p.faction.value}] HP {p.current_hp}/{p.max_hp} "
            f"AC {p.armor_class} at ({p.position.x}, {p.position.y})"
        )
        if p.position.z:
            line += f" {p.position.z} ft up"
        line += f" - {participant_status(p)}"
        if conditions:
            line += f" ({', '.join(conditions)})"
        lines.append(line)
    lines.append("Terrain: " + ", ".join(f"{s} {m}" for s, m in SYMBOL_MEANINGS.items()))
    lines.append("'>' marks the participant whose turn it is")
    return "\n".join(lines)
