"""
Combat Service

Encounter-scoped operations for callers (the HTTP routes, scripts, tests).

Every operation looks the encounter up in the registry and works inside
that encounter's session, so two calls against the same encounter run one
after the other while calls against different encounters never wait on
each other. Inputs are parsed and validated before the session is entered
wherever that is possible, keeping lock hold times short.

Write operations return plain dicts with a human-readable "description" of
what changed. Failures raise GameError subclasses and leave the encounter
untouched.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union
import logging

from skirmish.config import Settings, get_settings
from skirmish.core.actions import ActionRequest
from skirmish.core.battlefield import Viewport, project_encounter, render_battlefield
from skirmish.core.characters import CharacterResolver, seed_participant
from skirmish.core.combat_engine import CombatEngine
from skirmish.core.combat_summary import build_summary
from skirmish.core.condition_effects import ConditionStore
from skirmish.core.death_saves import DeathSaveState, StabilizeMethod, get_death_save_status
from skirmish.core.dice import DiceRoller
from skirmish.core.encounter_registry import Encounter, EncounterRegistry
from skirmish.core.errors import DuplicateIdError, EncounterNotFoundError, NotFoundError, ValidationError
from skirmish.core.geometry import Position
from skirmish.core.participants import Participant, participant_from_dict
from skirmish.core.rules_config import (
    PRESET_CONFIGS,
    NpcZeroHpPolicy,
    RulesConfig,
    get_rules_config,
)
from skirmish.core.terrain import Terrain, cell_coords
from skirmish.core.turn_scheduler import advance_turn
from skirmish.core.vocabulary import (
    CellKind,
    CombatOutcome,
    ConditionKind,
    Cover,
    EncounterState,
    LegendDetail,
    Light,
    MovementQuery,
    ObstacleType,
    Verbosity,
)


logger = logging.getLogger("skirmish.service")


class CombatService:
    """
    Facade over the encounter registry and the combat engine.

    Args:
        registry: Encounter store; a fresh one is created when omitted
        dice: Dice roller shared by every encounter this service runs
        characters: Resolver for participants that reference a stored character
        rules: Default rules for new encounters (the process-wide config when omitted)
        settings: Application settings (grid defaults and limits)
    """

    def __init__(
        self,
        registry: Optional[EncounterRegistry] = None,
        dice: Optional[DiceRoller] = None,
        characters: Optional[CharacterResolver] = None,
        rules: Optional[RulesConfig] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.registry = registry or EncounterRegistry(retain_ended=self.settings.RETAIN_ENDED_ENCOUNTERS)
        self.engine = CombatEngine(dice)
        self.characters = characters
        self.rules = rules

    @property
    def dice(self) -> DiceRoller:
        return self.engine.dice

    # =========================================================================
    # INPUT PARSING
    # =========================================================================

    def _build_rules(self, overrides: Optional[Dict[str, Any]], preset: Optional[str]) -> RulesConfig:
        """Each encounter gets its own copy of the rules it was created with."""
        base = self.rules or get_rules_config()
        if preset:
            if preset not in PRESET_CONFIGS:
                raise ValidationError("preset", f"Unknown rules preset '{preset}'", preset,
                                      allowed=sorted(PRESET_CONFIGS))
            base = PRESET_CONFIGS[preset]
        if overrides is not None and not isinstance(overrides, dict):
            raise ValidationError("rules", "Rules overrides must be a mapping", overrides)
        return base.with_overrides(**(overrides or {}))

    def _build_terrain(self, data: Optional[Dict[str, Any]]) -> Terrain:
        if data is not None and not isinstance(data, dict):
            raise ValidationError("terrain", "Terrain must be a mapping", data)
        data = dict(data or {})
        data.setdefault("width", self.settings.DEFAULT_GRID_WIDTH)
        data.setdefault("height", self.settings.DEFAULT_GRID_HEIGHT)
        data.setdefault("feet_per_square", self.settings.FEET_PER_SQUARE)

        limit = self.settings.MAX_GRID_DIMENSION
        for key in ("width", "height", "feet_per_square"):
            value = data[key]
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError("terrain", f"Terrain {key} must be an integer", value)
        if data["width"] > limit or data["height"] > limit:
            raise ValidationError(
                "terrain",
                f"Terrain may be at most {limit}x{limit} squares",
                f"{data['width']}x{data['height']}",
                limit=limit,
            )

        terrain = Terrain.from_dict(data)
        self._apply_terrain_changes(terrain, {"obstacles": data.get("obstacles") or []})
        return terrain

    def _parse_participant(self, data: Dict[str, Any]) -> Tuple[Participant, Optional[int]]:
        """Build a participant and pull out its manual initiative, if any."""
        if not isinstance(data, dict):
            raise ValidationError("participant", "Participant must be a mapping", data)
        seeded = seed_participant(data, self.characters)
        participant = participant_from_dict(seeded)
        manual = seeded.get("initiative")
        if manual is not None and (isinstance(manual, bool) or not isinstance(manual, int)):
            raise ValidationError("initiative", "Manual initiative must be an integer", manual,
                                  participant_id=participant.id)
        return participant, manual

    @staticmethod
    def _check_placement(terrain: Terrain, rules: RulesConfig, participant: Participant,
                         others: List[Participant]) -> None:
        x, y = participant.position.cell
        terrain.require_in_bounds(x, y)
        if not terrain.is_passable(x, y):
            raise ValidationError("position", f"{participant.name} cannot start inside an obstacle at ({x}, {y})",
                                  f"{x},{y}", participant_id=participant.id)
        if rules.allow_position_stacking or participant.is_dead:
            return
        for other in others:
            if other.position.cell == (x, y) and not other.is_dead:
                raise ValidationError(
                    "position",
                    f"({x}, {y}) is already occupied by {other.name}",
                    f"{x},{y}",
                    participant_id=participant.id,
                    occupant_id=other.id,
                )

    def _assign_initiative(self, participant: Participant, manual: Optional[int]) -> Dict[str, Any]:
        """A manual value is the initiative total; otherwise roll 1d20 + modifier."""
        if manual is not None:
            participant.initiative = manual
            return {"id": participant.id, "initiative": manual, "manual": True}
        roll = self.dice.roll_initiative(participant.initiative_modifier)
        participant.initiative = roll.total
        return {"id": participant.id, "initiative": roll.total, "roll": roll.to_dict(), "manual": False}

    @staticmethod
    def _enter_down(encounter: Encounter, participant: Participant) -> None:
        """
        A participant that joins at 0 HP is unconscious, and dying or dead by policy.

        Death saves supplied with the participant carry over when the policy gives it any.
        """
        if participant.current_hp > 0:
            return
        if participant.player_controlled or encounter.rules.npc_zero_hp_policy is NpcZeroHpPolicy.DEATH_SAVES:
            participant.death_saves = participant.death_saves or DeathSaveState()
        else:
            participant.death_saves = None
        encounter.conditions.add(participant.id, ConditionKind.UNCONSCIOUS, source="0 HP")

    # =========================================================================
    # ENCOUNTER LIFECYCLE
    # =========================================================================

    def create_encounter(
        self,
        participants: List[Dict[str, Any]],
        terrain: Optional[Dict[str, Any]] = None,
        lighting: Union[str, Light] = Light.BRIGHT,
        name: str = "",
        rules: Optional[Dict[str, Any]] = None,
        preset: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create and register a new encounter.

        Initiative is rolled for every participant without a manual value;
        the encounter starts at round 1 on the highest initiative.

        Raises:
            ValidationError: Bad terrain, bad participant data, duplicate ids
                or an illegal starting position
            NotFoundError: A referenced character does not exist
        """
        if not isinstance(participants, list) or not participants:
            raise ValidationError("participants", "An encounter needs at least one participant")

        config = self._build_rules(rules, preset)
        grid = self._build_terrain(terrain)
        light = Light.parse(lighting, "lighting")

        parsed: List[Tuple[Participant, Optional[int]]] = []
        seen: Dict[str, str] = {}
        for data in participants:
            participant, manual = self._parse_participant(data)
            if participant.id in seen:
                raise ValidationError("participants", f"Duplicate participant id '{participant.id}'",
                                      participant.id, names=[seen[participant.id], participant.name])
            self._check_placement(grid, config, participant, [p for p, _ in parsed])
            seen[participant.id] = participant.name
            parsed.append((participant, manual))

        encounter = Encounter(
            id=self.registry.new_id(),
            terrain=grid,
            rules=config,
            lighting=light,
            name=(name or "").strip(),
            conditions=ConditionStore(allow_stacking=config.allow_condition_stacking),
        )
        rolls = []
        for participant, manual in parsed:
            rolls.append(self._assign_initiative(participant, manual))
            encounter.tracker.add(participant)
            self._enter_down(encounter, participant)

        current = encounter.current
        current.turn.start()
        encounter.add_event("encounter_start", f"Encounter begins with {len(parsed)} participants")
        encounter.add_event("turn_start", f"{current.name}'s turn", current.id)
        self.registry.register(encounter)
        logger.info(f"Encounter {encounter.id} created ({grid.width}x{grid.height}, {len(parsed)} participants)")

        return {
            "encounter_id": encounter.id,
            "round": encounter.round,
            "current_turn": current.id,
            "initiative_order": encounter.tracker.get_initiative_order(),
            "initiative_rolls": rolls,
            "description": (
                f"Encounter {encounter.id} created. Round 1, {current.name} acts first "
                f"(initiative {current.initiative})"
            ),
        }

    def get_encounter(self, encounter_id: str,
                      verbosity: Union[str, Verbosity] = Verbosity.STANDARD) -> Dict[str, Any]:
        level = Verbosity.parse(verbosity, "verbosity")
        with self.registry.session(encounter_id) as encounter:
            return project_encounter(encounter, level)

    def add_participant(
        self,
        encounter_id: str,
        data: Dict[str, Any],
        manual_initiative: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Add a participant to a running encounter.

        The newcomer slots into initiative order without taking the turn
        away from whoever currently has it.

        Raises:
            NotFoundError: Unknown encounter or referenced character
            DuplicateIdError: The participant id is already in the encounter
            ValidationError: Bad data or an illegal starting position
        """
        participant, manual = self._parse_participant(data)
        if manual_initiative is not None:
            if isinstance(manual_initiative, bool) or not isinstance(manual_initiative, int):
                raise ValidationError("manual_initiative", "Manual initiative must be an integer", manual_initiative)
            manual = manual_initiative

        with self.registry.session(encounter_id, write=True) as encounter:
            if any(p.id == participant.id for p in encounter.participants):
                raise DuplicateIdError(participant.id, encounter.id)
            self._check_placement(encounter.terrain, encounter.rules, participant, encounter.participants)

            roll = self._assign_initiative(participant, manual)
            index = encounter.tracker.add(participant)
            self._enter_down(encounter, participant)
            encounter.add_event(
                "participant_added",
                f"{participant.name} joins the encounter (initiative {participant.initiative})",
                participant.id,
            )
            logger.info(f"Encounter {encounter.id}: {participant.id} joined at initiative {participant.initiative}")
            return {
                "participant": participant.to_dict(),
                "initiative": roll,
                "position_in_order": index + 1,
                "initiative_order": encounter.tracker.get_initiative_order(),
                "description": (
                    f"{participant.name} added to the encounter with initiative {participant.initiative} "
                    f"(position {index + 1} of {len(encounter.participants)})"
                ),
            }

    def end_encounter(
        self,
        encounter_id: str,
        outcome: Union[str, CombatOutcome] = CombatOutcome.OTHER,
        notes: str = "",
        retain: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """
        End an encounter and summarize it.

        Args:
            outcome: How the fight ended
            notes: Free-form notes kept with the encounter
            retain: Keep the encounter queryable; defaults to the registry setting

        Returns:
            Summary with rounds, per-participant tallies and the MVP
        """
        result = CombatOutcome.parse(outcome, "outcome")
        with self.registry.session(encounter_id, write=True) as encounter:
            encounter.state = EncounterState.ENDED
            encounter.outcome = result
            encounter.end_notes = (notes or "").strip()
            encounter.ended_at = datetime.now(timezone.utc)
            encounter.add_event("encounter_end", f"Encounter ends: {result.value}")
            summary = build_summary(encounter)

            keep = self.registry.retain_ended if retain is None else retain
            if not keep:
                self.registry.discard(encounter.id)
            logger.info(f"Encounter {encounter.id} ended ({result.value}) after {encounter.round} rounds")

        summary["retained"] = keep
        summary["description"] = (
            f"Encounter {encounter_id} ended ({result.value}) after {summary['rounds']} rounds"
            + (f"; MVP {summary['mvp']['name']}" if summary["mvp"] else "")
        )
        return summary

    def list_encounters(self) -> Dict[str, Any]:
        """Minimal view of every encounter the registry holds, oldest first."""
        encounters = []
        for encounter_id in self.registry.ids():
            try:
                with self.registry.session(encounter_id) as encounter:
                    view = project_encounter(encounter, Verbosity.MINIMAL)
                    view["name"] = encounter.name
            except EncounterNotFoundError:
                # Discarded after the ids were read
                continue
            encounters.append(view)
        return {"count": len(encounters), "encounters": encounters}

    def get_summary(self, encounter_id: str) -> Dict[str, Any]:
        with self.registry.session(encounter_id) as encounter:
            return build_summary(encounter)

    # =========================================================================
    # TURNS AND ACTIONS
    # =========================================================================

    def execute_action(self, encounter_id: str,
                       request: Union[ActionRequest, Dict[str, Any]]) -> Dict[str, Any]:
        """
        Execute one action.

        Misses, failed saves and lost contests come back as results; only
        malformed or illegal requests raise.
        """
        if not isinstance(request, ActionRequest):
            if not isinstance(request, dict):
                raise ValidationError("action", "Action must be a mapping", request)
            request = ActionRequest.from_dict(request)

        with self.registry.session(encounter_id, write=True) as encounter:
            result = self.engine.execute(encounter, request)
            return result.to_dict()

    def advance_turn(self, encounter_id: str) -> Dict[str, Any]:
        with self.registry.session(encounter_id, write=True) as encounter:
            advance = advance_turn(encounter)
            current = encounter.current
            data = advance.to_dict()
            data["current_name"] = current.name
            text = f"Round {advance.round}: {current.name}'s turn"
            if advance.expired_conditions:
                text += f"; expired: {', '.join(e['label'] for e in advance.expired_conditions)}"
            if advance.skipped_ids:
                text += f"; skipped: {', '.join(advance.skipped_ids)}"
            data["description"] = text
            return data

    def roll_death_save(self, encounter_id: str, participant_ref: str,
                        manual: Optional[int] = None) -> Dict[str, Any]:
        with self.registry.session(encounter_id, write=True) as encounter:
            participant = encounter.get_participant(participant_ref)
            result = self.engine.death_save(encounter, participant, manual)
            data = result.to_dict()
            data["participant_id"] = participant.id
            data["current_hp"] = participant.current_hp
            data["death_saves"] = get_death_save_status(participant.death_saves) if participant.death_saves else None
            return data

    def stabilize(
        self,
        encounter_id: str,
        target_ref: str,
        method: Union[str, StabilizeMethod] = StabilizeMethod.SPARE_THE_DYING,
        healer_ref: Optional[str] = None,
        manual: Optional[int] = None,
    ) -> Dict[str, Any]:
        how = StabilizeMethod.parse(method, "method")
        with self.registry.session(encounter_id, write=True) as encounter:
            target = encounter.get_participant(target_ref)
            healer = encounter.get_participant(healer_ref) if healer_ref else None
            result = self.engine.stabilize(encounter, target, how, healer, manual)
            data = result.to_dict()
            data["participant_id"] = target.id
            data["death_saves"] = get_death_save_status(target.death_saves) if target.death_saves else None
            return data

    # =========================================================================
    # TERRAIN
    # =========================================================================

    def _apply_terrain_changes(self, terrain: Terrain, changes: Dict[str, Any]) -> List[str]:
        """Apply cell edits to a terrain in place. Returns a line per change."""
        applied = []
        for entry in changes.get("cells") or []:
            x, y = cell_coords(entry, "cells")
            kind = CellKind.parse(entry.get("kind", "open"), "kind")
            cover = entry.get("cover")
            terrain.set_cell(
                x, y, kind,
                cover=Cover.parse(cover, "cover") if cover is not None else None,
                label=entry.get("label", ""),
                hazard_damage=entry.get("hazard_damage", ""),
            )
            applied.append(f"({x}, {y}) set to {kind.value}")
        for entry in changes.get("obstacles") or []:
            x, y = cell_coords(entry, "obstacles")
            obstacle = ObstacleType.parse(entry.get("type", "wall"), "type")
            terrain.place_obstacle(x, y, obstacle)
            applied.append(f"{obstacle.value} placed at ({x}, {y})")
        for entry in changes.get("clear") or []:
            x, y = cell_coords(entry, "clear")
            terrain.clear_cell(x, y)
            applied.append(f"({x}, {y}) cleared")
        return applied

    def modify_terrain(self, encounter_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Edit the battlefield.

        ``changes`` may hold ``cells`` (kind/cover/label/hazard_damage per
        square), ``obstacles`` (x, y and an obstacle type), ``clear`` (squares
        reset to open ground) and ``lighting``. The edits are applied to a copy
        first; the encounter only sees them if all of them are legal.

        Raises:
            ValidationError: Out-of-bounds squares, unknown kinds, or an
                obstacle placed on a living participant
        """
        if not isinstance(changes, dict):
            raise ValidationError("changes", "Terrain changes must be a mapping", changes)
        unknown = set(changes) - {"cells", "obstacles", "clear", "lighting"}
        if unknown:
            raise ValidationError("changes", f"Unknown terrain changes: {', '.join(sorted(unknown))}",
                                  sorted(unknown))
        light = Light.parse(changes["lighting"], "lighting") if changes.get("lighting") else None

        with self.registry.session(encounter_id, write=True) as encounter:
            trial = Terrain.from_dict(encounter.terrain.to_dict())
            applied = self._apply_terrain_changes(trial, changes)

            for p in encounter.participants:
                if not p.is_dead and not trial.is_passable(*p.position.cell):
                    raise ValidationError(
                        "changes",
                        f"Cannot block ({p.position.x}, {p.position.y}); {p.name} is standing there",
                        f"{p.position.x},{p.position.y}",
                        occupant_id=p.id,
                    )

            encounter.terrain = trial
            if light is not None:
                encounter.lighting = light
                applied.append(f"lighting set to {light.value}")
            description = "; ".join(applied) or "No terrain changes"
            encounter.add_event("terrain_modified", description)
            logger.debug(f"Encounter {encounter.id}: terrain modified ({len(applied)} changes)")
            return {
                "changes": applied,
                "terrain": trial.to_dict(),
                "lighting": encounter.lighting.value,
                "description": description,
            }

    # =========================================================================
    # CONDITIONS
    # =========================================================================

    def add_condition(
        self,
        encounter_id: str,
        target_ref: str,
        condition: Union[str, ConditionKind],
        severity: Optional[int] = None,
        duration: Union[None, int, str] = None,
        source: str = "",
        source_ref: Optional[str] = None,
        label: Optional[str] = None,
        modifiers: Optional[Dict[str, int]] = None,
    ) -> Dict[str, Any]:
        """
        Put a condition on a participant.

        Args:
            duration: Rounds, a duration kind token, or None (until dispelled)
            source_ref: Participant responsible, credited in the summary
            label: Required for custom conditions
            modifiers: Flat adjustments carried by a custom condition
        """
        kind = ConditionKind.parse(condition, "condition")
        with self.registry.session(encounter_id, write=True) as encounter:
            target = encounter.get_participant(target_ref)
            origin = encounter.get_participant(source_ref) if source_ref else None
            effect = self.engine.apply_condition(
                encounter,
                target,
                kind,
                severity=severity,
                duration=duration,
                source=source or (origin.name if origin else ""),
                source_id=origin.id if origin else None,
                label=label,
                modifiers=modifiers,
            )
            text = f"{target.name} is {effect.label}"
            if effect.severity is not None and kind is ConditionKind.EXHAUSTION:
                text += f" (level {effect.severity})"
            if effect.rounds_remaining is not None:
                text += f" for {effect.rounds_remaining} rounds"
            encounter.add_event("condition_added", text, target.id, effect.to_dict())
            return {
                "target_id": target.id,
                "condition": effect.to_dict(),
                "conditions": [e.to_dict() for e in encounter.conditions.query(target.id)],
                "effective_stats": encounter.effective_stats(target).to_dict(),
                "current_hp": target.current_hp,
                "description": text,
            }

    def remove_condition(
        self,
        encounter_id: str,
        target_ref: str,
        condition: Union[str, ConditionKind],
        label: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Remove a condition kind (or one custom condition by label).

        Raises:
            NotFoundError: The participant does not have that condition
        """
        kind = ConditionKind.parse(condition, "condition")
        with self.registry.session(encounter_id, write=True) as encounter:
            target = encounter.get_participant(target_ref)
            removed = encounter.conditions.remove(target.id, kind, label)
            if not removed:
                raise NotFoundError(
                    "Condition",
                    f"{label or kind.value} on {target.id}",
                    message=f"{target.name} is not {label or kind.value}",
                )
            text = f"{', '.join(e.label for e in removed)} removed from {target.name}"
            encounter.add_event("condition_removed", text, target.id,
                                {"removed": [e.to_dict() for e in removed]})
            return {
                "target_id": target.id,
                "removed": [e.to_dict() for e in removed],
                "conditions": [e.to_dict() for e in encounter.conditions.query(target.id)],
                "effective_stats": encounter.effective_stats(target).to_dict(),
                "description": text,
            }

    def query_conditions(self, encounter_id: str, target_ref: str) -> Dict[str, Any]:
        with self.registry.session(encounter_id) as encounter:
            target = encounter.get_participant(target_ref)
            return {
                "target_id": target.id,
                "conditions": [e.to_dict() for e in encounter.conditions.query(target.id)],
                "effective_stats": encounter.effective_stats(target).to_dict(),
            }

    # =========================================================================
    # MOVEMENT
    # =========================================================================

    def calculate_movement(
        self,
        encounter_id: str,
        participant_ref: str,
        mode: Union[str, MovementQuery] = MovementQuery.REACH,
        destination: Optional[Any] = None,
    ) -> Dict[str, Any]:
        """
        Ask where a participant can go without moving it.

        ``mode`` is ``path`` (route and cost to ``destination``), ``reach``
        (every square the movement left this turn can reach) or
        ``adjacent`` (surrounding squares and hostiles within reach).
        """
        query = MovementQuery.parse(mode, "mode")
        target = Position.coerce(destination, "destination") if destination is not None else None
        with self.registry.session(encounter_id) as encounter:
            participant = encounter.get_participant(participant_ref)
            return self.engine.movement_query(encounter, participant, query, target)

    # =========================================================================
    # BATTLEFIELD
    # =========================================================================

    def render_battlefield(
        self,
        encounter_id: str,
        viewport: Optional[Dict[str, Any]] = None,
        legend: Union[str, LegendDetail] = LegendDetail.COMPACT,
    ) -> Dict[str, Any]:
        window = Viewport.from_dict(viewport)
        detail = LegendDetail.parse(legend, "legend")
        with self.registry.session(encounter_id) as encounter:
            return render_battlefield(encounter, window, detail)
