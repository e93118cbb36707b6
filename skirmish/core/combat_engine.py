"""
Combat Engine - Action pipeline.

Validates and executes one requested action against one encounter:
- Attacks with advantage/disadvantage, cover, criticals and Extra Attack
- Movement along terrain-aware paths, with opportunity attacks
- Tactical actions (Dash, Disengage, Dodge, Help, Hide, Search, Ready)
- Grapple and Shove contests
- Spellcasting with range checks, saves, areas, slots and concentration
- Damage, healing and the drop to 0 HP

Every handler is split in two: a check that only reads the encounter and
raises on anything illegal, and an execution step that mutates it. All
checks run before the first mutation, so a rejected action leaves the
encounter exactly as it was.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from skirmish.core.actions import ActionRequest, ActionResult
from skirmish.core.condition_effects import ConditionEffect, ConditionStore, get_attack_modifiers
from skirmish.core.death_saves import (
    DeathSaveResult,
    DeathSaveState,
    StabilizationResult,
    StabilizeMethod,
    roll_death_save,
    stabilize_creature,
    take_damage_while_dying,
)
from skirmish.core.dice import D20Result, DiceRoller, RollResult, parse_dice_notation
from skirmish.core.encounter_registry import Encounter
from skirmish.core.errors import (
    ActionAlreadyUsedError,
    MovementExceededError,
    NotYourTurnError,
    OutOfRangeError,
    ResourceExhaustedError,
    RuleViolationError,
    ValidationError,
)
from skirmish.core.geometry import Cell, Position, distance, is_within, line_of_sight, points_in_shape
from skirmish.core.movement import (
    Occupancy,
    OpportunityTrigger,
    Threat,
    find_path,
    opportunity_attack_triggers,
    path_cost_until,
    reachable_squares,
)
from skirmish.core.participants import Participant
from skirmish.core.rules_config import NpcZeroHpPolicy, RulesConfig
from skirmish.core.vocabulary import (
    Ability,
    ActionCost,
    ActionKind,
    AoeShape,
    CellKind,
    ConditionKind,
    Cover,
    DamageType,
    DistanceMode,
    MovementQuery,
    RollMode,
    ShoveDirection,
    WeaponType,
)


logger = logging.getLogger("skirmish.actions")

CONCENTRATION_MIN_DC = 10

# Kinds that spend one attack of the Attack action rather than the whole action
ATTACK_KINDS = frozenset({ActionKind.ATTACK, ActionKind.GRAPPLE, ActionKind.SHOVE})

# Kinds that may carry a move_to destination
MOVEMENT_KINDS = frozenset({
    ActionKind.MOVE,
    ActionKind.DASH,
    ActionKind.DISENGAGE,
    ActionKind.ATTACK,
    ActionKind.TWO_WEAPON_ATTACK,
})

_DIRECTIONAL = (AoeShape.CONE, AoeShape.LINE)


# =============================================================================
# RESULT PIECES
# =============================================================================

@dataclass
class DamageOutcome:
    """What a single instance of damage did to its target."""
    target_id: str
    rolled: int  # Before resistance, vulnerability and immunity
    applied: int  # After them
    absorbed: int = 0  # Taken by temporary HP
    hp_before: int = 0
    hp_after: int = 0
    knocked_out: bool = False
    killed: bool = False
    notes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_id": self.target_id,
            "rolled": self.rolled,
            "applied": self.applied,
            "absorbed": self.absorbed,
            "hp_before": self.hp_before,
            "hp_after": self.hp_after,
            "knocked_out": self.knocked_out,
            "killed": self.killed,
            "notes": list(self.notes),
        }


@dataclass
class AttackOutcome:
    """One resolved attack roll and, on a hit, its damage."""
    attacker_id: str
    target_id: str
    d20: D20Result
    target_ac: int
    cover_bonus: int
    hit: bool
    critical: bool
    reasons: List[str] = field(default_factory=list)
    damage_roll: Optional[RollResult] = None
    damage: Optional[DamageOutcome] = None

    @property
    def damage_dealt(self) -> int:
        return self.damage.applied if self.damage else 0

    def roll_text(self) -> str:
        text = f"rolled {self.d20.natural}"
        if self.d20.modifier:
            text += f"{self.d20.modifier:+d} = {self.d20.total}"
        if self.d20.mode is not RollMode.NORMAL:
            text += f" with {self.d20.mode.value}"
            if self.reasons:
                text += f" ({'; '.join(self.reasons)})"
        ac = f"AC {self.target_ac - self.cover_bonus}"
        if self.cover_bonus:
            ac += f"+{self.cover_bonus}(cover)"
        if self.critical:
            verdict = "CRITICAL HIT"
        elif self.hit:
            verdict = "HIT"
        else:
            verdict = "MISS"
        return f"{text} vs {ac}: {verdict}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attacker_id": self.attacker_id,
            "target_id": self.target_id,
            "roll": self.d20.to_dict(),
            "target_ac": self.target_ac,
            "cover_bonus": self.cover_bonus,
            "hit": self.hit,
            "critical": self.critical,
            "reasons": list(self.reasons),
            "damage_roll": self.damage_roll.to_dict() if self.damage_roll else None,
            "damage": self.damage.to_dict() if self.damage else None,
        }


@dataclass
class MovePlan:
    """A validated move, computed before anything changes."""
    path: List[Cell]
    cost: int
    destination: Position
    triggers: List[OpportunityTrigger] = field(default_factory=list)


@dataclass
class ActionContext:
    """Everything a handler needs, resolved once by the pipeline."""
    encounter: Encounter
    request: ActionRequest
    actor: Participant
    cost: ActionCost
    target: Optional[Participant] = None
    move: Optional[MovePlan] = None
    plan: Dict[str, Any] = field(default_factory=dict)

    @property
    def rules(self) -> RulesConfig:
        return self.encounter.rules

    @property
    def origin(self) -> Position:
        """Where the actor will be standing when the action resolves."""
        return self.move.destination if self.move else self.actor.position


Check = Callable[[ActionContext], None]
Handler = Callable[[ActionContext], ActionResult]


def _cost_note(cost: ActionCost) -> str:
    if cost is ActionCost.BONUS_ACTION:
        return " (bonus action)"
    if cost is ActionCost.REACTION:
        return " (reaction)"
    return ""


def _at(position: Position) -> str:
    return f"({position.x}, {position.y})"


# =============================================================================
# ENGINE
# =============================================================================

class CombatEngine:
    """
    Executes actions against encounters.

    The engine holds no encounter state of its own. Callers pass in an
    Encounter they have locked through the registry.

    Args:
        dice: Dice service; inject a seeded roller for repeatable runs
    """

    def __init__(self, dice: Optional[DiceRoller] = None):
        self.dice = dice or DiceRoller()
        self.handlers: Dict[ActionKind, Tuple[Check, Handler]] = {
            ActionKind.ATTACK: (self._check_attack, self._handle_attack),
            ActionKind.TWO_WEAPON_ATTACK: (self._check_two_weapon_attack, self._handle_attack),
            ActionKind.CAST_SPELL: (self._check_cast_spell, self._handle_cast_spell),
            ActionKind.MOVE: (self._check_nothing, self._handle_move),
            ActionKind.DASH: (self._check_nothing, self._handle_dash),
            ActionKind.DISENGAGE: (self._check_nothing, self._handle_disengage),
            ActionKind.DODGE: (self._check_nothing, self._handle_dodge),
            ActionKind.HELP: (self._check_help, self._handle_help),
            ActionKind.HIDE: (self._check_nothing, self._handle_hide),
            ActionKind.SEARCH: (self._check_nothing, self._handle_search),
            ActionKind.READY: (self._check_ready, self._handle_ready),
            ActionKind.GRAPPLE: (self._check_contest, self._handle_grapple),
            ActionKind.SHOVE: (self._check_shove, self._handle_shove),
            ActionKind.USE_OBJECT: (self._check_described, self._handle_described),
            ActionKind.USE_MAGIC_ITEM: (self._check_described, self._handle_described),
            ActionKind.USE_SPECIAL_ABILITY: (self._check_described, self._handle_described),
            ActionKind.IMPROVISE: (self._check_described, self._handle_described),
            ActionKind.CUSTOM: (self._check_described, self._handle_described),
        }

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def execute(self, encounter: Encounter, request: ActionRequest) -> ActionResult:
        """
        Validate and execute one action.

        Args:
            encounter: The locked encounter to act in
            request: The parsed action request

        Returns:
            ActionResult describing the in-fiction outcome (hits and misses alike)

        Raises:
            GameError: If the request is malformed or illegal; nothing is changed
        """
        encounter.require_active()
        actor = encounter.get_participant(request.actor)
        ctx = ActionContext(
            encounter=encounter,
            request=request,
            actor=actor,
            cost=request.resolved_cost,
        )

        self._check_actor(ctx)

        if request.move_to is not None:
            if request.kind not in MOVEMENT_KINDS:
                raise ValidationError(
                    "move_to", f"A {request.kind.value} action cannot include movement", request.move_to.to_dict()
                )
            ctx.move = self._plan_move(
                ctx,
                extra_dash=1 if request.kind is ActionKind.DASH else 0,
                disengaging=request.kind is ActionKind.DISENGAGE,
            )
        elif request.kind is ActionKind.MOVE:
            raise ValidationError("move_to", "A move action requires a move_to destination")

        check, handler = self.handlers[request.kind]
        check(ctx)

        result = handler(ctx)
        result.actor_id = actor.id
        result.cost = ctx.cost.value
        encounter.add_event(
            request.kind.value,
            result.description,
            actor.id,
            {"target_id": result.target_id, "damage": result.damage_dealt} if result.target_id else None,
        )
        logger.debug(f"Encounter {encounter.id}: {actor.id} {request.kind.value} -> {result.description}")
        return result

    # -------------------------------------------------------------------------
    # Shared validation
    # -------------------------------------------------------------------------

    def _check_actor(self, ctx: ActionContext) -> None:
        """Turn order, ability to act, and the action-economy slot."""
        enc, actor, cost = ctx.encounter, ctx.actor, ctx.cost

        if enc.rules.enforce_turn_order and cost is not ActionCost.REACTION:
            current = enc.current
            if current is not None and current.id != actor.id:
                raise NotYourTurnError(actor.id, current.id)

        if actor.is_dead:
            raise RuleViolationError(f"{actor.name} is dead and cannot act", details={"actor_id": actor.id})

        stats = enc.effective_stats(actor)
        if stats.incapacitated and cost in (ActionCost.ACTION, ActionCost.BONUS_ACTION, ActionCost.REACTION):
            raise RuleViolationError(
                f"{actor.name} is incapacitated and cannot take actions",
                details={"actor_id": actor.id, "conditions": enc.conditions.kinds(actor.id)},
            )

        turn = actor.turn
        if cost is ActionCost.ACTION:
            if ctx.request.kind in ATTACK_KINDS:
                if not turn.can_attack():
                    raise ActionAlreadyUsedError(actor.id, "action")
            elif turn.action_taken:
                raise ActionAlreadyUsedError(actor.id, "action")
        elif cost is ActionCost.BONUS_ACTION and turn.bonus_action_taken:
            raise ActionAlreadyUsedError(actor.id, "bonus_action")
        elif cost is ActionCost.REACTION and turn.reaction_used:
            raise ActionAlreadyUsedError(actor.id, "reaction")

    def _spend(self, ctx: ActionContext) -> int:
        """Mark the action-economy slot used. Returns attacks left in the Attack action."""
        turn = ctx.actor.turn
        if ctx.cost is ActionCost.ACTION:
            if ctx.request.kind in ATTACK_KINDS:
                return turn.use_attack()
            turn.action_taken = True
        elif ctx.cost is ActionCost.BONUS_ACTION:
            turn.bonus_action_taken = True
        elif ctx.cost is ActionCost.REACTION:
            turn.reaction_used = True
        return 0

    def _require_target(self, ctx: ActionContext, allow_self: bool = False) -> Participant:
        ref = ctx.request.target
        if not ref:
            raise ValidationError("target", f"A {ctx.request.kind.value} action requires a target")
        target = ctx.encounter.get_participant(ref)
        if target.id == ctx.actor.id and not allow_self:
            raise ValidationError("target", f"{ctx.actor.name} cannot target themselves with {ctx.request.kind.value}",
                                  target.id)
        ctx.target = target
        return target

    def _require_living(self, target: Participant) -> None:
        if target.is_dead:
            raise RuleViolationError(f"{target.name} is already dead", details={"target_id": target.id})

    def _distance(self, enc: Encounter, a: Position, b: Position) -> float:
        return distance(a, b, enc.rules.distance_mode, enc.terrain.feet_per_square)

    def _path_mode(self, rules: RulesConfig) -> DistanceMode:
        # Squares are walked, so straight-line mode prices steps like the standard grid
        return DistanceMode.GRID_ALT if rules.distance_mode is DistanceMode.GRID_ALT else DistanceMode.GRID_5E

    @staticmethod
    def _cover_bonus(rules: RulesConfig, cover: Cover) -> int:
        if cover is Cover.HALF:
            return rules.half_cover_bonus
        if cover is Cover.THREE_QUARTERS:
            return rules.three_quarters_cover_bonus
        return 0

    def _check_nothing(self, ctx: ActionContext) -> None:
        """Actions whose only preconditions are the shared ones."""

    # =========================================================================
    # MOVEMENT
    # =========================================================================

    def _occupancy(self, enc: Encounter, mover: Participant) -> Occupancy:
        occupancy = Occupancy()
        for p in enc.participants:
            if p.id == mover.id or p.is_dead:
                continue
            if p.is_hostile_to(mover):
                occupancy.hostile[p.position.cell] = p.id
            else:
                occupancy.friendly[p.position.cell] = p.id
        return occupancy

    def _plan_move(self, ctx: ActionContext, extra_dash: int = 0, disengaging: bool = False) -> MovePlan:
        """
        Work out the path, its cost and the reactions it provokes.

        Raises:
            ValidationError: Destination outside the terrain
            RuleViolationError: No legal path to the destination
            MovementExceededError: The path costs more than the movement left
        """
        enc, actor = ctx.encounter, ctx.actor
        dest = ctx.request.move_to
        enc.terrain.require_in_bounds(dest.x, dest.y, "move_to")

        occupancy = self._occupancy(enc, actor)
        if enc.rules.allow_position_stacking:
            occupancy.friendly.pop(dest.cell, None)
            occupancy.hostile.pop(dest.cell, None)

        mode = self._path_mode(enc.rules)
        path = find_path(enc.terrain, actor.position.cell, dest.cell, occupancy, mode)
        if not path.success:
            raise RuleViolationError(
                f"{actor.name} cannot move to {_at(dest)}: {path.description}",
                details={"destination": dest.to_dict(), "blocked_by": path.blocked_by},
            )

        speed = enc.effective_stats(actor).speed
        budget = speed * (1 + actor.turn.dash_count + extra_dash)
        remaining = max(0, budget - actor.turn.movement_used)
        if path.total_cost > remaining:
            raise MovementExceededError(path.total_cost, remaining, dest.to_dict())

        threats = []
        if not (disengaging or actor.turn.disengaged):
            for p in enc.participants:
                if p.id == actor.id or not p.is_hostile_to(actor) or p.is_down or p.turn.reaction_used:
                    continue
                if enc.effective_stats(p).incapacitated:
                    continue
                threats.append(Threat(p.id, p.position, p.reach))

        triggers = opportunity_attack_triggers(
            path.path, threats, actor.position.z, enc.rules.distance_mode, enc.terrain.feet_per_square
        )
        return MovePlan(path=path.path, cost=path.total_cost, destination=dest, triggers=triggers)

    def movement_query(
        self,
        enc: Encounter,
        participant: Participant,
        mode: MovementQuery,
        destination: Optional[Position] = None,
    ) -> Dict[str, Any]:
        """
        Answer a movement question without moving anyone.

        ``path`` prices the route to a destination against the movement
        left this turn, ``reach`` lists every square that movement can
        still reach, and ``adjacent`` lists the squares around the
        participant and the hostiles within its reach.

        Raises:
            ValidationError: Path query without a destination, or one off the map
        """
        speed = enc.effective_stats(participant).speed
        remaining = participant.turn.movement_remaining(speed)
        occupancy = self._occupancy(enc, participant)
        origin = participant.position
        result: Dict[str, Any] = {
            "participant_id": participant.id,
            "mode": mode.value,
            "position": origin.to_dict(),
            "movement_remaining": remaining,
        }

        if mode is MovementQuery.PATH:
            if destination is None:
                raise ValidationError("destination", "A path query needs a destination")
            enc.terrain.require_in_bounds(destination.x, destination.y, "destination")
            if enc.rules.allow_position_stacking:
                occupancy.friendly.pop(destination.cell, None)
                occupancy.hostile.pop(destination.cell, None)
            path = find_path(enc.terrain, origin.cell, destination.cell, occupancy, self._path_mode(enc.rules))
            result.update(path.to_dict())
            result["destination"] = destination.to_dict()
            result["within_movement"] = path.success and path.total_cost <= remaining
            if path.blocked_by:
                result["blocked_by"] = path.blocked_by
            return result

        if mode is MovementQuery.REACH:
            squares = reachable_squares(enc.terrain, origin.cell, remaining, occupancy, self._path_mode(enc.rules))
            result["squares"] = [
                {"x": x, "y": y, "cost": cost} for (x, y), cost in sorted(squares.items())
            ]
            return result

        around = []
        for x, y in enc.terrain.neighbors(origin.x, origin.y):
            cell = enc.terrain.cell(x, y)
            entry = {"x": x, "y": y, "kind": cell.kind.value, "passable": cell.is_passable}
            occupant = occupancy.occupant((x, y))
            if occupant:
                entry["occupant_id"] = occupant
            around.append(entry)
        hostiles = []
        metric, fps = enc.rules.distance_mode, enc.terrain.feet_per_square
        for p in enc.participants:
            if p.id == participant.id or p.is_dead or not p.is_hostile_to(participant):
                continue
            if is_within(origin, p.position, participant.reach, metric, fps):
                hostiles.append({"id": p.id, "name": p.name, "distance": self._distance(enc, origin, p.position)})
        result["squares"] = around
        result["hostiles_in_reach"] = hostiles
        return result

    def _perform_move(self, ctx: ActionContext) -> Tuple[str, List[ActionResult], bool]:
        """
        Walk the planned path, resolving opportunity attacks and hazards as
        the mover reaches them.

        A mover dropped by a reaction stops in the last square it reached
        inside that attacker's reach; one dropped by a hazard stops in the
        hazard. Either way it is charged for the squares walked.

        Returns:
            (description, reaction results, whether the move was cut short)
        """
        enc, actor, plan = ctx.encounter, ctx.actor, ctx.move
        start = actor.position
        reactions: List[ActionResult] = []
        hazard_lines: List[str] = []
        stop_index = len(plan.path) - 1

        for index in range(1, len(plan.path)):
            for trigger in plan.triggers:
                if trigger.step_index != index - 1:
                    continue
                hostile = enc.get_participant(trigger.attacker_id)
                if hostile.is_down or hostile.turn.reaction_used:
                    continue
                at = Position(trigger.cell[0], trigger.cell[1], start.z)
                reactions.append(self._opportunity_attack(ctx, hostile, at))
                if actor.is_down:
                    break
            if actor.is_down:
                stop_index = index - 1
                break
            lines, _ = self._enter_hazards(enc, actor, [plan.path[index]], verb="moves into")
            hazard_lines.extend(lines)
            if actor.is_down:
                stop_index = index
                break

        interrupted = stop_index < len(plan.path) - 1
        if interrupted:
            final = Position(plan.path[stop_index][0], plan.path[stop_index][1], start.z)
            cost = path_cost_until(enc.terrain, plan.path, stop_index, self._path_mode(enc.rules))
        else:
            final, cost = plan.destination, plan.cost

        actor.turn.movement_used += cost
        actor.position = final

        if interrupted:
            text = f"{actor.name}'s movement is cut short at {_at(final)} after {cost} ft"
        else:
            text = f"{actor.name} moves from {_at(start)} to {_at(final)} ({cost} ft)"
        remaining = actor.turn.movement_remaining(enc.effective_stats(actor).speed)
        if not interrupted:
            text += f", {remaining} ft of movement left"
        for line in [r.description for r in reactions] + hazard_lines:
            text += f"\n  {line}"
        return text, reactions, interrupted or actor.is_down

    def _enter_hazards(self, enc: Encounter, target: Participant, cells: List[Cell],
                       verb: str, source: Optional[Participant] = None) -> Tuple[List[str], int]:
        """
        Damage a participant for each hazard square it entered, in order.

        Stops once the participant drops.

        Returns:
            (a line per hazard, total damage applied)
        """
        lines, total = [], 0
        for x, y in cells:
            cell = enc.terrain.cell(x, y)
            if cell.kind is not CellKind.HAZARD or not cell.hazard_damage:
                continue
            roll = self.dice.roll(cell.hazard_damage)
            outcome = self.apply_damage(enc, target, roll.total, source=source)
            total += outcome.applied
            lines.append(f"{target.name} {verb} {cell.label or 'a hazard'}{self._damage_text(target, outcome)}")
            enc.add_event("hazard", lines[-1], target.id, {"cell": [x, y], "damage": outcome.applied})
            if target.is_down:
                break
        return lines, total

    def _opportunity_attack(self, ctx: ActionContext, hostile: Participant, mover_at: Position) -> ActionResult:
        """A hostile's reaction attack against a mover leaving its reach."""
        enc, mover, req = ctx.encounter, ctx.actor, ctx.request
        hostile.turn.reaction_used = True
        swing = self._resolve_attack(
            enc,
            hostile,
            mover,
            attack_bonus=hostile.attack_bonus,
            damage_expression=hostile.damage_expression,
            damage_type=hostile.damage_type,
            melee=True,
            distance_ft=self._distance(enc, hostile.position, mover_at),
            manual_roll=req.manual_opportunity_attack_roll,
            manual_damage=req.manual_opportunity_damage_roll,
        )
        text = f"{hostile.name} makes an opportunity attack against {mover.name}: {swing.roll_text()}"
        text += self._damage_text(mover, swing.damage)
        enc.add_event("opportunity_attack", text, hostile.id, {"target_id": mover.id, "hit": swing.hit})
        return ActionResult(
            success=True,
            action_type="opportunity_attack",
            description=text,
            actor_id=hostile.id,
            cost=ActionCost.REACTION.value,
            damage_dealt=swing.damage_dealt,
            target_id=mover.id,
            extra_data={"attack": swing.to_dict()},
        )

    def _handle_move(self, ctx: ActionContext) -> ActionResult:
        text, reactions, interrupted = self._perform_move(ctx)
        return ActionResult(
            success=True,
            action_type=ActionKind.MOVE.value,
            description=text,
            reactions=reactions,
            interrupted=interrupted,
            extra_data={"path": [list(c) for c in ctx.move.path], "position": ctx.actor.position.to_dict()},
        )

    # =========================================================================
    # ATTACKS
    # =========================================================================

    def _check_attack(self, ctx: ActionContext) -> None:
        enc, req, actor = ctx.encounter, ctx.request, ctx.actor
        target = self._require_target(ctx)
        self._require_living(target)

        for effect in enc.conditions.query(actor.id):
            if effect.kind is ConditionKind.CHARMED and effect.source_id == target.id:
                raise RuleViolationError(
                    f"{actor.name} is charmed by {target.name} and cannot attack them",
                    details={"actor_id": actor.id, "target_id": target.id},
                )

        weapon = req.weapon_type or WeaponType.MELEE
        dist = self._distance(enc, ctx.origin, target.position)
        long_range = False
        if weapon.is_melee:
            reach = req.reach or actor.reach
            if dist > reach:
                raise OutOfRangeError(dist, reach, target.id)
        elif req.weapon_range is not None:
            max_range = max(req.long_range or req.weapon_range, req.weapon_range)
            if dist > max_range:
                raise OutOfRangeError(dist, max_range, target.id)
            long_range = dist > req.weapon_range

        cover = Cover.highest(target.cover, line_of_sight(ctx.origin, target.position, enc.terrain).cover)
        if cover is Cover.FULL:
            raise RuleViolationError(
                f"{target.name} has full cover and cannot be targeted",
                details={"target_id": target.id, "cover": cover.value},
            )

        parse_dice_notation(req.damage_expression or actor.damage_expression)
        ctx.plan.update(melee=weapon.is_melee, distance=dist, long_range=long_range, cover=cover)

    def _check_two_weapon_attack(self, ctx: ActionContext) -> None:
        if ctx.actor.turn.attacks_made == 0:
            raise RuleViolationError(
                f"{ctx.actor.name} must take the Attack action before attacking with an off-hand weapon",
                details={"actor_id": ctx.actor.id},
            )
        self._check_attack(ctx)

    def _handle_attack(self, ctx: ActionContext) -> ActionResult:
        """
        Handle an Attack (or off-hand attack).

        Movement folded into the request is walked first; if a reaction
        drops the attacker on the way, the attack is never made.
        """
        enc, req, actor, target = ctx.encounter, ctx.request, ctx.actor, ctx.target
        lines = []
        reactions: List[ActionResult] = []

        if ctx.move:
            move_text, reactions, interrupted = self._perform_move(ctx)
            lines.append(move_text)
            if interrupted:
                lines.append(f"{actor.name} falls before reaching striking distance; the attack is lost")
                return ActionResult(
                    success=True,
                    action_type=req.kind.value,
                    description="\n".join(lines),
                    target_id=target.id,
                    reactions=reactions,
                    interrupted=True,
                )

        remaining = self._spend(ctx)
        swing = self._resolve_attack(
            enc,
            actor,
            target,
            attack_bonus=req.attack_bonus if req.attack_bonus is not None else actor.attack_bonus,
            damage_expression=req.damage_expression or actor.damage_expression,
            damage_type=req.damage_type or actor.damage_type,
            melee=ctx.plan["melee"],
            distance_ft=ctx.plan["distance"],
            cover=ctx.plan["cover"],
            advantage=req.advantage,
            disadvantage=req.disadvantage,
            long_range=ctx.plan["long_range"],
            manual_roll=req.manual_attack_roll,
            manual_damage=req.manual_damage_roll,
        )

        verb = "attacks with an off-hand weapon" if req.kind is ActionKind.TWO_WEAPON_ATTACK else "attacks"
        text = f"{actor.name} {verb} {target.name}{_cost_note(ctx.cost)}: {swing.roll_text()}"
        text += self._damage_text(target, swing.damage)
        lines.append(text)
        if ctx.cost is ActionCost.ACTION and req.kind is ActionKind.ATTACK and actor.turn.max_attacks > 1:
            lines.append(f"{remaining} attack(s) remaining this action")

        effects = []
        if swing.damage and swing.damage.knocked_out:
            effects.append(ConditionKind.UNCONSCIOUS.value)

        return ActionResult(
            success=True,
            action_type=req.kind.value,
            description="\n".join(lines),
            damage_dealt=swing.damage_dealt,
            target_id=target.id,
            effects_applied=effects,
            reactions=reactions,
            extra_data={"attack": swing.to_dict(), "remaining_attacks": remaining},
        )

    def _hostile_adjacent(self, enc: Encounter, participant: Participant, at: Optional[Position] = None) -> bool:
        at = at or participant.position
        for p in enc.participants:
            if p.id == participant.id or not p.is_hostile_to(participant) or p.is_down:
                continue
            if enc.effective_stats(p).incapacitated:
                continue
            if self._distance(enc, at, p.position) <= 5:
                return True
        return False

    def _resolve_attack(
        self,
        enc: Encounter,
        attacker: Participant,
        target: Participant,
        attack_bonus: int,
        damage_expression: Optional[str],
        damage_type: Optional[DamageType],
        melee: bool,
        distance_ft: float,
        cover: Cover = Cover.NONE,
        advantage: bool = False,
        disadvantage: bool = False,
        long_range: bool = False,
        manual_roll: Optional[int] = None,
        manual_damage: Optional[int] = None,
    ) -> AttackOutcome:
        """
        Roll one attack and apply its damage.

        Advantage sources: declared, conditions, attacking from hiding, Help.
        Disadvantage sources: declared, conditions, a dodging target, ranged
        attacks with a hostile within 5 ft, long range. Any one source of
        each is enough; having both cancels to a normal roll.
        """
        rules = enc.rules
        attacker_stats = enc.effective_stats(attacker)
        target_stats = enc.effective_stats(target)
        mods = get_attack_modifiers(attacker_stats, target_stats, melee, distance_ft)
        adv, dis = advantage or mods.advantage, disadvantage or mods.disadvantage
        reasons = list(mods.reasons)
        if advantage:
            reasons.append("declared advantage")
        if disadvantage:
            reasons.append("declared disadvantage")

        if target.turn.dodging and not target_stats.incapacitated:
            dis = True
            reasons.append(f"{target.name} is dodging")
        if attacker.hidden_stealth is not None:
            adv = True
            reasons.append(f"{attacker.name} attacks from hiding")
        if attacker.helped_by:
            adv = True
            reasons.append("helped by an ally")
        if not melee:
            if rules.ranged_in_melee_disadvantage and self._hostile_adjacent(enc, attacker):
                dis = True
                reasons.append("ranged attack with a hostile within 5 ft")
            if long_range:
                dis = True
                reasons.append("target beyond normal range")

        mode = RollMode.combine(adv, dis)
        d20 = self.dice.roll_d20(attack_bonus, mode, manual_roll)
        cover_bonus = self._cover_bonus(rules, cover)
        target_ac = target_stats.armor_class + cover_bonus

        if d20.natural_1:
            hit = False
        elif d20.natural_20:
            hit = True
        else:
            hit = d20.total >= target_ac
        critical = hit and (d20.natural_20 or mods.auto_critical)

        # Attacking reveals the attacker and uses up the Help
        attacker.hidden_stealth = None
        attacker.helped_by = None

        tally = enc.tally(attacker.id)
        tally.attacks_attempted += 1
        outcome = AttackOutcome(
            attacker_id=attacker.id,
            target_id=target.id,
            d20=d20,
            target_ac=target_ac,
            cover_bonus=cover_bonus,
            hit=hit,
            critical=critical,
            reasons=reasons,
        )
        if not hit:
            return outcome

        tally.attacks_hit += 1
        if critical:
            tally.critical_hits += 1
        if damage_expression:
            outcome.damage_roll = self._roll_damage(rules, damage_expression, critical, manual_damage)
            outcome.damage = self.apply_damage(
                enc, target, outcome.damage_roll.total, damage_type, source=attacker, critical=critical
            )
        return outcome

    def _roll_damage(self, rules: RulesConfig, expression: str, critical: bool,
                     manual: Optional[int] = None) -> RollResult:
        if critical and rules.critical_damage_max_first_die:
            roll = self.dice.roll(expression, manual=manual)
            bonus = sum(abs(count) * sides for count, sides in parse_dice_notation(expression) if sides)
            roll.total += bonus
            roll.modifier += bonus
            roll.critical = True
            return roll
        return self.dice.roll(expression, manual=manual, critical=critical)

    # =========================================================================
    # DAMAGE, HEALING AND CONDITIONS
    # =========================================================================

    def apply_damage(
        self,
        enc: Encounter,
        target: Participant,
        amount: int,
        damage_type: Optional[DamageType] = None,
        source: Optional[Participant] = None,
        critical: bool = False,
    ) -> DamageOutcome:
        """
        Apply damage to a participant.

        Order: immunity, then resistance/vulnerability (which cancel each
        other), then temporary HP, then HP clamped at 0. A participant
        already at 0 HP instead takes death-save failures, or dies outright
        from massive damage.
        """
        rules = enc.rules
        stats = enc.effective_stats(target)
        rolled = max(0, amount)
        outcome = DamageOutcome(target_id=target.id, rolled=rolled, applied=rolled,
                                hp_before=target.current_hp, hp_after=target.current_hp)

        if damage_type is not None and damage_type in target.immunities:
            outcome.applied = 0
            outcome.notes.append(f"immune to {damage_type.value}")
        else:
            resistant = stats.resistance_all or (damage_type is not None and damage_type in target.resistances)
            vulnerable = damage_type is not None and damage_type in target.vulnerabilities
            if resistant and not vulnerable:
                outcome.applied = rolled // 2
                outcome.notes.append("resistant")
            elif vulnerable and not resistant:
                outcome.applied = rolled * 2
                outcome.notes.append("vulnerable")

        amount = outcome.applied
        if amount == 0 or target.is_dead:
            outcome.applied = 0 if target.is_dead else amount
            return outcome

        if source is not None:
            enc.tally(source.id).damage_dealt += amount
        enc.tally(target.id).damage_taken += amount

        if target.is_down:
            if rules.massive_damage_rule and amount >= stats.max_hp:
                self._kill(target)
                outcome.killed = True
                outcome.notes.append("massive damage kills outright")
            elif target.death_saves is not None:
                result = take_damage_while_dying(target.death_saves, amount, critical)
                outcome.killed = result["died"]
                outcome.notes.append(result["description"])
            if outcome.killed:
                enc.add_event("death", f"{target.name} dies", target.id)
            return outcome

        absorbed = min(target.temp_hp, amount)
        target.temp_hp -= absorbed
        remaining = amount - absorbed
        outcome.absorbed = absorbed
        if absorbed:
            outcome.notes.append(f"{absorbed} absorbed by temporary HP")

        overflow = remaining - target.current_hp
        target.current_hp = min(stats.max_hp, max(0, target.current_hp - remaining))
        outcome.hp_after = target.current_hp

        if target.current_hp == 0:
            outcome.knocked_out = True
            if source is not None:
                enc.tally(source.id).knockouts += 1
            if rules.massive_damage_rule and overflow >= stats.max_hp:
                self._kill(target)
                outcome.killed = True
                outcome.notes.append("massive damage kills outright")
            elif target.player_controlled or rules.npc_zero_hp_policy is NpcZeroHpPolicy.DEATH_SAVES:
                target.death_saves = DeathSaveState()
                outcome.notes.append("falls unconscious and is dying")
            else:
                target.death_saves = None
                outcome.killed = True
                outcome.notes.append("is slain")
            self._drop(enc, target)
        elif target.concentration:
            note = self._concentration_check(enc, target, remaining)
            if note:
                outcome.notes.append(note)
        return outcome

    @staticmethod
    def _kill(target: Participant) -> None:
        target.current_hp = 0
        if target.death_saves is not None:
            target.death_saves.is_dead = True

    def _drop(self, enc: Encounter, target: Participant) -> None:
        """Side effects of reaching 0 HP."""
        if not enc.conditions.has(target.id, ConditionKind.UNCONSCIOUS):
            enc.conditions.add(target.id, ConditionKind.UNCONSCIOUS, source="0 HP")
        self._settle(enc, target)
        enc.add_event(
            "death" if target.is_dead else "knocked_out",
            f"{target.name} {'dies' if target.is_dead else 'falls unconscious'}",
            target.id,
        )

    def _damage_text(self, target: Participant, damage: Optional[DamageOutcome]) -> str:
        if damage is None:
            return ""
        text = f", {damage.applied} damage"
        if damage.notes:
            text += f" ({'; '.join(damage.notes)})"
        text += f"; {target.name} at {target.current_hp}/{target.max_hp} HP"
        return text

    def _concentration_check(self, enc: Encounter, target: Participant, damage: int) -> Optional[str]:
        """CON save to keep concentrating after taking damage. Returns a note on failure."""
        dc = max(CONCENTRATION_MIN_DC, damage // 2)
        save = self._saving_throw(enc, target, Ability.CON, dc)
        if save["success"]:
            return f"keeps concentration ({save['total']} vs DC {dc})"
        spell = target.concentration
        self._end_concentration(enc, target)
        return f"loses concentration on {spell} ({save['total']} vs DC {dc})"

    def _end_concentration(self, enc: Encounter, participant: Participant) -> List[ConditionEffect]:
        spell = participant.concentration
        if not spell:
            return []
        removed = enc.conditions.remove_by_source(participant.id, source=spell)
        participant.concentration = None
        enc.add_event(
            "concentration_ended",
            f"{participant.name} stops concentrating on {spell}",
            participant.id,
            {"spell": spell, "removed": [e.to_dict() for e in removed]},
        )
        return removed

    def _settle(self, enc: Encounter, target: Participant) -> None:
        """
        Reconcile a participant with its current conditions.

        Clamps HP to a lowered cap; an incapacitated participant drops its
        concentration, its dodge and its grapples; exhaustion level 6 kills.
        """
        stats = enc.effective_stats(target)
        if target.current_hp > stats.max_hp:
            target.current_hp = stats.max_hp
        if stats.incapacitated:
            self._end_concentration(enc, target)
            target.turn.dodging = False
            target.hidden_stealth = None
            target.readied = None
            for effect in enc.conditions.remove_by_source(target.id, ConditionKind.GRAPPLED):
                enc.add_event("grapple_ended", f"{target.name} loses their grip", effect.target_id)
        if stats.dead and not target.is_dead:
            target.current_hp = 0
            target.death_saves = None
            enc.add_event("death", f"{target.name} succumbs to exhaustion", target.id)

    def apply_condition(
        self,
        enc: Encounter,
        target: Participant,
        kind: ConditionKind,
        severity: Optional[int] = None,
        duration=None,
        source: str = "",
        source_id: Optional[str] = None,
        label: Optional[str] = None,
        modifiers: Optional[Dict[str, int]] = None,
    ) -> ConditionEffect:
        """Add a condition and apply its immediate side effects."""
        effect = enc.conditions.add(
            target.id,
            kind,
            severity=severity,
            duration=duration,
            source=source,
            source_id=source_id,
            label=label,
            modifiers=modifiers,
        )
        if source_id:
            enc.tally(source_id).conditions_applied += 1
        self._settle(enc, target)
        return effect

    def apply_healing(
        self,
        enc: Encounter,
        target: Participant,
        amount: int,
        healer: Optional[Participant] = None,
    ) -> Tuple[int, str]:
        """
        Restore HP up to the effective maximum.

        Healing a participant at 0 HP brings it back: the death-save
        tracker is cleared and it is no longer unconscious.

        Returns:
            (HP actually restored, description)
        """
        if target.is_dead:
            return 0, f"{target.name} is dead; healing has no effect"
        stats = enc.effective_stats(target)
        before = target.current_hp
        target.current_hp = min(stats.max_hp, before + max(0, amount))
        healed = target.current_hp - before
        if healer is not None:
            enc.tally(healer.id).healing_done += healed

        text = f"{target.name} regains {healed} HP ({target.current_hp}/{target.max_hp})"
        if before == 0 and target.current_hp > 0:
            self._revive(enc, target)
            text += " and regains consciousness"
        return healed, text

    def _revive(self, enc: Encounter, target: Participant) -> None:
        target.death_saves = None
        enc.conditions.remove(target.id, ConditionKind.UNCONSCIOUS)
        enc.add_event("revived", f"{target.name} regains consciousness", target.id)

    # =========================================================================
    # ROLLS
    # =========================================================================

    def _check_roll(self, enc: Encounter, participant: Participant, skill: str,
                    manual: Optional[int] = None) -> D20Result:
        stats = enc.effective_stats(participant)
        mode = RollMode.DISADVANTAGE if stats.ability_check_disadvantage else RollMode.NORMAL
        return self.dice.roll_d20(participant.skill_modifier(skill), mode, manual)

    def _saving_throw(
        self,
        enc: Encounter,
        participant: Participant,
        ability: Ability,
        dc: int,
        cover_bonus: int = 0,
        manual: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Roll a saving throw.

        Cover only ever reaches here for DEX saves; callers decide that.
        """
        stats = enc.effective_stats(participant)
        if ability in stats.auto_fail_saves:
            return {
                "participant_id": participant.id,
                "ability": ability.value,
                "dc": dc,
                "auto_fail": True,
                "success": False,
                "total": 0,
                "text": f"{participant.name} automatically fails the {ability.value.upper()} save",
            }

        adv = ability is Ability.DEX and participant.turn.dodging
        dis = ability in stats.save_disadvantage
        d20 = self.dice.roll_d20(participant.save_modifier(ability), RollMode.combine(adv, dis), manual)
        total = d20.total + cover_bonus
        success = total >= dc

        breakdown = f"{d20.natural}"
        if d20.modifier:
            breakdown += f"{d20.modifier:+d}"
        if cover_bonus:
            breakdown += f"+{cover_bonus}(cover)"
        if d20.mode is not RollMode.NORMAL:
            breakdown += f" [{d20.mode.value}]"
        return {
            "participant_id": participant.id,
            "ability": ability.value,
            "dc": dc,
            "auto_fail": False,
            "roll": d20.to_dict(),
            "cover_bonus": cover_bonus,
            "total": total,
            "success": success,
            "text": (
                f"{participant.name} {ability.value.upper()} save {breakdown} = {total} vs DC {dc}: "
                f"{'success' if success else 'failure'}"
            ),
        }

    # =========================================================================
    # SPELLCASTING
    # =========================================================================

    def _check_cast_spell(self, ctx: ActionContext) -> None:
        """
        Validate a spell before anything is spent.

        A cast never moves the caster and never touches the Dash state.
        """
        enc, req, actor = ctx.encounter, ctx.request, ctx.actor
        if not req.spell_name:
            raise ValidationError("spell_name", "cast_spell requires a spell_name")

        level = req.spell_slot or 0
        if level > 0 and actor.spell_slots is not None:
            available = actor.spell_slots.get(level, 0)
            if available < 1:
                raise ResourceExhaustedError(f"level {level} spell slots", available, 1)

        for expression in (req.spell_damage, req.spell_healing):
            if expression:
                parse_dice_notation(expression)
        if req.save_ability is not None and req.save_dc is None:
            raise ValidationError("save_dc", "A saving throw needs a save_dc", req.save_ability.value)
        if req.condition_on_fail is not None:
            ConditionStore.validate(req.condition_on_fail, duration=req.condition_duration, label=req.condition_label)
        attack_roll = req.requires_attack_roll or req.manual_attack_roll is not None

        if req.aoe_shape is not None:
            if attack_roll:
                raise ValidationError("requires_attack_roll", "Area spells use saving throws, not attack rolls")
            ctx.plan.update(self._spell_area(ctx))
            return

        refs = list(req.targets) or ([req.target] if req.target else [])
        targets: List[Participant] = []
        for ref in refs:
            target = enc.get_participant(ref)
            if all(t.id != target.id for t in targets):
                targets.append(target)
        if not targets and req.spell_healing:
            targets = [actor]

        covers = {}
        for target in targets:
            if req.spell_range is not None:
                dist = self._distance(enc, actor.position, target.position)
                if dist > req.spell_range:
                    raise OutOfRangeError(dist, req.spell_range, target.id)
            if target.id == actor.id:
                covers[target.id] = Cover.NONE
                continue
            if req.spell_damage or attack_roll or req.condition_on_fail:
                self._require_living(target)
            cover = Cover.highest(target.cover, line_of_sight(actor.position, target.position, enc.terrain).cover)
            if cover is Cover.FULL:
                raise RuleViolationError(
                    f"{target.name} has full cover and cannot be targeted",
                    details={"target_id": target.id, "cover": cover.value},
                )
            covers[target.id] = cover

        if attack_roll and not targets:
            raise ValidationError("target", "A spell attack requires a target")
        ctx.target = targets[0] if len(targets) == 1 else None
        ctx.plan.update(targets=targets, covers=covers, origin=actor.position, area=None)

    def _spell_area(self, ctx: ActionContext) -> Dict[str, Any]:
        """Resolve who stands in a spell's area."""
        enc, req, actor = ctx.encounter, ctx.request, ctx.actor
        shape = req.aoe_shape
        if not req.aoe_size:
            raise ValidationError("aoe_size", f"A {shape.value} spell needs aoe_size")

        aimed = enc.get_participant(req.target) if req.target else None
        direction = None
        if shape in _DIRECTIONAL:
            origin = req.aoe_center or actor.position
            direction = req.aoe_direction or (aimed.position if aimed else None)
            if direction is None:
                raise ValidationError("aoe_direction", f"A {shape.value} needs a direction or a target to aim at")
        else:
            origin = req.aoe_center or (aimed.position if aimed else None)
            if origin is None:
                raise ValidationError("aoe_center", f"A {shape.value} needs an aoe_center or a target")
        enc.terrain.require_in_bounds(origin.x, origin.y, "aoe_center")

        if req.spell_range is not None and shape not in _DIRECTIONAL:
            dist = self._distance(enc, actor.position, origin)
            if dist > req.spell_range:
                raise OutOfRangeError(dist, req.spell_range)

        cells = points_in_shape(origin, shape, req.aoe_size, direction, enc.terrain, enc.terrain.feet_per_square)
        targets, covers = [], {}
        for p in enc.participants:
            if p.is_dead or p.position.cell not in cells:
                continue
            los = line_of_sight(origin, p.position, enc.terrain)
            if los.blocked:
                continue
            targets.append(p)
            covers[p.id] = Cover.highest(p.cover, los.cover)
        return {
            "targets": targets,
            "covers": covers,
            "origin": origin,
            "area": {"shape": shape.value, "size": req.aoe_size, "origin": origin.to_dict(), "cells": len(cells)},
        }

    def _manual_save(self, req: ActionRequest, target: Participant) -> Optional[int]:
        for key in (target.id, target.name, target.name.lower()):
            if key in req.manual_save_rolls:
                return req.manual_save_rolls[key]
        return req.manual_save_roll

    def _handle_cast_spell(self, ctx: ActionContext) -> ActionResult:
        """
        Handle casting a spell.

        Per target the spell resolves as an attack roll, a saving throw
        (cover adds to DEX saves only) or an automatic effect. Area damage
        is rolled once and shared by everyone in the area.
        """
        enc, req, actor = ctx.encounter, ctx.request, ctx.actor
        targets: List[Participant] = ctx.plan["targets"]
        covers: Dict[str, Cover] = ctx.plan["covers"]
        spell = req.spell_name
        level = req.spell_slot or 0
        attack_roll = req.requires_attack_roll or req.manual_attack_roll is not None
        damage_type = req.spell_damage_type or req.damage_type

        self._spend(ctx)
        if level > 0 and actor.spell_slots is not None:
            actor.spell_slots[level] -= 1
        if req.concentration:
            self._end_concentration(enc, actor)
            actor.concentration = spell

        header = f"{actor.name} casts {spell}{_cost_note(ctx.cost)}"
        if level > 0:
            header += f" using a level {level} slot"
        if ctx.plan["area"]:
            header += f" ({req.aoe_shape.value} centred on {_at(ctx.plan['origin'])}, {len(targets)} caught)"
        elif targets and not (len(targets) == 1 and targets[0].id == actor.id):
            header += " at " + ", ".join(t.name for t in targets)
        lines = [header]

        shared_roll = None
        if req.spell_damage and not attack_roll:
            shared_roll = self._roll_damage(enc.rules, req.spell_damage, False, req.manual_damage_roll)
            lines.append(f"Damage roll {req.spell_damage}: {shared_roll.total}")

        total_damage = 0
        effects: List[str] = []
        outcomes: List[Dict[str, Any]] = []
        for target in targets:
            entry: Dict[str, Any] = {"target_id": target.id}
            damage = 0
            condition = req.condition_on_fail is not None

            if attack_roll:
                weapon = req.weapon_type or WeaponType.RANGED
                swing = self._resolve_attack(
                    enc,
                    actor,
                    target,
                    attack_bonus=req.attack_bonus if req.attack_bonus is not None else actor.attack_bonus,
                    damage_expression=req.spell_damage,
                    damage_type=damage_type,
                    melee=weapon.is_melee,
                    distance_ft=self._distance(enc, actor.position, target.position),
                    cover=covers.get(target.id, Cover.NONE),
                    advantage=req.advantage,
                    disadvantage=req.disadvantage,
                    manual_roll=req.manual_attack_roll,
                    manual_damage=req.manual_damage_roll,
                )
                entry["attack"] = swing.to_dict()
                condition = condition and swing.hit
                total_damage += swing.damage_dealt
                lines.append(f"Spell attack on {target.name}: {swing.roll_text()}{self._damage_text(target, swing.damage)}")
            elif req.save_dc is not None:
                ability = req.save_ability or Ability.DEX
                cover_bonus = 0
                if ability is Ability.DEX:
                    cover_bonus = self._cover_bonus(enc.rules, covers.get(target.id, Cover.NONE))
                save = self._saving_throw(enc, target, ability, req.save_dc, cover_bonus,
                                          self._manual_save(req, target))
                entry["save"] = save
                line = save["text"]
                if shared_roll is not None:
                    if not save["success"]:
                        damage = shared_roll.total
                    elif req.half_on_save:
                        damage = shared_roll.total // 2
                condition = condition and not save["success"]
                if damage:
                    outcome = self.apply_damage(enc, target, damage, damage_type, source=actor)
                    entry["damage"] = outcome.to_dict()
                    total_damage += outcome.applied
                    line += self._damage_text(target, outcome)
                lines.append(line)
            elif shared_roll is not None:
                outcome = self.apply_damage(enc, target, shared_roll.total, damage_type, source=actor)
                entry["damage"] = outcome.to_dict()
                total_damage += outcome.applied
                lines.append(f"{target.name} takes{self._damage_text(target, outcome)[1:]}")

            if condition and not target.is_dead:
                effect = self.apply_condition(
                    enc,
                    target,
                    req.condition_on_fail,
                    duration=req.condition_duration,
                    source=spell,
                    source_id=actor.id,
                    label=req.condition_label,
                )
                effects.append(f"{target.id}:{effect.kind.value}")
                lines.append(f"{target.name} is {effect.label}")

            if req.spell_healing:
                heal_roll = self.dice.roll(req.spell_healing, manual=req.manual_damage_roll)
                healed, text = self.apply_healing(enc, target, heal_roll.total, healer=actor)
                entry["healed"] = healed
                lines.append(text)

            outcomes.append(entry)

        if req.concentration:
            lines.append(f"{actor.name} is concentrating on {spell}")

        return ActionResult(
            success=True,
            action_type=ActionKind.CAST_SPELL.value,
            description="\n".join(lines),
            damage_dealt=total_damage,
            target_id=ctx.target.id if ctx.target else None,
            effects_applied=effects,
            extra_data={
                "spell": spell,
                "slot_level": level,
                "area": ctx.plan["area"],
                "targets": outcomes,
                "spell_slots": dict(actor.spell_slots) if actor.spell_slots is not None else None,
            },
        )

    # =========================================================================
    # TACTICAL ACTIONS
    # =========================================================================

    def _handle_dash(self, ctx: ActionContext) -> ActionResult:
        """Handle a Dash action: extra movement equal to speed for this turn."""
        enc, actor = ctx.encounter, ctx.actor
        self._spend(ctx)
        actor.turn.dash_count += 1
        speed = enc.effective_stats(actor).speed
        lines = [
            f"{actor.name} dashes{_cost_note(ctx.cost)}, movement this turn is now "
            f"{actor.turn.movement_budget(speed)} ft"
        ]
        reactions, interrupted = [], False
        if ctx.move:
            text, reactions, interrupted = self._perform_move(ctx)
            lines.append(text)
        return ActionResult(
            success=True,
            action_type=ActionKind.DASH.value,
            description="\n".join(lines),
            effects_applied=["dashing"],
            reactions=reactions,
            interrupted=interrupted,
            extra_data={"additional_movement": speed},
        )

    def _handle_disengage(self, ctx: ActionContext) -> ActionResult:
        """Handle a Disengage action: no opportunity attacks for the rest of the turn."""
        actor = ctx.actor
        self._spend(ctx)
        actor.turn.disengaged = True
        lines = [f"{actor.name} disengages{_cost_note(ctx.cost)}"]
        if ctx.move:
            text, _, _ = self._perform_move(ctx)
            lines.append(text)
        return ActionResult(
            success=True,
            action_type=ActionKind.DISENGAGE.value,
            description="\n".join(lines),
            effects_applied=["disengaged"],
        )

    def _handle_dodge(self, ctx: ActionContext) -> ActionResult:
        """Handle a Dodge action: attacks against the dodger have disadvantage."""
        actor = ctx.actor
        self._spend(ctx)
        actor.turn.dodging = True
        return ActionResult(
            success=True,
            action_type=ActionKind.DODGE.value,
            description=(
                f"{actor.name} takes the Dodge action; attacks against them have disadvantage "
                f"until the start of their next turn"
            ),
            effects_applied=["dodging"],
        )

    def _check_help(self, ctx: ActionContext) -> None:
        target = self._require_target(ctx)
        self._require_living(target)
        if target.is_hostile_to(ctx.actor):
            raise RuleViolationError(
                f"{ctx.actor.name} can only help an ally, not {target.name}",
                details={"target_id": target.id},
            )

    def _handle_help(self, ctx: ActionContext) -> ActionResult:
        actor, target = ctx.actor, ctx.target
        self._spend(ctx)
        target.helped_by = actor.id
        return ActionResult(
            success=True,
            action_type=ActionKind.HELP.value,
            description=f"{actor.name} helps {target.name}; their next attack has advantage",
            target_id=target.id,
            effects_applied=["helped"],
        )

    def _handle_hide(self, ctx: ActionContext) -> ActionResult:
        enc, actor = ctx.encounter, ctx.actor
        self._spend(ctx)
        check = self._check_roll(enc, actor, "stealth", ctx.request.manual_check_roll)
        actor.hidden_stealth = check.total
        return ActionResult(
            success=True,
            action_type=ActionKind.HIDE.value,
            description=f"{actor.name} hides (Stealth: {check.total})",
            effects_applied=["hidden"],
            extra_data={"stealth_roll": check.to_dict()},
        )

    def _handle_search(self, ctx: ActionContext) -> ActionResult:
        """Handle a Search action: a Perception check against every hidden hostile."""
        enc, actor = ctx.encounter, ctx.actor
        self._spend(ctx)
        check = self._check_roll(enc, actor, "perception", ctx.request.manual_check_roll)
        found = []
        for p in enc.participants:
            if p.hidden_stealth is not None and p.is_hostile_to(actor) and p.hidden_stealth <= check.total:
                p.hidden_stealth = None
                found.append(p)

        text = f"{actor.name} searches (Perception: {check.total})"
        text += ": finds " + ", ".join(p.name for p in found) if found else ": finds nothing"
        return ActionResult(
            success=True,
            action_type=ActionKind.SEARCH.value,
            description=text,
            effects_applied=[f"revealed:{p.id}" for p in found],
            extra_data={"perception_roll": check.to_dict(), "revealed": [p.id for p in found]},
        )

    def _check_ready(self, ctx: ActionContext) -> None:
        if not ctx.request.trigger:
            raise ValidationError("trigger", "A ready action needs a trigger")

    def _handle_ready(self, ctx: ActionContext) -> ActionResult:
        actor, req = ctx.actor, ctx.request
        self._spend(ctx)
        readied = req.readied_action or "an action"
        actor.readied = {"trigger": req.trigger, "action": readied}
        return ActionResult(
            success=True,
            action_type=ActionKind.READY.value,
            description=f"{actor.name} readies {readied} for when {req.trigger}",
            effects_applied=["readied_action"],
            extra_data={"trigger": req.trigger, "readied_action": readied},
        )

    # =========================================================================
    # GRAPPLE AND SHOVE
    # =========================================================================

    def _check_contest(self, ctx: ActionContext) -> None:
        """Shared preconditions of Grapple and Shove."""
        enc, actor = ctx.encounter, ctx.actor
        verb = ctx.request.kind.value
        target = self._require_target(ctx)
        self._require_living(target)
        if target.size.rank > actor.size.rank + 1:
            raise RuleViolationError(
                f"{target.name} is too large to {verb}",
                details={"target_id": target.id, "target_size": target.size.value, "actor_size": actor.size.value},
            )
        dist = self._distance(enc, actor.position, target.position)
        if dist > actor.reach:
            raise OutOfRangeError(dist, actor.reach, target.id)

    def _check_shove(self, ctx: ActionContext) -> None:
        """Contest preconditions, plus the square a winning push would land in."""
        self._check_contest(ctx)
        enc, actor, target = ctx.encounter, ctx.actor, ctx.target
        ctx.plan["push_to"] = None
        if ctx.request.shove_direction is ShoveDirection.PRONE:
            return
        start = target.position
        dx = (start.x > actor.position.x) - (start.x < actor.position.x)
        dy = (start.y > actor.position.y) - (start.y < actor.position.y)
        dest = Position(start.x + dx, start.y + dy, start.z)
        terrain = enc.terrain
        blocked = (
            (dx, dy) == (0, 0)
            or not terrain.in_bounds(dest.x, dest.y)
            or not terrain.is_passable(dest.x, dest.y)
            or (enc.occupant_at(dest.cell, exclude=target.id) is not None
                and not enc.rules.allow_position_stacking)
        )
        if blocked:
            return
        hazard = terrain.cell(dest.x, dest.y).hazard_damage
        if hazard:
            parse_dice_notation(hazard)
        ctx.plan["push_to"] = dest

    def _contest(self, ctx: ActionContext) -> Tuple[bool, D20Result, D20Result, str]:
        """
        Athletics against the target's better of Athletics and Acrobatics.

        Ties go to the defender. An incapacitated defender cannot resist.
        """
        enc, actor, target, req = ctx.encounter, ctx.actor, ctx.target, ctx.request
        attack = self._check_roll(enc, actor, "athletics", req.manual_check_roll)
        skill = "athletics"
        if target.skill_modifier("acrobatics") > target.skill_modifier("athletics"):
            skill = "acrobatics"
        defend = self._check_roll(enc, target, skill, req.manual_contest_roll)
        if enc.effective_stats(target).incapacitated:
            return True, attack, defend, f"Athletics {attack.total}; {target.name} cannot resist"
        won = attack.total > defend.total
        return won, attack, defend, f"Athletics {attack.total} vs {skill.title()} {defend.total}"

    def _handle_grapple(self, ctx: ActionContext) -> ActionResult:
        """
        Handle a Grapple action.

        On success the target is grappled (speed 0) until the grappler lets
        go, is incapacitated or drops.
        """
        enc, actor, target = ctx.encounter, ctx.actor, ctx.target
        self._spend(ctx)
        won, attack, defend, score = self._contest(ctx)
        effects = []
        if won:
            self.apply_condition(enc, target, ConditionKind.GRAPPLED, source="grapple", source_id=actor.id)
            effects.append(ConditionKind.GRAPPLED.value)
            text = f"{actor.name} grapples {target.name}! ({score})"
        else:
            text = f"{target.name} escapes {actor.name}'s grapple attempt ({score})"
        return ActionResult(
            success=True,
            action_type=ActionKind.GRAPPLE.value,
            description=text,
            target_id=target.id,
            effects_applied=effects,
            extra_data={"won": won, "check": attack.to_dict(), "contest": defend.to_dict()},
        )

    def _handle_shove(self, ctx: ActionContext) -> ActionResult:
        """
        Handle a Shove action.

        On success the target is knocked prone or pushed one square
        directly away, if that square is on the map, passable and empty.
        Being pushed into a hazard inflicts its damage.
        """
        enc, actor, target, req = ctx.encounter, ctx.actor, ctx.target, ctx.request
        self._spend(ctx)
        won, attack, defend, score = self._contest(ctx)
        effects: List[str] = []
        damage = 0
        extra: Dict[str, Any] = {"won": won, "check": attack.to_dict(), "contest": defend.to_dict()}

        if not won:
            text = f"{target.name} resists {actor.name}'s shove ({score})"
        elif req.shove_direction is ShoveDirection.PRONE:
            self.apply_condition(enc, target, ConditionKind.PRONE, source="shove", source_id=actor.id)
            effects.append(ConditionKind.PRONE.value)
            text = f"{actor.name} shoves {target.name} prone! ({score})"
        elif ctx.plan["push_to"] is None:
            text = f"{actor.name} shoves {target.name}, but they cannot be pushed any further ({score})"
        else:
            dest = ctx.plan["push_to"]
            target.position = dest
            effects.append("pushed")
            extra["position"] = dest.to_dict()
            text = f"{actor.name} shoves {target.name} 5 ft to {_at(dest)} ({score})"
            hazard_lines, damage = self._enter_hazards(enc, target, [dest.cell], verb="is pushed into", source=actor)
            for line in hazard_lines:
                text += f"\n{line}"

        return ActionResult(
            success=True,
            action_type=ActionKind.SHOVE.value,
            description=text,
            damage_dealt=damage,
            target_id=target.id,
            effects_applied=effects,
            extra_data=extra,
        )

    # =========================================================================
    # DESCRIBED ACTIONS
    # =========================================================================

    _VERBS = {
        ActionKind.USE_OBJECT: "uses",
        ActionKind.USE_MAGIC_ITEM: "activates",
        ActionKind.USE_SPECIAL_ABILITY: "uses",
        ActionKind.IMPROVISE: "improvises:",
        ActionKind.CUSTOM: "performs",
    }

    def _check_described(self, ctx: ActionContext) -> None:
        req = ctx.request
        if req.kind is ActionKind.CUSTOM and not (req.label or req.description):
            raise ValidationError("label", "A custom action needs a label or description")
        if req.target:
            self._require_target(ctx, allow_self=True)

    def _handle_described(self, ctx: ActionContext) -> ActionResult:
        """Object use, magic items, special abilities, improvised and custom actions."""
        actor, req, target = ctx.actor, ctx.request, ctx.target
        self._spend(ctx)
        what = req.label or req.description or req.kind.value.replace("_", " ")
        text = f"{actor.name} {self._VERBS[req.kind]} {what}"
        if target is not None and target.id != actor.id:
            text += f" on {target.name}"
        text += _cost_note(ctx.cost)
        if req.label and req.description:
            text += f": {req.description}"
        return ActionResult(
            success=True,
            action_type=req.kind.value,
            description=text,
            target_id=target.id if target else None,
            extra_data={"label": req.label, "description": req.description},
        )

    # =========================================================================
    # DEATH SAVES
    # =========================================================================

    def death_save(self, enc: Encounter, participant: Participant,
                   manual: Optional[int] = None) -> DeathSaveResult:
        """
        Roll a death saving throw for a dying participant.

        A natural 20 brings the participant back with 1 HP.
        """
        if not participant.is_down or participant.death_saves is None:
            raise ValidationError("participant", f"{participant.name} is not making death saves", participant.id)
        d20 = self.dice.roll_d20(0, RollMode.NORMAL, manual)
        result = roll_death_save(participant.death_saves, d20, enc.rules.death_save_dc)
        if result.critical_success:
            participant.current_hp = 1
            self._revive(enc, participant)
        elif participant.death_saves.is_dead:
            enc.add_event("death", f"{participant.name} dies", participant.id)
        enc.add_event(
            "death_save",
            f"{participant.name} death save: {result.description}",
            participant.id,
            result.to_dict(),
        )
        return result

    def stabilize(
        self,
        enc: Encounter,
        target: Participant,
        method: StabilizeMethod,
        healer: Optional[Participant] = None,
        manual: Optional[int] = None,
    ) -> StabilizationResult:
        """Stabilize a dying participant with a cantrip, a healer's kit or a Medicine check."""
        if not target.is_down or target.death_saves is None:
            raise ValidationError("target", f"{target.name} is not dying", target.id)
        check = None
        if method is StabilizeMethod.MEDICINE:
            if healer is None:
                raise ValidationError("healer", "A Medicine check needs a healer")
            check = self._check_roll(enc, healer, "medicine", manual)
        result = stabilize_creature(target.death_saves, method, check)
        enc.add_event("stabilize", f"{target.name}: {result.description}", target.id, result.to_dict())
        return result
