"""
Dice rolling primitive.

Handles all dice operations the encounter engine consumes:
- d20 rolls with advantage/disadvantage (which cancel each other out)
- Damage notation (2d6+3, 1d8+1d6, 3d4-1) with doubled dice on critical hits
- Manual overrides so any roll-driven outcome can be reproduced exactly

The roller is an object rather than module-level functions so each service
can be given its own seeded random source.
"""
import random
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from skirmish.core.errors import ValidationError
from skirmish.core.vocabulary import RollMode


_TERM = re.compile(r'^([+-]?)(\d*)d(\d+)$')


@dataclass
class D20Result:
    """Result of a d20 roll, tracking advantage/disadvantage and criticals."""
    rolls: List[int]  # All dice rolled (2 if advantage/disadvantage)
    natural: int  # The die kept after advantage/disadvantage
    modifier: int
    total: int
    mode: RollMode = RollMode.NORMAL
    manual: bool = False

    @property
    def natural_20(self) -> bool:
        return self.natural == 20

    @property
    def natural_1(self) -> bool:
        return self.natural == 1

    def to_dict(self):
        return {
            "rolls": list(self.rolls),
            "natural": self.natural,
            "modifier": self.modifier,
            "total": self.total,
            "mode": self.mode.value,
            "manual": self.manual,
        }


@dataclass
class RollResult:
    """Result of a dice expression roll."""
    expression: str
    dice: List[int] = field(default_factory=list)  # Every die face rolled (signed)
    kept: List[int] = field(default_factory=list)  # Faces counted toward the total
    modifier: int = 0  # Flat modifiers from the expression plus any extra bonus
    total: int = 0
    critical: bool = False
    manual: bool = False

    def to_dict(self):
        return {
            "expression": self.expression,
            "dice": list(self.dice),
            "kept": list(self.kept),
            "modifier": self.modifier,
            "total": self.total,
            "critical": self.critical,
            "manual": self.manual,
        }


def parse_dice_notation(notation: str) -> List[Tuple[int, int]]:
    """
    Parse dice notation into components.

    Args:
        notation: Dice notation like "2d6+3", "1d8+1d6", "3d4-1"

    Returns:
        List of (count, sides) tuples; flat modifiers are returned with
        sides == 0 and the signed value in count.
        For "2d6+3+1d4", returns [(2, 6), (3, 0), (1, 4)]

    Raises:
        ValidationError: If notation is invalid
    """
    if notation is None or not str(notation).strip():
        raise ValidationError("expression", "Empty dice notation", notation)

    cleaned = str(notation).lower().replace(" ", "")
    components: List[Tuple[int, int]] = []

    # Split by + or - while keeping the sign
    for part in re.split(r'(?=[+-])', cleaned):
        if not part:
            continue

        dice_match = _TERM.match(part)
        if dice_match:
            sign = -1 if dice_match.group(1) == '-' else 1
            count = int(dice_match.group(2)) if dice_match.group(2) else 1
            sides = int(dice_match.group(3))
            if sides < 1 or count < 1:
                raise ValidationError("expression", f"Invalid dice term '{part}'", notation)
            components.append((sign * count, sides))
            continue

        try:
            components.append((int(part), 0))
        except ValueError:
            raise ValidationError("expression", f"Invalid dice notation: {notation}", notation)

    return components


class DiceRoller:
    """
    Dice service consumed by every roll-driven action.

    Args:
        rng: Random source; pass ``random.Random(seed)`` for repeatable runs.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def roll_die(self, sides: int) -> int:
        """Roll a single die with the given number of sides."""
        if sides < 1:
            raise ValidationError("sides", f"Invalid die: d{sides}", sides)
        return self.rng.randint(1, sides)

    def roll_d20(
        self,
        modifier: int = 0,
        mode: RollMode = RollMode.NORMAL,
        manual: Optional[int] = None,
    ) -> D20Result:
        """
        Roll a d20 with optional advantage/disadvantage.

        Args:
            modifier: Bonus to add to the roll
            mode: Normal, advantage (keep higher) or disadvantage (keep lower)
            manual: Forced natural die value (1-20); skips the random roll

        Returns:
            D20Result with all roll information
        """
        if manual is not None:
            if not isinstance(manual, int) or not 1 <= manual <= 20:
                raise ValidationError("manual_roll", "Manual d20 roll must be between 1 and 20", manual)
            return D20Result(
                rolls=[manual],
                natural=manual,
                modifier=modifier,
                total=manual + modifier,
                mode=mode,
                manual=True,
            )

        if mode is RollMode.NORMAL:
            rolls = [self.roll_die(20)]
            natural = rolls[0]
        else:
            rolls = [self.roll_die(20), self.roll_die(20)]
            natural = max(rolls) if mode is RollMode.ADVANTAGE else min(rolls)

        return D20Result(
            rolls=rolls,
            natural=natural,
            modifier=modifier,
            total=natural + modifier,
            mode=mode,
        )

    def roll(
        self,
        expression: str,
        mode: RollMode = RollMode.NORMAL,
        manual: Optional[int] = None,
        modifier: int = 0,
        critical: bool = False,
    ) -> RollResult:
        """
        Roll damage or any other dice expression.

        Args:
            expression: Dice notation like "2d6", "1d8+2", "2d6+1d4"
            mode: Advantage rolls the dice twice and keeps the higher set,
                disadvantage keeps the lower set
            manual: Forced sum of the dice; flat modifiers are still added
            modifier: Additional modifier to add
            critical: If True, double the number of dice rolled

        Returns:
            RollResult; the total never drops below 0

        Examples:
            roll("1d8", modifier=3) -> rolls 1d8+3
            roll("2d6", critical=True) -> rolls 4d6
            roll("1d8+3", manual=6) -> 9
        """
        components = parse_dice_notation(expression)
        flat = modifier + sum(count for count, sides in components if sides == 0)

        if manual is not None:
            if not isinstance(manual, int) or manual < 0:
                raise ValidationError("manual_damage_roll", "Manual dice total must be a non-negative integer", manual)
            return RollResult(
                expression=expression,
                dice=[manual],
                kept=[manual],
                modifier=flat,
                total=max(0, manual + flat),
                critical=critical,
                manual=True,
            )

        faces = self._roll_faces(components, critical)
        kept = faces
        rolled = list(faces)
        if mode is not RollMode.NORMAL:
            second = self._roll_faces(components, critical)
            rolled.extend(second)
            if mode is RollMode.ADVANTAGE:
                kept = second if sum(second) > sum(faces) else faces
            else:
                kept = second if sum(second) < sum(faces) else faces

        return RollResult(
            expression=expression,
            dice=rolled,
            kept=list(kept),
            modifier=flat,
            total=max(0, sum(kept) + flat),
            critical=critical,
        )

    def _roll_faces(self, components: List[Tuple[int, int]], critical: bool) -> List[int]:
        faces: List[int] = []
        for count, sides in components:
            if sides == 0:
                continue
            num_dice = abs(count) * (2 if critical else 1)
            sign = 1 if count >= 0 else -1
            faces.extend(sign * self.roll_die(sides) for _ in range(num_dice))
        return faces

    def roll_initiative(self, modifier: int = 0, manual: Optional[int] = None) -> D20Result:
        """Roll initiative (d20 + initiative modifier)."""
        return self.roll_d20(modifier=modifier, manual=manual)
