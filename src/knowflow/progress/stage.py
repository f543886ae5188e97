"""Direction stage derivation from skill levels."""

from collections.abc import Iterable
from datetime import datetime

import structlog

from knowflow.config import Settings
from knowflow.models.direction import Direction, DirectionStage, SkillLevel, SkillPoint

logger = structlog.get_logger()


class DirectionStageMachine:
    """Derives a direction's stage from its skill levels.

    With f1, f2 and f3 the shares of skill points at level >= 1, >= 2 and 3:

    * stabilize: f2 >= attack_fraction and f3 > stabilize_fraction
    * attack: f2 >= attack_fraction
    * shape: f1 > shape_threshold
    * explore: otherwise, including a direction without skill points

    Every rule only looks at "at least this level" shares, so raising any
    level can never move the stage backward.

    Args:
        shape_threshold: Share at level >= 1 that must be exceeded for shape.
        attack_fraction: Share at level >= 2 needed for attack.
        stabilize_fraction: Share at level 3 that must be exceeded for stabilize.
    """

    def __init__(
        self,
        shape_threshold: float = 0.0,
        attack_fraction: float = 0.5,
        stabilize_fraction: float = 0.75,
    ):
        self.shape_threshold = shape_threshold
        self.attack_fraction = attack_fraction
        self.stabilize_fraction = stabilize_fraction

    @classmethod
    def from_settings(cls, settings: Settings) -> "DirectionStageMachine":
        return cls(
            shape_threshold=settings.shape_threshold,
            attack_fraction=settings.attack_fraction,
            stabilize_fraction=settings.stabilize_fraction,
        )

    def derive(self, levels: Iterable[SkillLevel | int]) -> DirectionStage:
        levels = [int(level) for level in levels]
        if not levels:
            return DirectionStage.EXPLORE

        total = len(levels)
        f1 = sum(1 for level in levels if level >= SkillLevel.EMERGING) / total
        f2 = sum(1 for level in levels if level >= SkillLevel.WORKING) / total
        f3 = sum(1 for level in levels if level >= SkillLevel.FLUENT) / total

        if f2 >= self.attack_fraction:
            if f3 > self.stabilize_fraction:
                return DirectionStage.STABILIZE
            return DirectionStage.ATTACK
        if f1 > self.shape_threshold:
            return DirectionStage.SHAPE
        return DirectionStage.EXPLORE

    def refresh(
        self,
        direction: Direction,
        skill_points: list[SkillPoint],
        now: datetime | None = None,
    ) -> Direction:
        """Return the direction with its cached stage recomputed."""
        own = [sp for sp in skill_points if sp.direction_id == direction.id]
        stage = self.derive(sp.level for sp in own)
        if stage == direction.stage:
            return direction
        logger.info(
            "direction_stage_changed",
            direction_id=direction.id,
            old_stage=direction.stage.value,
            new_stage=stage.value,
        )
        return direction.model_copy(update={"stage": stage, "updated_at": now or datetime.now()})
