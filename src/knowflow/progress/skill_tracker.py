"""Skill level tracking driven by review outcomes and self-assessment."""

from datetime import datetime

import structlog

from knowflow.config import Settings
from knowflow.models.card import ReviewOutcome
from knowflow.models.direction import SkillLevel, SkillPoint

logger = structlog.get_logger()

DEFAULT_GOOD_THRESHOLDS: list[float] = [1.0, 3.0, 7.0]


class SkillTracker:
    """Applies review outcomes to skill points.

    ``again`` drops one level and ``hard`` holds it; neither ever raises a
    level. ``good`` climbs one level only once the reviewed card's interval
    exceeds the threshold for the current level, ``easy`` climbs at once.
    Skill points are returned as new copies; inputs are never mutated.

    Args:
        good_interval_thresholds: Interval (days) a ``good`` review must beat,
            indexed by current level. Levels past the end never climb on ``good``.
    """

    def __init__(self, good_interval_thresholds: list[float] | None = None):
        if good_interval_thresholds is None:
            good_interval_thresholds = DEFAULT_GOOD_THRESHOLDS
        self.good_interval_thresholds = list(good_interval_thresholds)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SkillTracker":
        return cls(good_interval_thresholds=settings.good_interval_thresholds)

    def next_level(self, level: SkillLevel, outcome: ReviewOutcome, interval_days: float) -> SkillLevel:
        """Level after one outcome, given the reviewed card's current interval."""
        if outcome == ReviewOutcome.AGAIN:
            return SkillLevel.clamp(level - 1)
        if outcome == ReviewOutcome.EASY:
            return SkillLevel.clamp(level + 1)
        if outcome == ReviewOutcome.GOOD:
            thresholds = self.good_interval_thresholds
            if int(level) < len(thresholds) and interval_days > thresholds[int(level)]:
                return SkillLevel.clamp(level + 1)
        return level

    def apply_outcome(
        self,
        skill_point: SkillPoint,
        outcome: ReviewOutcome,
        interval_days: float,
        at: datetime,
    ) -> SkillPoint:
        """Return the skill point updated for one review outcome.

        Args:
            skill_point: Current skill point.
            outcome: Review outcome.
            interval_days: Interval of the reviewed card before this review.
            at: Review instant.
        """
        new_level = self.next_level(skill_point.level, outcome, interval_days)
        if new_level != skill_point.level:
            logger.info(
                "skill_level_changed",
                skill_point_id=skill_point.id,
                old_level=skill_point.level.label,
                new_level=new_level.label,
                outcome=outcome.value,
            )
        return skill_point.model_copy(update={"level": new_level, "last_reviewed_at": at})

    def assess(self, skill_point: SkillPoint, level: SkillLevel | int, at: datetime) -> SkillPoint:
        """Onboarding self-assessment: set the level directly."""
        new_level = SkillLevel.clamp(int(level))
        logger.debug(
            "skill_self_assessed",
            skill_point_id=skill_point.id,
            level=new_level.label,
        )
        return skill_point.model_copy(update={"level": new_level, "last_reviewed_at": at})
