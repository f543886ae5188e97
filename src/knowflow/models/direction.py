"""Direction and skill point models."""

from datetime import datetime
from enum import IntEnum, StrEnum

from pydantic import BaseModel, Field


class DirectionStage(StrEnum):
    """Progress stage of a direction, least to most advanced."""

    EXPLORE = "explore"
    SHAPE = "shape"
    ATTACK = "attack"
    STABILIZE = "stabilize"

    @property
    def rank(self) -> int:
        return list(DirectionStage).index(self)


class SkillLevel(IntEnum):
    """Ordinal skill level 0-3."""

    UNKNOWN = 0
    EMERGING = 1
    WORKING = 2
    FLUENT = 3

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def clamp(cls, value: int) -> "SkillLevel":
        """Clamp an arbitrary integer into the 0-3 range."""
        return cls(max(cls.UNKNOWN, min(cls.FLUENT, value)))

    @classmethod
    def from_label(cls, label: str) -> "SkillLevel":
        return cls[label.strip().upper()]


class SkillPoint(BaseModel):
    """A named sub-skill inside a direction."""

    id: str
    direction_id: str
    label: str
    summary: str | None = None
    level: SkillLevel = SkillLevel.UNKNOWN
    last_reviewed_at: datetime | None = None


class Direction(BaseModel):
    """A tracked topic of study.

    ``stage`` is a cache of the value derived from the skill points; see
    ``knowflow.progress.stage.DirectionStageMachine.refresh``.
    """

    id: str
    name: str
    language: str = "en"
    stage: DirectionStage = DirectionStage.EXPLORE
    skill_point_ids: list[str] = Field(default_factory=list)
    quarterly_goal: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class DirectionSnapshot(BaseModel):
    """A direction loaded together with its skill points."""

    direction: Direction
    skill_points: list[SkillPoint] = Field(default_factory=list)
