"""Today plan and vault summary models."""

from datetime import datetime

from pydantic import BaseModel, Field

from knowflow.models.card import Card
from knowflow.models.direction import SkillLevel, SkillPoint


class DirectionPlanCount(BaseModel):
    """Plan size for one direction."""

    direction_id: str
    due_cards: int = 0
    stale_skill_points: int = 0


class SkillGapRecommendation(BaseModel):
    """The skill point under the most growth pressure today."""

    skill_point_id: str
    direction_id: str
    label: str
    level: SkillLevel
    linked_cards: int = 0
    pressure: float = Field(ge=0.0, le=1.0)


class NeglectedDirectionRecommendation(BaseModel):
    """The direction whose cards have gone longest without practice."""

    direction_id: str
    stale_cards: int = 0
    pressure: float = Field(ge=0.0, le=1.0)


class TodayPlan(BaseModel):
    """Everything due at a given instant.

    ``focus`` is the capped slice to work through first, ordered by urgency
    nudged by each direction's stage. The recommendations are hints and do
    not count towards the due set.
    """

    generated_for: datetime
    due_cards: list[Card] = Field(default_factory=list)
    stale_skill_points: list[SkillPoint] = Field(default_factory=list)
    per_direction: list[DirectionPlanCount] = Field(default_factory=list)
    focus: list[Card] = Field(default_factory=list)
    skill_gap: SkillGapRecommendation | None = None
    neglected_direction: NeglectedDirectionRecommendation | None = None

    @property
    def total_due(self) -> int:
        return len(self.due_cards)

    @property
    def is_empty(self) -> bool:
        return not self.due_cards and not self.stale_skill_points


class VaultSummary(BaseModel):
    """Entity counts reported by the vault collaborator."""

    directions: int = 0
    skill_points: int = 0
    cards: int = 0
    evidence: int = 0
    tags: int = 0
    storage_bytes: int = 0


class TodayPreview(BaseModel):
    """Today plan sized against the whole vault for preview surfaces."""

    plan: TodayPlan
    vault: VaultSummary
    focus_count: int = 0
    backlog_count: int = 0
    due_share: float = Field(default=0.0, ge=0.0, le=1.0)
