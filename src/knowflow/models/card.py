"""Card and review state models."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from knowflow.models.direction import SkillPoint


class ReviewOutcome(StrEnum):
    """Result of one review of a card."""

    NONE = "none"
    AGAIN = "again"
    HARD = "hard"
    GOOD = "good"
    EASY = "easy"


class ReviewState(BaseModel):
    """Spaced-repetition state embedded in a card."""

    due_at: datetime
    interval_days: float = Field(default=0.0, ge=0.0)
    last_outcome: ReviewOutcome = ReviewOutcome.NONE
    last_reviewed_at: datetime | None = None


class Evidence(BaseModel):
    """A source excerpt backing a card."""

    excerpt: str
    url: str | None = None


class Card(BaseModel):
    """A committed, reviewable learning unit."""

    id: str
    direction_id: str
    skill_point_id: str | None = None
    language: str = "en"
    title: str
    body: str
    tags: list[str] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    evidence: list[Evidence] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
    review: ReviewState


class OutcomeUpdate(BaseModel):
    """One atomic card/skill point update handed to the persistence gateway.

    The gateway rejects the update when the stored due date is strictly later
    than ``baseline_due_at``: another outcome already advanced the card. The
    same holds for ``skill_point_baseline``: if the stored skill point's level
    or review instant no longer match it, another outcome moved the skill
    first and nothing is written.
    """

    card_id: str
    outcome: ReviewOutcome
    at: datetime
    baseline_due_at: datetime
    review: ReviewState
    skill_point: SkillPoint | None = None
    skill_point_baseline: SkillPoint | None = None
