"""Narrow collaborator contracts the engine calls but does not implement.

Implementations signal failure by raising: ``ConflictFailure`` for a lost
outcome race, ``DirectionNotFound`` for unknown directions, anything else is
treated as a collaborator failure by the caller.
"""

from datetime import datetime
from typing import Protocol

from knowflow.models.card import Card, OutcomeUpdate, ReviewState
from knowflow.models.direction import Direction, DirectionSnapshot, SkillPoint
from knowflow.models.plan import VaultSummary
from knowflow.models.reminder import ReminderPreferences


class PersistenceGateway(Protocol):
    def load_direction(self, direction_id: str) -> DirectionSnapshot: ...

    def save_direction(self, direction: Direction, skill_points: list[SkillPoint]) -> None: ...

    def delete_direction(self, direction_id: str) -> None: ...

    def save_cards(self, direction_id: str, cards: list[Card]) -> None:
        """Persist all cards or none of them."""
        ...

    def list_cards(self, direction_id: str | None = None) -> list[Card]: ...

    def list_skill_points(self, direction_id: str | None = None) -> list[SkillPoint]: ...

    def apply_outcome(self, update: OutcomeUpdate) -> ReviewState:
        """Atomically store the new review state (and skill point).

        A stored skill point also refreshes its direction's cached stage.

        Raises:
            ConflictFailure: The stored due date is later than the baseline,
                or the stored skill point no longer matches its baseline.
        """
        ...

    def load_reminder_preferences(self) -> ReminderPreferences: ...

    def save_reminder_preferences(self, preferences: ReminderPreferences) -> None: ...


class VaultSummaryProvider(Protocol):
    def summary(self) -> VaultSummary: ...


class NotificationSink(Protocol):
    def schedule(self, instant: datetime, payload: dict) -> None: ...
