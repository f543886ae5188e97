"""Reminder preference and planned notification models."""

from datetime import datetime, time
from enum import StrEnum

from pydantic import BaseModel, Field, ValidationError

from knowflow.errors import ValidationFailure


class ReminderScope(StrEnum):
    """Which reminders the user wants."""

    TODAY = "today"
    REVIEW = "review"


def parse_time(value: str) -> time:
    """Parse an ``HH:MM`` time of day.

    Raises:
        ValidationFailure: If the value is not a valid ``HH:MM`` string.
    """
    try:
        return datetime.strptime(value.strip(), "%H:%M").time()
    except (AttributeError, ValueError) as e:
        raise ValidationFailure(f"malformed reminder time: {value!r}") from e


class ReminderPreferencesUpdate(BaseModel):
    """Partial update; ``None`` fields are left untouched."""

    daily_time: time | None = None
    due_time: time | None = None
    remind_lead_minutes: int | None = Field(default=None, ge=0)
    enabled_scopes: set[ReminderScope] | None = None


class ReminderPreferences(BaseModel):
    """Per-user reminder configuration."""

    daily_time: time = time(20, 30)
    due_time: time = time(18, 45)
    remind_lead_minutes: int = Field(default=45, ge=0)
    enabled_scopes: set[ReminderScope] = Field(
        default_factory=lambda: {ReminderScope.TODAY, ReminderScope.REVIEW}
    )

    @classmethod
    def from_strings(
        cls,
        daily_time: str,
        due_time: str,
        remind_lead_minutes: int,
        enabled_scopes: list[str] | None = None,
    ) -> "ReminderPreferences":
        """Build preferences from raw form values.

        Raises:
            ValidationFailure: On malformed times, negative lead or unknown scope.
        """
        scopes = enabled_scopes if enabled_scopes is not None else [s.value for s in ReminderScope]
        try:
            return cls(
                daily_time=parse_time(daily_time),
                due_time=parse_time(due_time),
                remind_lead_minutes=remind_lead_minutes,
                enabled_scopes={ReminderScope(s) for s in scopes},
            )
        except (ValidationError, ValueError) as e:
            raise ValidationFailure(str(e)) from e

    def apply_update(self, update: ReminderPreferencesUpdate) -> "ReminderPreferences":
        """Return a copy with the non-empty fields of ``update`` applied."""
        changes = update.model_dump(exclude_none=True)
        return self.model_copy(update=changes)

    def is_enabled(self, scope: ReminderScope) -> bool:
        return scope in self.enabled_scopes


class PlannedNotification(BaseModel):
    """A concrete notification instant with its payload summary."""

    scope: ReminderScope
    instant: datetime
    title: str
    summary: str
    item_count: int = 0
    direction_id: str | None = None
