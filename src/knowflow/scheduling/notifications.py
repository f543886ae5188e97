"""Reminder planning: turn preferences and today's plan into notification instants."""

from datetime import date, datetime, timedelta, tzinfo

import structlog

from knowflow.errors import CollaboratorFailure
from knowflow.models.plan import TodayPlan
from knowflow.models.reminder import PlannedNotification, ReminderPreferences, ReminderScope
from knowflow.storage.gateways import NotificationSink

logger = structlog.get_logger()


def _describe(cards: int, skill_points: int) -> str:
    parts = []
    if cards:
        parts.append(f"{cards} card{'s' if cards != 1 else ''}")
    if skill_points:
        parts.append(f"{skill_points} skill point{'s' if skill_points != 1 else ''}")
    return " and ".join(parts)


class NotificationPlanner:
    """Computes notification instants; delivery belongs to a ``NotificationSink``.

    The ``today`` scope yields one summary at ``daily_time``. The ``review``
    scope yields one reminder per direction with due items at ``due_time``
    minus the lead, never one per card. Disabled scopes and empty plans
    produce no notification at all.
    """

    def plan(
        self,
        preferences: ReminderPreferences,
        plan: TodayPlan,
        day: date,
        tz: tzinfo | None = None,
    ) -> list[PlannedNotification]:
        """Plan the notifications for ``day``.

        Args:
            preferences: The user's reminder preferences.
            plan: Today's plan from ``ReviewScheduler.plan``.
            day: Calendar day the notifications belong to.
            tz: Time zone of the preference times.

        Returns:
            Notifications ordered by instant.
        """
        notifications: list[PlannedNotification] = []
        if plan.is_empty:
            return notifications

        if preferences.is_enabled(ReminderScope.TODAY):
            notifications.append(
                PlannedNotification(
                    scope=ReminderScope.TODAY,
                    instant=datetime.combine(day, preferences.daily_time, tzinfo=tz),
                    title="Today's plan",
                    summary=_describe(plan.total_due, len(plan.stale_skill_points))
                    + f" across {len(plan.per_direction)} direction"
                    + ("s" if len(plan.per_direction) != 1 else ""),
                    item_count=plan.total_due + len(plan.stale_skill_points),
                )
            )

        if preferences.is_enabled(ReminderScope.REVIEW):
            instant = datetime.combine(day, preferences.due_time, tzinfo=tz) - timedelta(
                minutes=preferences.remind_lead_minutes
            )
            for bucket in plan.per_direction:
                count = bucket.due_cards + bucket.stale_skill_points
                if not count:
                    continue
                notifications.append(
                    PlannedNotification(
                        scope=ReminderScope.REVIEW,
                        instant=instant,
                        title="Review due",
                        summary=_describe(bucket.due_cards, bucket.stale_skill_points) + " due",
                        item_count=count,
                        direction_id=bucket.direction_id,
                    )
                )

        notifications.sort(key=lambda n: (n.instant, n.scope.value, n.direction_id or ""))
        logger.debug("notifications_planned", day=day.isoformat(), count=len(notifications))
        return notifications

    def dispatch(self, notifications: list[PlannedNotification], sink: NotificationSink) -> int:
        """Hand planned notifications to the delivery collaborator.

        Returns:
            Number of notifications delivered.

        Raises:
            CollaboratorFailure: A delivery failed; the message names how many
                were already delivered.
        """
        delivered = 0
        for notification in notifications:
            try:
                sink.schedule(notification.instant, notification.model_dump(mode="json"))
            except Exception as e:
                logger.error(
                    "notification_delivery_failed",
                    scope=notification.scope.value,
                    delivered=delivered,
                    error=str(e),
                )
                raise CollaboratorFailure(
                    f"notification delivery failed after {delivered} of "
                    f"{len(notifications)}: {e}"
                ) from e
            delivered += 1
        return delivered
