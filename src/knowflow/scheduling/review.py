"""Review scheduling: today's due set and spaced-repetition updates."""

from datetime import datetime, timedelta

import structlog

from knowflow.config import Settings
from knowflow.errors import CollaboratorFailure, ConflictFailure, KnowflowError, ValidationFailure
from knowflow.models.card import Card, OutcomeUpdate, ReviewOutcome, ReviewState
from knowflow.models.direction import DirectionStage, SkillLevel, SkillPoint
from knowflow.models.plan import (
    DirectionPlanCount,
    NeglectedDirectionRecommendation,
    SkillGapRecommendation,
    TodayPlan,
    TodayPreview,
    VaultSummary,
)
from knowflow.progress.skill_tracker import SkillTracker
from knowflow.storage.gateways import PersistenceGateway

logger = structlog.get_logger()

# Review bias per direction stage; settled directions get their reviews first
STAGE_REVIEW_BIAS: dict[DirectionStage, float] = {
    DirectionStage.EXPLORE: 0.02,
    DirectionStage.SHAPE: 0.04,
    DirectionStage.ATTACK: 0.05,
    DirectionStage.STABILIZE: 0.10,
}

LEVEL_GAP: dict[SkillLevel, float] = {
    SkillLevel.UNKNOWN: 0.9,
    SkillLevel.EMERGING: 0.75,
    SkillLevel.WORKING: 0.5,
    SkillLevel.FLUENT: 0.25,
}

FAIL_WEIGHT: dict[ReviewOutcome, float] = {
    ReviewOutcome.AGAIN: 1.0,
    ReviewOutcome.HARD: 0.5,
}

NEGLECT_WINDOW_DAYS = 5.0
NEGLECTED_CARD_STALENESS = 0.7
SKILL_GAP_MIN_PRESSURE = 0.45
NEGLECT_MIN_PRESSURE = 0.45


def _clamp_unit(value: float) -> float:
    return min(1.0, max(0.0, value))


def due_urgency(card: Card, today: datetime) -> float:
    """0.5 for a card due right now, 1.0 once it is a day overdue."""
    minutes = (today - card.review.due_at).total_seconds() / 60
    return _clamp_unit((minutes + 24 * 60) / (48 * 60))


def staleness(last_seen: datetime | None, today: datetime) -> float:
    """Share of the neglect window elapsed since ``last_seen``; never seen is 1.0."""
    if last_seen is None:
        return 1.0
    days = (today - last_seen).total_seconds() / 86400
    return _clamp_unit(days / NEGLECT_WINDOW_DAYS)


def _card_staleness(card: Card, today: datetime) -> float:
    # Never reviewed cards age from their commit
    return staleness(card.review.last_reviewed_at or card.created_at, today)


class ReviewScheduler:
    """Computes due sets and applies review outcomes.

    Plan computation is read-only and can be repeated any number of times
    within a day. Only ``record_outcome`` changes state, and it does so
    through a single atomic gateway update per card/skill point pair.

    Args:
        gateway: Persistence collaborator (needed only for ``record_outcome``).
        skill_tracker: Applies outcomes to linked skill points.
        min_interval_days: Smallest interval; ``again`` resets to it.
        hard_factor: Interval multiplier for ``hard`` (< 1).
        good_factor: Interval multiplier for ``good`` (> 1).
        easy_factor: Interval multiplier for ``easy`` (> good_factor).
        skill_staleness_days: Skill points unreviewed for longer are due for self-review.
        max_today_cards: Size of the focus slice of today's plan.
    """

    def __init__(
        self,
        gateway: PersistenceGateway | None = None,
        skill_tracker: SkillTracker | None = None,
        min_interval_days: float = 1.0,
        hard_factor: float = 0.6,
        good_factor: float = 2.5,
        easy_factor: float = 3.5,
        skill_staleness_days: float = 7.0,
        max_today_cards: int = 20,
    ):
        if not 0 < hard_factor < 1 < good_factor < easy_factor:
            raise ValidationFailure(
                "interval factors must satisfy 0 < hard < 1 < good < easy"
            )
        self._gateway = gateway
        self.skill_tracker = skill_tracker or SkillTracker()
        self.min_interval_days = min_interval_days
        self.hard_factor = hard_factor
        self.good_factor = good_factor
        self.easy_factor = easy_factor
        self.skill_staleness_days = skill_staleness_days
        self.max_today_cards = max_today_cards

    @classmethod
    def from_settings(
        cls, settings: Settings, gateway: PersistenceGateway | None = None
    ) -> "ReviewScheduler":
        return cls(
            gateway=gateway,
            skill_tracker=SkillTracker.from_settings(settings),
            min_interval_days=settings.min_interval_days,
            hard_factor=settings.hard_factor,
            good_factor=settings.good_factor,
            easy_factor=settings.easy_factor,
            skill_staleness_days=settings.skill_staleness_days,
            max_today_cards=settings.max_today_cards,
        )

    # Read-only planning

    def due_cards(self, cards: list[Card], today: datetime) -> list[Card]:
        """Cards due at ``today``, ordered by (due_at, direction_id, id)."""
        due = [card for card in cards if card.review.due_at <= today]
        return sorted(due, key=lambda c: (c.review.due_at, c.direction_id, c.id))

    def stale_skill_points(self, skill_points: list[SkillPoint], today: datetime) -> list[SkillPoint]:
        """Skill points never reviewed or not reviewed within the staleness window."""
        cutoff = today - timedelta(days=self.skill_staleness_days)
        stale = [
            sp for sp in skill_points
            if sp.last_reviewed_at is None or sp.last_reviewed_at < cutoff
        ]
        # Never reviewed first, then oldest review
        return sorted(
            stale,
            key=lambda sp: (
                sp.last_reviewed_at is not None,
                sp.last_reviewed_at or today,
                sp.direction_id,
                sp.id,
            ),
        )

    def plan(
        self,
        cards: list[Card],
        skill_points: list[SkillPoint],
        today: datetime,
        stages: dict[str, DirectionStage] | None = None,
    ) -> TodayPlan:
        """Today's plan: due cards, stale skill points and per-direction counts.

        Args:
            cards: Every card to consider.
            skill_points: Every skill point to consider.
            today: Plan instant.
            stages: Direction id -> stage, biasing the focus slice. Directions
                not listed count as exploring.
        """
        stages = stages or {}
        due = self.due_cards(cards, today)
        stale = self.stale_skill_points(skill_points, today)

        counts: dict[str, DirectionPlanCount] = {}
        for card in due:
            entry = counts.setdefault(
                card.direction_id, DirectionPlanCount(direction_id=card.direction_id)
            )
            entry.due_cards += 1
        for sp in stale:
            entry = counts.setdefault(
                sp.direction_id, DirectionPlanCount(direction_id=sp.direction_id)
            )
            entry.stale_skill_points += 1

        plan = TodayPlan(
            generated_for=today,
            due_cards=due,
            stale_skill_points=stale,
            per_direction=[counts[key] for key in sorted(counts)],
            focus=self.focus(due, today, stages),
            skill_gap=self.skill_gap(cards, skill_points, today),
            neglected_direction=self.neglected_direction(cards, today),
        )
        logger.debug(
            "today_plan_built",
            due=plan.total_due,
            focus=len(plan.focus),
            stale_skill_points=len(stale),
            skill_gap=plan.skill_gap.skill_point_id if plan.skill_gap else None,
            neglected_direction=(
                plan.neglected_direction.direction_id if plan.neglected_direction else None
            ),
        )
        return plan

    def focus(
        self,
        due: list[Card],
        today: datetime,
        stages: dict[str, DirectionStage] | None = None,
    ) -> list[Card]:
        """The first ``max_today_cards`` of ``due`` by urgency plus stage bias.

        The bias is small next to urgency: it reorders cards due around the
        same time, but a day-overdue card still comes before one due now.
        Ties keep the due order.
        """
        stages = stages or {}

        def priority(item: tuple[int, Card]) -> tuple[float, int]:
            index, card = item
            stage = stages.get(card.direction_id, DirectionStage.EXPLORE)
            return (-(due_urgency(card, today) + STAGE_REVIEW_BIAS[stage]), index)

        ranked = sorted(enumerate(due), key=priority)
        return [card for _, card in ranked[: self.max_today_cards]]

    def skill_gap(
        self, cards: list[Card], skill_points: list[SkillPoint], today: datetime
    ) -> SkillGapRecommendation | None:
        """Skill point with the highest growth pressure, if any reaches the minimum.

        Pressure blends the level gap with the failure rate, staleness and
        share of never reviewed cards linked to the skill point. A skill
        point without linked cards uses its own review instant.
        """
        linked: dict[str, list[Card]] = {}
        for card in cards:
            if card.skill_point_id is not None:
                linked.setdefault(card.skill_point_id, []).append(card)

        best: SkillGapRecommendation | None = None
        for sp in sorted(skill_points, key=lambda s: (s.direction_id, s.id)):
            own = linked.get(sp.id, [])
            if own:
                fail = sum(FAIL_WEIGHT.get(c.review.last_outcome, 0.0) for c in own) / len(own)
                neglect = sum(_card_staleness(c, today) for c in own) / len(own)
                new = sum(1 for c in own if c.review.last_reviewed_at is None) / len(own)
            else:
                fail = 0.0
                neglect = staleness(sp.last_reviewed_at, today)
                new = 1.0 if sp.last_reviewed_at is None else 0.0

            pressure = round(
                _clamp_unit(0.5 * LEVEL_GAP[sp.level] + 0.2 * fail + 0.2 * neglect + 0.1 * new), 3
            )
            if pressure < SKILL_GAP_MIN_PRESSURE:
                continue
            if best is None or pressure > best.pressure:
                best = SkillGapRecommendation(
                    skill_point_id=sp.id,
                    direction_id=sp.direction_id,
                    label=sp.label,
                    level=sp.level,
                    linked_cards=len(own),
                    pressure=pressure,
                )
        return best

    def neglected_direction(
        self, cards: list[Card], today: datetime
    ) -> NeglectedDirectionRecommendation | None:
        """Direction whose cards are, on average, stalest."""
        per_direction: dict[str, list[float]] = {}
        for card in cards:
            per_direction.setdefault(card.direction_id, []).append(_card_staleness(card, today))

        best: NeglectedDirectionRecommendation | None = None
        for direction_id in sorted(per_direction):
            values = per_direction[direction_id]
            pressure = round(sum(values) / len(values), 3)
            if pressure < NEGLECT_MIN_PRESSURE:
                continue
            if best is None or pressure > best.pressure:
                best = NeglectedDirectionRecommendation(
                    direction_id=direction_id,
                    stale_cards=sum(1 for v in values if v >= NEGLECTED_CARD_STALENESS),
                    pressure=pressure,
                )
        return best

    def preview(self, plan: TodayPlan, vault: VaultSummary) -> TodayPreview:
        """Size today's plan against the vault for preview surfaces."""
        focus = len(plan.focus)
        share = min(1.0, plan.total_due / vault.cards) if vault.cards else 0.0
        return TodayPreview(
            plan=plan,
            vault=vault,
            focus_count=focus,
            backlog_count=plan.total_due - focus,
            due_share=round(share, 3),
        )

    # Outcome application

    def next_review(self, state: ReviewState, outcome: ReviewOutcome, today: datetime) -> ReviewState:
        """Spaced-repetition update of one review state.

        Raises:
            ValidationFailure: ``outcome`` is ``none``.
        """
        interval = state.interval_days
        if outcome == ReviewOutcome.AGAIN:
            interval = self.min_interval_days
        elif outcome == ReviewOutcome.HARD:
            interval = max(self.min_interval_days, interval * self.hard_factor)
        elif outcome == ReviewOutcome.GOOD:
            interval = max(self.min_interval_days, interval * self.good_factor)
        elif outcome == ReviewOutcome.EASY:
            interval = max(self.min_interval_days, interval * self.easy_factor)
        else:
            raise ValidationFailure(f"not a review outcome: {outcome.value}")

        interval = round(interval, 4)
        return ReviewState(
            due_at=today + timedelta(days=interval),
            interval_days=interval,
            last_outcome=outcome,
            last_reviewed_at=today,
        )

    def record_outcome(
        self,
        card: Card,
        outcome: ReviewOutcome,
        at: datetime,
        skill_point: SkillPoint | None = None,
    ) -> tuple[ReviewState, SkillPoint | None]:
        """Apply one review outcome to a card and its linked skill point.

        ``card`` and ``skill_point`` are the states the caller read; the
        gateway checks both as baselines, so an outcome racing against an
        already advanced card, or against another card that moved the same
        skill point, is rejected. Reload and retry on ``ConflictFailure``.

        Returns:
            The stored review state and the updated skill point (if any).

        Raises:
            ValidationFailure: Bad outcome, or skill point not linked to the card.
            ConflictFailure: Another outcome already advanced this card or skill point.
            CollaboratorFailure: The gateway failed; nothing was changed.
        """
        if self._gateway is None:
            raise ValidationFailure("record_outcome needs a persistence gateway")
        if skill_point is not None and skill_point.id != card.skill_point_id:
            raise ValidationFailure(
                f"skill point {skill_point.id} is not linked to card {card.id}"
            )

        review = self.next_review(card.review, outcome, at)
        updated_skill = None
        if skill_point is not None:
            updated_skill = self.skill_tracker.apply_outcome(
                skill_point, outcome, card.review.interval_days, at
            )

        update = OutcomeUpdate(
            card_id=card.id,
            outcome=outcome,
            at=at,
            baseline_due_at=card.review.due_at,
            review=review,
            skill_point=updated_skill,
            skill_point_baseline=skill_point,
        )
        try:
            stored = self._gateway.apply_outcome(update)
        except ConflictFailure:
            logger.warning("outcome_conflict", card_id=card.id, outcome=outcome.value)
            raise
        except KnowflowError:
            raise
        except Exception as e:
            logger.error("outcome_failed", card_id=card.id, outcome=outcome.value, error=str(e))
            raise CollaboratorFailure(f"could not apply outcome to card {card.id}: {e}") from e

        logger.info(
            "outcome_recorded",
            card_id=card.id,
            outcome=outcome.value,
            interval_days=stored.interval_days,
        )
        return stored, updated_skill
