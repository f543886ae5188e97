"""Tests for review scheduling and outcome application."""

from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from knowflow.errors import CollaboratorFailure, ConflictFailure, ValidationFailure
from knowflow.models.card import Card, ReviewOutcome, ReviewState
from knowflow.models.direction import Direction, DirectionStage, SkillLevel, SkillPoint
from knowflow.models.plan import VaultSummary
from knowflow.scheduling.review import ReviewScheduler
from knowflow.storage.json_vault import JsonVault

NOW = datetime(2026, 3, 1, 9, 0, 0)


def _card(card_id: str, due_at: datetime, direction_id: str = "dir-1", **kwargs) -> Card:
    return Card(
        id=card_id,
        direction_id=direction_id,
        title=f"Card {card_id}",
        body="body",
        confidence=0.5,
        review=ReviewState(due_at=due_at, **kwargs),
    )


class TestDueSet:
    def test_only_due_cards(self):
        cards = [_card("a", NOW - timedelta(hours=1)), _card("b", NOW + timedelta(hours=1))]
        assert [c.id for c in ReviewScheduler().due_cards(cards, NOW)] == ["a"]

    def test_due_at_now_is_due(self):
        assert len(ReviewScheduler().due_cards([_card("a", NOW)], NOW)) == 1

    def test_ordering(self):
        early = NOW - timedelta(days=2)
        cards = [
            _card("z", NOW - timedelta(days=1), "dir-1"),
            _card("b", early, "dir-2"),
            _card("c", early, "dir-1"),
            _card("a", early, "dir-1"),
        ]
        due = ReviewScheduler().due_cards(cards, NOW)
        assert [(c.direction_id, c.id) for c in due] == [
            ("dir-1", "a"),
            ("dir-1", "c"),
            ("dir-2", "b"),
            ("dir-1", "z"),
        ]

    def test_distinct_due_dates_sorted(self):
        cards = [_card(str(i), NOW - timedelta(hours=h)) for i, h in enumerate([3, 9, 1, 5])]
        due = ReviewScheduler().due_cards(cards, NOW)
        assert [c.review.due_at for c in due] == sorted(c.review.due_at for c in cards)


class TestStaleSkillPoints:
    def test_never_reviewed_first_then_oldest(self):
        skill_points = [
            SkillPoint(id="old", direction_id="d", label="old", last_reviewed_at=NOW - timedelta(days=30)),
            SkillPoint(id="fresh", direction_id="d", label="fresh", last_reviewed_at=NOW - timedelta(days=1)),
            SkillPoint(id="never", direction_id="d", label="never"),
            SkillPoint(id="older", direction_id="d", label="older", last_reviewed_at=NOW - timedelta(days=60)),
        ]
        stale = ReviewScheduler().stale_skill_points(skill_points, NOW)
        assert [sp.id for sp in stale] == ["never", "older", "old"]


class TestPlan:
    def test_plan_counts_per_direction(self):
        cards = [
            _card("a", NOW, "dir-2"),
            _card("b", NOW, "dir-1"),
            _card("c", NOW, "dir-1"),
            _card("d", NOW + timedelta(days=1), "dir-1"),
        ]
        skill_points = [SkillPoint(id="sp", direction_id="dir-3", label="x")]
        plan = ReviewScheduler().plan(cards, skill_points, NOW)

        assert plan.total_due == 3
        assert [(p.direction_id, p.due_cards, p.stale_skill_points) for p in plan.per_direction] == [
            ("dir-1", 2, 0),
            ("dir-2", 1, 0),
            ("dir-3", 0, 1),
        ]

    def test_focus_is_capped(self):
        cards = [_card(str(i), NOW - timedelta(hours=i)) for i in range(5)]
        plan = ReviewScheduler(max_today_cards=2).plan(cards, [], NOW)
        assert len(plan.focus) == 2
        assert plan.focus == plan.due_cards[:2]

    def test_plan_is_repeatable(self):
        cards = [_card("a", NOW), _card("b", NOW - timedelta(days=1))]
        scheduler = ReviewScheduler()
        assert scheduler.plan(cards, [], NOW) == scheduler.plan(cards, [], NOW)

    def test_empty_plan(self):
        assert ReviewScheduler().plan([], [], NOW).is_empty

    def test_preview(self):
        cards = [_card(str(i), NOW) for i in range(3)]
        scheduler = ReviewScheduler(max_today_cards=2)
        preview = scheduler.preview(scheduler.plan(cards, [], NOW), VaultSummary(cards=10))
        assert preview.focus_count == 2
        assert preview.backlog_count == 1
        assert preview.due_share == pytest.approx(0.3)

    def test_preview_with_empty_vault(self):
        scheduler = ReviewScheduler()
        preview = scheduler.preview(scheduler.plan([], [], NOW), VaultSummary())
        assert preview.due_share == 0.0


class TestFocusStageBias:
    def test_stage_orders_cards_due_together(self):
        cards = [_card("a", NOW, "dir-explore"), _card("b", NOW, "dir-stable")]
        stages = {"dir-stable": DirectionStage.STABILIZE}
        plan = ReviewScheduler(max_today_cards=1).plan(cards, [], NOW, stages)
        assert [c.id for c in plan.due_cards] == ["a", "b"]
        assert [c.id for c in plan.focus] == ["b"]

    def test_higher_stage_first(self):
        cards = [
            _card("e", NOW, "dir-e"),
            _card("s", NOW, "dir-s"),
            _card("a", NOW, "dir-a"),
            _card("t", NOW, "dir-t"),
        ]
        stages = {
            "dir-e": DirectionStage.EXPLORE,
            "dir-s": DirectionStage.SHAPE,
            "dir-a": DirectionStage.ATTACK,
            "dir-t": DirectionStage.STABILIZE,
        }
        focus = ReviewScheduler().plan(cards, [], NOW, stages).focus
        assert [c.id for c in focus] == ["t", "a", "s", "e"]

    def test_overdue_card_still_comes_first(self):
        cards = [_card("late", NOW - timedelta(days=2), "dir-e"), _card("now", NOW, "dir-t")]
        stages = {"dir-e": DirectionStage.EXPLORE, "dir-t": DirectionStage.STABILIZE}
        focus = ReviewScheduler().plan(cards, [], NOW, stages).focus
        assert [c.id for c in focus] == ["late", "now"]


class TestRecommendations:
    def test_skill_gap_picks_highest_pressure(self):
        skill_points = [
            SkillPoint(
                id="sp-fluent",
                direction_id="dir-1",
                label="recall",
                level=SkillLevel.FLUENT,
                last_reviewed_at=NOW - timedelta(days=1),
            ),
            SkillPoint(
                id="sp-weak",
                direction_id="dir-1",
                label="drift",
                level=SkillLevel.EMERGING,
                last_reviewed_at=NOW - timedelta(days=1),
            ),
        ]
        failing = _card(
            "a",
            NOW,
            last_outcome=ReviewOutcome.AGAIN,
            last_reviewed_at=NOW - timedelta(days=10),
        ).model_copy(update={"skill_point_id": "sp-weak"})

        gap = ReviewScheduler().plan([failing], skill_points, NOW).skill_gap

        assert gap.skill_point_id == "sp-weak"
        assert gap.label == "drift"
        assert gap.linked_cards == 1
        assert gap.pressure == pytest.approx(0.775)

    def test_no_skill_gap_when_fluent_and_fresh(self):
        skill_points = [
            SkillPoint(
                id="sp",
                direction_id="dir-1",
                label="recall",
                level=SkillLevel.FLUENT,
                last_reviewed_at=NOW - timedelta(days=1),
            )
        ]
        assert ReviewScheduler().plan([], skill_points, NOW).skill_gap is None

    def test_neglected_direction(self):
        later = NOW + timedelta(days=3)
        cards = [
            _card("a", later, "dir-1", last_reviewed_at=NOW - timedelta(days=1)),
            _card("b", later, "dir-2", last_reviewed_at=NOW - timedelta(days=10)),
            _card("c", later, "dir-2", last_reviewed_at=NOW - timedelta(days=2)),
        ]
        neglected = ReviewScheduler().plan(cards, [], NOW).neglected_direction
        assert neglected.direction_id == "dir-2"
        assert neglected.stale_cards == 1
        assert neglected.pressure == pytest.approx(0.7)

    def test_never_reviewed_cards_age_from_creation(self):
        card = _card("a", NOW).model_copy(update={"created_at": NOW - timedelta(days=6)})
        neglected = ReviewScheduler().plan([card], [], NOW).neglected_direction
        assert neglected.direction_id == "dir-1"
        assert neglected.stale_cards == 1

    def test_recent_practice_is_not_neglect(self):
        cards = [_card("a", NOW, last_reviewed_at=NOW - timedelta(days=1))]
        assert ReviewScheduler().plan(cards, [], NOW).neglected_direction is None


class TestNextReview:
    def test_new_card_good(self):
        state = ReviewScheduler().next_review(ReviewState(due_at=NOW), ReviewOutcome.GOOD, NOW)
        assert state.interval_days == 1.0
        assert state.due_at == NOW + timedelta(days=1)
        assert state.last_outcome == ReviewOutcome.GOOD
        assert state.last_reviewed_at == NOW

    @pytest.mark.parametrize(
        "outcome,interval",
        [
            (ReviewOutcome.AGAIN, 1.0),
            (ReviewOutcome.HARD, 2.4),
            (ReviewOutcome.GOOD, 10.0),
            (ReviewOutcome.EASY, 14.0),
        ],
    )
    def test_intervals(self, outcome, interval):
        state = ReviewState(due_at=NOW, interval_days=4.0)
        assert ReviewScheduler().next_review(state, outcome, NOW).interval_days == pytest.approx(interval)

    def test_hard_never_below_minimum(self):
        state = ReviewState(due_at=NOW, interval_days=1.0)
        assert ReviewScheduler().next_review(state, ReviewOutcome.HARD, NOW).interval_days == 1.0

    def test_none_outcome_rejected(self):
        with pytest.raises(ValidationFailure):
            ReviewScheduler().next_review(ReviewState(due_at=NOW), ReviewOutcome.NONE, NOW)

    def test_factor_ordering_enforced(self):
        with pytest.raises(ValidationFailure):
            ReviewScheduler(good_factor=4.0, easy_factor=3.0)
        with pytest.raises(ValidationFailure):
            ReviewScheduler(hard_factor=1.2)


@pytest.fixture
def vault(tmp_path):
    store = JsonVault(tmp_path / "vault.json")
    store.save_direction(
        Direction(id="dir-1", name="Retrieval"),
        [SkillPoint(id="sp-1", direction_id="dir-1", label="drift", level=SkillLevel.EMERGING)],
    )
    return store


class TestRecordOutcome:
    def test_outcome_persisted(self, vault):
        card = _card("card-1", NOW).model_copy(update={"skill_point_id": "sp-1"})
        vault.save_cards("dir-1", [card])
        skill_point = vault.list_skill_points("dir-1")[0]

        review, updated = ReviewScheduler(gateway=vault).record_outcome(
            card, ReviewOutcome.EASY, NOW, skill_point
        )

        assert review.interval_days == 1.0
        assert updated.level == SkillLevel.WORKING
        stored_card = vault.list_cards("dir-1")[0]
        assert stored_card.review == review
        assert vault.list_skill_points("dir-1")[0].level == SkillLevel.WORKING

    def test_second_outcome_on_stale_state_conflicts(self, vault):
        card = _card("card-1", NOW)
        vault.save_cards("dir-1", [card])
        scheduler = ReviewScheduler(gateway=vault)

        first, _ = scheduler.record_outcome(card, ReviewOutcome.GOOD, NOW)
        with pytest.raises(ConflictFailure):
            scheduler.record_outcome(card, ReviewOutcome.AGAIN, NOW + timedelta(minutes=1))

        assert vault.list_cards("dir-1")[0].review == first

    def test_retry_with_fresh_state(self, vault):
        card = _card("card-1", NOW)
        vault.save_cards("dir-1", [card])
        scheduler = ReviewScheduler(gateway=vault)
        scheduler.record_outcome(card, ReviewOutcome.GOOD, NOW)

        fresh = vault.list_cards("dir-1")[0]
        review, _ = scheduler.record_outcome(fresh, ReviewOutcome.GOOD, NOW + timedelta(days=1))
        assert review.interval_days == 2.5

    def test_gateway_failure(self):
        gateway = MagicMock()
        gateway.apply_outcome.side_effect = RuntimeError("connection reset")
        card = _card("card-1", NOW)
        with pytest.raises(CollaboratorFailure):
            ReviewScheduler(gateway=gateway).record_outcome(card, ReviewOutcome.GOOD, NOW)
        assert card.review.interval_days == 0.0

    def test_requires_gateway(self):
        with pytest.raises(ValidationFailure):
            ReviewScheduler().record_outcome(_card("a", NOW), ReviewOutcome.GOOD, NOW)

    def test_unlinked_skill_point_rejected(self, vault):
        card = _card("card-1", NOW)
        skill_point = SkillPoint(id="sp-1", direction_id="dir-1", label="drift")
        with pytest.raises(ValidationFailure):
            ReviewScheduler(gateway=vault).record_outcome(card, ReviewOutcome.GOOD, NOW, skill_point)

    def test_outcome_refreshes_direction_stage(self, vault):
        snapshot = vault.load_direction("dir-1")
        vault.save_direction(
            snapshot.direction.model_copy(update={"stage": DirectionStage.SHAPE}),
            snapshot.skill_points,
        )
        card = _card("card-1", NOW).model_copy(update={"skill_point_id": "sp-1"})
        vault.save_cards("dir-1", [card])

        ReviewScheduler(gateway=vault).record_outcome(
            card, ReviewOutcome.EASY, NOW, snapshot.skill_points[0]
        )

        direction = vault.load_direction("dir-1").direction
        assert direction.stage == DirectionStage.ATTACK
        assert direction.updated_at == NOW

    def test_two_cards_on_one_skill_point(self, vault):
        cards = [
            _card(card_id, NOW).model_copy(update={"skill_point_id": "sp-1"})
            for card_id in ("card-1", "card-2")
        ]
        vault.save_cards("dir-1", cards)
        read_before = vault.list_skill_points("dir-1")[0]
        scheduler = ReviewScheduler(gateway=vault)

        scheduler.record_outcome(cards[0], ReviewOutcome.EASY, NOW, read_before)
        with pytest.raises(ConflictFailure):
            scheduler.record_outcome(cards[1], ReviewOutcome.EASY, NOW, read_before)

        stored = {c.id: c for c in vault.list_cards("dir-1")}
        assert stored["card-2"].review.interval_days == 0.0
        assert vault.list_skill_points("dir-1")[0].level == SkillLevel.WORKING

        fresh = vault.list_skill_points("dir-1")[0]
        _, updated = scheduler.record_outcome(cards[1], ReviewOutcome.EASY, NOW, fresh)

        assert updated.level == SkillLevel.FLUENT
        assert vault.list_skill_points("dir-1")[0].level == SkillLevel.FLUENT
        assert vault.load_direction("dir-1").direction.stage == DirectionStage.STABILIZE
