"""Onboarding wizard: create a direction, seed its skills and first cards."""

import uuid
from datetime import datetime
from enum import StrEnum

import structlog
from pydantic import BaseModel, Field

from knowflow.errors import (
    CollaboratorFailure,
    InvalidTransition,
    KnowflowError,
    ValidationFailure,
)
from knowflow.models.card import Card, ReviewState
from knowflow.models.direction import Direction, DirectionStage, SkillLevel, SkillPoint
from knowflow.models.material import DirectionContext, ImportDraft, Material
from knowflow.models.plan import TodayPreview, VaultSummary
from knowflow.progress.skill_tracker import SkillTracker
from knowflow.progress.stage import DirectionStageMachine
from knowflow.scheduling.review import ReviewScheduler
from knowflow.session.import_session import ImportSession, ImportStatus
from knowflow.storage.gateways import PersistenceGateway, VaultSummaryProvider
from knowflow.synthesis.ingester import MaterialIngester
from knowflow.synthesis.synthesizer import CardSynthesizer

logger = structlog.get_logger()


class OnboardingStep(StrEnum):
    """Wizard steps in the order they are visited."""

    DIRECTION_SELECTION = "direction_selection"
    STAGE_ASSIGNMENT = "stage_assignment"
    SKILL_ASSESSMENT = "skill_assessment"
    MATERIAL_PASTE = "material_paste"
    TODAY_PREVIEW = "today_preview"
    FINISH = "finish"


STEP_ORDER: list[OnboardingStep] = list(OnboardingStep)

# Representative level each starting stage seeds into every skill point
SEED_LEVELS: dict[DirectionStage, SkillLevel] = {
    DirectionStage.EXPLORE: SkillLevel.UNKNOWN,
    DirectionStage.SHAPE: SkillLevel.EMERGING,
    DirectionStage.ATTACK: SkillLevel.WORKING,
    DirectionStage.STABILIZE: SkillLevel.FLUENT,
}


class OnboardingResult(BaseModel):
    """What a finished onboarding persisted."""

    direction: Direction
    skill_points: list[SkillPoint] = Field(default_factory=list)
    cards: list[Card] = Field(default_factory=list)
    preview: TodayPreview | None = None


class OnboardingWizard:
    """Walks a user through setting up a new direction.

    Each step has a gate checked by ``advance``; ``back`` returns to the
    previous step keeping what was entered. Nothing is persisted before
    ``finish``.

    Args:
        gateway: Persistence collaborator.
        vault: Summary provider used for the today preview.
        scheduler: Builds the today preview.
        stage_machine: Derives the stage cached on the saved direction.
        skill_tracker: Applies self-assessments.
        ingester: Material splitter for the import step.
        synthesizer: Fragment clusterer for the import step.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        vault: VaultSummaryProvider | None = None,
        scheduler: ReviewScheduler | None = None,
        stage_machine: DirectionStageMachine | None = None,
        skill_tracker: SkillTracker | None = None,
        ingester: MaterialIngester | None = None,
        synthesizer: CardSynthesizer | None = None,
    ):
        self._gateway = gateway
        self._vault = vault
        self.scheduler = scheduler or ReviewScheduler()
        self.stage_machine = stage_machine or DirectionStageMachine()
        self.skill_tracker = skill_tracker or SkillTracker()
        self._ingester = ingester
        self._synthesizer = synthesizer

        self.step = OnboardingStep.DIRECTION_SELECTION
        self.direction: Direction | None = None
        self.skill_points: list[SkillPoint] = []
        self.starting_stage: DirectionStage | None = None
        self.import_session: ImportSession | None = None
        self.preview: TodayPreview | None = None
        self.result: OnboardingResult | None = None

    def _require(self, operation: str, step: OnboardingStep) -> None:
        if self.result is not None:
            raise InvalidTransition(operation, "finished")
        if self.step != step:
            raise InvalidTransition(operation, self.step.value)

    # Step actions

    def choose_direction(
        self,
        name: str,
        skill_labels: list[str],
        language: str = "en",
        quarterly_goal: str | None = None,
        direction_id: str | None = None,
    ) -> Direction:
        """Name the direction and its skill points.

        Choosing again replaces the skill points and clears the starting stage.
        """
        self._require("choose_direction", OnboardingStep.DIRECTION_SELECTION)
        direction_id = direction_id or str(uuid.uuid4())

        labels: list[str] = []
        for label in skill_labels:
            label = label.strip()
            if label and label not in labels:
                labels.append(label)

        self.skill_points = [
            SkillPoint(id=str(uuid.uuid4()), direction_id=direction_id, label=label)
            for label in labels
        ]
        self.direction = Direction(
            id=direction_id,
            name=name.strip(),
            language=language.strip(),
            quarterly_goal=quarterly_goal,
            skill_point_ids=[sp.id for sp in self.skill_points],
        )
        self.starting_stage = None
        return self.direction

    def assign_stage(self, stage: DirectionStage | str) -> list[SkillPoint]:
        """Seed every skill point with the chosen stage's representative level."""
        self._require("assign_stage", OnboardingStep.STAGE_ASSIGNMENT)
        try:
            stage = DirectionStage(stage)
        except ValueError as e:
            raise ValidationFailure(f"unknown stage: {stage!r}") from e

        level = SEED_LEVELS[stage]
        self.starting_stage = stage
        self.skill_points = [sp.model_copy(update={"level": level}) for sp in self.skill_points]
        return list(self.skill_points)

    def assess(
        self,
        skill_point_id: str,
        level: SkillLevel | int,
        at: datetime | None = None,
    ) -> SkillPoint:
        """Record the user's self-assessment of one skill point."""
        self._require("assess", OnboardingStep.SKILL_ASSESSMENT)
        for i, sp in enumerate(self.skill_points):
            if sp.id == skill_point_id:
                self.skill_points[i] = self.skill_tracker.assess(sp, level, at or datetime.now())
                return self.skill_points[i]
        raise ValidationFailure(f"unknown skill point: {skill_point_id}")

    def paste_material(self, materials: list[Material]) -> list[ImportDraft]:
        """Generate drafts from pasted material; pasting again regenerates them."""
        self._require("paste_material", OnboardingStep.MATERIAL_PASTE)
        if self.import_session is None:
            self.import_session = ImportSession(
                self._gateway, ingester=self._ingester, synthesizer=self._synthesizer
            )
        context = DirectionContext(
            direction_id=self.direction.id,
            name=self.direction.name,
            language=self.direction.language,
            vocabulary=[sp.label for sp in self.skill_points],
        )
        return self.import_session.generate(materials, context)

    def build_preview(self, at: datetime | None = None) -> TodayPreview:
        """Preview today's plan as it will look once onboarding finishes.

        Selected drafts count as cards due immediately.
        """
        self._require("build_preview", OnboardingStep.TODAY_PREVIEW)
        at = at or datetime.now()

        pending = [
            Card(
                id=draft.id,
                direction_id=self.direction.id,
                language=self.direction.language,
                title=draft.title,
                body=draft.body,
                tags=list(draft.tags),
                confidence=draft.confidence,
                review=ReviewState(due_at=at),
            )
            for draft in self._selected_drafts()
        ]
        cards = self._gateway.list_cards() + pending
        skill_points = self._gateway.list_skill_points() + self.skill_points
        stage = self.stage_machine.derive(sp.level for sp in self.skill_points)
        plan = self.scheduler.plan(cards, skill_points, at, stages={self.direction.id: stage})
        vault = self._vault.summary() if self._vault is not None else VaultSummary()
        self.preview = self.scheduler.preview(plan, vault)
        return self.preview

    def _selected_drafts(self) -> list[ImportDraft]:
        if self.import_session is None or self.import_session.status != ImportStatus.PREVIEWED:
            return []
        return self.import_session.selected_drafts

    # Navigation

    def _check_gate(self) -> None:
        if self.step == OnboardingStep.DIRECTION_SELECTION:
            if self.direction is None:
                raise ValidationFailure("choose a direction first")
            if not self.direction.name:
                raise ValidationFailure("direction name cannot be empty")
            if not self.direction.language:
                raise ValidationFailure("direction language cannot be empty")
            if not self.skill_points:
                raise ValidationFailure("add at least one skill point")
        elif self.step == OnboardingStep.STAGE_ASSIGNMENT:
            if self.starting_stage is None:
                raise ValidationFailure("pick a starting stage")
        elif self.step == OnboardingStep.MATERIAL_PASTE:
            if self.import_session is not None and self.import_session.status not in (
                ImportStatus.COLLECTING,
                ImportStatus.PREVIEWED,
            ):
                raise ValidationFailure(
                    f"import session is {self.import_session.status.value}"
                )
        elif self.step == OnboardingStep.TODAY_PREVIEW:
            if self.preview is None:
                raise ValidationFailure("build the today preview first")

    def advance(self) -> OnboardingStep:
        """Move to the next step once the current step's gate passes.

        Raises:
            ValidationFailure: The current step is incomplete.
            InvalidTransition: Already at the last step.
        """
        if self.result is not None or self.step == STEP_ORDER[-1]:
            raise InvalidTransition("advance", self.step.value)
        self._check_gate()
        self.step = STEP_ORDER[STEP_ORDER.index(self.step) + 1]
        logger.debug("onboarding_step", step=self.step.value)
        return self.step

    def back(self) -> OnboardingStep:
        """Return to the previous step."""
        if self.result is not None or self.step == STEP_ORDER[0]:
            raise InvalidTransition("back", self.step.value)
        if self.step == OnboardingStep.TODAY_PREVIEW:
            self.preview = None
        self.step = STEP_ORDER[STEP_ORDER.index(self.step) - 1]
        return self.step

    # Completion

    def finish(self, at: datetime | None = None) -> OnboardingResult:
        """Persist the direction, its skill points and any selected drafts.

        The direction is saved first so the drafts have somewhere to go; a
        failed commit leaves the wizard on the finish step and calling
        ``finish`` again retries it.

        Raises:
            InvalidTransition: Not on the finish step.
            CollaboratorFailure: Persistence failed.
        """
        self._require("finish", OnboardingStep.FINISH)
        at = at or datetime.now()

        direction = self.stage_machine.refresh(self.direction, self.skill_points, now=at)
        try:
            self._gateway.save_direction(direction, self.skill_points)
        except KnowflowError:
            raise
        except Exception as e:
            logger.error("onboarding_save_failed", direction_id=direction.id, error=str(e))
            raise CollaboratorFailure(f"could not save direction {direction.id}: {e}") from e

        cards: list[Card] = []
        if self._selected_drafts():
            cards = self.import_session.commit(direction.id, now=at)

        self.direction = direction
        self.result = OnboardingResult(
            direction=direction,
            skill_points=list(self.skill_points),
            cards=cards,
            preview=self.preview,
        )
        logger.info(
            "onboarding_finished",
            direction_id=direction.id,
            stage=direction.stage.value,
            skill_points=len(self.skill_points),
            cards=len(cards),
        )
        return self.result
