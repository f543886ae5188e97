"""Import session: preview synthesized drafts, select them, commit as cards."""

import threading
import uuid
from datetime import datetime
from enum import StrEnum

import structlog

from knowflow.errors import (
    CollaboratorFailure,
    InvalidTransition,
    NothingSelected,
    SessionBusy,
    ValidationFailure,
)
from knowflow.models.card import Card, Evidence, ReviewState
from knowflow.models.direction import Direction
from knowflow.models.material import DirectionContext, ImportDraft, Material, SourceRef
from knowflow.storage.gateways import PersistenceGateway
from knowflow.synthesis.ingester import MaterialIngester
from knowflow.synthesis.synthesizer import CardSynthesizer

logger = structlog.get_logger()

EXCERPT_CHARS = 200


class ImportStatus(StrEnum):
    """Import session lifecycle states."""

    COLLECTING = "collecting"
    PREVIEWED = "previewed"
    COMMITTING = "committing"
    COMMITTED = "committed"


def _excerpt(text: str) -> str:
    text = " ".join(text.split())
    return text if len(text) <= EXCERPT_CHARS else text[:EXCERPT_CHARS] + "…"


class ImportSession:
    """Owns the drafts of one import or onboarding action.

    At most one state transition runs at a time; a second ``generate`` or
    ``commit`` while one is in flight raises ``SessionBusy`` instead of
    waiting. Commit is all-or-nothing: on failure the session is back in
    ``previewed`` with every selection intact.

    Args:
        gateway: Persistence collaborator receiving committed cards.
        ingester: Material splitter.
        synthesizer: Fragment clusterer.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        ingester: MaterialIngester | None = None,
        synthesizer: CardSynthesizer | None = None,
    ):
        self.session_id = str(uuid.uuid4())
        self.status = ImportStatus.COLLECTING
        self._gateway = gateway
        self._ingester = ingester or MaterialIngester()
        self._synthesizer = synthesizer or CardSynthesizer()
        self._drafts: list[ImportDraft] = []
        self._committed: list[Card] = []
        self._lock = threading.Lock()

    @property
    def drafts(self) -> list[ImportDraft]:
        return list(self._drafts)

    @property
    def selected_drafts(self) -> list[ImportDraft]:
        return [d for d in self._drafts if d.selected]

    @property
    def committed_cards(self) -> list[Card]:
        return list(self._committed)

    def _require(self, operation: str, *allowed: ImportStatus) -> None:
        if self.status == ImportStatus.COMMITTING:
            raise SessionBusy()
        if self.status not in allowed:
            raise InvalidTransition(operation, self.status.value)

    def _find(self, draft_id: str) -> int | None:
        for i, draft in enumerate(self._drafts):
            if draft.id == draft_id:
                return i
        return None

    def generate(self, materials: list[Material], context: DirectionContext) -> list[ImportDraft]:
        """Synthesize drafts for every material and move to ``previewed``.

        Calling again replaces the drafts; identical input yields identical
        drafts. Materials with no usable text contribute no drafts.

        Raises:
            ValidationFailure: No materials were given.
            InvalidTransition: The session was already committed.
            SessionBusy: Another transition is in flight.
        """
        if not self._lock.acquire(blocking=False):
            raise SessionBusy()
        try:
            self._require("generate", ImportStatus.COLLECTING, ImportStatus.PREVIEWED)
            if not materials:
                raise ValidationFailure("no material to import")

            drafts: list[ImportDraft] = []
            for m_index, material in enumerate(materials, start=1):
                fragments = self._ingester.ingest(material)
                clusters = self._synthesizer.synthesize(fragments, context, material.tags)
                by_index = {f.index: f for f in fragments}
                for cluster in clusters:
                    cluster_id = f"m{m_index}-{cluster.id}"
                    source_text = " ".join(by_index[i].text for i in cluster.fragment_indices)
                    drafts.append(
                        ImportDraft(
                            id=cluster_id,
                            cluster_id=cluster_id,
                            title=cluster.title,
                            tags=cluster.tags,
                            body=cluster.body,
                            confidence=cluster.confidence,
                            source=SourceRef(
                                kind=material.kind,
                                excerpt=_excerpt(source_text or material.url or ""),
                                url=material.url,
                                title=material.title,
                            ),
                        )
                    )

            self._drafts = drafts
            self.status = ImportStatus.PREVIEWED
            logger.info(
                "drafts_generated",
                session_id=self.session_id,
                materials=len(materials),
                drafts=len(drafts),
            )
            return self.drafts
        finally:
            self._lock.release()

    def toggle_select(self, draft_id: str) -> bool | None:
        """Flip a draft's selection.

        Returns:
            The new selection state, or None when the draft id is unknown.

        Raises:
            SessionBusy: Another transition is in flight.
        """
        if not self._lock.acquire(blocking=False):
            raise SessionBusy()
        try:
            self._require("toggle_select", ImportStatus.PREVIEWED)
            i = self._find(draft_id)
            if i is None:
                logger.warning("draft_not_found", session_id=self.session_id, draft_id=draft_id)
                return None
            draft = self._drafts[i]
            self._drafts[i] = draft.model_copy(update={"selected": not draft.selected})
            return self._drafts[i].selected
        finally:
            self._lock.release()

    def edit_draft(
        self,
        draft_id: str,
        title: str | None = None,
        body: str | None = None,
        tags: list[str] | None = None,
    ) -> ImportDraft:
        """Apply user edits to a draft before commit.

        Raises:
            ValidationFailure: Unknown draft or blank title/body.
            SessionBusy: Another transition is in flight.
        """
        if not self._lock.acquire(blocking=False):
            raise SessionBusy()
        try:
            self._require("edit_draft", ImportStatus.PREVIEWED)
            i = self._find(draft_id)
            if i is None:
                raise ValidationFailure(f"unknown draft: {draft_id}")

            changes: dict = {}
            if title is not None:
                if not title.strip():
                    raise ValidationFailure("draft title cannot be empty")
                changes["title"] = title.strip()
            if body is not None:
                if not body.strip():
                    raise ValidationFailure("draft body cannot be empty")
                changes["body"] = body.strip()
            if tags is not None:
                changes["tags"] = sorted({t.strip().lower() for t in tags if t.strip()})

            self._drafts[i] = self._drafts[i].model_copy(update=changes)
            return self._drafts[i]
        finally:
            self._lock.release()

    def commit(
        self,
        direction_id: str,
        now: datetime | None = None,
        skill_point_id: str | None = None,
    ) -> list[Card]:
        """Persist every selected draft as a card, all or nothing.

        Args:
            direction_id: Direction receiving the cards.
            now: Commit instant; cards are due immediately.
            skill_point_id: Optional skill point the cards train.

        Returns:
            The committed cards.

        Raises:
            NothingSelected: No draft is selected.
            DirectionNotFound: The direction does not exist.
            CollaboratorFailure: Persistence failed; session is back in ``previewed``.
            SessionBusy: Another transition is in flight.
        """
        if not self._lock.acquire(blocking=False):
            raise SessionBusy()
        try:
            self._require("commit", ImportStatus.PREVIEWED)
            selected = self.selected_drafts
            if not selected:
                raise NothingSelected()

            now = now or datetime.now()
            self.status = ImportStatus.COMMITTING
            try:
                snapshot = self._gateway.load_direction(direction_id)
                if skill_point_id is not None and skill_point_id not in {
                    sp.id for sp in snapshot.skill_points
                }:
                    raise ValidationFailure(
                        f"skill point {skill_point_id} does not belong to direction {direction_id}"
                    )
                cards = [
                    self._to_card(draft, snapshot.direction, now, skill_point_id)
                    for draft in selected
                ]
                self._gateway.save_cards(direction_id, cards)
            except ValidationFailure:
                self.status = ImportStatus.PREVIEWED
                raise
            except Exception as e:
                self.status = ImportStatus.PREVIEWED
                logger.error(
                    "commit_failed",
                    session_id=self.session_id,
                    direction_id=direction_id,
                    error=str(e),
                )
                raise CollaboratorFailure(f"could not save cards: {e}") from e

            self._committed = cards
            self.status = ImportStatus.COMMITTED
            logger.info(
                "drafts_committed",
                session_id=self.session_id,
                direction_id=direction_id,
                cards=len(cards),
            )
            return self.committed_cards
        finally:
            self._lock.release()

    @staticmethod
    def _to_card(
        draft: ImportDraft,
        direction: Direction,
        now: datetime,
        skill_point_id: str | None,
    ) -> Card:
        return Card(
            id=str(uuid.uuid4()),
            direction_id=direction.id,
            skill_point_id=skill_point_id,
            language=direction.language,
            title=draft.title,
            body=draft.body,
            tags=list(draft.tags),
            confidence=draft.confidence,
            evidence=[Evidence(excerpt=draft.source.excerpt, url=draft.source.url)],
            created_at=now,
            review=ReviewState(due_at=now),
        )
