"""JSON vault persistence (single document + fcntl.flock + atomic write)."""

import fcntl
import json
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

import structlog

from knowflow.config import Settings
from knowflow.errors import ConflictFailure, DirectionNotFound, ValidationFailure
from knowflow.models.card import Card, OutcomeUpdate, ReviewState
from knowflow.models.direction import Direction, DirectionSnapshot, SkillPoint
from knowflow.models.plan import VaultSummary
from knowflow.models.reminder import ReminderPreferences
from knowflow.progress.stage import DirectionStageMachine

logger = structlog.get_logger()

VAULT_FILENAME = "vault.json"


def _empty() -> dict:
    return {"directions": {}, "skill_points": {}, "cards": {}, "reminder_preferences": None}


class JsonVault:
    """File-backed persistence gateway and vault summary provider.

    Every mutation runs under an exclusive lock on a sidecar lock file and
    replaces the document atomically, so a failed write leaves the previous
    document untouched. Applying an outcome also re-derives the cached
    stage of the direction owning the skill point, in the same write.
    """

    def __init__(self, path: Path, stage_machine: DirectionStageMachine | None = None):
        self.path = Path(path)
        self.stage_machine = stage_machine or DirectionStageMachine()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock_path = self.path.with_name(self.path.name + ".lock")

    @classmethod
    def from_settings(cls, settings: Settings) -> "JsonVault":
        return cls(
            settings.vault_dir / VAULT_FILENAME,
            stage_machine=DirectionStageMachine.from_settings(settings),
        )

    def _load(self) -> dict:
        if not self.path.exists():
            return _empty()
        data = json.loads(self.path.read_text(encoding="utf-8"))
        return {**_empty(), **data}

    def _write(self, data: dict) -> None:
        with tempfile.NamedTemporaryFile(
            "w", dir=self.path.parent, delete=False, suffix=".json", encoding="utf-8"
        ) as tmp:
            json.dump(data, tmp, ensure_ascii=False, indent=2)
        os.replace(tmp.name, self.path)

    @contextmanager
    def _locked(self, exclusive: bool = True) -> Iterator[dict]:
        """Yield the document under a file lock; exclusive holders write it back."""
        with open(self._lock_path, "w") as lock_file:
            fcntl.flock(lock_file, fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
            try:
                data = self._load()
                yield data
                if exclusive:
                    self._write(data)
            finally:
                fcntl.flock(lock_file, fcntl.LOCK_UN)

    # Directions and skill points

    def load_direction(self, direction_id: str) -> DirectionSnapshot:
        with self._locked(exclusive=False) as data:
            raw = data["directions"].get(direction_id)
            if raw is None:
                raise DirectionNotFound(direction_id)
            direction = Direction.model_validate(raw)
            skill_points = [
                SkillPoint.model_validate(data["skill_points"][sp_id])
                for sp_id in direction.skill_point_ids
                if sp_id in data["skill_points"]
            ]
        return DirectionSnapshot(direction=direction, skill_points=skill_points)

    def save_direction(self, direction: Direction, skill_points: list[SkillPoint]) -> None:
        for sp in skill_points:
            if sp.direction_id != direction.id:
                raise ValidationFailure(
                    f"skill point {sp.id} belongs to {sp.direction_id}, not {direction.id}"
                )
        ids = list(direction.skill_point_ids)
        ids.extend(sp.id for sp in skill_points if sp.id not in ids)
        direction = direction.model_copy(update={"skill_point_ids": ids})

        with self._locked() as data:
            data["directions"][direction.id] = direction.model_dump(mode="json")
            for sp in skill_points:
                data["skill_points"][sp.id] = sp.model_dump(mode="json")
        logger.info("direction_saved", direction_id=direction.id, skill_points=len(ids))

    def delete_direction(self, direction_id: str) -> None:
        with self._locked() as data:
            if data["directions"].pop(direction_id, None) is None:
                raise DirectionNotFound(direction_id)
            data["skill_points"] = {
                k: v for k, v in data["skill_points"].items() if v["direction_id"] != direction_id
            }
            data["cards"] = {
                k: v for k, v in data["cards"].items() if v["direction_id"] != direction_id
            }
        logger.info("direction_deleted", direction_id=direction_id)

    def list_skill_points(self, direction_id: str | None = None) -> list[SkillPoint]:
        with self._locked(exclusive=False) as data:
            rows = list(data["skill_points"].values())
        return [
            SkillPoint.model_validate(row)
            for row in rows
            if direction_id is None or row["direction_id"] == direction_id
        ]

    # Cards

    def save_cards(self, direction_id: str, cards: list[Card]) -> None:
        for card in cards:
            if card.direction_id != direction_id:
                raise ValidationFailure(
                    f"card {card.id} belongs to {card.direction_id}, not {direction_id}"
                )
        with self._locked() as data:
            if direction_id not in data["directions"]:
                raise DirectionNotFound(direction_id)
            for card in cards:
                data["cards"][card.id] = card.model_dump(mode="json")
        logger.info("cards_saved", direction_id=direction_id, count=len(cards))

    def list_cards(self, direction_id: str | None = None) -> list[Card]:
        with self._locked(exclusive=False) as data:
            rows = list(data["cards"].values())
        return [
            Card.model_validate(row)
            for row in rows
            if direction_id is None or row["direction_id"] == direction_id
        ]

    def apply_outcome(self, update: OutcomeUpdate) -> ReviewState:
        """Store one outcome and re-derive the owning direction's stage.

        Checks run before anything is written, so a rejected update leaves
        the card, the skill point and the direction as they were.
        """
        with self._locked() as data:
            raw = data["cards"].get(update.card_id)
            if raw is None:
                raise ValidationFailure(f"card not found: {update.card_id}")
            card = Card.model_validate(raw)
            if card.review.due_at > update.baseline_due_at:
                raise ConflictFailure(
                    f"card {card.id} was already advanced to {card.review.due_at.isoformat()}"
                )
            if update.skill_point is not None:
                sp_raw = data["skill_points"].get(update.skill_point.id)
                if sp_raw is None:
                    raise ValidationFailure(f"skill point not found: {update.skill_point.id}")
                self._check_skill_baseline(SkillPoint.model_validate(sp_raw), update)
                data["skill_points"][update.skill_point.id] = update.skill_point.model_dump(
                    mode="json"
                )
                self._refresh_stage(data, update.skill_point.direction_id, update.at)
            card = card.model_copy(update={"review": update.review})
            data["cards"][card.id] = card.model_dump(mode="json")
        return card.review

    @staticmethod
    def _check_skill_baseline(stored: SkillPoint, update: OutcomeUpdate) -> None:
        baseline = update.skill_point_baseline
        if baseline is None:
            return
        if (stored.level, stored.last_reviewed_at) != (baseline.level, baseline.last_reviewed_at):
            raise ConflictFailure(
                f"skill point {stored.id} moved to {stored.level.label} since it was read"
            )

    def _refresh_stage(self, data: dict, direction_id: str, at: datetime) -> None:
        raw = data["directions"].get(direction_id)
        if raw is None:
            return
        direction = Direction.model_validate(raw)
        skill_points = [
            SkillPoint.model_validate(data["skill_points"][sp_id])
            for sp_id in direction.skill_point_ids
            if sp_id in data["skill_points"]
        ]
        refreshed = self.stage_machine.refresh(direction, skill_points, now=at)
        if refreshed is not direction:
            data["directions"][direction_id] = refreshed.model_dump(mode="json")

    # Reminder preferences

    def load_reminder_preferences(self) -> ReminderPreferences:
        with self._locked(exclusive=False) as data:
            raw = data["reminder_preferences"]
        if raw is None:
            return ReminderPreferences()
        return ReminderPreferences.model_validate(raw)

    def save_reminder_preferences(self, preferences: ReminderPreferences) -> None:
        with self._locked() as data:
            data["reminder_preferences"] = preferences.model_dump(mode="json")
        logger.info("reminder_preferences_saved")

    # Vault summary

    def summary(self) -> VaultSummary:
        with self._locked(exclusive=False) as data:
            cards = list(data["cards"].values())
            summary = VaultSummary(
                directions=len(data["directions"]),
                skill_points=len(data["skill_points"]),
                cards=len(cards),
                evidence=sum(len(c.get("evidence", [])) for c in cards),
                tags=len({tag for c in cards for tag in c.get("tags", [])}),
                storage_bytes=self.path.stat().st_size if self.path.exists() else 0,
            )
        return summary
