"""Meal entry ingestion and mutation service."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from uuid import UUID, uuid4

from foodlog.adapters.image_processor import ImageProcessor
from foodlog.adapters.image_store import ImageStore
from foodlog.adapters.local_store import LocalFoodLogStore
from foodlog.domain.errors import (
    CapturePhotoLimitExceededError,
    EmptyCaptureSessionError,
    MissingEntryError,
    MissingMealError,
    MissingMealTypeError,
)
from foodlog.domain.meals import AIAnalysisStatus, MealEntry, MealType
from foodlog.domain.photos import EntryPhotoAsset, PhotoAssetSyncState
from foodlog.services.images import image_candidates
from foodlog.services.meal_types import MealTypeService
from foodlog.services.meals import MealService

MAX_CAPTURE_PHOTOS = 8

_logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class LoggedAtUpdate(StrEnum):
    """Result of editing an entry's logged time."""

    UPDATED = "updated"
    REASSIGNED = "reassigned"
    REQUIRES_CONFIRMATION = "requires_confirmation"


@dataclass
class MealEntryService:
    """Creates, moves and deletes meal entries with their photo files."""

    store: LocalFoodLogStore
    image_store: ImageStore
    image_processor: ImageProcessor
    meal_service: MealService
    meal_type_service: MealTypeService
    now_provider: Callable[[], datetime] = field(default=_utc_now)
    id_provider: Callable[[], UUID] = field(default=uuid4)

    def bootstrap_meal_types_if_needed(self) -> None:
        self.meal_type_service.bootstrap_default_types_if_needed()

    def list_meal_types(self) -> list[MealType]:
        return self.meal_type_service.list_types()

    def list_entries_newest_first(self) -> list[MealEntry]:
        """Return all entries ordered by logged time, newest first."""
        return sorted(
            self.store.list_entries(), key=lambda entry: entry.logged_at, reverse=True
        )

    def ingest(  # noqa: PLR0913
        self,
        images: list[bytes],
        meal_type_id: UUID,
        logged_at: datetime,
        notes: str | None = None,
        analysis_requested: bool = False,
        captured_at: datetime | None = None,
    ) -> list[MealEntry]:
        """Store photos and attach one entry per photo to the matching meal.

        All files are written before the store transaction. If anything fails,
        the files written by this call are removed and the error is re-raised.
        """
        if not images:
            raise EmptyCaptureSessionError()
        if len(images) > MAX_CAPTURE_PHOTOS:
            raise CapturePhotoLimitExceededError(len(images), MAX_CAPTURE_PHOTOS)
        if self.store.get_meal_type(meal_type_id) is None:
            raise MissingMealTypeError(meal_type_id)

        written: list[str] = []
        try:
            prepared: list[tuple[UUID, str, str]] = []
            for image in images:
                entry_id = self.id_provider()
                processed = self.image_processor.preprocess(image)
                full_filename = self.image_store.save_bytes(
                    processed.full_bytes, f"{entry_id}-full.jpg"
                )
                written.append(full_filename)
                thumbnail_filename = self.image_store.save_bytes(
                    processed.thumbnail_bytes, f"{entry_id}-thumb.jpg"
                )
                written.append(thumbnail_filename)
                prepared.append((entry_id, full_filename, thumbnail_filename))

            with self.store.transaction():
                if self.store.get_meal_type(meal_type_id) is None:
                    raise MissingMealTypeError(meal_type_id)
                meal = self.meal_service.meal_for(meal_type_id, logged_at)
                now = self.now_provider()
                entries: list[MealEntry] = []
                for entry_id, full_filename, thumbnail_filename in prepared:
                    entry = MealEntry(
                        id=entry_id,
                        meal_id=meal.id,
                        image_filename=full_filename,
                        captured_at=captured_at or now,
                        logged_at=logged_at,
                        updated_at=now,
                        photo_asset_id=entry_id,
                    )
                    self.store.insert_entry(entry)
                    self.store.insert_photo_asset(
                        EntryPhotoAsset(
                            id=entry_id,
                            entry_id=entry_id,
                            state=PhotoAssetSyncState.PENDING,
                            updated_at=now,
                            full_image_filename=full_filename,
                            thumbnail_filename=thumbnail_filename,
                        )
                    )
                    entries.append(entry)
                if notes is not None:
                    meal.user_notes = notes.strip() or None
                if analysis_requested:
                    meal.ai_analysis_status = AIAnalysisStatus.PENDING
                    meal.ai_analysis_error_details = None
                self.meal_service.touch(meal)
        except Exception:
            self._discard_files(written)
            raise

        _logger.info("Ingested %s photo(s) into meal %s", len(entries), meal.id)
        return entries

    def delete_entry(self, entry_id: UUID) -> None:
        """Delete an entry, its photo files and its meal when left empty."""
        with self.store.transaction():
            entry = self.store.get_entry(entry_id)
            if entry is None:
                raise MissingEntryError(entry_id)
            filenames = image_candidates(entry, self.store.asset_for_entry(entry.id))
            meal = self.store.get_meal(entry.meal_id)
            self.store.delete_entry(entry.id)
            if meal is not None:
                self.meal_service.touch(meal)
                self.meal_service.delete_meal_if_empty(meal)

        for filename in filenames:
            self.image_store.delete_file(filename)

    def update_logged_at(
        self,
        entry_id: UUID,
        new_logged_at: datetime,
        allow_reassignment: bool = False,
    ) -> LoggedAtUpdate:
        """Change an entry's logged time, moving it to another day's meal if allowed."""
        with self.store.transaction():
            entry = self._require_entry(entry_id)
            origin = self.store.get_meal(entry.meal_id)
            if origin is None:
                raise MissingMealError(entry.meal_id)

            if not self.meal_service.requires_reassignment(origin, new_logged_at):
                entry.logged_at = new_logged_at
                entry.updated_at = self.now_provider()
                self.meal_service.touch(origin)
                return LoggedAtUpdate.UPDATED

            if not allow_reassignment:
                return LoggedAtUpdate.REQUIRES_CONFIRMATION

            destination = self.meal_service.meal_for(origin.type_id, new_logged_at)
            entry.meal_id = destination.id
            entry.logged_at = new_logged_at
            entry.updated_at = self.now_provider()
            self.meal_service.touch(destination)
            self.meal_service.touch(origin)
            self.meal_service.delete_meal_if_empty(origin)
            return LoggedAtUpdate.REASSIGNED

    def reassign_meal_type(self, entry_id: UUID, new_type_id: UUID) -> MealEntry:
        """Move an entry to the meal of another type on the same day."""
        with self.store.transaction():
            if self.store.get_meal_type(new_type_id) is None:
                raise MissingMealTypeError(new_type_id)
            entry = self._require_entry(entry_id)
            origin = self.store.get_meal(entry.meal_id)
            if origin is None:
                raise MissingMealError(entry.meal_id)

            destination = self.meal_service.meal_for(new_type_id, entry.logged_at)
            if destination.id == origin.id:
                return entry

            entry.meal_id = destination.id
            entry.updated_at = self.now_provider()
            self.meal_service.touch(destination)
            self.meal_service.touch(origin)
            self.meal_service.delete_meal_if_empty(origin)
        return entry

    def _require_entry(self, entry_id: UUID) -> MealEntry:
        entry = self.store.get_entry(entry_id)
        if entry is None:
            raise MissingEntryError(entry_id)
        return entry

    def _discard_files(self, filenames: list[str]) -> None:
        for filename in filenames:
            try:
                self.image_store.delete_file(filename)
            except OSError:
                _logger.warning(
                    "Failed to remove %s after aborted ingest", filename, exc_info=True
                )
