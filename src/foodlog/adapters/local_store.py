"""Single-writer local store for meals, entries and photo assets."""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from uuid import UUID

from sqlalchemy import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, col, create_engine, select

from foodlog.domain.meals import AIAnalysisStatus, Meal, MealEntry, MealType
from foodlog.domain.photos import EntryPhotoAsset, PhotoAssetSyncState

_logger = logging.getLogger(__name__)


def create_sqlite_engine(path: Path | None = None) -> Engine:
    """Return an engine for a sqlite file, or for a private in-memory database."""
    if path is None:
        return create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    path.parent.mkdir(parents=True, exist_ok=True)
    return create_engine(
        f"sqlite:///{path.as_posix()}", connect_args={"check_same_thread": False}
    )


class LocalFoodLogStore:
    """Lock-guarded SQLModel store with all-or-nothing transactions.

    One session is shared by every caller, so a record read twice is the same
    object. Callers mutate records only inside ``transaction()``; the block is
    committed when it exits and rolled back if it raises, which reloads the
    touched records from the database. Nested blocks join the outer one.
    Deleting a meal or an entry cascades through the ORM relationships to its
    entries and photo asset.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path
        self.engine = create_sqlite_engine(path)
        SQLModel.metadata.create_all(self.engine)
        self._session = Session(self.engine, expire_on_commit=False)
        self._lock = threading.RLock()
        self._depth = 0
        if path is not None:
            _logger.info("Opened food log database at %s", path)

    @contextmanager
    def transaction(self) -> Iterator["LocalFoodLogStore"]:
        """Run a block of mutations as one committed unit."""
        with self._lock:
            if self._depth > 0:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return

            self._depth = 1
            try:
                yield self
                self._session.commit()
            except BaseException:
                self._session.rollback()
                raise
            finally:
                self._depth = 0

    def close(self) -> None:
        with self._lock:
            self._session.close()
            self.engine.dispose()

    def list_meal_types(self) -> list[MealType]:
        with self._lock:
            return list(self._session.exec(select(MealType)).all())

    def get_meal_type(self, type_id: UUID) -> MealType | None:
        with self._lock:
            return self._session.get(MealType, type_id)

    def insert_meal_type(self, meal_type: MealType) -> None:
        with self._lock:
            self._session.add(meal_type)

    def list_meals(self) -> list[Meal]:
        with self._lock:
            return list(self._session.exec(select(Meal)).all())

    def get_meal(self, meal_id: UUID) -> Meal | None:
        with self._lock:
            return self._session.get(Meal, meal_id)

    def meals_of_type(self, type_id: UUID) -> list[Meal]:
        with self._lock:
            statement = select(Meal).where(Meal.type_id == type_id)
            return list(self._session.exec(statement).all())

    def oldest_meal_with_status(self, status: AIAnalysisStatus) -> Meal | None:
        """Return the least recently updated meal in an analysis status."""
        with self._lock:
            statement = (
                select(Meal)
                .where(Meal.ai_analysis_status == status)
                .order_by(col(Meal.updated_at))
                .limit(1)
            )
            return self._session.exec(statement).first()

    def insert_meal(self, meal: Meal) -> None:
        with self._lock:
            self._session.add(meal)

    def delete_meal(self, meal_id: UUID) -> None:
        """Delete a meal together with its entries and their photo assets."""
        with self._lock:
            meal = self._session.get(Meal, meal_id)
            if meal is not None:
                self._session.delete(meal)
                self._session.flush()

    def list_entries(self) -> list[MealEntry]:
        with self._lock:
            return list(self._session.exec(select(MealEntry)).all())

    def get_entry(self, entry_id: UUID) -> MealEntry | None:
        with self._lock:
            return self._session.get(MealEntry, entry_id)

    def entries_for_meal(self, meal_id: UUID) -> list[MealEntry]:
        with self._lock:
            statement = select(MealEntry).where(MealEntry.meal_id == meal_id)
            return list(self._session.exec(statement).all())

    def entries_with_assets(self) -> list[tuple[MealEntry, EntryPhotoAsset | None]]:
        """Return every entry paired with its photo asset, if it has one."""
        with self._lock:
            statement = select(MealEntry, EntryPhotoAsset).join(
                EntryPhotoAsset,
                col(EntryPhotoAsset.entry_id) == col(MealEntry.id),
                isouter=True,
            )
            return [(entry, asset) for entry, asset in self._session.exec(statement)]

    def insert_entry(self, entry: MealEntry) -> None:
        with self._lock:
            self._session.add(entry)

    def delete_entry(self, entry_id: UUID) -> None:
        """Delete an entry and cascade to its photo asset."""
        with self._lock:
            entry = self._session.get(MealEntry, entry_id)
            if entry is not None:
                self._session.delete(entry)
                self._session.flush()

    def list_photo_assets(self) -> list[EntryPhotoAsset]:
        with self._lock:
            return list(self._session.exec(select(EntryPhotoAsset)).all())

    def photo_assets_in_states(
        self, *states: PhotoAssetSyncState
    ) -> list[EntryPhotoAsset]:
        with self._lock:
            statement = select(EntryPhotoAsset).where(
                col(EntryPhotoAsset.state).in_(states)
            )
            return list(self._session.exec(statement).all())

    def orphaned_photo_assets(self) -> list[EntryPhotoAsset]:
        """Return live assets whose entry no longer exists."""
        with self._lock:
            statement = (
                select(EntryPhotoAsset)
                .join(
                    MealEntry,
                    col(MealEntry.id) == col(EntryPhotoAsset.entry_id),
                    isouter=True,
                )
                .where(
                    col(MealEntry.id).is_(None),
                    EntryPhotoAsset.state != PhotoAssetSyncState.DELETED,
                )
            )
            return list(self._session.exec(statement).all())

    def get_photo_asset(self, asset_id: UUID) -> EntryPhotoAsset | None:
        with self._lock:
            return self._session.get(EntryPhotoAsset, asset_id)

    def asset_for_entry(self, entry_id: UUID) -> EntryPhotoAsset | None:
        with self._lock:
            statement = select(EntryPhotoAsset).where(
                EntryPhotoAsset.entry_id == entry_id
            )
            return self._session.exec(statement).first()

    def insert_photo_asset(self, asset: EntryPhotoAsset) -> None:
        with self._lock:
            self._session.add(asset)
