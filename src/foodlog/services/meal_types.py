"""Meal type catalog service."""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, tzinfo
from uuid import UUID, uuid4

from foodlog.adapters.local_store import LocalFoodLogStore
from foodlog.domain.errors import (
    DuplicateMealTypeNameError,
    InvalidMealTypeNameError,
    MissingMealTypeError,
)
from foodlog.domain.meals import MealType

DEFAULT_TYPE_NAMES: tuple[str, ...] = (
    "Breakfast",
    "Lunch",
    "Dinner",
    "Afternoon Snack",
    "Snack",
    "Workout Fuel",
    "Protein Shake",
)

_FALLBACK_TYPE_NAME = "Snack"


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class MealTypeService:
    """Manages meal categories and suggests one for a time of day."""

    store: LocalFoodLogStore
    timezone: tzinfo = UTC
    now_provider: Callable[[], datetime] = field(default=_utc_now)
    id_provider: Callable[[], UUID] = field(default=uuid4)

    def bootstrap_default_types_if_needed(self) -> None:
        """Seed the system meal types when the catalog is empty."""
        with self.store.transaction():
            if self.store.list_meal_types():
                return
            now = self.now_provider()
            for name in DEFAULT_TYPE_NAMES:
                self.store.insert_meal_type(
                    MealType(
                        id=self.id_provider(),
                        display_name=name,
                        is_system=True,
                        created_at=now,
                        updated_at=now,
                    )
                )

    def list_types(self) -> list[MealType]:
        """Return all meal types sorted by name."""
        return sorted(self.store.list_meal_types(), key=lambda t: t.display_name)

    def get_type(self, type_id: UUID) -> MealType | None:
        """Return a meal type by id."""
        return self.store.get_meal_type(type_id)

    def fallback_snack_type(self) -> MealType | None:
        """Return Snack, or the first type when Snack was renamed away."""
        snack = self._find_by_name(_FALLBACK_TYPE_NAME)
        if snack is not None:
            return snack
        types = self.list_types()
        return types[0] if types else None

    def suggest_meal_type(self, at: datetime) -> MealType | None:
        """Suggest a meal type from the local hour of a timestamp."""
        hour = at.astimezone(self.timezone).hour
        if hour < 11:
            suggested = "Breakfast"
        elif hour < 15:
            suggested = "Lunch"
        elif hour < 18:
            suggested = "Afternoon Snack"
        else:
            suggested = "Dinner"
        return self._find_by_name(suggested) or self.fallback_snack_type()

    def create_custom_type(self, raw_name: str) -> MealType:
        """Create a user-defined meal type with a unique name."""
        name = _sanitize_name(raw_name)
        if not name:
            raise InvalidMealTypeNameError()
        with self.store.transaction():
            if self._find_by_name(name) is not None:
                raise DuplicateMealTypeNameError(name)
            now = self.now_provider()
            meal_type = MealType(
                id=self.id_provider(),
                display_name=name,
                is_system=False,
                created_at=now,
                updated_at=now,
            )
            self.store.insert_meal_type(meal_type)
        return meal_type

    def rename_type(self, type_id: UUID, raw_name: str) -> MealType:
        """Rename a meal type, keeping names unique."""
        with self.store.transaction():
            meal_type = self.store.get_meal_type(type_id)
            if meal_type is None:
                raise MissingMealTypeError(type_id)
            name = _sanitize_name(raw_name)
            if not name:
                raise InvalidMealTypeNameError()
            duplicate = self._find_by_name(name)
            if duplicate is not None and duplicate.id != meal_type.id:
                raise DuplicateMealTypeNameError(name)
            if meal_type.display_name != name:
                meal_type.display_name = name
                meal_type.updated_at = self.now_provider()
        return meal_type

    def _find_by_name(self, raw_name: str) -> MealType | None:
        normalized = _normalize_name(raw_name)
        if not normalized:
            return None
        for meal_type in self.list_types():
            if _normalize_name(meal_type.display_name) == normalized:
                return meal_type
        return None


def _sanitize_name(value: str) -> str:
    """Trim and collapse internal whitespace."""
    return " ".join(value.split())


def _normalize_name(value: str) -> str:
    return _sanitize_name(value).casefold()
