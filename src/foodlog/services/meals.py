"""Meal grouping service."""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, tzinfo
from uuid import UUID, uuid4

from foodlog.adapters.local_store import LocalFoodLogStore
from foodlog.domain.meals import Meal


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class MealService:
    """Resolves the single meal for a (type, calendar day) pair.

    Callers run these methods inside a store transaction; a meal created by
    ``meal_for`` is only committed together with the entries attached to it.
    """

    store: LocalFoodLogStore
    timezone: tzinfo = UTC
    now_provider: Callable[[], datetime] = field(default=_utc_now)
    id_provider: Callable[[], UUID] = field(default=uuid4)

    def fetch_meal(self, meal_id: UUID) -> Meal | None:
        """Return a meal by id."""
        return self.store.get_meal(meal_id)

    def meal_for(self, type_id: UUID, logged_at: datetime) -> Meal:
        """Return the meal for a type on the day of logged_at, creating it."""
        existing = self.find_meal(type_id, logged_at)
        if existing is not None:
            return existing
        meal = Meal(
            id=self.id_provider(),
            type_id=type_id,
            created_at=self.start_of_day(logged_at),
            updated_at=self.now_provider(),
        )
        self.store.insert_meal(meal)
        return meal

    def find_meal(self, type_id: UUID, day: datetime) -> Meal | None:
        """Return the meal for a type on the same calendar day, if any."""
        for meal in self.store.meals_of_type(type_id):
            if self.is_same_day(meal.created_at, day):
                return meal
        return None

    def requires_reassignment(
        self, current_meal: Meal, new_logged_at: datetime
    ) -> bool:
        """Return whether a new logged time falls on another day."""
        return not self.is_same_day(current_meal.created_at, new_logged_at)

    def touch(self, meal: Meal) -> None:
        meal.updated_at = self.now_provider()

    def delete_meal_if_empty(self, meal: Meal) -> bool:
        """Delete a meal that no longer has entries."""
        if self.store.entries_for_meal(meal.id):
            return False
        self.store.delete_meal(meal.id)
        return True

    def start_of_day(self, moment: datetime) -> datetime:
        """Return local midnight for the day containing moment."""
        local = moment.astimezone(self.timezone)
        return local.replace(hour=0, minute=0, second=0, microsecond=0)

    def is_same_day(self, first: datetime, second: datetime) -> bool:
        return (
            first.astimezone(self.timezone).date()
            == second.astimezone(self.timezone).date()
        )
