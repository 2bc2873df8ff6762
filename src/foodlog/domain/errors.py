"""Validation errors raised by domain operations."""

from uuid import UUID


class FoodLogValidationError(Exception):
    """Bad input to a domain operation; nothing was changed."""


class MissingMealTypeError(FoodLogValidationError):
    """The referenced meal type does not exist."""

    def __init__(self, type_id: UUID) -> None:
        super().__init__(f"Meal type {type_id} not found")
        self.type_id = type_id


class MissingMealError(FoodLogValidationError):
    """The meal for an entry could not be resolved."""

    def __init__(self, meal_id: UUID) -> None:
        super().__init__(f"Meal {meal_id} not found")
        self.meal_id = meal_id


class MissingEntryError(FoodLogValidationError):
    """The referenced meal entry does not exist."""

    def __init__(self, entry_id: UUID) -> None:
        super().__init__(f"Meal entry {entry_id} not found")
        self.entry_id = entry_id


class EmptyCaptureSessionError(FoodLogValidationError):
    """A capture session was submitted without photos."""

    def __init__(self) -> None:
        super().__init__("Capture session contains no photos")


class CapturePhotoLimitExceededError(FoodLogValidationError):
    """Too many photos were submitted in one capture session."""

    def __init__(self, count: int, limit: int) -> None:
        super().__init__(f"Capture session has {count} photos; limit is {limit}")
        self.count = count
        self.limit = limit


class InvalidMealTypeNameError(FoodLogValidationError):
    """A meal type name is blank."""

    def __init__(self) -> None:
        super().__init__("Meal type name must not be blank")


class DuplicateMealTypeNameError(FoodLogValidationError):
    """A meal type with the same name already exists."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Meal type {name!r} already exists")
        self.name = name
