"""Request bodies for the control API."""

from uuid import UUID

from pydantic import AwareDatetime, BaseModel


class DescriptionApiKeyUpdate(BaseModel):
    """New API key for the description provider; blank clears it."""

    api_key: str | None = None


class MealTypeName(BaseModel):
    name: str


class LoggedAtChange(BaseModel):
    """New logged time; moving to another day needs explicit permission."""

    logged_at: AwareDatetime
    allow_reassignment: bool = False


class MealTypeChange(BaseModel):
    meal_type_id: UUID
