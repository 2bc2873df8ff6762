"""Domain models for meals, meal types and entries."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Optional
from uuid import UUID

from sqlmodel import Field, Relationship, SQLModel

from foodlog.domain.columns import UTCDateTime

if TYPE_CHECKING:
    from foodlog.domain.photos import EntryPhotoAsset


class AIAnalysisStatus(StrEnum):
    """Workflow status of the AI description for a meal."""

    NONE = "none"
    PENDING = "pending"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    FAILED = "failed"


class MealType(SQLModel, table=True):
    """A meal category such as Breakfast or Lunch."""

    id: UUID = Field(primary_key=True)
    display_name: str = Field(index=True)
    is_system: bool
    created_at: datetime = Field(sa_type=UTCDateTime)
    updated_at: datetime = Field(sa_type=UTCDateTime)


class Meal(SQLModel, table=True):
    """Grouping of entries sharing a meal type and calendar day."""

    id: UUID = Field(primary_key=True)
    type_id: UUID = Field(foreign_key="mealtype.id", index=True)
    created_at: datetime = Field(sa_type=UTCDateTime)
    updated_at: datetime = Field(sa_type=UTCDateTime, index=True)
    ai_description: str | None = None
    user_notes: str | None = None
    ai_analysis_status: AIAnalysisStatus = Field(
        default=AIAnalysisStatus.NONE, index=True
    )
    ai_analysis_error_details: str | None = None

    entries: list["MealEntry"] = Relationship(
        back_populates="meal",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class MealEntry(SQLModel, table=True):
    """One logged photo capture within a meal."""

    id: UUID = Field(primary_key=True)
    meal_id: UUID = Field(foreign_key="meal.id", index=True)
    image_filename: str
    captured_at: datetime = Field(sa_type=UTCDateTime)
    logged_at: datetime = Field(sa_type=UTCDateTime, index=True)
    updated_at: datetime = Field(sa_type=UTCDateTime)
    photo_asset_id: UUID | None = None

    meal: Optional[Meal] = Relationship(back_populates="entries")
    photo_asset: Optional["EntryPhotoAsset"] = Relationship(
        back_populates="entry",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


@dataclass(frozen=True)
class PendingMealAnalysis:
    """A claimed meal ready to be described."""

    meal_id: UUID
    image_filenames: list[str]
    notes: str | None
