"""Domain models for photo assets and their sync state."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Optional
from uuid import UUID

from sqlmodel import Field, Relationship, SQLModel

from foodlog.domain.columns import UTCDateTime
from foodlog.domain.meals import MealEntry


class PhotoAssetSyncState(StrEnum):
    """Lifecycle state of an entry's photo files."""

    PENDING = "pending"
    UPLOADED = "uploaded"
    FAILED = "failed"
    DELETED = "deleted"


class EntryPhotoAsset(SQLModel, table=True):
    """Sync-tracking record for an entry's local and remote photo files."""

    id: UUID = Field(primary_key=True)
    entry_id: UUID = Field(foreign_key="mealentry.id", index=True)
    state: PhotoAssetSyncState = Field(index=True)
    updated_at: datetime = Field(sa_type=UTCDateTime)
    full_asset_ref: str | None = None
    thumb_asset_ref: str | None = None
    full_image_filename: str | None = None
    thumbnail_filename: str | None = None
    last_error: str | None = None
    retry_count: int = 0
    next_retry_at: datetime | None = Field(default=None, sa_type=UTCDateTime)

    entry: Optional[MealEntry] = Relationship(back_populates="photo_asset")


@dataclass(frozen=True)
class ProcessedImage:
    """Encoded full-size and thumbnail JPEG data."""

    full_bytes: bytes
    thumbnail_bytes: bytes
    full_size: tuple[int, int]
    thumbnail_size: tuple[int, int]


@dataclass(frozen=True)
class UploadedPhotoRefs:
    """Opaque remote locators returned by an upload."""

    full_ref: str
    thumbnail_ref: str


@dataclass(frozen=True)
class SyncDiagnostics:
    """Counts of photo assets per sync state."""

    pending_count: int
    failed_count: int
    uploaded_count: int
    waiting_for_retry_count: int


@dataclass
class SyncCycleReport:
    """Outcome of a single sync cycle."""

    bootstrapped: int = 0
    repaired: int = 0
    uploaded: int = 0
    failed: int = 0
    hydrated: int = 0
    error: str | None = None
