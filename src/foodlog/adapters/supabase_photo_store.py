"""Supabase Storage-backed remote photo store."""

import asyncio
from dataclasses import dataclass
from uuid import UUID

from supabase import Client

from foodlog.domain.photos import UploadedPhotoRefs
from foodlog.services.photo_sync import (
    AssetNotFoundError,
    InvalidAssetReferenceError,
    RemotePhotoStore,
)

_VARIANTS = ("full", "thumb")
_NOT_FOUND_STATUSES = {"404", "not_found"}


def asset_ref(entry_id: UUID, variant: str) -> str:
    """Build the opaque reference for one variant of an entry's photo."""
    return f"{entry_id}|{variant}"


def object_path(ref: str) -> str:
    """Translate a reference into its object path inside the bucket."""
    entry_part, separator, variant = ref.partition("|")
    if not separator or variant not in _VARIANTS:
        raise InvalidAssetReferenceError(f"Invalid asset reference {ref!r}")
    try:
        entry_id = UUID(entry_part)
    except ValueError as exc:
        raise InvalidAssetReferenceError(f"Invalid asset reference {ref!r}") from exc
    return f"{entry_id}/{variant}.jpg"


@dataclass
class SupabasePhotoStore(RemotePhotoStore):
    """Stores entry photos as objects keyed by entry id.

    Uploads use upsert, so re-uploading an entry overwrites the same objects.
    """

    client: Client
    bucket: str

    async def upload(
        self, entry_id: UUID, full_bytes: bytes, thumbnail_bytes: bytes
    ) -> UploadedPhotoRefs:
        """Upload the full image and thumbnail for an entry."""
        full_ref = asset_ref(entry_id, "full")
        thumbnail_ref = asset_ref(entry_id, "thumb")
        await asyncio.to_thread(self._put, object_path(full_ref), full_bytes)
        await asyncio.to_thread(self._put, object_path(thumbnail_ref), thumbnail_bytes)
        return UploadedPhotoRefs(full_ref=full_ref, thumbnail_ref=thumbnail_ref)

    async def download(self, ref: str) -> bytes:
        """Download the object behind a reference."""
        path = object_path(ref)
        try:
            return await asyncio.to_thread(self._get, path)
        except Exception as exc:
            if _is_not_found(exc):
                raise AssetNotFoundError(f"Remote asset {ref} not found") from exc
            raise

    def _put(self, path: str, data: bytes) -> None:
        self.client.storage.from_(self.bucket).upload(
            path,
            data,
            file_options={"content-type": "image/jpeg", "upsert": "true"},
        )

    def _get(self, path: str) -> bytes:
        return self.client.storage.from_(self.bucket).download(path)


def _is_not_found(exc: Exception) -> bool:
    """Return whether a storage error reports a missing object."""
    for attribute in ("status", "status_code", "code", "error"):
        value = getattr(exc, attribute, None)
        if value is not None and str(value).strip().lower() in _NOT_FOUND_STATUSES:
            return True
    return False
