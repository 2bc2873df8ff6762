"""Photo sync state machine between local files and a remote blob store."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Protocol
from uuid import UUID

from foodlog.adapters.image_processor import ImageProcessingError, ImageProcessor
from foodlog.adapters.image_store import ImageStore
from foodlog.adapters.local_store import LocalFoodLogStore
from foodlog.domain.meals import MealEntry
from foodlog.domain.photos import (
    EntryPhotoAsset,
    PhotoAssetSyncState,
    SyncCycleReport,
    SyncDiagnostics,
    UploadedPhotoRefs,
)

RETRY_BASE_SECONDS = 5.0
RETRY_MAX_SECONDS = 3600.0
_MAX_BACKOFF_EXPONENT = 12
_MISSING_SOURCE_ERROR = "Missing local source image for bootstrap"

_logger = logging.getLogger(__name__)


class AssetNotFoundError(Exception):
    """Raised when a photo cannot be found locally or remotely."""


class InvalidAssetReferenceError(Exception):
    """Raised when a remote asset reference cannot be parsed."""


class RemotePhotoStore(Protocol):
    """Interface for the remote blob store holding entry photos."""

    async def upload(
        self, entry_id: UUID, full_bytes: bytes, thumbnail_bytes: bytes
    ) -> UploadedPhotoRefs:
        """Upload both variants for an entry, overwriting earlier uploads."""

    async def download(self, ref: str) -> bytes:
        """Download the blob behind an opaque reference."""


def retry_backoff_seconds(retry_count: int) -> float:
    """Return the capped exponential delay before the next retry."""
    if retry_count <= 0:
        return RETRY_BASE_SECONDS
    exponent = min(_MAX_BACKOFF_EXPONENT, retry_count - 1)
    return min(RETRY_MAX_SECONDS, RETRY_BASE_SECONDS * 2**exponent)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True)
class _UploadPayload:
    entry_id: UUID
    full_filename: str
    full_bytes: bytes
    thumbnail_filename: str
    thumbnail_bytes: bytes


@dataclass
class PhotoSyncService:
    """Drives photo assets through pending, uploaded, failed and deleted.

    A cycle runs bootstrap, repair, upload and hydration in that order. Each
    asset is re-read before it is mutated and committed in its own
    transaction, so no store lock is held while a remote call is in flight.
    An asset is claimed in the same transaction that re-checks it and stays
    claimed until its remote work is recorded; an overlapping cycle skips
    claimed assets. Upload and hydration are skipped when no remote store is
    configured.
    """

    store: LocalFoodLogStore
    image_store: ImageStore
    image_processor: ImageProcessor
    remote_store: RemotePhotoStore | None = None
    now_provider: Callable[[], datetime] = field(default=_utc_now)
    _in_flight: set[UUID] = field(default_factory=set, init=False, repr=False)

    async def run_sync_cycle(self) -> SyncCycleReport:
        """Run one full sync cycle and report what happened."""
        report = SyncCycleReport()
        try:
            report.bootstrapped = self.bootstrap_local_photo_assets()
            report.repaired = self.repair_stale_links()
            await self._upload_pending_assets(report)
            await self._hydrate_missing_assets(report)
        except Exception as exc:
            _logger.exception("Photo sync cycle aborted")
            report.error = str(exc) or type(exc).__name__
        return report

    async def retry_failed_now(self) -> SyncCycleReport:
        """Make every failed asset eligible immediately and run a cycle."""
        with self.store.transaction():
            now = self.now_provider()
            for asset in self.store.photo_assets_in_states(PhotoAssetSyncState.FAILED):
                _reset_for_retry(asset, now)
        return await self.run_sync_cycle()

    async def retry_asset(self, entry_id: UUID) -> SyncCycleReport:
        """Make one failed asset eligible immediately and run a cycle."""
        with self.store.transaction():
            asset = self.store.asset_for_entry(entry_id)
            if asset is not None and asset.state == PhotoAssetSyncState.FAILED:
                _reset_for_retry(asset, self.now_provider())
        return await self.run_sync_cycle()

    def bootstrap_local_photo_assets(self) -> int:
        """Create missing asset rows and derive missing thumbnails."""
        created = 0
        with self.store.transaction():
            for entry, asset in self.store.entries_with_assets():
                if asset is None:
                    asset = self._bootstrap_asset(entry)
                    self.store.insert_photo_asset(asset)
                    entry.photo_asset_id = asset.id
                    created += 1
                elif entry.photo_asset_id is None:
                    entry.photo_asset_id = asset.id

                full_filename = asset.full_image_filename
                if (
                    asset.state != PhotoAssetSyncState.DELETED
                    and asset.thumbnail_filename is None
                    and full_filename
                    and self.image_store.file_exists(full_filename)
                ):
                    asset.thumbnail_filename = self._try_thumbnail(
                        asset.id, full_filename
                    )
                    if asset.thumbnail_filename is not None:
                        asset.updated_at = self.now_provider()
        if created:
            _logger.info("Bootstrapped %s photo asset(s)", created)
        return created

    def repair_stale_links(self) -> int:
        """Mark orphaned assets deleted and realign entry pointers."""
        repaired = 0
        with self.store.transaction():
            for asset in self.store.orphaned_photo_assets():
                self._mark_deleted(asset)
                repaired += 1

            for entry, linked in self.store.entries_with_assets():
                if linked is None:
                    continue
                if entry.photo_asset_id != linked.id:
                    entry.photo_asset_id = linked.id
                    repaired += 1
                full_filename = linked.full_image_filename
                if (
                    full_filename
                    and full_filename != entry.image_filename
                    and self.image_store.file_exists(full_filename)
                ):
                    entry.image_filename = full_filename
                    repaired += 1
        return repaired

    def diagnostics(self) -> SyncDiagnostics:
        """Count assets per state, ignoring deleted ones."""
        now = self.now_provider()
        assets = self.store.photo_assets_in_states(
            PhotoAssetSyncState.PENDING,
            PhotoAssetSyncState.FAILED,
            PhotoAssetSyncState.UPLOADED,
        )
        failed = [a for a in assets if a.state == PhotoAssetSyncState.FAILED]
        return SyncDiagnostics(
            pending_count=sum(a.state == PhotoAssetSyncState.PENDING for a in assets),
            failed_count=len(failed),
            uploaded_count=sum(
                a.state == PhotoAssetSyncState.UPLOADED for a in assets
            ),
            waiting_for_retry_count=sum(
                a.next_retry_at is not None and a.next_retry_at > now for a in failed
            ),
        )

    def recent_failures(self, limit: int = 20) -> list[EntryPhotoAsset]:
        """Return failed assets, most recently updated first."""
        failed = self.store.photo_assets_in_states(PhotoAssetSyncState.FAILED)
        failed.sort(key=lambda asset: asset.updated_at, reverse=True)
        return failed[:limit]

    async def _upload_pending_assets(self, report: SyncCycleReport) -> None:
        if self.remote_store is None:
            return
        now = self.now_provider()
        candidates = [
            asset.id
            for asset in self.store.photo_assets_in_states(
                PhotoAssetSyncState.PENDING, PhotoAssetSyncState.FAILED
            )
            if _is_upload_candidate(asset, now)
        ]
        for asset_id in candidates:
            await self._sync_candidate(asset_id, report)

    async def _sync_candidate(self, asset_id: UUID, report: SyncCycleReport) -> None:
        with self.store.transaction():
            asset = self.store.get_photo_asset(asset_id)
            if (
                asset is None
                or asset_id in self._in_flight
                or not _is_upload_candidate(asset, self.now_provider())
            ):
                return
            if self.store.get_entry(asset.entry_id) is None:
                self._mark_deleted(asset)
                report.repaired += 1
                return
            recover_from_remote = self._should_hydrate(asset)
            claimed_state = asset.state
            self._in_flight.add(asset_id)

        try:
            if recover_from_remote:
                await self._hydrate_asset(asset_id, claimed_state, report)
            else:
                await self._upload_asset(asset_id, claimed_state, report)
        finally:
            self._in_flight.discard(asset_id)

    async def _upload_asset(
        self,
        asset_id: UUID,
        claimed_state: PhotoAssetSyncState,
        report: SyncCycleReport,
    ) -> None:
        remote_store = self._require_remote_store()
        try:
            payload = self._make_upload_payload(asset_id)
            refs = await remote_store.upload(
                payload.entry_id, payload.full_bytes, payload.thumbnail_bytes
            )
        except Exception as exc:
            self._record_failure(asset_id, claimed_state, exc)
            report.failed += 1
            return

        with self.store.transaction():
            asset = self.store.get_photo_asset(asset_id)
            if asset is None or asset.state == PhotoAssetSyncState.DELETED:
                return
            entry = self.store.get_entry(asset.entry_id)
            if entry is None:
                self._mark_deleted(asset)
                return
            now = self.now_provider()
            asset.full_asset_ref = refs.full_ref
            asset.thumb_asset_ref = refs.thumbnail_ref
            asset.full_image_filename = payload.full_filename
            asset.thumbnail_filename = payload.thumbnail_filename
            asset.state = PhotoAssetSyncState.UPLOADED
            asset.last_error = None
            asset.retry_count = 0
            asset.next_retry_at = None
            asset.updated_at = now
            entry.image_filename = payload.full_filename
            entry.photo_asset_id = asset.id
            entry.updated_at = now
        report.uploaded += 1
        _logger.info("Uploaded photo asset %s", asset_id)

    async def _hydrate_missing_assets(self, report: SyncCycleReport) -> None:
        if self.remote_store is None:
            return
        candidates = [
            asset.id
            for asset in self.store.photo_assets_in_states(PhotoAssetSyncState.UPLOADED)
            if self._should_hydrate(asset)
        ]
        for asset_id in candidates:
            with self.store.transaction():
                asset = self.store.get_photo_asset(asset_id)
                if (
                    asset is None
                    or asset_id in self._in_flight
                    or asset.state != PhotoAssetSyncState.UPLOADED
                ):
                    continue
                self._in_flight.add(asset_id)
            try:
                await self._hydrate_asset(
                    asset_id, PhotoAssetSyncState.UPLOADED, report
                )
            finally:
                self._in_flight.discard(asset_id)

    async def _hydrate_asset(
        self,
        asset_id: UUID,
        claimed_state: PhotoAssetSyncState,
        report: SyncCycleReport,
    ) -> None:
        """Download locally missing files for an asset with remote refs."""
        remote_store = self._require_remote_store()
        with self.store.transaction():
            asset = self.store.get_photo_asset(asset_id)
            if asset is None or asset.state == PhotoAssetSyncState.DELETED:
                return
            full_ref = (
                asset.full_asset_ref
                if self._is_missing(asset.full_image_filename)
                else None
            )
            thumb_ref = (
                asset.thumb_asset_ref
                if self._is_missing(asset.thumbnail_filename)
                else None
            )

        try:
            restored_thumbnail = None
            if thumb_ref is not None:
                data = await remote_store.download(thumb_ref)
                restored_thumbnail = self.image_store.save_bytes(
                    data, f"{asset_id}-thumb.jpg"
                )
            restored_full = None
            if full_ref is not None:
                data = await remote_store.download(full_ref)
                restored_full = self.image_store.save_bytes(
                    data, f"{asset_id}-full.jpg"
                )
        except Exception as exc:
            self._record_failure(asset_id, claimed_state, exc)
            report.failed += 1
            return

        with self.store.transaction():
            asset = self.store.get_photo_asset(asset_id)
            if asset is None or asset.state == PhotoAssetSyncState.DELETED:
                return
            now = self.now_provider()
            if restored_thumbnail is not None:
                asset.thumbnail_filename = restored_thumbnail
            if restored_full is not None:
                asset.full_image_filename = restored_full
                entry = self.store.get_entry(asset.entry_id)
                if entry is not None:
                    entry.image_filename = restored_full
                    entry.updated_at = now
            asset.state = PhotoAssetSyncState.UPLOADED
            asset.last_error = None
            asset.retry_count = 0
            asset.next_retry_at = None
            asset.updated_at = now
        report.hydrated += 1
        _logger.info("Hydrated photo asset %s from remote store", asset_id)

    def _make_upload_payload(self, asset_id: UUID) -> _UploadPayload:
        asset = self.store.get_photo_asset(asset_id)
        entry = self.store.get_entry(asset.entry_id) if asset else None
        if asset is None or entry is None:
            raise AssetNotFoundError(f"Photo asset {asset_id} is no longer linked")

        full_filename = asset.full_image_filename or entry.image_filename
        full_bytes = self.image_store.load_bytes(full_filename)
        if full_bytes is None:
            raise AssetNotFoundError(f"Missing local image {full_filename}")

        thumbnail_filename = asset.thumbnail_filename
        if self._is_missing(thumbnail_filename):
            thumbnail_filename = self._ensure_thumbnail(asset.id, full_filename)
        thumbnail_bytes = self.image_store.load_bytes(thumbnail_filename)
        if thumbnail_bytes is None:
            raise AssetNotFoundError(f"Missing local thumbnail {thumbnail_filename}")

        return _UploadPayload(
            entry_id=entry.id,
            full_filename=full_filename,
            full_bytes=full_bytes,
            thumbnail_filename=thumbnail_filename,
            thumbnail_bytes=thumbnail_bytes,
        )

    def _ensure_thumbnail(self, asset_id: UUID, full_filename: str) -> str:
        """Return the asset's thumbnail filename, deriving it when absent."""
        preferred = f"{asset_id}-thumb.jpg"
        if self.image_store.file_exists(preferred):
            return preferred
        full_bytes = self.image_store.load_bytes(full_filename)
        if full_bytes is None:
            raise AssetNotFoundError(f"Missing local image {full_filename}")
        processed = self.image_processor.preprocess(full_bytes)
        return self.image_store.save_bytes(processed.thumbnail_bytes, preferred)

    def _try_thumbnail(self, asset_id: UUID, full_filename: str) -> str | None:
        try:
            return self._ensure_thumbnail(asset_id, full_filename)
        except (AssetNotFoundError, ImageProcessingError, OSError):
            _logger.warning(
                "Could not derive thumbnail for asset %s", asset_id, exc_info=True
            )
            return None

    def _bootstrap_asset(self, entry: MealEntry) -> EntryPhotoAsset:
        now = self.now_provider()
        if self.image_store.file_exists(entry.image_filename):
            return EntryPhotoAsset(
                id=entry.id,
                entry_id=entry.id,
                state=PhotoAssetSyncState.PENDING,
                updated_at=now,
                full_image_filename=entry.image_filename,
                thumbnail_filename=self._try_thumbnail(entry.id, entry.image_filename),
            )
        retry_count = 1
        return EntryPhotoAsset(
            id=entry.id,
            entry_id=entry.id,
            state=PhotoAssetSyncState.FAILED,
            updated_at=now,
            full_image_filename=entry.image_filename,
            last_error=_MISSING_SOURCE_ERROR,
            retry_count=retry_count,
            next_retry_at=now + timedelta(seconds=retry_backoff_seconds(retry_count)),
        )

    def _should_hydrate(self, asset: EntryPhotoAsset) -> bool:
        if self._is_missing(asset.full_image_filename):
            return asset.full_asset_ref is not None
        if self._is_missing(asset.thumbnail_filename):
            return asset.thumb_asset_ref is not None
        return False

    def _is_missing(self, filename: str | None) -> bool:
        return filename is None or not self.image_store.file_exists(filename)

    def _record_failure(
        self, asset_id: UUID, claimed_state: PhotoAssetSyncState, error: Exception
    ) -> None:
        with self.store.transaction():
            asset = self.store.get_photo_asset(asset_id)
            if asset is None or asset.state == PhotoAssetSyncState.DELETED:
                return
            if (
                asset.state == PhotoAssetSyncState.UPLOADED
                and claimed_state != PhotoAssetSyncState.UPLOADED
            ):
                _logger.info(
                    "Ignoring stale failure for photo asset %s: already uploaded",
                    asset_id,
                )
                return
            self.mark_upload_failure(asset, error)
        _logger.warning(
            "Photo asset %s sync failed (attempt %s, next retry %s): %s",
            asset_id,
            asset.retry_count,
            asset.next_retry_at,
            asset.last_error,
        )

    def mark_upload_failure(self, asset: EntryPhotoAsset, error: Exception) -> None:
        """Move an asset to failed and schedule its next retry."""
        now = self.now_provider()
        asset.retry_count += 1
        asset.state = PhotoAssetSyncState.FAILED
        asset.next_retry_at = now + timedelta(
            seconds=retry_backoff_seconds(asset.retry_count)
        )
        asset.last_error = str(error) or type(error).__name__
        asset.updated_at = now

    def _mark_deleted(self, asset: EntryPhotoAsset) -> None:
        asset.state = PhotoAssetSyncState.DELETED
        asset.last_error = None
        asset.updated_at = self.now_provider()

    def _require_remote_store(self) -> RemotePhotoStore:
        if self.remote_store is None:
            raise RuntimeError("Remote photo store is not configured")
        return self.remote_store


def _is_upload_candidate(asset: EntryPhotoAsset, now: datetime) -> bool:
    if asset.state == PhotoAssetSyncState.PENDING:
        return True
    if asset.state == PhotoAssetSyncState.FAILED:
        return asset.next_retry_at is None or asset.next_retry_at <= now
    return False


def _reset_for_retry(asset: EntryPhotoAsset, now: datetime) -> None:
    asset.state = PhotoAssetSyncState.PENDING
    asset.next_retry_at = now
    asset.updated_at = now
