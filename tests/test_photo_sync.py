"""Tests for the photo sync state machine."""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest

from foodlog.domain.meals import Meal, MealEntry
from foodlog.domain.photos import EntryPhotoAsset, PhotoAssetSyncState
from foodlog.services.photo_sync import (
    RETRY_BASE_SECONDS,
    RETRY_MAX_SECONDS,
    PhotoSyncService,
    retry_backoff_seconds,
)


def _ingest_one(meal_entry_service, meal_type_service, clock, image=b"img"):
    snack = meal_type_service.fallback_snack_type()
    return meal_entry_service.ingest([image], snack.id, clock.now)[0]


def _insert_legacy_entry(store, meal_type_service, clock, filename="legacy.jpg"):
    snack = meal_type_service.fallback_snack_type()
    meal = Meal(id=uuid4(), type_id=snack.id, created_at=clock.now, updated_at=clock.now)
    entry = MealEntry(
        id=uuid4(),
        meal_id=meal.id,
        image_filename=filename,
        captured_at=clock.now,
        logged_at=clock.now,
        updated_at=clock.now,
    )
    with store.transaction():
        store.insert_meal(meal)
        store.insert_entry(entry)
    return entry


@pytest.mark.parametrize(
    ("retry_count", "expected"),
    [(0, 5.0), (1, 5.0), (2, 10.0), (4, 40.0), (10, 2560.0), (11, 3600.0), (500, 3600.0)],
)
def test_retry_backoff_seconds(retry_count, expected) -> None:
    assert retry_backoff_seconds(retry_count) == expected


def test_retry_backoff_never_exceeds_max() -> None:
    delays = [retry_backoff_seconds(count) for count in range(1, 40)]
    assert delays == sorted(delays)
    assert delays[0] == RETRY_BASE_SECONDS
    assert max(delays) == RETRY_MAX_SECONDS


def test_sync_cycle_uploads_pending_asset(
    photo_sync_service, meal_entry_service, meal_type_service, remote_store, store, clock
) -> None:
    entry = _ingest_one(meal_entry_service, meal_type_service, clock)

    report = asyncio.run(photo_sync_service.run_sync_cycle())

    asset = store.asset_for_entry(entry.id)
    assert report.uploaded == 1
    assert report.error is None
    assert asset.state == PhotoAssetSyncState.UPLOADED
    assert asset.full_asset_ref == f"{entry.id}|full"
    assert asset.thumb_asset_ref == f"{entry.id}|thumb"
    assert asset.retry_count == 0
    assert asset.next_retry_at is None
    assert asset.last_error is None
    assert store.get_entry(entry.id).image_filename == asset.full_image_filename
    assert remote_store.objects[f"{entry.id}|full"] == b"full:img"
    assert remote_store.objects[f"{entry.id}|thumb"] == b"thumb:img"


def test_second_cycle_does_not_reupload(
    photo_sync_service, meal_entry_service, meal_type_service, remote_store, clock
) -> None:
    _ingest_one(meal_entry_service, meal_type_service, clock)

    asyncio.run(photo_sync_service.run_sync_cycle())
    report = asyncio.run(photo_sync_service.run_sync_cycle())

    assert report.uploaded == 0
    assert len(remote_store.uploads) == 1


def test_failed_upload_schedules_retry_with_backoff(
    photo_sync_service, meal_entry_service, meal_type_service, remote_store, store, clock
) -> None:
    entry = _ingest_one(meal_entry_service, meal_type_service, clock)
    remote_store.upload_failures = 1

    report = asyncio.run(photo_sync_service.run_sync_cycle())

    asset = store.asset_for_entry(entry.id)
    assert report.failed == 1
    assert asset.state == PhotoAssetSyncState.FAILED
    assert asset.retry_count == 1
    assert asset.next_retry_at == clock.now + timedelta(seconds=5)
    assert asset.last_error == "Remote store unavailable"


def test_failed_asset_waits_for_retry_time(
    photo_sync_service, meal_entry_service, meal_type_service, remote_store, store, clock
) -> None:
    entry = _ingest_one(meal_entry_service, meal_type_service, clock)
    remote_store.upload_failures = 1
    asyncio.run(photo_sync_service.run_sync_cycle())

    clock.advance(4)
    early = asyncio.run(photo_sync_service.run_sync_cycle())
    asset = store.asset_for_entry(entry.id)
    assert early.uploaded == 0
    assert asset.state == PhotoAssetSyncState.FAILED
    assert asset.retry_count == 1
    assert len(remote_store.uploads) == 1

    clock.advance(1)
    later = asyncio.run(photo_sync_service.run_sync_cycle())
    assert later.uploaded == 1
    assert asset.state == PhotoAssetSyncState.UPLOADED
    assert asset.retry_count == 0
    assert asset.next_retry_at is None


def test_repeated_failures_grow_backoff(
    photo_sync_service, meal_entry_service, meal_type_service, remote_store, store, clock
) -> None:
    entry = _ingest_one(meal_entry_service, meal_type_service, clock)
    remote_store.upload_failures = 3

    asyncio.run(photo_sync_service.run_sync_cycle())
    clock.advance(5)
    asyncio.run(photo_sync_service.run_sync_cycle())
    clock.advance(10)
    asyncio.run(photo_sync_service.run_sync_cycle())

    asset = store.asset_for_entry(entry.id)
    assert asset.retry_count == 3
    assert asset.next_retry_at == clock.now + timedelta(seconds=20)


def test_retry_failed_now_ignores_backoff(
    photo_sync_service, meal_entry_service, meal_type_service, remote_store, store, clock
) -> None:
    entry = _ingest_one(meal_entry_service, meal_type_service, clock)
    remote_store.upload_failures = 1
    asyncio.run(photo_sync_service.run_sync_cycle())

    report = asyncio.run(photo_sync_service.retry_failed_now())

    assert report.uploaded == 1
    assert store.asset_for_entry(entry.id).state == PhotoAssetSyncState.UPLOADED


def test_retry_asset_uploads_failed_asset(
    photo_sync_service, meal_entry_service, meal_type_service, remote_store, store, clock
) -> None:
    first = _ingest_one(meal_entry_service, meal_type_service, clock, b"one")
    remote_store.upload_failures = 1
    asyncio.run(photo_sync_service.run_sync_cycle())
    assert store.asset_for_entry(first.id).state == PhotoAssetSyncState.FAILED

    report = asyncio.run(photo_sync_service.retry_asset(first.id))

    assert report.uploaded == 1
    assert store.asset_for_entry(first.id).state == PhotoAssetSyncState.UPLOADED


def test_cycle_without_remote_store_only_bootstraps(
    store, image_store, image_processor, meal_entry_service, meal_type_service, clock
) -> None:
    service = PhotoSyncService(
        store=store,
        image_store=image_store,
        image_processor=image_processor,
        remote_store=None,
        now_provider=clock,
    )
    entry = _ingest_one(meal_entry_service, meal_type_service, clock)

    report = asyncio.run(service.run_sync_cycle())

    assert report.uploaded == 0
    assert report.error is None
    assert store.asset_for_entry(entry.id).state == PhotoAssetSyncState.PENDING


def test_bootstrap_creates_asset_and_thumbnail(
    photo_sync_service, store, image_store, meal_type_service, clock
) -> None:
    image_store.files["legacy.jpg"] = b"legacy"
    entry = _insert_legacy_entry(store, meal_type_service, clock)

    created = photo_sync_service.bootstrap_local_photo_assets()

    asset = store.asset_for_entry(entry.id)
    assert created == 1
    assert asset.state == PhotoAssetSyncState.PENDING
    assert asset.full_image_filename == "legacy.jpg"
    assert asset.thumbnail_filename == f"{asset.id}-thumb.jpg"
    assert image_store.files[asset.thumbnail_filename] == b"thumb:legacy"
    assert store.get_entry(entry.id).photo_asset_id == asset.id


def test_bootstrap_is_idempotent(
    photo_sync_service, store, image_store, meal_type_service, clock
) -> None:
    image_store.files["legacy.jpg"] = b"legacy"
    _insert_legacy_entry(store, meal_type_service, clock)

    photo_sync_service.bootstrap_local_photo_assets()
    created = photo_sync_service.bootstrap_local_photo_assets()

    assert created == 0
    assert len(store.list_photo_assets()) == 1


def test_bootstrap_marks_missing_source_failed(
    photo_sync_service, store, meal_type_service, clock
) -> None:
    entry = _insert_legacy_entry(store, meal_type_service, clock, "gone.jpg")

    photo_sync_service.bootstrap_local_photo_assets()

    asset = store.asset_for_entry(entry.id)
    assert asset.state == PhotoAssetSyncState.FAILED
    assert asset.last_error == "Missing local source image for bootstrap"
    assert asset.retry_count == 1
    assert asset.next_retry_at == clock.now + timedelta(seconds=5)


def test_bootstrapped_legacy_entry_is_uploaded(
    photo_sync_service, store, image_store, meal_type_service, remote_store, clock
) -> None:
    image_store.files["legacy.jpg"] = b"legacy"
    entry = _insert_legacy_entry(store, meal_type_service, clock)

    report = asyncio.run(photo_sync_service.run_sync_cycle())

    assert report.bootstrapped == 1
    assert report.uploaded == 1
    assert remote_store.objects[f"{entry.id}|full"] == b"legacy"


def test_repair_marks_orphaned_asset_deleted(photo_sync_service, store, clock) -> None:
    orphan = EntryPhotoAsset(
        id=uuid4(),
        entry_id=uuid4(),
        state=PhotoAssetSyncState.PENDING,
        updated_at=clock.now,
    )
    with store.transaction():
        store.insert_photo_asset(orphan)

    repaired = photo_sync_service.repair_stale_links()

    assert repaired == 1
    assert orphan.state == PhotoAssetSyncState.DELETED
    assert photo_sync_service.diagnostics().pending_count == 0


def test_repair_realigns_entry_pointers(
    photo_sync_service, meal_entry_service, meal_type_service, store, clock
) -> None:
    entry = _ingest_one(meal_entry_service, meal_type_service, clock)
    asset = store.asset_for_entry(entry.id)
    with store.transaction():
        entry.photo_asset_id = None
        entry.image_filename = "stale.jpg"

    repaired = photo_sync_service.repair_stale_links()

    assert repaired == 2
    assert entry.photo_asset_id == asset.id
    assert entry.image_filename == asset.full_image_filename


def test_hydrates_missing_local_files(
    photo_sync_service, meal_entry_service, meal_type_service, image_store, store, clock
) -> None:
    entry = _ingest_one(meal_entry_service, meal_type_service, clock)
    asyncio.run(photo_sync_service.run_sync_cycle())
    image_store.files.clear()

    report = asyncio.run(photo_sync_service.run_sync_cycle())

    asset = store.asset_for_entry(entry.id)
    assert report.hydrated == 1
    assert asset.state == PhotoAssetSyncState.UPLOADED
    assert image_store.files[asset.full_image_filename] == b"full:img"
    assert image_store.files[asset.thumbnail_filename] == b"thumb:img"
    assert store.get_entry(entry.id).image_filename == asset.full_image_filename


def test_hydration_failure_is_retried(
    photo_sync_service,
    meal_entry_service,
    meal_type_service,
    image_store,
    remote_store,
    store,
    clock,
) -> None:
    entry = _ingest_one(meal_entry_service, meal_type_service, clock)
    asyncio.run(photo_sync_service.run_sync_cycle())
    image_store.files.clear()
    remote_store.download_failures = 1

    failed = asyncio.run(photo_sync_service.run_sync_cycle())
    asset = store.asset_for_entry(entry.id)
    assert failed.failed == 1
    assert asset.state == PhotoAssetSyncState.FAILED
    assert asset.retry_count == 1

    clock.advance(5)
    recovered = asyncio.run(photo_sync_service.run_sync_cycle())

    assert recovered.hydrated == 1
    assert recovered.uploaded == 0
    assert asset.state == PhotoAssetSyncState.UPLOADED
    assert len(remote_store.uploads) == 1


def test_missing_local_file_fails_upload(
    photo_sync_service, meal_entry_service, meal_type_service, image_store, store, clock
) -> None:
    entry = _ingest_one(meal_entry_service, meal_type_service, clock)
    image_store.files.clear()

    report = asyncio.run(photo_sync_service.run_sync_cycle())

    asset = store.asset_for_entry(entry.id)
    assert report.failed == 1
    assert asset.state == PhotoAssetSyncState.FAILED
    assert "Missing local image" in asset.last_error


def test_diagnostics_and_recent_failures(
    photo_sync_service, meal_entry_service, meal_type_service, remote_store, clock
) -> None:
    _ingest_one(meal_entry_service, meal_type_service, clock, b"one")
    _ingest_one(meal_entry_service, meal_type_service, clock, b"two")
    remote_store.upload_failures = 1

    asyncio.run(photo_sync_service.run_sync_cycle())

    diagnostics = photo_sync_service.diagnostics()
    assert diagnostics.uploaded_count == 1
    assert diagnostics.failed_count == 1
    assert diagnostics.pending_count == 0
    assert diagnostics.waiting_for_retry_count == 1
    failures = photo_sync_service.recent_failures()
    assert len(failures) == 1
    assert failures[0].last_error == "Remote store unavailable"


def test_cycle_reports_unexpected_error(photo_sync_service, store, monkeypatch) -> None:
    def broken() -> list:
        raise RuntimeError("store unavailable")

    monkeypatch.setattr(store, "entries_with_assets", broken)

    report = asyncio.run(photo_sync_service.run_sync_cycle())

    assert report.error == "store unavailable"


def _run_overlapping_cycles(service):
    async def run_both():
        return await asyncio.gather(service.run_sync_cycle(), service.run_sync_cycle())

    return asyncio.run(run_both())


def test_overlapping_cycles_upload_once(
    photo_sync_service, meal_entry_service, meal_type_service, remote_store, store, clock
) -> None:
    entry = _ingest_one(meal_entry_service, meal_type_service, clock)

    first, second = _run_overlapping_cycles(photo_sync_service)

    assert len(remote_store.uploads) == 1
    assert first.uploaded + second.uploaded == 1
    assert store.asset_for_entry(entry.id).state == PhotoAssetSyncState.UPLOADED


def test_overlapping_cycle_failure_keeps_uploaded_state(
    photo_sync_service,
    meal_entry_service,
    meal_type_service,
    remote_store,
    store,
    clock,
    monkeypatch,
) -> None:
    entry = _ingest_one(meal_entry_service, meal_type_service, clock)
    upload = remote_store.upload

    async def fail_after_first_upload(entry_id, full_bytes, thumbnail_bytes):
        if remote_store.uploads:
            remote_store.uploads.append(entry_id)
            await asyncio.sleep(0)
            raise ConnectionError("Remote store unavailable")
        return await upload(entry_id, full_bytes, thumbnail_bytes)

    monkeypatch.setattr(remote_store, "upload", fail_after_first_upload)

    first, second = _run_overlapping_cycles(photo_sync_service)

    asset = store.asset_for_entry(entry.id)
    assert first.failed + second.failed == 0
    assert asset.state == PhotoAssetSyncState.UPLOADED
    assert asset.retry_count == 0
    assert asset.last_error is None


def test_late_failure_does_not_downgrade_uploaded_asset(
    photo_sync_service, meal_entry_service, meal_type_service, store, clock
) -> None:
    entry = _ingest_one(meal_entry_service, meal_type_service, clock)
    asyncio.run(photo_sync_service.run_sync_cycle())
    asset = store.asset_for_entry(entry.id)

    photo_sync_service._record_failure(
        asset.id, PhotoAssetSyncState.PENDING, ConnectionError("late")
    )

    assert asset.state == PhotoAssetSyncState.UPLOADED
    assert asset.retry_count == 0


def test_overlapping_cycles_hydrate_once(
    photo_sync_service, meal_entry_service, meal_type_service, image_store, remote_store, clock
) -> None:
    _ingest_one(meal_entry_service, meal_type_service, clock)
    asyncio.run(photo_sync_service.run_sync_cycle())
    image_store.files.clear()

    first, second = _run_overlapping_cycles(photo_sync_service)

    assert first.hydrated + second.hydrated == 1
    assert len(remote_store.downloads) == 2
