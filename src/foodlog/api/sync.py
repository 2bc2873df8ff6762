"""Photo sync control endpoints."""

from __future__ import annotations

from dataclasses import asdict
from typing import TYPE_CHECKING
from uuid import UUID  # noqa: TC003

from fastapi import APIRouter, HTTPException, Query, Request, status

from foodlog.services.scheduler import AlreadyRunningError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from foodlog.containers import AppContainer
    from foodlog.domain.photos import SyncCycleReport

router = APIRouter(prefix="/sync", tags=["sync"])


@router.get("/status")
async def sync_status(request: Request) -> dict[str, object]:
    """Return asset counts per sync state."""
    container: AppContainer = request.app.state.container
    diagnostics = container.photo_sync_service.diagnostics()
    return {
        **asdict(diagnostics),
        "running": container.sync_guard.running,
        "cloud_sync_enabled": container.photo_sync_service.remote_store is not None,
    }


@router.post("")
async def run_sync(request: Request) -> dict[str, object]:
    """Run one sync cycle."""
    container: AppContainer = request.app.state.container
    report = await _guarded(container, container.photo_sync_service.run_sync_cycle)
    return asdict(report)


@router.post("/retry")
async def retry_failed(request: Request) -> dict[str, object]:
    """Retry every failed asset now."""
    container: AppContainer = request.app.state.container
    report = await _guarded(container, container.photo_sync_service.retry_failed_now)
    return asdict(report)


@router.post("/assets/{entry_id}/retry")
async def retry_asset(entry_id: UUID, request: Request) -> dict[str, object]:
    """Retry the failed asset of one entry now."""
    container: AppContainer = request.app.state.container
    if container.store.get_entry(entry_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)

    async def operation() -> SyncCycleReport:
        return await container.photo_sync_service.retry_asset(entry_id)

    report = await _guarded(container, operation)
    return asdict(report)


@router.get("/failures")
async def list_failures(
    request: Request, limit: int = Query(default=20, ge=1, le=200)
) -> dict[str, object]:
    """Return the most recent failed assets."""
    container: AppContainer = request.app.state.container
    failures = container.photo_sync_service.recent_failures(limit)
    return {
        "failures": [
            {
                "entry_id": asset.entry_id,
                "last_error": asset.last_error,
                "retry_count": asset.retry_count,
                "next_retry_at": asset.next_retry_at,
                "updated_at": asset.updated_at,
            }
            for asset in failures
        ]
    }


async def _guarded(
    container: AppContainer, operation: Callable[[], Awaitable[SyncCycleReport]]
) -> SyncCycleReport:
    try:
        return await container.sync_guard.run(operation)
    except AlreadyRunningError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=str(exc)
        ) from exc
