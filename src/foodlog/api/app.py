"""FastAPI application factory."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from uuid import UUID

from fastapi import FastAPI, HTTPException, Request, status

from foodlog.api.entries import entry_payload
from foodlog.api.entries import router as entries_router
from foodlog.api.meal_types import router as meal_types_router
from foodlog.api.models import DescriptionApiKeyUpdate
from foodlog.api.sync import router as sync_router
from foodlog.app_logging import configure_logging
from foodlog.containers import AppContainer
from foodlog.domain.errors import MissingMealError
from foodlog.services.scheduler import AlreadyRunningError, run_periodically


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        state_container: AppContainer = app.state.container
        state_container.meal_entry_service.bootstrap_meal_types_if_needed()
        tasks: list[asyncio.Task[None]] = []
        settings = state_container.settings
        if settings.sync_interval_seconds > 0:
            tasks.append(
                asyncio.create_task(
                    run_periodically(
                        state_container.sync_guard,
                        state_container.photo_sync_service.run_sync_cycle,
                        settings.sync_interval_seconds,
                    )
                )
            )
        if settings.analysis_interval_seconds > 0:
            tasks.append(
                asyncio.create_task(
                    run_periodically(
                        state_container.analysis_guard,
                        state_container.analysis_coordinator.process_pending_meals,
                        settings.analysis_interval_seconds,
                    )
                )
            )
        logger.info("Started %s background loop(s)", len(tasks))
        yield
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await state_container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(sync_router)
    app.include_router(entries_router)
    app.include_router(meal_types_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.post("/analysis/run")
    async def run_analysis(request: Request) -> dict[str, object]:
        """Describe all pending meals."""
        state_container: AppContainer = request.app.state.container
        try:
            report = await state_container.analysis_guard.run(
                state_container.analysis_coordinator.process_pending_meals
            )
        except AlreadyRunningError as exc:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT, detail=str(exc)
            ) from exc
        return asdict(report)

    @app.get("/meals/{meal_id}")
    async def get_meal(meal_id: UUID, request: Request) -> dict[str, object]:
        """Return a meal with its entries and analysis state."""
        state_container: AppContainer = request.app.state.container
        meal = state_container.meal_service.fetch_meal(meal_id)
        if meal is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
        entries = sorted(
            state_container.store.entries_for_meal(meal.id),
            key=lambda entry: entry.logged_at,
        )
        return {
            "id": meal.id,
            "type_id": meal.type_id,
            "created_at": meal.created_at,
            "updated_at": meal.updated_at,
            "user_notes": meal.user_notes,
            "ai_description": meal.ai_description,
            "ai_analysis_status": meal.ai_analysis_status.value,
            "ai_analysis_error_details": meal.ai_analysis_error_details,
            "entries": [entry_payload(entry) for entry in entries],
        }

    @app.post("/meals/{meal_id}/analysis")
    async def queue_meal_analysis(meal_id: UUID, request: Request) -> dict[str, str]:
        """Queue one meal for analysis."""
        state_container: AppContainer = request.app.state.container
        try:
            queued = state_container.analysis_model_store.queue_meal(meal_id)
        except MissingMealError as exc:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)
            ) from exc
        if not queued:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Meal analysis is already queued or complete",
            )
        return {"status": "pending"}

    @app.put("/settings/description-api-key")
    async def update_description_api_key(
        update: DescriptionApiKeyUpdate, request: Request
    ) -> dict[str, bool]:
        """Store or clear the description provider API key."""
        state_container: AppContainer = request.app.state.container
        state_container.secret_store.set(update.api_key)
        return {"configured": state_container.secret_store.get() is not None}

    return app
