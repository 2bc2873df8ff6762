"""Meal entry endpoints: capture, edit, delete and image download."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal
from uuid import UUID  # noqa: TC003

from fastapi import (
    APIRouter,
    File,
    Form,
    HTTPException,
    Query,
    Request,
    Response,
    UploadFile,
    status,
)
from pydantic import AwareDatetime  # noqa: TC002

from foodlog.adapters.image_processor import ImageProcessingError
from foodlog.api.models import LoggedAtChange, MealTypeChange  # noqa: TC001
from foodlog.domain.errors import (
    FoodLogValidationError,
    MissingEntryError,
    MissingMealError,
    MissingMealTypeError,
)
from foodlog.services.images import resolve_image_filename
from foodlog.services.meal_entries import LoggedAtUpdate

if TYPE_CHECKING:
    from foodlog.containers import AppContainer
    from foodlog.domain.meals import MealEntry

router = APIRouter(prefix="/entries", tags=["entries"])

_NOT_FOUND_ERRORS = (MissingEntryError, MissingMealError, MissingMealTypeError)


def entry_payload(entry: MealEntry) -> dict[str, object]:
    return {
        "id": entry.id,
        "meal_id": entry.meal_id,
        "image_filename": entry.image_filename,
        "captured_at": entry.captured_at,
        "logged_at": entry.logged_at,
        "updated_at": entry.updated_at,
        "photo_asset_id": entry.photo_asset_id,
    }


@router.get("")
async def list_entries(request: Request) -> dict[str, object]:
    """Return all entries, newest logged first."""
    container: AppContainer = request.app.state.container
    entries = container.meal_entry_service.list_entries_newest_first()
    return {"entries": [entry_payload(entry) for entry in entries]}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_entries(  # noqa: PLR0913
    request: Request,
    photos: list[UploadFile] = File(...),
    meal_type_id: UUID | None = Form(default=None),
    logged_at: AwareDatetime | None = Form(default=None),
    captured_at: AwareDatetime | None = Form(default=None),
    notes: str | None = Form(default=None),
    analysis_requested: bool = Form(default=False),
) -> dict[str, object]:
    """Log one capture session; each photo becomes an entry of the same meal.

    Without a meal type, the type suggested for the logged time is used.
    """
    container: AppContainer = request.app.state.container
    moment = logged_at or container.meal_entry_service.now_provider()
    if meal_type_id is None:
        suggested = container.meal_type_service.suggest_meal_type(moment)
        if suggested is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="No meal types defined"
            )
        meal_type_id = suggested.id

    images = [await photo.read() for photo in photos]
    try:
        entries = container.meal_entry_service.ingest(
            images,
            meal_type_id,
            moment,
            notes=notes,
            analysis_requested=analysis_requested,
            captured_at=captured_at,
        )
    except FoodLogValidationError as exc:
        raise _validation_error(exc) from exc
    except ImageProcessingError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
        ) from exc
    return {"entries": [entry_payload(entry) for entry in entries]}


@router.delete("/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_entry(entry_id: UUID, request: Request) -> None:
    """Delete an entry with its photos."""
    container: AppContainer = request.app.state.container
    try:
        container.meal_entry_service.delete_entry(entry_id)
    except MissingEntryError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)
        ) from exc


@router.patch("/{entry_id}/logged-at")
async def change_logged_at(
    entry_id: UUID, body: LoggedAtChange, request: Request
) -> dict[str, object]:
    """Change an entry's logged time; a new day requires allow_reassignment."""
    container: AppContainer = request.app.state.container
    service = container.meal_entry_service
    try:
        result = service.update_logged_at(
            entry_id, body.logged_at, allow_reassignment=body.allow_reassignment
        )
    except FoodLogValidationError as exc:
        raise _validation_error(exc) from exc
    if result == LoggedAtUpdate.REQUIRES_CONFIRMATION:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Logged time falls on another day; confirm the reassignment",
        )
    entry = container.store.get_entry(entry_id)
    return {"result": result.value, "entry": entry_payload(entry)}


@router.patch("/{entry_id}/meal-type")
async def change_meal_type(
    entry_id: UUID, body: MealTypeChange, request: Request
) -> dict[str, object]:
    """Move an entry to the meal of another type on the same day."""
    container: AppContainer = request.app.state.container
    try:
        entry = container.meal_entry_service.reassign_meal_type(
            entry_id, body.meal_type_id
        )
    except FoodLogValidationError as exc:
        raise _validation_error(exc) from exc
    return entry_payload(entry)


@router.get("/{entry_id}/image")
async def entry_image(
    entry_id: UUID,
    request: Request,
    variant: Literal["full", "thumbnail"] = Query(default="full"),
) -> Response:
    """Return the best locally available JPEG for an entry."""
    container: AppContainer = request.app.state.container
    entry = container.store.get_entry(entry_id)
    if entry is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
    filename = resolve_image_filename(
        entry,
        container.store.asset_for_entry(entry.id),
        prefer_thumbnail=variant == "thumbnail",
        is_available=container.image_store.file_exists,
    )
    data = container.image_store.load_bytes(filename) if filename else None
    if data is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Image is not stored locally"
        )
    return Response(content=data, media_type="image/jpeg")


def _validation_error(exc: FoodLogValidationError) -> HTTPException:
    if isinstance(exc, _NOT_FOUND_ERRORS):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
