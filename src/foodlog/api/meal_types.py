"""Meal type catalog endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID  # noqa: TC003

from fastapi import APIRouter, HTTPException, Query, Request, status
from pydantic import AwareDatetime  # noqa: TC002

from foodlog.api.models import MealTypeName  # noqa: TC001
from foodlog.domain.errors import (
    DuplicateMealTypeNameError,
    InvalidMealTypeNameError,
    MissingMealTypeError,
)

if TYPE_CHECKING:
    from foodlog.containers import AppContainer
    from foodlog.domain.meals import MealType

router = APIRouter(prefix="/meal-types", tags=["meal-types"])


def meal_type_payload(meal_type: MealType) -> dict[str, object]:
    return {
        "id": meal_type.id,
        "display_name": meal_type.display_name,
        "is_system": meal_type.is_system,
        "created_at": meal_type.created_at,
        "updated_at": meal_type.updated_at,
    }


@router.get("")
async def list_meal_types(request: Request) -> dict[str, object]:
    """Return all meal types sorted by name."""
    container: AppContainer = request.app.state.container
    types = container.meal_type_service.list_types()
    return {"meal_types": [meal_type_payload(meal_type) for meal_type in types]}


@router.get("/suggestion")
async def suggest_meal_type(
    request: Request, at: AwareDatetime | None = Query(default=None)
) -> dict[str, object]:
    """Suggest a meal type for a moment, defaulting to now."""
    container: AppContainer = request.app.state.container
    service = container.meal_type_service
    suggested = service.suggest_meal_type(at or service.now_provider())
    if suggested is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
    return meal_type_payload(suggested)


@router.get("/{type_id}")
async def get_meal_type(type_id: UUID, request: Request) -> dict[str, object]:
    container: AppContainer = request.app.state.container
    meal_type = container.meal_type_service.get_type(type_id)
    if meal_type is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
    return meal_type_payload(meal_type)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_meal_type(body: MealTypeName, request: Request) -> dict[str, object]:
    """Create a custom meal type."""
    container: AppContainer = request.app.state.container
    try:
        meal_type = container.meal_type_service.create_custom_type(body.name)
    except (InvalidMealTypeNameError, DuplicateMealTypeNameError) as exc:
        raise _name_error(exc) from exc
    return meal_type_payload(meal_type)


@router.patch("/{type_id}")
async def rename_meal_type(
    type_id: UUID, body: MealTypeName, request: Request
) -> dict[str, object]:
    """Rename a meal type."""
    container: AppContainer = request.app.state.container
    try:
        meal_type = container.meal_type_service.rename_type(type_id, body.name)
    except MissingMealTypeError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)
        ) from exc
    except (InvalidMealTypeNameError, DuplicateMealTypeNameError) as exc:
        raise _name_error(exc) from exc
    return meal_type_payload(meal_type)


def _name_error(exc: Exception) -> HTTPException:
    if isinstance(exc, DuplicateMealTypeNameError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
