"""AI meal description queue."""

import base64
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol
from uuid import UUID

from foodlog.adapters.image_store import ImageStore
from foodlog.adapters.local_store import LocalFoodLogStore
from foodlog.adapters.secret_store import SecretStore
from foodlog.domain.analysis import AnalysisRunReport
from foodlog.domain.errors import MissingMealError
from foodlog.domain.meals import AIAnalysisStatus, PendingMealAnalysis
from foodlog.services.images import resolve_image_filename

_QUEUEABLE_STATUSES = (AIAnalysisStatus.NONE, AIAnalysisStatus.FAILED)

_logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class DescriptionProviderError(Exception):
    """Base error raised by description providers."""

    classification = "unexpected"


class NoCredentialError(DescriptionProviderError):
    """No API credential is configured."""

    classification = "no_credential"

    def __init__(self) -> None:
        super().__init__("No API key configured")


class NetworkError(DescriptionProviderError):
    """The provider could not be reached."""

    classification = "network_error"

    def __init__(self, message: str = "Network error") -> None:
        super().__init__(message)


class HttpError(DescriptionProviderError):
    """The provider answered with a non-success status."""

    classification = "http_error"

    def __init__(self, status_code: int, body: str | None = None) -> None:
        message = f"HTTP {status_code}"
        if body:
            message = f"{message}: {body}"
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class DecodingError(DescriptionProviderError):
    """The provider response could not be decoded into a description."""

    classification = "decoding_error"

    def __init__(self, message: str = "Could not decode provider response") -> None:
        super().__init__(message)


class MissingLocalImageError(Exception):
    """A claimed meal references an image that is not stored locally."""

    classification = "missing_local_image"


class DescriptionProvider(Protocol):
    """Interface for services that describe meal photos."""

    async def describe(self, images: list[bytes], notes: str | None) -> str:
        """Return a short text description of the photographed meal."""


@dataclass
class FoodAnalysisModelStore:
    """Meal status transitions for the analysis queue."""

    store: LocalFoodLogStore
    now_provider: Callable[[], datetime] = field(default=_utc_now)

    def claim_next_pending_meal(self) -> PendingMealAnalysis | None:
        """Flip the oldest pending meal to analyzing and return its work item.

        The read and the status write happen in one transaction, so a meal is
        handed to at most one caller.
        """
        with self.store.transaction():
            meal = self.store.oldest_meal_with_status(AIAnalysisStatus.PENDING)
            if meal is None:
                return None
            meal.ai_analysis_status = AIAnalysisStatus.ANALYZING

            entries = sorted(
                self.store.entries_for_meal(meal.id), key=lambda entry: entry.logged_at
            )
            filenames = []
            for entry in entries:
                filename = resolve_image_filename(
                    entry, self.store.asset_for_entry(entry.id)
                )
                if filename is not None:
                    filenames.append(filename)
            return PendingMealAnalysis(
                meal_id=meal.id, image_filenames=filenames, notes=meal.user_notes
            )

    def mark_completed(self, meal_id: UUID, description: str) -> None:
        with self.store.transaction():
            meal = self.store.get_meal(meal_id)
            if meal is None:
                return
            meal.ai_description = description
            meal.ai_analysis_status = AIAnalysisStatus.COMPLETED
            meal.ai_analysis_error_details = None
            meal.updated_at = self.now_provider()

    def mark_failed(self, meal_id: UUID, details: str | None = None) -> None:
        with self.store.transaction():
            meal = self.store.get_meal(meal_id)
            if meal is None:
                return
            meal.ai_analysis_status = AIAnalysisStatus.FAILED
            meal.ai_analysis_error_details = details
            meal.updated_at = self.now_provider()

    def queue_meal(self, meal_id: UUID) -> bool:
        """Queue a meal for analysis; only idle or failed meals are accepted."""
        with self.store.transaction():
            meal = self.store.get_meal(meal_id)
            if meal is None:
                raise MissingMealError(meal_id)
            if meal.ai_analysis_status not in _QUEUEABLE_STATUSES:
                return False
            meal.ai_analysis_status = AIAnalysisStatus.PENDING
            meal.ai_analysis_error_details = None
            meal.updated_at = self.now_provider()
            return True


@dataclass
class FoodAnalysisCoordinator:
    """Works through pending meals one at a time."""

    model_store: FoodAnalysisModelStore
    image_store: ImageStore
    description_provider: DescriptionProvider
    secret_store: SecretStore
    now_provider: Callable[[], datetime] = field(default=_utc_now)

    async def process_pending_meals(self) -> AnalysisRunReport:
        """Describe every pending meal until the queue is empty.

        Does nothing when no API key is configured. A failure for one meal is
        recorded on that meal and the loop moves on.
        """
        report = AnalysisRunReport()
        if not self.secret_store.get():
            _logger.info("Skipping meal analysis: no API key configured")
            return report

        while True:
            try:
                claimed = self.model_store.claim_next_pending_meal()
            except Exception as exc:
                _logger.exception("Could not claim the next pending meal")
                report.error = str(exc) or type(exc).__name__
                return report
            if claimed is None:
                return report

            try:
                images = self._load_images(claimed.image_filenames)
                description = await self.description_provider.describe(
                    images, claimed.notes
                )
            except Exception as exc:
                details = self._failure_details(claimed, exc)
                self.model_store.mark_failed(claimed.meal_id, details)
                report.failed += 1
                _logger.warning(
                    "Meal %s analysis failed: %s",
                    claimed.meal_id,
                    details.splitlines()[0],
                )
                continue

            self.model_store.mark_completed(claimed.meal_id, description)
            report.completed += 1
            _logger.info("Meal %s analysis completed", claimed.meal_id)

    def _load_images(self, filenames: list[str]) -> list[bytes]:
        if not filenames:
            raise MissingLocalImageError("Meal has no images")
        images = []
        for filename in filenames:
            data = self.image_store.load_bytes(filename)
            if data is None:
                raise MissingLocalImageError(f"Missing local image {filename}")
            images.append(data)
        return images

    def _failure_details(self, claimed: PendingMealAnalysis, error: Exception) -> str:
        classification = getattr(error, "classification", "unexpected")
        return "\n".join(
            [
                str(error) or type(error).__name__,
                f"classification: {classification}",
                f"meal_id: {claimed.meal_id}",
                f"image_count: {len(claimed.image_filenames)}",
                f"timestamp: {self.now_provider().isoformat()}",
            ]
        )


SYSTEM_PROMPT = (
    "You are a food-logging assistant. The user sends photos from a single "
    "meal, possibly with notes for context.\n\n"
    "- Describe all food and drink items visible across the photos\n"
    "- If a photo shows a nutrition label or restaurant menu, extract the "
    "relevant items and nutritional info instead of describing the image\n"
    "- Incorporate the user's notes - they may correct, clarify, or add "
    "context the photos don't show\n"
    '- Be concise and specific (e.g. "grilled chicken breast" not just "meat")'
)

DESCRIPTION_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "description": {
            "type": "string",
            "description": (
                "1-3 sentence description of the food and drink items in the meal"
            ),
        }
    },
    "required": ["description"],
    "additionalProperties": False,
}

DESCRIPTION_RESPONSE_FORMAT: dict[str, object] = {
    "type": "json_schema",
    "json_schema": {
        "name": "food_description",
        "strict": True,
        "schema": DESCRIPTION_SCHEMA,
    },
}


def build_description_messages(
    images: list[bytes], notes: str | None
) -> list[dict[str, object]]:
    """Build chat messages asking a model to describe meal photos."""
    content: list[dict[str, object]] = [
        {"type": "image_url", "image_url": {"url": to_data_url(image)}}
        for image in images
    ]
    cleaned_notes = notes.strip() if notes else ""
    if cleaned_notes:
        content.append({"type": "text", "text": f"Additional context: {cleaned_notes}"})
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": content},
    ]


def to_data_url(image_bytes: bytes) -> str:
    """Convert bytes to a base64 data URL for image input."""
    mime_type = _detect_mime_type(image_bytes)
    encoded = base64.b64encode(image_bytes).decode("utf-8")
    return f"data:{mime_type};base64,{encoded}"


def _detect_mime_type(image_bytes: bytes) -> str:
    if image_bytes.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"
