"""Shared test fixtures."""

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from uuid import UUID

import pytest

from foodlog.adapters.image_processor import ImageProcessingError, ImageProcessor
from foodlog.adapters.image_store import ImageStore
from foodlog.adapters.local_store import LocalFoodLogStore
from foodlog.adapters.secret_store import SecretStore
from foodlog.config import Settings
from foodlog.containers import AppContainer
from foodlog.domain.photos import ProcessedImage, UploadedPhotoRefs
from foodlog.services.analysis import (
    DescriptionProvider,
    FoodAnalysisCoordinator,
    FoodAnalysisModelStore,
)
from foodlog.services.meal_entries import MealEntryService
from foodlog.services.meal_types import MealTypeService
from foodlog.services.meals import MealService
from foodlog.services.photo_sync import (
    AssetNotFoundError,
    PhotoSyncService,
    RemotePhotoStore,
)
from foodlog.services.scheduler import SingleFlight

START_TIME = datetime(2025, 3, 14, 12, 0, tzinfo=UTC)


@dataclass
class MutableClock:
    """Controllable clock for time-dependent services."""

    now: datetime = START_TIME

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@dataclass
class InMemoryImageStore(ImageStore):
    """Dictionary-backed image store for tests."""

    files: dict[str, bytes] = field(default_factory=dict)
    saved: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)

    def save_bytes(self, data: bytes, preferred_name: str | None = None) -> str:
        filename = preferred_name or f"generated-{len(self.saved)}.jpg"
        self.files[filename] = data
        self.saved.append(filename)
        return filename

    def load_bytes(self, filename: str) -> bytes | None:
        return self.files.get(filename)

    def file_exists(self, filename: str) -> bool:
        return filename in self.files

    def delete_file(self, filename: str) -> None:
        self.deleted.append(filename)
        self.files.pop(filename, None)


@dataclass
class FakeImageProcessor(ImageProcessor):
    """Image processor that tags bytes instead of decoding them."""

    fail_on_call: int | None = None
    calls: int = 0

    def preprocess(self, image_bytes: bytes) -> ProcessedImage:
        self.calls += 1
        if self.fail_on_call is not None and self.calls == self.fail_on_call:
            raise ImageProcessingError("Unable to decode image")
        return ProcessedImage(
            full_bytes=b"full:" + image_bytes,
            thumbnail_bytes=b"thumb:" + image_bytes,
            full_size=(1600, 1200),
            thumbnail_size=(320, 240),
        )


@dataclass
class FakeRemotePhotoStore(RemotePhotoStore):
    """Remote photo store keeping objects in memory."""

    objects: dict[str, bytes] = field(default_factory=dict)
    uploads: list[UUID] = field(default_factory=list)
    downloads: list[str] = field(default_factory=list)
    upload_failures: int = 0
    download_failures: int = 0

    async def upload(
        self, entry_id: UUID, full_bytes: bytes, thumbnail_bytes: bytes
    ) -> UploadedPhotoRefs:
        self.uploads.append(entry_id)
        await asyncio.sleep(0)
        if self.upload_failures > 0:
            self.upload_failures -= 1
            raise ConnectionError("Remote store unavailable")
        refs = UploadedPhotoRefs(
            full_ref=f"{entry_id}|full", thumbnail_ref=f"{entry_id}|thumb"
        )
        self.objects[refs.full_ref] = full_bytes
        self.objects[refs.thumbnail_ref] = thumbnail_bytes
        return refs

    async def download(self, ref: str) -> bytes:
        self.downloads.append(ref)
        await asyncio.sleep(0)
        if self.download_failures > 0:
            self.download_failures -= 1
            raise ConnectionError("Remote store unavailable")
        if ref not in self.objects:
            raise AssetNotFoundError(f"Remote asset {ref} not found")
        return self.objects[ref]


@dataclass
class FakeDescriptionProvider(DescriptionProvider):
    """Description provider returning a fixed text or raising."""

    description: str = "Grilled chicken breast with rice."
    error: Exception | None = None
    calls: list[tuple[list[bytes], str | None]] = field(default_factory=list)

    async def describe(self, images: list[bytes], notes: str | None) -> str:
        self.calls.append((images, notes))
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.description


@dataclass
class InMemorySecretStore(SecretStore):
    """Secret store holding a value in memory."""

    value: str | None = None

    def get(self) -> str | None:
        cleaned = (self.value or "").strip()
        return cleaned or None

    def set(self, secret: str | None) -> None:
        cleaned = (secret or "").strip()
        self.value = cleaned or None


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def store() -> LocalFoodLogStore:
    return LocalFoodLogStore()


@pytest.fixture
def image_store() -> InMemoryImageStore:
    return InMemoryImageStore()


@pytest.fixture
def image_processor() -> FakeImageProcessor:
    return FakeImageProcessor()


@pytest.fixture
def remote_store() -> FakeRemotePhotoStore:
    return FakeRemotePhotoStore()


@pytest.fixture
def secret_store() -> InMemorySecretStore:
    return InMemorySecretStore(value="test-key")


@pytest.fixture
def description_provider() -> FakeDescriptionProvider:
    return FakeDescriptionProvider()


@pytest.fixture
def meal_type_service(store: LocalFoodLogStore, clock: MutableClock) -> MealTypeService:
    service = MealTypeService(store, now_provider=clock)
    service.bootstrap_default_types_if_needed()
    return service


@pytest.fixture
def meal_service(store: LocalFoodLogStore, clock: MutableClock) -> MealService:
    return MealService(store, now_provider=clock)


@pytest.fixture
def meal_entry_service(
    store: LocalFoodLogStore,
    image_store: InMemoryImageStore,
    image_processor: FakeImageProcessor,
    meal_service: MealService,
    meal_type_service: MealTypeService,
    clock: MutableClock,
) -> MealEntryService:
    return MealEntryService(
        store=store,
        image_store=image_store,
        image_processor=image_processor,
        meal_service=meal_service,
        meal_type_service=meal_type_service,
        now_provider=clock,
    )


@pytest.fixture
def photo_sync_service(
    store: LocalFoodLogStore,
    image_store: InMemoryImageStore,
    image_processor: FakeImageProcessor,
    remote_store: FakeRemotePhotoStore,
    clock: MutableClock,
) -> PhotoSyncService:
    return PhotoSyncService(
        store=store,
        image_store=image_store,
        image_processor=image_processor,
        remote_store=remote_store,
        now_provider=clock,
    )


@pytest.fixture
def analysis_model_store(
    store: LocalFoodLogStore, clock: MutableClock
) -> FoodAnalysisModelStore:
    return FoodAnalysisModelStore(store, now_provider=clock)


@pytest.fixture
def analysis_coordinator(
    analysis_model_store: FoodAnalysisModelStore,
    image_store: InMemoryImageStore,
    description_provider: FakeDescriptionProvider,
    secret_store: InMemorySecretStore,
    clock: MutableClock,
) -> FoodAnalysisCoordinator:
    return FoodAnalysisCoordinator(
        model_store=analysis_model_store,
        image_store=image_store,
        description_provider=description_provider,
        secret_store=secret_store,
        now_provider=clock,
    )


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(data_dir=tmp_path, description_api_key="settings-key")


@pytest.fixture
def container(  # noqa: PLR0913
    settings: Settings,
    store: LocalFoodLogStore,
    image_store: InMemoryImageStore,
    secret_store: InMemorySecretStore,
    meal_type_service: MealTypeService,
    meal_service: MealService,
    meal_entry_service: MealEntryService,
    photo_sync_service: PhotoSyncService,
    analysis_model_store: FoodAnalysisModelStore,
    analysis_coordinator: FoodAnalysisCoordinator,
) -> AppContainer:
    async def close_resources() -> None:
        return None

    return AppContainer(
        settings=settings,
        store=store,
        image_store=image_store,
        secret_store=secret_store,
        meal_type_service=meal_type_service,
        meal_service=meal_service,
        meal_entry_service=meal_entry_service,
        photo_sync_service=photo_sync_service,
        analysis_model_store=analysis_model_store,
        analysis_coordinator=analysis_coordinator,
        sync_guard=SingleFlight("photo sync"),
        analysis_guard=SingleFlight("meal analysis"),
        close_resources=close_resources,
    )
