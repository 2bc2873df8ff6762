"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from foodlog.adapters.image_processor import PillowImageProcessor
from foodlog.adapters.image_store import FileImageStore, ImageStore
from foodlog.adapters.local_store import LocalFoodLogStore
from foodlog.adapters.mistral_description_client import MistralDescriptionClient
from foodlog.adapters.openai_description_client import OpenAIDescriptionClient
from foodlog.adapters.secret_store import FileSecretStore, SecretStore
from foodlog.adapters.supabase_photo_store import SupabasePhotoStore
from foodlog.config import Settings, parse_timezone
from foodlog.services.analysis import FoodAnalysisCoordinator, FoodAnalysisModelStore
from foodlog.services.meal_entries import MealEntryService
from foodlog.services.meal_types import MealTypeService
from foodlog.services.meals import MealService
from foodlog.services.photo_sync import PhotoSyncService, RemotePhotoStore
from foodlog.services.scheduler import SingleFlight


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    store: LocalFoodLogStore
    image_store: ImageStore
    secret_store: SecretStore
    meal_type_service: MealTypeService
    meal_service: MealService
    meal_entry_service: MealEntryService
    photo_sync_service: PhotoSyncService
    analysis_model_store: FoodAnalysisModelStore
    analysis_coordinator: FoodAnalysisCoordinator
    sync_guard: SingleFlight
    analysis_guard: SingleFlight
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    timezone = parse_timezone(resolved_settings.timezone)
    store = LocalFoodLogStore(resolved_settings.resolved_store_path)
    image_store = FileImageStore(resolved_settings.resolved_images_dir)
    image_processor = PillowImageProcessor()
    secret_store = FileSecretStore(resolved_settings.resolved_secret_path)
    if resolved_settings.description_api_key and not secret_store.get():
        secret_store.set(resolved_settings.description_api_key)

    meal_type_service = MealTypeService(store, timezone=timezone)
    meal_service = MealService(store, timezone=timezone)
    meal_entry_service = MealEntryService(
        store=store,
        image_store=image_store,
        image_processor=image_processor,
        meal_service=meal_service,
        meal_type_service=meal_type_service,
    )
    photo_sync_service = PhotoSyncService(
        store=store,
        image_store=image_store,
        image_processor=image_processor,
        remote_store=_build_remote_store(resolved_settings),
    )

    if resolved_settings.description_provider == "mistral":
        description_client: MistralDescriptionClient | OpenAIDescriptionClient = (
            MistralDescriptionClient.create(
                secret_store,
                model=resolved_settings.mistral_model,
                base_url=resolved_settings.mistral_base_url,
            )
        )
    elif resolved_settings.description_provider == "openai":
        description_client = OpenAIDescriptionClient(
            secret_store=secret_store, model=resolved_settings.openai_model
        )
    else:
        raise ValueError(
            f"Unknown description provider {resolved_settings.description_provider!r}"
        )
    analysis_model_store = FoodAnalysisModelStore(store)
    analysis_coordinator = FoodAnalysisCoordinator(
        model_store=analysis_model_store,
        image_store=image_store,
        description_provider=description_client,
        secret_store=secret_store,
    )

    async def close_resources() -> None:
        await description_client.close()
        store.close()

    return AppContainer(
        settings=resolved_settings,
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


def _build_remote_store(settings: Settings) -> RemotePhotoStore | None:
    if not settings.cloud_sync_enabled:
        return None
    if not settings.supabase_url or not settings.supabase_service_key:
        raise ValueError("Cloud sync requires SUPABASE_URL and SUPABASE_SERVICE_KEY")
    client = create_client(settings.supabase_url, settings.supabase_service_key)
    return SupabasePhotoStore(client=client, bucket=settings.supabase_bucket)
