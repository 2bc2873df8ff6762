"""Selection of the best available local image for an entry."""

from collections.abc import Callable

from foodlog.domain.meals import MealEntry
from foodlog.domain.photos import EntryPhotoAsset


def image_candidates(
    entry: MealEntry, asset: EntryPhotoAsset | None, *, prefer_thumbnail: bool = False
) -> list[str]:
    """Return an entry's image filenames in priority order, without duplicates."""
    full = asset.full_image_filename if asset else None
    thumbnail = asset.thumbnail_filename if asset else None
    if prefer_thumbnail:
        ordered = [thumbnail, full, entry.image_filename]
    else:
        ordered = [full, entry.image_filename, thumbnail]
    candidates: list[str] = []
    for filename in ordered:
        if filename and filename not in candidates:
            candidates.append(filename)
    return candidates


def resolve_image_filename(
    entry: MealEntry,
    asset: EntryPhotoAsset | None,
    *,
    prefer_thumbnail: bool = False,
    is_available: Callable[[str], bool] | None = None,
) -> str | None:
    """Return the first candidate filename that is available."""
    for filename in image_candidates(entry, asset, prefer_thumbnail=prefer_thumbnail):
        if is_available is None or is_available(filename):
            return filename
    return None
