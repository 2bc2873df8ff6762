"""Image preprocessing into full-size and thumbnail JPEGs."""

import io
from dataclasses import dataclass
from typing import Protocol

from PIL import Image, ImageOps, UnidentifiedImageError

from foodlog.domain.photos import ProcessedImage


class ImageProcessingError(Exception):
    """Raised when an image cannot be decoded or encoded."""


class ImageProcessor(Protocol):
    """Interface for turning a raw image into stored JPEG variants."""

    def preprocess(self, image_bytes: bytes) -> ProcessedImage:
        """Return full-size and thumbnail JPEG data for an image."""


@dataclass
class PillowImageProcessor(ImageProcessor):
    """Pillow-based resizer and JPEG encoder."""

    max_full_long_edge: int = 1600
    max_thumbnail_long_edge: int = 320
    full_quality: float = 0.75
    thumbnail_quality: float = 0.65

    def preprocess(self, image_bytes: bytes) -> ProcessedImage:
        """Constrain the long edge and encode both variants."""
        try:
            with Image.open(io.BytesIO(image_bytes)) as source:
                image = ImageOps.exif_transpose(source).convert("RGB")
        except (UnidentifiedImageError, OSError) as exc:
            raise ImageProcessingError("Unable to decode image") from exc

        full_image = _resized(image, self.max_full_long_edge)
        thumbnail_image = _resized(full_image, self.max_thumbnail_long_edge)
        return ProcessedImage(
            full_bytes=_encode_jpeg(full_image, self.full_quality),
            thumbnail_bytes=_encode_jpeg(thumbnail_image, self.thumbnail_quality),
            full_size=full_image.size,
            thumbnail_size=thumbnail_image.size,
        )


def _resized(image: Image.Image, max_long_edge: int) -> Image.Image:
    """Return a copy no larger than max_long_edge on either side."""
    resized = image.copy()
    resized.thumbnail((max_long_edge, max_long_edge), Image.Resampling.LANCZOS)
    return resized


def _encode_jpeg(image: Image.Image, quality: float) -> bytes:
    buffer = io.BytesIO()
    try:
        image.save(buffer, format="JPEG", quality=round(quality * 100))
    except OSError as exc:
        raise ImageProcessingError("Unable to encode JPEG") from exc
    return buffer.getvalue()
