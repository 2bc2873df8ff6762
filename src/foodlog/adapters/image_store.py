"""Local on-disk storage for JPEG files."""

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol
from uuid import UUID, uuid4


class ImageStore(Protocol):
    """Interface for filename-addressed local image storage."""

    def save_bytes(self, data: bytes, preferred_name: str | None = None) -> str:
        """Persist bytes and return the filename they were stored under."""

    def load_bytes(self, filename: str) -> bytes | None:
        """Return stored bytes, or None when the file is missing."""

    def file_exists(self, filename: str) -> bool:
        """Return whether a file is stored under this name."""

    def delete_file(self, filename: str) -> None:
        """Delete a stored file; missing files are ignored."""


@dataclass
class FileImageStore(ImageStore):
    """Image store writing into a single directory."""

    base_dir: Path
    id_provider: Callable[[], UUID] = field(default=uuid4)

    def save_bytes(self, data: bytes, preferred_name: str | None = None) -> str:
        """Write bytes atomically, generating a name when none is preferred."""
        filename = preferred_name or f"{self.id_provider()}.jpg"
        destination = self.path_for(filename)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        temp_path = destination.with_name(f".{filename}.tmp")
        temp_path.write_bytes(data)
        os.replace(temp_path, destination)
        return filename

    def load_bytes(self, filename: str) -> bytes | None:
        """Read a stored file."""
        try:
            return self.path_for(filename).read_bytes()
        except FileNotFoundError:
            return None

    def file_exists(self, filename: str) -> bool:
        """Check whether a stored file exists."""
        return self.path_for(filename).is_file()

    def delete_file(self, filename: str) -> None:
        """Delete a stored file if present."""
        self.path_for(filename).unlink(missing_ok=True)

    def path_for(self, filename: str) -> Path:
        """Resolve a bare filename inside the storage directory."""
        if not filename or Path(filename).name != filename:
            raise ValueError(f"Invalid image filename: {filename!r}")
        return self.base_dir / filename
