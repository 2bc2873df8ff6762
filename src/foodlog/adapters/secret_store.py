"""Storage for the description provider API key."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


class SecretStore(Protocol):
    """Interface for reading and writing a single secret string."""

    def get(self) -> str | None:
        """Return the stored secret, if any."""

    def set(self, secret: str | None) -> None:
        """Store a secret; None or blank removes it."""


@dataclass
class FileSecretStore(SecretStore):
    """Secret store backed by an owner-only file."""

    path: Path

    def get(self) -> str | None:
        """Read the secret, treating blank files as missing."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError:
            self.path.unlink(missing_ok=True)
            return None
        cleaned = raw.strip()
        return cleaned or None

    def set(self, secret: str | None) -> None:
        """Write or clear the secret."""
        cleaned = secret.strip() if secret is not None else ""
        if not cleaned:
            self.path.unlink(missing_ok=True)
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(cleaned)
