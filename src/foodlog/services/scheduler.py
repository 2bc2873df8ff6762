"""Guards and loops for background sync and analysis cycles."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

T = TypeVar("T")

_logger = logging.getLogger(__name__)


class AlreadyRunningError(Exception):
    """Raised when a guarded cycle is started while one is in flight."""

    def __init__(self, name: str) -> None:
        super().__init__(f"{name} is already running")
        self.name = name


@dataclass
class SingleFlight:
    """Allows at most one run of an operation at a time."""

    name: str
    _running: bool = field(default=False, init=False)

    @property
    def running(self) -> bool:
        return self._running

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run the operation, refusing to start a second concurrent run."""
        if self._running:
            raise AlreadyRunningError(self.name)
        self._running = True
        try:
            return await operation()
        finally:
            self._running = False


async def run_periodically(
    guard: SingleFlight,
    operation: Callable[[], Awaitable[object]],
    interval_seconds: float,
) -> None:
    """Run an operation every interval until cancelled.

    A tick that finds the previous run still in flight is skipped.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await guard.run(operation)
        except AlreadyRunningError:
            _logger.info("Skipping %s tick: previous run still in flight", guard.name)
        except Exception:
            _logger.exception("Periodic %s failed", guard.name)
