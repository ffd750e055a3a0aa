"""
Fetch Coordination

Keeps batch refreshes from overlapping: a scheduled pass and a manual
"refresh all" must not download the same sources twice at the same time.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable


logger = logging.getLogger(__name__)


class FetchCoordinator:
    """
    Runs at most one batch refresh at a time.

    A second request arriving while a batch is running is not queued; it is
    answered immediately with a 'skipped' result.
    """

    def __init__(self):
        self._fetch_lock = asyncio.Lock()

    async def execute(self, fetch_func: Callable[[], Awaitable[dict[str, Any]]]) -> dict[str, Any]:
        """
        Execute a batch refresh with concurrency protection.

        Args:
            fetch_func: Coroutine function performing the batch

        Returns:
            Result from fetch_func, or a skip response if a batch is already running
        """
        if self._fetch_lock.locked():
            logger.warning("EPG refresh already in progress, skipping this request")
            return {
                "status": "skipped",
                "message": "EPG refresh operation already in progress"
            }

        async with self._fetch_lock:
            return await fetch_func()


_coordinator: FetchCoordinator | None = None


def get_fetch_coordinator() -> FetchCoordinator:
    """Get or create the global fetch coordinator singleton."""
    global _coordinator
    if _coordinator is None:
        _coordinator = FetchCoordinator()
    return _coordinator


def reset_fetch_coordinator() -> None:
    """Drop the global coordinator (used by tests between event loops)."""
    global _coordinator
    _coordinator = None
