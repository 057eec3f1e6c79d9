"""
Refresh Coordination

De-duplicates concurrent guide refreshes per playlist: callers that arrive
while an identical refresh for the same playlist is running await that
refresh instead of starting their own upstream fetch.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Hashable, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar('T')


class RefreshCoordinator:
    """
    Single-flight coordination of refresh cycles keyed by playlist.

    The first caller for a key starts the work as a task; later callers with
    the same key and variant share that task's result (or exception) until it
    finishes.
    """

    def __init__(self):
        """Initialize the coordinator with no refresh in flight."""
        self._in_flight: dict[str, tuple[asyncio.Task, Hashable]] = {}

    async def execute(
        self,
        key: str,
        refresh_func: Callable[[], Awaitable[T]],
        *,
        variant: Hashable = None
    ) -> T:
        """
        Run refresh_func for key unless an identical refresh is already running.

        A refresh running for the same key with a different variant is waited
        out first, so refreshes of one playlist never overlap.

        Args:
            key: De-duplication key (the owning playlist id)
            refresh_func: Coroutine function performing the refresh
            variant: Parameters of the refresh; only equal variants share a run

        Returns:
            Result of the joined or newly started refresh
        """
        while True:
            in_flight = self._in_flight.get(key)
            if in_flight is None:
                task = asyncio.ensure_future(refresh_func())
                self._in_flight[key] = (task, variant)
                task.add_done_callback(lambda done, key=key: self._release(key, done))
                break

            task, running_variant = in_flight
            if running_variant == variant:
                logger.info("Refresh for playlist %s already in progress, awaiting it", key)
                break

            logger.info("Different refresh for playlist %s in progress, waiting for it to finish", key)
            await asyncio.wait({task})

        # A cancelled waiter must not cancel the shared refresh
        return await asyncio.shield(task)

    def _release(self, key: str, task: asyncio.Task) -> None:
        in_flight = self._in_flight.get(key)
        if in_flight is not None and in_flight[0] is task:
            del self._in_flight[key]

    def is_refreshing(self, key: str) -> bool:
        """
        Check if a refresh for key is currently in progress.

        Returns:
            True if a refresh is running, False otherwise
        """
        return key in self._in_flight


# Global singleton instance
_coordinator: RefreshCoordinator | None = None


def get_refresh_coordinator() -> RefreshCoordinator:
    """
    Get or create the global refresh coordinator singleton.

    Returns:
        The global RefreshCoordinator instance
    """
    global _coordinator
    if _coordinator is None:
        _coordinator = RefreshCoordinator()
    return _coordinator


def reset_refresh_coordinator() -> None:
    """
    Reset the refresh coordinator (mainly for testing).

    WARNING: Only use this in test environments!
    """
    global _coordinator
    _coordinator = None
