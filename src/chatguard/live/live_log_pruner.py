"""
Background task that evicts live log entries older than the cache's
``keep_minutes`` horizon.
"""
import asyncio

from chatguard.live.live_log_cache import LiveLogCache
from chatguard.util.logger import get_logger

logger = get_logger("live_log_pruner")

DEFAULT_PRUNE_INTERVAL = 60.0


class LiveLogPruner:
    """
    Periodically calls :meth:`LiveLogCache.prune_older_than`.

    Attributes:
        cache (LiveLogCache): The cache to prune.
        interval (float): Seconds between two passes.
        runner_task (asyncio.Task | None): Background task running the loop.
    """

    def __init__(self, cache: LiveLogCache, interval: float = DEFAULT_PRUNE_INTERVAL) -> None:
        self.cache = cache
        self.interval = max(0.01, float(interval))
        self.runner_task: asyncio.Task[None] | None = None

    def ensure_runner(self) -> None:
        """Create the background task if it is not already running."""
        loop = asyncio.get_running_loop()
        if self.runner_task is None or self.runner_task.done():
            self.runner_task = loop.create_task(self.run(), name="chatguard-live-log-pruner")

    async def shutdown(self) -> None:
        """Stop the loop and wait for it to exit. Safe to call more than once."""
        if self.runner_task is None:
            return
        self.runner_task.cancel()
        try:
            await self.runner_task
        except asyncio.CancelledError:
            pass
        finally:
            self.runner_task = None

    async def run(self) -> None:
        """Prune once per interval until cancelled. A failed pass is logged and retried next time."""
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.cache.prune_older_than()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("[LIVE LOG] Failed to prune the live log: %s", exc)
