"""Background sync service.

Runs the sync coordinator when connectivity comes back and on a backstop
interval. Connectivity changes can be pushed by the host application
(``notify_connectivity``) or discovered by a periodic probe of the remote
store. Runs never overlap within one process; triggers that arrive during
a run are folded into a single follow-up run.
"""

import asyncio
import logging
import signal
from typing import Optional

from .config import config
from .remote import RemoteStore
from .sync import SyncCoordinator

logger = logging.getLogger(__name__)


class SyncService:
    """Schedules sync runs on connectivity transitions plus a backstop interval."""

    def __init__(
        self,
        coordinator: SyncCoordinator,
        remote: RemoteStore | None = None,
        interval_seconds: float | None = None,
        connectivity_check_seconds: float | None = None,
    ):
        self.coordinator = coordinator
        self.remote = remote or coordinator.remote
        self.interval_seconds = interval_seconds or config.SYNC_INTERVAL_SECONDS
        self.connectivity_check_seconds = (
            connectivity_check_seconds or config.CONNECTIVITY_CHECK_SECONDS
        )

        self.online: Optional[bool] = None
        self.last_result: Optional[dict] = None
        self.runs_completed = 0

        self._running = False
        self._tasks: list[asyncio.Task] = []
        self._reconnect_tasks: set[asyncio.Task] = set()
        self._lock = asyncio.Lock()
        self._rerun_requested = False

    async def start(self):
        """Start the background loops."""
        logger.info(
            f"Starting sync service (interval {self.interval_seconds}s, "
            f"connectivity check {self.connectivity_check_seconds}s)"
        )
        self._running = True
        self._tasks.append(asyncio.create_task(self._interval_loop()))
        self._tasks.append(asyncio.create_task(self._connectivity_loop()))

    async def stop(self):
        """Stop the service. An in-flight run finishes in its worker thread."""
        logger.info("Stopping sync service")
        self._running = False

        tasks = [*self._tasks, *self._reconnect_tasks]
        for task in tasks:
            task.cancel()

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._reconnect_tasks.clear()

        logger.info("Sync service stopped")

    async def run(self):
        """Run until interrupted."""
        await self.start()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda: asyncio.create_task(self.stop()))

        while self._running:
            await asyncio.sleep(1)

    async def trigger_sync(self, reason: str = "manual") -> Optional[dict]:
        """Run a sync pass unless one is already running.

        If a run is in progress the request is remembered and one more
        pass runs when it finishes.

        Returns:
            Result of the last pass run by this call, or None if folded
            into a run already in progress
        """
        if self._lock.locked():
            logger.debug(f"Sync already running; queued follow-up ({reason})")
            self._rerun_requested = True
            return None

        async with self._lock:
            result = None
            while True:
                self._rerun_requested = False
                logger.debug(f"Sync triggered ({reason})")
                try:
                    result = await asyncio.to_thread(self.coordinator.run_once)
                except Exception as e:
                    logger.error(f"Sync run failed: {e}")
                    break

                self.last_result = result
                self.runs_completed += 1
                if not self._rerun_requested:
                    break
                reason = "follow-up"
            return result

    def notify_connectivity(self, online: bool) -> Optional[asyncio.Task]:
        """Record a connectivity change reported by the host.

        An offline -> online (or unknown -> online) transition schedules a
        sync run.
        """
        was_online = self.online
        self.online = online

        if online and not was_online:
            logger.info("Connectivity restored; scheduling sync")
            return asyncio.get_running_loop().create_task(self.trigger_sync("reconnect"))
        if not online and was_online:
            logger.info("Connectivity lost; sync paused until reconnect")
        return None

    async def _interval_loop(self):
        """Backstop: sync periodically while online."""
        while self._running:
            await asyncio.sleep(self.interval_seconds)
            if self.online is False:
                continue
            try:
                await self.trigger_sync("interval")
            except Exception as e:
                logger.error(f"Error in interval loop: {e}")

    async def _connectivity_loop(self):
        """Probe the remote store and report transitions."""
        while self._running:
            try:
                online = await asyncio.to_thread(self.remote.is_available)
                task = self.notify_connectivity(online)
                if task is not None:
                    self._reconnect_tasks.add(task)
                    task.add_done_callback(self._reconnect_tasks.discard)
            except Exception as e:
                logger.error(f"Error in connectivity loop: {e}")
            await asyncio.sleep(self.connectivity_check_seconds)

    def get_status(self) -> dict:
        """Get service status."""
        return {
            "running": self._running,
            "online": self.online,
            "sync_in_progress": self._lock.locked(),
            "runs_completed": self.runs_completed,
            "last_result": self.last_result,
        }
