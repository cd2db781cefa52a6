"""
Periodic sync trigger.

A daemon thread that runs sync_all() every SYNC_INTERVAL_SECONDS until the
application shuts down.
"""

import logging
import threading
from typing import Optional

from app.services.sync_service import SyncService

logger = logging.getLogger(__name__)


class SyncScheduler:
    def __init__(self, sync_service: SyncService, interval: float = 30):
        self.sync_service = sync_service
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="sync-scheduler", daemon=True)
        self._thread.start()
        logger.info("Sync scheduler started (every %ss)", self.interval)

    def stop(self, timeout: float = 10) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Sync scheduler stopped")

    def run_once(self) -> None:
        """Run one sync pass; a failing pass is logged and the loop goes on."""
        try:
            self.sync_service.sync_all()
        except Exception:
            logger.exception("Scheduled sync pass failed")

    def _loop(self) -> None:
        while not self._stop.is_set():
            self.run_once()
            self._stop.wait(self.interval)
