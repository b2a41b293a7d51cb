import logging
import threading
from typing import Optional

from .errors import TaskStoreError
from .store import TaskStore

logger = logging.getLogger(__name__)


class ExpiryReaper:
    """Background thread that physically removes expired tasks.

    Best effort only: reads already hide expired tasks, so a slow or failing
    reaper just leaves dead rows on disk for longer.
    """

    def __init__(self, store: TaskStore, interval_seconds: float, batch_size: int = 500):
        self.store = store
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run_once(self) -> int:
        """Purge until a batch comes back short. Returns the number of rows removed."""
        total = 0
        while not self._stop.is_set():
            removed = self.store.purge_expired(limit=self.batch_size)
            total += removed
            if removed < self.batch_size:
                break
        return total

    def _loop(self) -> None:
        logger.info("Expiry reaper started interval=%ss batch=%s", self.interval_seconds, self.batch_size)
        while not self._stop.wait(self.interval_seconds):
            try:
                self.run_once()
            except TaskStoreError as exc:
                logger.warning("Expiry reaper pass failed: %s", exc)
            except Exception:
                logger.exception("Expiry reaper pass crashed")
        logger.info("Expiry reaper stopped")

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="expiry-reaper", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
