import logging
import threading
from typing import Callable, Optional

from notesync.errors import Result
from notesync.network import Connectivity
from notesync.services.sync_engine import SyncEngine, SyncReport

logger = logging.getLogger(__name__)


class AutoSyncService:
    """Periodic background sync on a daemon thread.

    Nothing runs until :meth:`start`. Each tick pushes pending work and
    reconciles, retrying a failed run up to ``retry_attempts`` times.
    Retryable failures are retried; permission and authentication
    failures wait for the next tick.
    """

    def __init__(
        self,
        engine: SyncEngine,
        connectivity: Connectivity,
        interval: float = 60.0,
        retry_attempts: int = 3,
        retry_delay: float = 30.0,
        on_result: Optional[Callable[[Result[SyncReport]], None]] = None,
    ) -> None:
        self.engine = engine
        self.connectivity = connectivity
        self.interval = interval
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay = retry_delay
        self._on_result = on_result or self._default_handler
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._sync_thread: Optional[threading.Thread] = None
        self._is_running = False

    @property
    def is_running(self) -> bool:
        return self._is_running

    def start(self) -> None:
        with self._lock:
            if self._is_running:
                return

            self._stop_event.clear()
            self._is_running = True
            self._sync_thread = threading.Thread(
                target=self._sync_loop, name="notesync-auto-sync", daemon=True)
            self._sync_thread.start()
            logger.info("Auto sync started (every %ss)", self.interval)

    def stop(self) -> None:
        with self._lock:
            if not self._is_running:
                return

            self._is_running = False
            self._stop_event.set()

        if self._sync_thread is not None:
            self._sync_thread.join(timeout=5.0)
            self._sync_thread = None
        logger.info("Auto sync stopped")

    def run_forever(self) -> None:
        try:
            if not self._is_running:
                self.start()

            while not self._stop_event.wait(timeout=1.0):
                continue
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()

    def sync_once(self) -> Optional[Result[SyncReport]]:
        """One tick: ``None`` when offline, else the last attempt's result."""
        if not self.connectivity.is_connected():
            logger.debug("Offline, skipping sync tick")
            return None

        result: Optional[Result[SyncReport]] = None
        for attempt in range(1, self.retry_attempts + 1):
            result = self.engine.sync_now()
            if result.ok:
                logger.info("Auto sync: %s", result.value.push.message)
                break
            logger.warning("Auto sync attempt %d/%d failed: %s", attempt, self.retry_attempts, result.error)
            if not result.error.retryable or attempt == self.retry_attempts:
                break
            if self._stop_event.wait(self.retry_delay):
                break
        return result

    def _sync_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                result = self.sync_once()
                if result is not None:
                    self._on_result(result)
            except Exception as e:
                logger.error("Error in auto sync tick: %s", e)
            self._stop_event.wait(self.interval)

    @staticmethod
    def _default_handler(result: Result[SyncReport]) -> None:
        pass

    def __enter__(self) -> "AutoSyncService":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
