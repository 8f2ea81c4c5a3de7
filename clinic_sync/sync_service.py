"""Remote sync of the full clinic dataset over HTTP.

Pushes are debounced on a trailing-edge timer: each ``schedule_push`` replaces
the pending snapshot and restarts the quiet period, so a burst of edits sends
one request carrying the last snapshot. Only one push can be in flight; a push
attempted meanwhile is dropped, not queued.
"""

import logging
import threading
from enum import Enum
from typing import Callable

import requests

from clinic_sync import config
from clinic_sync.migrations import parse_snapshot
from clinic_sync.models import SyncSnapshot

logger = logging.getLogger(__name__)


class SyncStatus(Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


StatusListener = Callable[[SyncStatus, str | None], None]


class SyncError(Exception):
    """Raised when a sync request fails."""
    pass


PUSH_SUCCESS_MESSAGE = "Dados sincronizados"
PUSH_ERROR_MESSAGE = "Falha ao sincronizar"
PULL_SUCCESS_MESSAGE = "Dados baixados do servidor"
PULL_ERROR_MESSAGE = "Falha ao baixar dados"


class SyncService:
    """Pushes and pulls snapshots to ``<base_url>/sync``."""

    def __init__(
        self,
        base_url: str | None = None,
        session: requests.Session | None = None,
        debounce_seconds: float | None = None,
        success_reset_seconds: float | None = None,
        timeout: float | None = None,
        timer_factory=threading.Timer,
    ):
        self.base_url = (base_url or config.SYNC_URL).rstrip("/")
        self.session = session or requests.Session()
        self.debounce_seconds = config.SYNC_DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds
        self.success_reset_seconds = (
            config.SYNC_SUCCESS_RESET_SECONDS if success_reset_seconds is None else success_reset_seconds
        )
        self.timeout = config.SYNC_TIMEOUT_SECONDS if timeout is None else timeout
        self._timer_factory = timer_factory

        self.status = SyncStatus.IDLE
        self.message: str | None = None

        self._lock = threading.RLock()
        self._push_lock = threading.Lock()
        self._listeners: list[StatusListener] = []

        self._pending_timer = None
        self._pending_payload: dict | None = None
        self._pending_generation = 0

        self._reset_timer = None
        self._status_generation = 0

    @property
    def sync_url(self) -> str:
        return f"{self.base_url}/sync"

    @property
    def has_pending_push(self) -> bool:
        return self._pending_payload is not None

    @property
    def is_push_in_flight(self) -> bool:
        return self._push_lock.locked()

    # Listeners

    def on_status_change(self, listener: StatusListener) -> Callable[[], None]:
        """Register a status listener; returns a function that unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    # Push

    def schedule_push(self, snapshot: SyncSnapshot | dict) -> None:
        """Push the snapshot once no other push is scheduled for the quiet period."""
        payload = _as_payload(snapshot)
        with self._lock:
            if self._pending_timer is not None:
                self._pending_timer.cancel()
            self._pending_generation += 1
            self._pending_payload = payload
            timer = self._timer_factory(
                self.debounce_seconds, self._fire_pending_push, args=(self._pending_generation,)
            )
            timer.daemon = True
            self._pending_timer = timer
        timer.start()

    def push(self, snapshot: SyncSnapshot | dict) -> bool:
        """POST the snapshot. Returns False if it failed or another push is in flight."""
        if not self._push_lock.acquire(blocking=False):
            logger.info("Push skipped: another push is in flight")
            return False
        try:
            self._set_status(SyncStatus.SYNCING)
            try:
                self._request("POST", json=_as_payload(snapshot))
            except SyncError as e:
                logger.error("Sync push error: %s", e)
                self._set_status(SyncStatus.ERROR, PUSH_ERROR_MESSAGE)
                return False
            logger.info("Pushed snapshot to %s", self.sync_url)
            self._set_status(SyncStatus.SUCCESS, PUSH_SUCCESS_MESSAGE)
            return True
        finally:
            self._push_lock.release()

    def push_now(self, snapshot: SyncSnapshot | dict) -> bool:
        """Drop any pending debounced push and push this snapshot immediately."""
        self.cancel_pending()
        return self.push(snapshot)

    def flush(self) -> bool:
        """Send the pending debounced push right away, if there is one.

        Waits for a push already in flight to finish first, so the pending
        snapshot is sent after it instead of being dropped.
        """
        with self._lock:
            payload = self._pending_payload
            self.cancel_pending()
        if payload is None:
            return False
        if self._push_lock.acquire(timeout=self.timeout):
            self._push_lock.release()
        return self.push(payload)

    def cancel_pending(self) -> None:
        with self._lock:
            if self._pending_timer is not None:
                self._pending_timer.cancel()
            self._pending_timer = None
            self._pending_payload = None
            self._pending_generation += 1

    def _fire_pending_push(self, generation: int) -> None:
        with self._lock:
            if generation != self._pending_generation or self._pending_payload is None:
                return
            payload = self._pending_payload
            self._pending_payload = None
            self._pending_timer = None
        self.push(payload)

    # Pull

    def pull(self) -> SyncSnapshot | None:
        """GET the remote snapshot. Returns None on any failure."""
        self._set_status(SyncStatus.SYNCING)
        try:
            response = self._request("GET")
            snapshot = parse_snapshot(response.json())
        except (SyncError, ValueError) as e:
            logger.error("Sync pull error: %s", e)
            self._set_status(SyncStatus.ERROR, PULL_ERROR_MESSAGE)
            return None
        logger.info("Pulled snapshot from %s", self.sync_url)
        self._set_status(SyncStatus.SUCCESS, PULL_SUCCESS_MESSAGE)
        return snapshot

    # Lifecycle

    def dispose(self) -> None:
        """Cancel all timers and drop every listener."""
        self.cancel_pending()
        with self._lock:
            if self._reset_timer is not None:
                self._reset_timer.cancel()
                self._reset_timer = None
            self._status_generation += 1
            self._listeners.clear()

    # Private helpers

    def _request(self, method: str, **kwargs) -> requests.Response:
        try:
            response = self.session.request(method, self.sync_url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout:
            raise SyncError("Sync request timed out")
        except requests.exceptions.ConnectionError:
            raise SyncError("Failed to connect to sync server")
        except requests.exceptions.RequestException as e:
            raise SyncError(f"Sync request failed: {e}")

        if not response.ok:
            raise SyncError(f"HTTP {response.status_code}")
        return response

    def _set_status(self, status: SyncStatus, message: str | None = None) -> None:
        with self._lock:
            if self._reset_timer is not None:
                self._reset_timer.cancel()
                self._reset_timer = None
            self._status_generation += 1
            self.status = status
            self.message = message
            listeners = list(self._listeners)

            # success is shown briefly, then the indicator goes back to idle
            if status is SyncStatus.SUCCESS:
                timer = self._timer_factory(
                    self.success_reset_seconds, self._reset_to_idle, args=(self._status_generation,)
                )
                timer.daemon = True
                self._reset_timer = timer
                timer.start()

        for listener in listeners:
            try:
                listener(status, message)
            except Exception:
                logger.exception("Sync status listener failed")

    def _reset_to_idle(self, generation: int) -> None:
        with self._lock:
            if generation != self._status_generation or self.status is not SyncStatus.SUCCESS:
                return
            self._reset_timer = None
        self._set_status(SyncStatus.IDLE)


def _as_payload(snapshot: SyncSnapshot | dict) -> dict:
    if isinstance(snapshot, SyncSnapshot):
        return snapshot.to_json()
    return snapshot
