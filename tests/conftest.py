"""Shared pytest fixtures."""

import pytest
from unittest.mock import MagicMock

from clinic_sync.clinic_store import ClinicStore
from clinic_sync.local_storage import LocalStore
from clinic_sync.sync_service import SyncService


class FakeTimer:
    """Stands in for threading.Timer; fires only when the test says so."""

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if self.started and not self.cancelled and not self.fired:
            self.fired = True
            self.function(*self.args, **self.kwargs)


class TimerRecorder:
    """Timer factory that keeps every timer it hands out."""

    def __init__(self):
        self.timers: list[FakeTimer] = []

    def __call__(self, interval, function, args=None, kwargs=None):
        timer = FakeTimer(interval, function, args, kwargs)
        self.timers.append(timer)
        return timer

    def pending(self, interval=None) -> list[FakeTimer]:
        return [
            t for t in self.timers
            if t.started and not t.cancelled and not t.fired
            and (interval is None or t.interval == interval)
        ]

    def fire_all(self, interval=None) -> None:
        for timer in self.pending(interval):
            timer.fire()


DEBOUNCE = 2.0
SUCCESS_RESET = 3.0


def _response(ok=True, status_code=200, payload=None):
    response = MagicMock()
    response.ok = ok
    response.status_code = status_code
    response.json.return_value = payload if payload is not None else {}
    return response


@pytest.fixture
def local_store(tmp_path):
    """A local store backed by a fresh SQLite file."""
    return LocalStore(tmp_path / "clinic.db")


@pytest.fixture
def timers():
    return TimerRecorder()


@pytest.fixture
def session():
    """A requests.Session double answering every request with 200."""
    session = MagicMock()
    session.request.return_value = _response()
    return session


@pytest.fixture
def sync(session, timers):
    service = SyncService(
        base_url="https://sync.test/api/clinic",
        session=session,
        debounce_seconds=DEBOUNCE,
        success_reset_seconds=SUCCESS_RESET,
        timeout=5,
        timer_factory=timers,
    )
    yield service
    service.dispose()


@pytest.fixture
def store(local_store):
    """A clinic store with no sync attached."""
    return ClinicStore(local_store, booking_policy="allow")


@pytest.fixture
def synced_store(local_store, sync):
    return ClinicStore(local_store, sync, booking_policy="allow")


@pytest.fixture
def make_response():
    """Build fake requests.Response objects."""
    return _response
