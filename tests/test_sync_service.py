"""Tests for the sync service: debounce, mutual exclusion, status and pull."""

import threading
import time

import pytest
import requests
from unittest.mock import MagicMock

from clinic_sync.models import Patient, SyncSnapshot
from clinic_sync.sync_service import (
    PULL_ERROR_MESSAGE,
    PULL_SUCCESS_MESSAGE,
    PUSH_ERROR_MESSAGE,
    PUSH_SUCCESS_MESSAGE,
    SyncService,
    SyncStatus,
)


def snapshot_with(*names: str) -> SyncSnapshot:
    return SyncSnapshot(patients=[Patient(name=n, phone="11999990000") for n in names])


@pytest.fixture
def statuses(sync):
    """Every (status, message) the service reports."""
    seen = []
    sync.on_status_change(lambda status, message: seen.append((status, message)))
    return seen


class TestSchedulePush:
    """Tests for the trailing-edge debounce."""

    def test_nothing_sent_before_quiet_period(self, sync, session, timers):
        sync.schedule_push(snapshot_with("Ana"))
        assert session.request.call_count == 0
        assert sync.has_pending_push
        assert timers.pending()[0].interval == sync.debounce_seconds

    def test_burst_collapses_to_one_push_with_last_snapshot(self, sync, session, timers):
        for i in range(5):
            sync.schedule_push(snapshot_with(f"Patient {i}"))
        assert len(timers.pending(sync.debounce_seconds)) == 1

        timers.fire_all(sync.debounce_seconds)

        assert session.request.call_count == 1
        method, url = session.request.call_args.args
        assert method == "POST"
        assert url == "https://sync.test/api/clinic/sync"
        body = session.request.call_args.kwargs["json"]
        assert [p["name"] for p in body["patients"]] == ["Patient 4"]
        assert not sync.has_pending_push

    def test_snapshot_captured_at_schedule_time(self, sync, session, timers):
        snapshot = snapshot_with("Ana")
        sync.schedule_push(snapshot)
        snapshot.patients[0].name = "Changed later"

        timers.fire_all(sync.debounce_seconds)

        body = session.request.call_args.kwargs["json"]
        assert body["patients"][0]["name"] == "Ana"

    def test_body_uses_wire_field_names(self, sync, session, timers):
        sync.schedule_push(SyncSnapshot(patients=[Patient(name="Ana", phone="1", birth_date="1990-06-01")]))
        timers.fire_all(sync.debounce_seconds)

        body = session.request.call_args.kwargs["json"]
        assert set(body) == {"patients", "appointments", "templates", "settings"}
        assert body["patients"][0]["birthDate"] == "1990-06-01"
        assert "createdAt" in body["patients"][0]
        assert "appointmentReminder" in body["templates"]
        assert "clinicName" in body["settings"]

    def test_stale_timer_does_not_push(self, sync, session, timers):
        sync.schedule_push(snapshot_with("First"))
        stale = timers.timers[0]
        sync.schedule_push(snapshot_with("Second"))

        # A cancelled timer that runs anyway must not send anything
        stale.cancelled = False
        stale.fire()
        assert session.request.call_count == 0

        timers.fire_all(sync.debounce_seconds)
        assert session.request.call_count == 1

    def test_flush_sends_pending_immediately(self, sync, session, timers):
        sync.schedule_push(snapshot_with("Ana"))
        assert sync.flush() is True
        assert session.request.call_count == 1
        assert timers.pending(sync.debounce_seconds) == []

    def test_flush_without_pending_push(self, sync, session):
        assert sync.flush() is False
        assert session.request.call_count == 0

    def test_with_real_timer(self, session):
        service = SyncService(
            base_url="https://sync.test",
            session=session,
            debounce_seconds=0.05,
            success_reset_seconds=0.05,
        )
        try:
            for name in ("A", "B", "C"):
                service.schedule_push(snapshot_with(name))

            deadline = time.monotonic() + 5
            while session.request.call_count == 0 and time.monotonic() < deadline:
                time.sleep(0.01)
            time.sleep(0.2)

            assert session.request.call_count == 1
            body = session.request.call_args.kwargs["json"]
            assert [p["name"] for p in body["patients"]] == ["C"]
        finally:
            service.dispose()


class TestPush:
    """Tests for push results and mutual exclusion."""

    def test_success(self, sync, session, statuses):
        assert sync.push(snapshot_with("Ana")) is True
        assert statuses == [(SyncStatus.SYNCING, None), (SyncStatus.SUCCESS, PUSH_SUCCESS_MESSAGE)]
        assert session.request.call_args.kwargs["timeout"] == 5
        assert not sync.is_push_in_flight

    def test_http_error(self, sync, session, statuses, make_response):
        session.request.return_value = make_response(ok=False, status_code=500)
        assert sync.push(snapshot_with("Ana")) is False
        assert statuses[-1] == (SyncStatus.ERROR, PUSH_ERROR_MESSAGE)
        assert sync.status is SyncStatus.ERROR
        assert not sync.is_push_in_flight

    @pytest.mark.parametrize("error", [
        requests.exceptions.ConnectionError("down"),
        requests.exceptions.Timeout("slow"),
        requests.exceptions.TooManyRedirects("loop"),
    ])
    def test_network_errors_are_reported_not_raised(self, sync, session, statuses, error):
        session.request.side_effect = error
        assert sync.push(snapshot_with("Ana")) is False
        assert statuses[-1] == (SyncStatus.ERROR, PUSH_ERROR_MESSAGE)

    def test_push_while_in_flight_is_dropped(self, sync, session, make_response):
        inner_results = []

        def send(*args, **kwargs):
            inner_results.append(sync.push(snapshot_with("Second")))
            return make_response()

        session.request.side_effect = send

        assert sync.push(snapshot_with("First")) is True
        assert inner_results == [False]
        assert session.request.call_count == 1

    def test_push_from_other_thread_while_in_flight(self, sync, session, make_response):
        started = threading.Event()
        release = threading.Event()

        def slow_send(*args, **kwargs):
            started.set()
            release.wait(5)
            return make_response()

        session.request.side_effect = slow_send
        worker = threading.Thread(target=sync.push, args=(snapshot_with("First"),))
        worker.start()
        try:
            assert started.wait(5)
            assert sync.is_push_in_flight
            assert sync.push(snapshot_with("Second")) is False
        finally:
            release.set()
            worker.join(5)

        assert session.request.call_count == 1
        assert not sync.is_push_in_flight

    def test_flush_waits_for_push_in_flight(self, sync, session, make_response):
        started = threading.Event()
        release = threading.Event()

        def slow_send(*args, **kwargs):
            started.set()
            release.wait(5)
            return make_response()

        session.request.side_effect = slow_send
        worker = threading.Thread(target=sync.push, args=(snapshot_with("First"),))
        worker.start()
        assert started.wait(5)

        sync.schedule_push(snapshot_with("Second"))
        flusher = threading.Thread(target=sync.flush)
        flusher.start()
        release.set()
        worker.join(5)
        flusher.join(5)

        assert session.request.call_count == 2
        body = session.request.call_args.kwargs["json"]
        assert [p["name"] for p in body["patients"]] == ["Second"]
        assert not sync.has_pending_push

    def test_push_now_cancels_pending(self, sync, session, timers):
        sync.schedule_push(snapshot_with("Old"))
        assert sync.push_now(snapshot_with("New")) is True
        assert not sync.has_pending_push
        timers.fire_all(sync.debounce_seconds)
        assert session.request.call_count == 1


class TestStatus:
    """Tests for status listeners and the success reset."""

    def test_success_reverts_to_idle(self, sync, timers, statuses):
        sync.push(snapshot_with("Ana"))
        reset = timers.pending(sync.success_reset_seconds)
        assert len(reset) == 1

        reset[0].fire()

        assert sync.status is SyncStatus.IDLE
        assert statuses[-1] == (SyncStatus.IDLE, None)

    def test_error_persists(self, sync, session, timers, make_response):
        session.request.return_value = make_response(ok=False, status_code=503)
        sync.push(snapshot_with("Ana"))
        assert timers.pending(sync.success_reset_seconds) == []
        assert sync.status is SyncStatus.ERROR

    def test_new_attempt_cancels_reset(self, sync, session, timers, make_response):
        sync.push(snapshot_with("Ana"))
        reset = timers.pending(sync.success_reset_seconds)[0]
        session.request.return_value = make_response(ok=False, status_code=500)
        sync.push(snapshot_with("Ana"))

        assert reset.cancelled
        assert sync.status is SyncStatus.ERROR

    def test_unsubscribe(self, sync):
        seen = []
        unsubscribe = sync.on_status_change(lambda s, m: seen.append(s))
        unsubscribe()
        unsubscribe()
        sync.push(snapshot_with("Ana"))
        assert seen == []

    def test_failing_listener_does_not_block_others(self, sync):
        seen = []
        sync.on_status_change(MagicMock(side_effect=RuntimeError("boom")))
        sync.on_status_change(lambda s, m: seen.append(s))
        assert sync.push(snapshot_with("Ana")) is True
        assert seen == [SyncStatus.SYNCING, SyncStatus.SUCCESS]

    def test_dispose_cancels_timers_and_listeners(self, sync, timers):
        seen = []
        sync.on_status_change(lambda s, m: seen.append(s))
        sync.push(snapshot_with("Ana"))
        sync.schedule_push(snapshot_with("Ana"))

        sync.dispose()

        assert timers.pending() == []
        assert not sync.has_pending_push
        sync.push(snapshot_with("Ana"))
        assert seen == [SyncStatus.SYNCING, SyncStatus.SUCCESS]

    def test_instances_are_independent(self, session, timers):
        first = SyncService(base_url="https://a.test", session=session, timer_factory=timers)
        second = SyncService(base_url="https://b.test", session=session, timer_factory=timers)
        first.schedule_push(snapshot_with("Ana"))
        assert first.has_pending_push
        assert not second.has_pending_push
        first.dispose()
        second.dispose()


class TestPull:
    """Tests for pull."""

    def test_pull_returns_snapshot(self, sync, session, statuses, make_response):
        session.request.return_value = make_response(payload={
            "patients": [{"id": "p1", "name": "Ana", "phone": "1", "isInsurance": False,
                          "treatments": [], "createdAt": "2024-01-01T10:00:00"}],
            "appointments": [{"id": "a1", "patientId": "p1", "date": "2024-06-10",
                              "time": "09:00", "createdAt": "2024-01-01T10:00:00"}],
            "templates": {"appointmentReminder": "Oi {nome}"},
            "settings": {"clinicName": "Sorriso", "dentistName": "Dra. Lia"},
        })

        snapshot = sync.pull()

        assert session.request.call_args.args == ("GET", "https://sync.test/api/clinic/sync")
        assert snapshot.patients[0].name == "Ana"
        assert snapshot.appointments[0].patient_id == "p1"
        assert snapshot.templates.appointment_reminder == "Oi {nome}"
        assert snapshot.settings.dentist_name == "Dra. Lia"
        assert statuses == [(SyncStatus.SYNCING, None), (SyncStatus.SUCCESS, PULL_SUCCESS_MESSAGE)]

    def test_pull_migrates_legacy_patients(self, sync, session, make_response):
        session.request.return_value = make_response(payload={
            "patients": [{"id": "p1", "name": "Ana", "phone": "1", "treatment": "Canal",
                          "payments": [{"id": "pay1", "date": "2024-01-02", "amount": 100,
                                        "description": "entrada"}],
                          "createdAt": "2024-01-01T10:00:00"}],
        })

        snapshot = sync.pull()

        treatment = snapshot.patients[0].treatments[0]
        assert treatment.description == "Canal"
        assert treatment.payments[0].id == "pay1"

    def test_pull_http_error(self, sync, session, statuses, make_response):
        session.request.return_value = make_response(ok=False, status_code=404)
        assert sync.pull() is None
        assert statuses[-1] == (SyncStatus.ERROR, PULL_ERROR_MESSAGE)

    def test_pull_malformed_json(self, sync, session, statuses):
        response = MagicMock(ok=True, status_code=200)
        response.json.side_effect = requests.exceptions.JSONDecodeError("bad", "doc", 0)
        session.request.return_value = response
        assert sync.pull() is None
        assert statuses[-1] == (SyncStatus.ERROR, PULL_ERROR_MESSAGE)

    def test_pull_wrong_shape(self, sync, session, make_response):
        session.request.return_value = make_response(payload=["not", "a", "snapshot"])
        assert sync.pull() is None
        assert sync.status is SyncStatus.ERROR

    def test_pull_network_error(self, sync, session):
        session.request.side_effect = requests.exceptions.ConnectionError("down")
        assert sync.pull() is None
        assert sync.status is SyncStatus.ERROR

    @pytest.mark.parametrize("payments", [5, True, "entrada"])
    def test_pull_legacy_payments_not_a_list(self, sync, session, statuses, make_response, payments):
        session.request.return_value = make_response(payload={
            "patients": [{"id": "p1", "name": "Ana", "phone": "1", "payments": payments}],
        })
        assert sync.pull() is None
        assert statuses[-1] == (SyncStatus.ERROR, PULL_ERROR_MESSAGE)
