from __future__ import annotations

import io
from typing import List

import pytest

from powerbi_pbix.errors import ImportFailedError, ImportTimeoutError, TransportError
from powerbi_pbix.imports import ImportStateMachine
from powerbi_pbix.models import ImportJob, ImportStatus


def test_submit_returns_job_id_with_create_or_overwrite():
    client = StubImportsClient(states=[])
    machine = ImportStateMachine(client, poll_interval_seconds=5)

    job_id = machine.submit("ws-1", "Sales", False, io.BytesIO(b"data"))

    assert job_id == "imp-1"
    assert client.submissions == [("ws-1", "Sales", "CreateOrOverwrite", False)]


def test_await_terminal_polls_until_succeeded():
    clock = FakeClock()
    client = StubImportsClient(states=["Publishing", "Publishing", "Succeeded"])
    machine = ImportStateMachine(client, poll_interval_seconds=5, clock=clock.now, sleep=clock.sleep)

    job = machine.await_terminal("ws-1", "imp-1", timeout_seconds=60)

    assert job.status is ImportStatus.SUCCEEDED
    assert job.first_report_id == "R1"
    assert job.first_dataset_id == "D1"
    assert client.polls == 3
    assert clock.sleeps == [5, 5]


def test_await_terminal_returns_immediately_when_already_terminal():
    clock = FakeClock()
    client = StubImportsClient(states=["Succeeded"])
    machine = ImportStateMachine(client, poll_interval_seconds=5, clock=clock.now, sleep=clock.sleep)

    machine.await_terminal("ws-1", "imp-1", timeout_seconds=60)

    assert client.polls == 1
    assert clock.sleeps == []


def test_await_terminal_raises_failed_with_remote_detail():
    clock = FakeClock()
    client = StubImportsClient(states=["Publishing", "Failed"], error={"code": "PackageCorrupted", "details": "bad zip"})
    machine = ImportStateMachine(client, poll_interval_seconds=5, clock=clock.now, sleep=clock.sleep)

    with pytest.raises(ImportFailedError) as excinfo:
        machine.await_terminal("ws-1", "imp-1", timeout_seconds=60)

    assert excinfo.value.job_id == "imp-1"
    assert "PackageCorrupted" in excinfo.value.detail


def test_await_terminal_times_out_and_stops_polling_at_deadline():
    clock = FakeClock()
    client = StubImportsClient(states=["Publishing"] * 100, clock=clock)
    machine = ImportStateMachine(client, poll_interval_seconds=5, clock=clock.now, sleep=clock.sleep)

    with pytest.raises(ImportTimeoutError) as excinfo:
        machine.await_terminal("ws-1", "imp-1", timeout_seconds=12)

    assert isinstance(excinfo.value, TimeoutError)
    assert excinfo.value.last_status == "Publishing"
    assert all(poll_time <= 12 for poll_time in client.poll_times)
    assert client.poll_times == [0, 5, 10, 12]
    assert clock.sleeps == [5, 5, 2]


def test_transport_errors_while_polling_propagate_unchanged():
    clock = FakeClock()
    client = StubImportsClient(states=["Publishing"], fail_after=1)
    machine = ImportStateMachine(client, poll_interval_seconds=5, clock=clock.now, sleep=clock.sleep)

    with pytest.raises(TransportError, match="boom"):
        machine.await_terminal("ws-1", "imp-1", timeout_seconds=60)

    assert client.polls == 2


def test_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        ImportStateMachine(StubImportsClient(states=[]), poll_interval_seconds=0)


class FakeClock:
    def __init__(self):
        self.current = 0.0
        self.sleeps: List[float] = []

    def now(self) -> float:
        return self.current

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.current += seconds


class StubImportsClient:
    def __init__(self, states: List[str], error=None, clock: FakeClock | None = None, fail_after: int | None = None):
        self._states = list(states)
        self._error = error
        self._clock = clock
        self._fail_after = fail_after
        self.submissions = []
        self.polls = 0
        self.poll_times: List[float] = []

    def post_import(self, workspace_id, name, name_conflict, skip_report, content):
        self.submissions.append((workspace_id, name, name_conflict, skip_report))
        return f"imp-{len(self.submissions)}"

    def get_import(self, workspace_id, import_id):
        self.polls += 1
        if self._clock is not None:
            self.poll_times.append(self._clock.now())
        if self._fail_after is not None and self.polls > self._fail_after:
            raise TransportError("boom", status_code=500)
        state = self._states[min(self.polls, len(self._states)) - 1]
        payload = {
            "id": import_id,
            "importState": state,
            "name": "Sales",
            "reports": [{"id": "R1"}],
            "datasets": [{"id": "D1"}],
        }
        if state == "Failed" and self._error:
            payload["error"] = self._error
        return ImportJob.from_dict(payload)
