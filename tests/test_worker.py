from __future__ import annotations

import threading
import time

from fastapi.testclient import TestClient

from task_dashboard_api.app.lifecycle import RunLifecycle
from task_dashboard_api.app.storage.memory import InMemoryDashboardStorage
from task_dashboard_api.app.worker import TransitionWorker
from task_dashboard_api.main import create_app

from .fakes import FakeClock, build_test_settings


def test_background_worker_drives_run_to_success() -> None:
    app = create_app(
        storage=InMemoryDashboardStorage(),
        settings_override=build_test_settings(worker_enabled=True, worker_poll_interval_s=0.05),
    )
    with TestClient(app) as client:
        assert app.state.worker.running
        run_id = client.post("/runs", json={"taskKey": "health_check"}).json()["id"]

        deadline = time.time() + 5.0
        status = "queued"
        while time.time() < deadline:
            status = client.get(f"/runs/{run_id}").json()["status"]
            if status == "success":
                break
            time.sleep(0.05)

        assert status == "success"
        logs = client.get(f"/runs/{run_id}").json()["logs"]
        assert len(logs) == 4

    assert not app.state.worker.running


def test_worker_stays_idle_when_disabled(client: TestClient) -> None:
    assert not client.app.state.worker.running
    assert client.app.state.worker.process_due() == 0


class BlockingStorage(InMemoryDashboardStorage):
    """Holds the worker inside a tick until `release` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def claim_due_transitions(self, *, now, limit, lease_s):
        self.entered.set()
        self.release.wait(timeout=5.0)
        return super().claim_due_transitions(now=now, limit=limit, lease_s=lease_s)


def test_stop_timeout_keeps_single_worker_thread() -> None:
    storage = BlockingStorage()
    lifecycle = RunLifecycle(storage, clock=FakeClock())
    worker = TransitionWorker(storage=storage, lifecycle=lifecycle, poll_interval_s=0.01)

    worker.start()
    assert storage.entered.wait(timeout=5.0)
    first_thread = worker._thread

    worker.stop(timeout_s=0.05)
    assert worker.running
    assert worker._thread is first_thread

    worker.start()
    assert worker._thread is first_thread
    assert sum(t.name == "run-transition-worker" for t in threading.enumerate()) == 1

    storage.release.set()
    worker.stop()
    assert not worker.running
    assert worker._thread is None
