from __future__ import annotations

import os
import socket
import subprocess
import sys
import time
from collections.abc import Iterator

import httpx
import pytest


@pytest.fixture
def api() -> Iterator[httpx.Client]:
    """Serve the app with uvicorn against PostgreSQL and yield a client for it."""
    database_url = os.getenv("TASK_DASHBOARD_DATABASE_URL") or os.getenv("DATABASE_URL")
    if os.getenv("RUN_POSTGRES_INTEGRATION_TESTS") != "1" or not database_url:
        pytest.skip("Set RUN_POSTGRES_INTEGRATION_TESTS=1 and TASK_DASHBOARD_DATABASE_URL.")

    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]

    env = {
        **os.environ,
        "TASK_DASHBOARD_DATABASE_URL": database_url,
        "TASK_DASHBOARD_STORAGE_BACKEND": "postgres",
        "TASK_DASHBOARD_WORKER_ENABLED": "true",
    }
    server = subprocess.Popen(  # noqa: S603
        [sys.executable, "-m", "uvicorn", "task_dashboard_api.main:app", "--port", str(port)],
        env=env,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )
    client = httpx.Client(base_url=f"http://127.0.0.1:{port}", timeout=10.0)
    try:
        deadline = time.time() + 20.0
        while True:
            try:
                if client.get("/health").status_code == 200:
                    break
            except httpx.TransportError:
                if time.time() > deadline:
                    raise
                time.sleep(0.2)
        yield client
    finally:
        client.close()
        server.terminate()
        server.wait(timeout=10)
