from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from task_dashboard_api.app.storage.memory import InMemoryDashboardStorage
from task_dashboard_api.main import create_app

from .fakes import FakeClock, build_test_settings


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def storage() -> InMemoryDashboardStorage:
    return InMemoryDashboardStorage()


@pytest.fixture
def app(storage: InMemoryDashboardStorage, clock: FakeClock) -> FastAPI:
    return create_app(storage=storage, settings_override=build_test_settings(), clock=clock)


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client
