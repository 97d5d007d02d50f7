from __future__ import annotations

from fastapi.testclient import TestClient


def test_health_endpoint(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_favicon_is_empty(client: TestClient) -> None:
    response = client.get("/favicon.ico")
    assert response.status_code == 204
    assert response.content == b""


def test_dashboard_page_serves_html(client: TestClient) -> None:
    response = client.get("/")
    assert response.status_code == 200
    assert "text/html" in response.headers["content-type"]
    assert "Task Automation Dashboard" in response.text
    assert 'fetch("/tasks")' in response.text
    assert "const POLL_INTERVAL_MS = 1000;" in response.text


def test_dashboard_alerts_when_run_creation_fails(client: TestClient) -> None:
    page = client.get("/").text
    create_run = page[page.index("async function createRun") : page.index("async function selectRun")]
    assert "try {" in create_run
    assert "catch (err)" in create_run
    assert 'alert("Failed to create run")' in create_run
    assert "response.json().catch(() => null)" in create_run


def test_cors_allows_configured_web_origin(client: TestClient) -> None:
    response = client.get("/health", headers={"Origin": "http://localhost:5173"})
    assert response.headers["access-control-allow-origin"] == "http://localhost:5173"
    assert response.headers["access-control-allow-credentials"] == "true"
