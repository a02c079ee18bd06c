from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from core.api import create_api_app
from core.app import HelpdeskApp
from core.config import AppConfig

ROOT = Path(__file__).resolve().parents[1]

CUSTOMER = {"X-Tenant-ID": "tenant-a", "X-User-ID": "cust-1", "X-User-Name": "Carol"}
AGENT = {"X-Tenant-ID": "tenant-a", "X-User-ID": "agent-1", "X-User-Name": "Alice", "X-User-Role": "agent"}
ADMIN = {"X-Tenant-ID": "tenant-a", "X-User-ID": "admin-1", "X-User-Role": "admin"}


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    config = AppConfig()
    config.database.url = f"sqlite:///{tmp_path / 'api.db'}"
    config.i18n.supported_locales = ["en-US", "es-ES"]
    config.rate_limit.requests_per_minute = 3
    return config


@pytest.fixture
def client(config: AppConfig) -> Iterator[TestClient]:
    with TestClient(create_api_app(HelpdeskApp(config=config, root_dir=ROOT))) as test_client:
        yield test_client


def _create(client: TestClient, headers: dict[str, str] = CUSTOMER, **body: object) -> dict:
    payload = {"subject": "VPN drops every hour", "description": "Since Monday."}
    payload.update(body)
    response = client.post("/api/v1/tickets", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_identity_headers_are_required(client: TestClient) -> None:
    response = client.get("/api/v1/tickets/mine", headers={"X-Tenant-ID": "tenant-a"})
    assert response.status_code == 401


def test_api_key_is_checked_when_configured(config: AppConfig) -> None:
    config.api.api_key = "secret"
    with TestClient(create_api_app(HelpdeskApp(config=config, root_dir=ROOT))) as client:
        denied = client.get("/api/v1/tickets/mine", headers=CUSTOMER)
        allowed = client.get("/api/v1/tickets/mine", headers={**CUSTOMER, "X-API-Key": "secret"})
        assert client.get("/health").status_code == 200
    assert denied.status_code == 401
    assert allowed.status_code == 200


def test_create_and_fetch_ticket(client: TestClient) -> None:
    created = _create(client, priority="high", tags=["VPN", " network "])

    assert created["ticket_number"] == "TKT-000001"
    assert created["status"] == "open"
    assert created["priority"] == "high"
    assert created["tags"] == ["network", "vpn"]

    fetched = client.get(f"/api/v1/tickets/{created['id']}", headers=CUSTOMER)
    assert fetched.status_code == 200
    assert fetched.json()["id"] == created["id"]

    by_number = client.get("/api/v1/tickets/number/TKT-000001", headers=AGENT)
    assert by_number.json()["id"] == created["id"]

    mine = client.get("/api/v1/tickets/mine", headers=CUSTOMER).json()
    assert mine["total"] == 1


def test_errors_are_localized(client: TestClient) -> None:
    missing = str(uuid4())
    english = client.get(f"/api/v1/tickets/{missing}", headers=CUSTOMER)
    spanish = client.get(f"/api/v1/tickets/{missing}", headers={**CUSTOMER, "Accept-Language": "es-MX,es;q=0.9"})

    assert english.status_code == 404
    assert english.json()["error"] == "NotFoundError"
    assert english.json()["message"] == "The requested resource could not be found."
    assert spanish.status_code == 404
    assert spanish.json()["message"] == "No se encontró el recurso solicitado."


def test_validation_and_permission_errors(client: TestClient) -> None:
    bad = client.post(
        "/api/v1/tickets", json={"subject": "x", "description": "y", "priority": "asap"}, headers=CUSTOMER
    )
    assert bad.status_code == 400
    assert bad.json()["error"] == "ValidationError"

    ticket = _create(client)
    forbidden = client.get(f"/api/v1/tickets/{ticket['id']}", headers={**CUSTOMER, "X-User-ID": "cust-2"})
    assert forbidden.status_code == 403

    not_admin = client.post("/api/v1/sla/sweep", headers=AGENT)
    assert not_admin.status_code == 403


def test_customer_ticket_creation_is_rate_limited(client: TestClient) -> None:
    for _ in range(3):
        _create(client)
    limited = client.post(
        "/api/v1/tickets", json={"subject": "One more", "description": "Please"}, headers=CUSTOMER
    )
    assert limited.status_code == 429
    assert limited.headers["Retry-After"] == "60"

    # Agents and other customers are not affected.
    _create(client, headers=AGENT)
    _create(client, headers={**CUSTOMER, "X-User-ID": "cust-2"})


def test_lifecycle_over_http(client: TestClient) -> None:
    department = client.post("/api/v1/departments", json={"name": "Support"}, headers=ADMIN)
    assert department.status_code == 201
    department_id = department.json()["id"]
    agent = client.post(
        "/api/v1/agents",
        json={"user_id": "agent-1", "name": "Alice", "email": "alice@example.com", "department_ids": [department_id]},
        headers=ADMIN,
    )
    assert agent.status_code == 201

    ticket = _create(client, department_id=department_id)
    assert ticket["assigned_to_id"] is None

    assigned = client.post(f"/api/v1/tickets/{ticket['id']}/assign", json={"assignee_id": "agent-1"}, headers=AGENT)
    assert assigned.status_code == 200
    assert assigned.json()["status"] == "in_progress"

    reply = client.post(f"/api/v1/tickets/{ticket['id']}/messages", json={"content": "On it."}, headers=AGENT)
    assert reply.status_code == 201

    resolved = client.post(f"/api/v1/tickets/{ticket['id']}/status", json={"status": "resolved"}, headers=AGENT)
    assert resolved.json()["status"] == "resolved"

    rated = client.post(f"/api/v1/tickets/{ticket['id']}/rating", json={"rating": 4}, headers=CUSTOMER)
    assert rated.json()["satisfaction_rating"] == 4

    history = client.get(f"/api/v1/tickets/{ticket['id']}/history", headers=CUSTOMER).json()
    actions = [entry["action"] for entry in history["items"]]
    assert actions[0] == "created"
    assert "assigned" in actions
    assert "rated" in actions

    stored_agent = client.get("/api/v1/agents/agent-1", headers=AGENT).json()
    assert stored_agent["current_tickets"] == 0
    assert stored_agent["total_resolved"] == 1


def test_bulk_endpoint_reports_success_count(client: TestClient) -> None:
    first = _create(client)
    second = _create(client)

    response = client.post(
        "/api/v1/bulk/status",
        json={"ticket_ids": [first["id"], second["id"], "garbage"], "status": "closed"},
        headers=AGENT,
    )
    assert response.status_code == 200
    assert response.json() == {"success_count": 2}

    denied = client.post("/api/v1/bulk/delete", json={"ticket_ids": [first["id"]]}, headers=CUSTOMER)
    assert denied.status_code == 403
