"""Tests for the status API — routes, filters and basic auth."""

from __future__ import annotations

import base64

from aiohttp import test_utils, web

from alertops.alerts.source import InMemoryMetricSource
from alertops.api.status import create_app
from alertops.core.config import AlertsConfig, Settings
from alertops.core.types import Severity
from alertops.service import AlertingService


# ── Helpers ─────────────────────────────────────────────────────


def _service() -> AlertingService:
    settings = Settings(alerts=AlertsConfig(install_default_rules=False))
    service = AlertingService(InMemoryMetricSource(), settings, sinks={})
    service.create_alert(name="Disk Full", severity=Severity.ERROR)
    acked = service.create_alert(name="CPU High", severity=Severity.WARNING)
    service.acknowledge_alert(acked.id, "alice")
    service.create_incident(title="Disk pressure on node-7")
    return service


def _client(app: web.Application) -> test_utils.TestClient:
    return test_utils.TestClient(test_utils.TestServer(app))


def _basic(user: str, password: str) -> dict[str, str]:
    token = base64.b64encode(f"{user}:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}


# ── Routes ──────────────────────────────────────────────────────


class TestRoutes:
    async def test_health(self) -> None:
        async with _client(create_app(_service())) as client:
            resp = await client.get("/api/health")
            assert resp.status == 200
            body = await resp.json()
            assert body["status"] == "ok"
            assert body["running"] is False
            assert body["ticks"] == 0

    async def test_alerts_with_filter(self) -> None:
        async with _client(create_app(_service())) as client:
            body = await (await client.get("/api/alerts")).json()
            assert body["count"] == 2
            assert "channels" not in body["alerts"][0]

            resp = await client.get("/api/alerts", params={"status": "acknowledged"})
            body = await resp.json()
            assert body["count"] == 1
            assert body["alerts"][0]["name"] == "CPU High"
            assert body["alerts"][0]["acknowledged_by"] == "alice"

    async def test_unknown_status_is_bad_request(self) -> None:
        async with _client(create_app(_service())) as client:
            resp = await client.get("/api/alerts", params={"status": "sleeping"})
            assert resp.status == 400

    async def test_incidents_and_detail(self) -> None:
        service = _service()
        (incident,) = service.get_incidents()
        async with _client(create_app(service)) as client:
            body = await (await client.get("/api/incidents", params={"status": "open"})).json()
            assert body["count"] == 1
            assert "timeline" not in body["incidents"][0]

            detail = await (await client.get(f"/api/incidents/{incident.id}")).json()
            assert detail["title"] == "Disk pressure on node-7"
            assert detail["timeline"][0]["message"] == "Incident created"

            resp = await client.get("/api/incidents/incident_missing")
            assert resp.status == 404

    async def test_analytics(self) -> None:
        async with _client(create_app(_service())) as client:
            body = await (await client.get("/api/analytics")).json()
            assert body["incidents"]["total_incidents"] == 1
            assert body["alerts"]["total"] == 2
            assert body["alerts"]["by_status"]["acknowledged"] == 1


# ── Auth ────────────────────────────────────────────────────────


class TestAuth:
    async def test_missing_credentials_rejected(self) -> None:
        app = create_app(_service(), username="admin", password="s3cret")
        async with _client(app) as client:
            resp = await client.get("/api/health")
            assert resp.status == 401
            assert resp.headers["WWW-Authenticate"] == 'Basic realm="alertops"'

    async def test_wrong_password_rejected(self) -> None:
        app = create_app(_service(), username="admin", password="s3cret")
        async with _client(app) as client:
            resp = await client.get("/api/health", headers=_basic("admin", "nope"))
            assert resp.status == 401

    async def test_valid_credentials(self) -> None:
        app = create_app(_service(), username="admin", password="s3cret")
        async with _client(app) as client:
            resp = await client.get("/api/health", headers=_basic("admin", "s3cret"))
            assert resp.status == 200

    async def test_malformed_header_rejected(self) -> None:
        app = create_app(_service(), username="admin", password="s3cret")
        async with _client(app) as client:
            resp = await client.get("/api/health", headers={"Authorization": "Basic !!!"})
            assert resp.status == 401
