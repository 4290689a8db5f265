"""Read-only status API — alerts, incidents and analytics as JSON over HTTP.

Runs as an ``aiohttp`` web server alongside the alerting service.
Exposes:
- ``GET /api/health``               → service liveness and tick counters
- ``GET /api/alerts?status=``       → alerts, optionally filtered by status
- ``GET /api/incidents?status=``    → incidents, optionally filtered by status
- ``GET /api/incidents/{id}``       → one incident with timeline and actions
- ``GET /api/analytics``            → incident analytics and alert summary
"""

from __future__ import annotations

import base64
import binascii
import hmac
import time
from typing import Any

from aiohttp import web

from alertops.core.types import AlertStatus
from alertops.incidents.types import IncidentStatus
from alertops.service import AlertingService


def _check_basic_auth(request: web.Request, username: str, password: str) -> bool:
    """Validate HTTP Basic Auth credentials."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Basic "):
        return False
    try:
        decoded = base64.b64decode(auth_header[6:], validate=True).decode("utf-8")
        req_user, req_pass = decoded.split(":", 1)
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return False
    user_ok = hmac.compare_digest(req_user, username)
    pass_ok = hmac.compare_digest(req_pass, password)
    return user_ok and pass_ok


@web.middleware
async def _auth_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    """Require HTTP Basic Auth on every route when credentials are configured."""
    username = request.app.get("auth_username")
    password = request.app.get("auth_password")
    if username and password and not _check_basic_auth(request, username, password):
        return web.Response(
            status=401,
            text="Unauthorized",
            headers={"WWW-Authenticate": 'Basic realm="alertops"'},
        )
    return await handler(request)


def _status_param(request: web.Request, enum: type[Any]) -> Any:
    raw = request.query.get("status")
    if not raw:
        return None
    try:
        return enum(raw)
    except ValueError:
        raise web.HTTPBadRequest(text=f"unknown status: {raw}") from None


async def _handle_health(request: web.Request) -> web.Response:
    service: AlertingService = request.app["service"]
    return web.json_response({
        "status": "ok",
        "running": service.running,
        "ticks": service.tick_count,
        "tick_errors": service.error_count,
        "timestamp": time.time(),
    })


async def _handle_alerts(request: web.Request) -> web.Response:
    service: AlertingService = request.app["service"]
    status = _status_param(request, AlertStatus)
    alerts = service.get_alerts(status)
    return web.json_response({
        "count": len(alerts),
        "alerts": [a.model_dump(mode="json", exclude={"channels"}) for a in alerts],
    })


async def _handle_incidents(request: web.Request) -> web.Response:
    service: AlertingService = request.app["service"]
    status = _status_param(request, IncidentStatus)
    incidents = service.get_incidents(status)
    return web.json_response({
        "count": len(incidents),
        "incidents": [
            i.model_dump(mode="json", exclude={"timeline", "actions", "post_mortem"})
            for i in incidents
        ],
    })


async def _handle_incident(request: web.Request) -> web.Response:
    service: AlertingService = request.app["service"]
    incident = service.get_incident(request.match_info["incident_id"])
    if incident is None:
        raise web.HTTPNotFound(text="incident not found")
    return web.json_response(incident.model_dump(mode="json"))


async def _handle_analytics(request: web.Request) -> web.Response:
    service: AlertingService = request.app["service"]
    return web.json_response({
        "incidents": service.get_incident_analytics().model_dump(mode="json"),
        "alerts": service.alert_summary(),
    })


def create_app(
    service: AlertingService,
    username: str | None = None,
    password: str | None = None,
) -> web.Application:
    """Create the aiohttp web application."""
    app = web.Application(middlewares=[_auth_middleware])
    app["service"] = service
    app["auth_username"] = username
    app["auth_password"] = password
    app.router.add_get("/api/health", _handle_health)
    app.router.add_get("/api/alerts", _handle_alerts)
    app.router.add_get("/api/incidents", _handle_incidents)
    app.router.add_get("/api/incidents/{incident_id}", _handle_incident)
    app.router.add_get("/api/analytics", _handle_analytics)
    return app


async def start_status_api(
    service: AlertingService,
    host: str = "127.0.0.1",
    port: int = 8080,
    username: str | None = None,
    password: str | None = None,
) -> web.AppRunner:
    """Start the status API server. Returns the runner for cleanup."""
    app = create_app(service, username=username, password=password)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    return runner
