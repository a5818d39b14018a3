"""HTTP adapter — event ingestion and admin endpoints over aiohttp.

Endpoints:
    GET  /               → API overview
    GET  /health         → Liveness + dispatcher queue state
    POST /events         → Ingest one detection event (JSON)
    GET  /rules          → Currently indexed (enabled) rules
    GET  /lists          → Loaded lookup list names
    POST /admin/reload   → Reload rules and lists from the YAML stores
    GET  /outcomes       → Recent dispatch outcomes (?kind=&limit=)
    GET  /stats          → Engine + outcome counters
"""

from __future__ import annotations

import logging
from typing import Any

from aiohttp import web
from pydantic import ValidationError

from .engine import RuleEngine
from .exceptions import ConfigurationError
from .reporting import OutcomeKind
from .rules.models import Event
from .rules.store import ListsStore, RulesStore

logger = logging.getLogger("vms-rules")


def _json_error(status: int, code: str, message: str) -> web.Response:
    """Consistent JSON error payload."""
    return web.json_response({"code": code, "message": message}, status=status)


def _parse_int(
    value: str, *, default: int, minimum: int | None = None, maximum: int | None = None
) -> int:
    """Parse integer query params with clamping and fallback default."""
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    if minimum is not None:
        parsed = max(parsed, minimum)
    if maximum is not None:
        parsed = min(parsed, maximum)
    return parsed


def create_api_routes(
    engine: RuleEngine,
    rules_store: RulesStore | None = None,
    lists_store: ListsStore | None = None,
) -> web.Application:
    """Create aiohttp app wired to ``engine``.

    Args:
        engine: The running rule engine.
        rules_store, lists_store: Sources for ``POST /admin/reload``.
            When omitted the endpoint answers 503.
    """
    routes = web.RouteTableDef()

    @routes.get("/")
    async def index(request: web.Request) -> web.Response:
        return web.json_response(
            {
                "name": "vms-rules",
                "description": "Rule evaluation and action dispatch",
                "endpoints": {
                    "GET /health": "Liveness and dispatcher queue state",
                    "POST /events": "Ingest one detection event",
                    "GET /rules": "Indexed (enabled) rules",
                    "GET /lists": "Loaded lookup lists",
                    "POST /admin/reload": "Reload rules and lists from disk",
                    "GET /outcomes": "Recent dispatch outcomes",
                    "GET /stats": "Engine counters",
                },
            }
        )

    @routes.get("/health")
    async def health(request: web.Request) -> web.Response:
        return web.json_response({"status": "ok", **engine.dispatcher.stats()})

    @routes.post("/events")
    async def ingest_event(request: web.Request) -> web.Response:
        """Match one event. Returns as soon as actions are launched."""
        try:
            body = await request.json()
        except Exception:
            return _json_error(400, "invalid_json", "Request body must be JSON")
        if not isinstance(body, dict):
            return _json_error(400, "invalid_event", "Event must be a JSON object")
        try:
            event = Event.model_validate(body)
        except ValidationError as e:
            return _json_error(400, "invalid_event", str(e))

        results = engine.on_event(event)
        return web.json_response(
            {"event_id": event.id, "matched": [r.rule.id for r in results]},
            status=202,
        )

    @routes.get("/rules")
    async def list_rules(request: web.Request) -> web.Response:
        rules = [r.model_dump(mode="json", by_alias=True) for r in engine.index.rules()]
        return web.json_response({"rules": rules, "count": len(rules)})

    @routes.get("/lists")
    async def list_lists(request: web.Request) -> web.Response:
        lists = []
        for name in engine.registry.names():
            lookup = engine.registry.get(name)
            if lookup is not None:
                lists.append(
                    {"name": lookup.name, "type": lookup.type.value, "size": len(lookup.items)}
                )
        return web.json_response({"lists": lists})

    @routes.post("/admin/reload")
    async def reload(request: web.Request) -> web.Response:
        if rules_store is None or lists_store is None:
            return _json_error(503, "stores_unavailable", "No rule/list store configured")
        try:
            rule_count, list_count = engine.reload_all(
                rules_store.load(), lists_store.load()
            )
        except ConfigurationError as e:
            logger.warning(f"Reload rejected: {e}")
            return _json_error(422, "invalid_configuration", str(e))
        return web.json_response({"rules": rule_count, "lists": list_count})

    @routes.get("/outcomes")
    async def outcomes(request: web.Request) -> web.Response:
        kind = request.query.get("kind", "")
        if kind and kind not in {k.value for k in OutcomeKind}:
            return _json_error(400, "invalid_kind", f"Unknown outcome kind: {kind}")
        limit = _parse_int(request.query.get("limit", "50"), default=50, minimum=1, maximum=500)
        items = engine.reporter.recent(kind or None, limit=limit)
        return web.json_response(
            {"outcomes": [o.model_dump(mode="json") for o in items], "count": len(items)}
        )

    @routes.get("/stats")
    async def stats(request: web.Request) -> web.Response:
        return web.json_response(engine.stats())

    auth_token = engine.config.api.auth_token

    @web.middleware
    async def auth_middleware(
        request: web.Request,
        handler: Any,
    ) -> web.Response:
        """Optional bearer token authentication."""
        if not auth_token or request.path == "/health":
            return await handler(request)
        if request.headers.get("Authorization", "") == f"Bearer {auth_token}":
            return await handler(request)
        return _json_error(401, "unauthorized", "Invalid or missing auth token")

    async def _start_engine(app: web.Application) -> None:
        await engine.start()

    async def _stop_engine(app: web.Application) -> None:
        await engine.drain(timeout=5.0)
        await engine.close()

    app = web.Application(middlewares=[auth_middleware])
    app.add_routes(routes)
    app.on_startup.append(_start_engine)
    app.on_cleanup.append(_stop_engine)
    return app
