"""Sync trigger HTTP server.

Endpoints:
  POST /sync                 sync every active account
  POST /sync/{account_id}    sync one account (``?full=1`` replays from scratch)
  GET  /health               liveness check, no auth

Sync endpoints require ``Authorization: Bearer <cron secret>``.  Both are
idempotent: repeating a call yields no duplicate trades.
"""

from __future__ import annotations

import hmac
import logging

from aiohttp import web

from trade_journal.core.errors import NotFoundError
from trade_journal.sync.orchestrator import SyncOrchestrator, total_synced

logger = logging.getLogger(__name__)

ORCHESTRATOR_KEY = web.AppKey("orchestrator", SyncOrchestrator)
SECRET_KEY = web.AppKey("cron_secret", str)

_PUBLIC_PATHS = frozenset({"/health"})


def create_sync_app(orchestrator: SyncOrchestrator, cron_secret: str) -> web.Application:
    """Create the aiohttp application serving the sync trigger endpoints."""
    app = web.Application(middlewares=[bearer_auth_middleware])
    app[ORCHESTRATOR_KEY] = orchestrator
    app[SECRET_KEY] = cron_secret

    app.router.add_get("/health", handle_health)
    app.router.add_post("/sync", handle_sync_all)
    app.router.add_post("/sync/{account_id}", handle_sync_account)
    return app


@web.middleware
async def bearer_auth_middleware(request: web.Request, handler):
    """Reject sync calls that do not carry the cron secret."""
    if request.path in _PUBLIC_PATHS:
        return await handler(request)

    expected = request.app[SECRET_KEY]
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if not expected or scheme.lower() != "bearer" or not hmac.compare_digest(
        token.encode(), expected.encode(),
    ):
        logger.warning("Unauthorized sync request to %s", request.path)
        return web.json_response({"error": "Unauthorized"}, status=401)
    return await handler(request)


async def handle_health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


async def handle_sync_all(request: web.Request) -> web.Response:
    """POST /sync: fan out over all active accounts."""
    orchestrator = request.app[ORCHESTRATOR_KEY]
    results = await orchestrator.sync_all()
    return web.json_response({
        "results": [r.to_dict() for r in results],
        "total_synced": total_synced(results),
    })


async def handle_sync_account(request: web.Request) -> web.Response:
    """POST /sync/{account_id}: one account; ``?full=1`` for a full resync."""
    orchestrator = request.app[ORCHESTRATOR_KEY]
    account_id = request.match_info["account_id"]
    full = request.query.get("full", "").lower() in ("1", "true", "yes")
    try:
        if full:
            result = await orchestrator.full_resync(account_id)
        else:
            result = await orchestrator.sync_account(account_id)
    except NotFoundError as exc:
        return web.json_response({"error": str(exc)}, status=404)

    status = 200 if result.ok else 502
    return web.json_response(result.to_dict(), status=status)
