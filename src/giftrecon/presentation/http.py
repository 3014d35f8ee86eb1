"""
Scheduler-facing HTTP triggers.

Both triggers are POST-only, gated by the analytics feature flag and by
``authorize_trigger`` (checked before any store or RPC work). Failures answer
with an opaque trace id; details only go to the log.
"""
from __future__ import annotations

import json
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..application.utils import new_trace_id
from ..config import Settings, get_settings
from .auth import TriggerRejected, authorize_trigger
from .runtime import RuntimeFactory, open_runtime

logger = logging.getLogger(__name__)


def _disabled() -> JSONResponse:
    return JSONResponse({"success": True, "disabled": True, "message": "Analytics feature is disabled"})


def _failure(what: str) -> JSONResponse:
    trace = new_trace_id("error")
    logger.exception("%s failed trace=%s", what, trace)
    return JSONResponse(status_code=500, content={"success": False, "error": f"{what} failed", "trace": trace})


def _parse_from_block(body: bytes) -> int | None:
    if not body.strip():
        return None
    try:
        payload = json.loads(body)
    except json.JSONDecodeError as e:
        raise TriggerRejected(400, "Invalid JSON body") from e
    raw = payload.get("fromBlock") if isinstance(payload, dict) else None
    if raw is None or raw == "":
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError) as e:
        raise TriggerRejected(400, "Invalid fromBlock") from e
    if value < 0:
        raise TriggerRejected(400, "Invalid fromBlock")
    return value


def create_app(settings: Settings | None = None, *, runtime_factory: RuntimeFactory = open_runtime) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title="giftrecon", version=settings.analytics_version)

    @app.exception_handler(TriggerRejected)
    async def trigger_error_handler(request: Request, exc: TriggerRejected):
        if exc.status_code >= 500:
            logger.error("trigger rejected path=%s: %s", request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        trace = new_trace_id("error")
        logger.error("unhandled error path=%s trace=%s type=%s: %s",
                     request.url.path, trace, exc.__class__.__name__, exc)
        return JSONResponse(status_code=500, content={"success": False, "error": "internal_error", "trace": trace})

    def _headers(trace_id: str, elapsed_ms: int) -> dict[str, str]:
        return {
            "X-Analytics-Version": settings.analytics_version,
            "X-Trace-Id": trace_id,
            "X-Processing-Time": str(elapsed_ms),
        }

    @app.post("/api/internal/reconcile")
    async def reconcile(request: Request):
        if not settings.analytics_enabled:
            return _disabled()
        body = await request.body()
        authorize_trigger(request.headers, body, settings)
        from_block = _parse_from_block(body)

        trace_id = new_trace_id("reconcile")
        logger.info("starting blockchain reconciliation trace=%s fromBlock=%s", trace_id, from_block)
        try:
            async with runtime_factory(settings) as rt:
                result = await rt.reconciler.run_with_budget(from_block, trace_id=trace_id)
        except Exception:
            return _failure("Reconciliation")
        return JSONResponse(result.to_response(), headers=_headers(trace_id, result.processing_time_ms))

    @app.post("/api/internal/materialize")
    async def materialize(request: Request):
        if not settings.analytics_enabled:
            return _disabled()
        body = await request.body()
        authorize_trigger(request.headers, body, settings)

        trace_id = new_trace_id("materialize")
        logger.info("starting materialization trace=%s", trace_id)
        try:
            async with runtime_factory(settings) as rt:
                result = await rt.materializer.run_with_budget(trace_id=trace_id)
        except Exception:
            return _failure("Materialization")
        return JSONResponse(result.to_response(), headers=_headers(trace_id, result.processing_time_ms))

    @app.get("/healthz")
    async def healthz():
        try:
            async with runtime_factory(settings) as rt:
                store_ok = await rt.store.ping()
        except Exception:
            logger.exception("health check failed")
            store_ok = False
        return {"status": "ok" if store_ok else "degraded", "store": store_ok}

    return app
