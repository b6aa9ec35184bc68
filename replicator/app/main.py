import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..workers.engines import SyncServices
from .config import settings
from .db import SqliteStore, init_db, open_store
from .logs import json_log
from .routers import sync as sync_routes


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    _startup()
    try:
        yield
    finally:
        _shutdown()


app = FastAPI(title="POS Replicator", version=settings.api_version, lifespan=_lifespan)
STARTED_AT_UTC = datetime.now(timezone.utc)

_store = None


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


@app.exception_handler(Exception)
def _unhandled_exception(req: Request, exc: Exception):
    rid = _current_request_id(req)
    json_log(
        "error",
        "http.request.unhandled",
        request_id=rid,
        method=req.method,
        path=req.url.path,
        error=str(exc),
    )
    content = {"detail": "internal error", "request_id": rid}
    if settings.env in {"local", "dev"}:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)


# Correlation id + basic structured request logging.
@app.middleware("http")
async def _request_logging(request: Request, call_next):
    rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
    request.state.request_id = rid
    started = time.time()
    path = request.url.path
    method = request.method
    try:
        response = await call_next(request)
    except Exception as exc:
        json_log(
            "error",
            "http.request.error",
            request_id=rid,
            method=method,
            path=path,
            duration_ms=int((time.time() - started) * 1000),
            error=str(exc),
        )
        raise

    response.headers["X-Request-Id"] = rid
    if path != "/health":
        json_log(
            "info",
            "http.request",
            request_id=rid,
            method=method,
            path=path,
            status_code=response.status_code,
            duration_ms=int((time.time() - started) * 1000),
        )
    return response


app.include_router(sync_routes.router)


def _startup():
    global _store
    _store = open_store(settings.local_db_url)
    if isinstance(_store, SqliteStore):
        init_db(_store.path)
    services = SyncServices.from_settings(settings, _store)
    sync_routes.set_services(services)
    if settings.sync_enabled:
        services.start_all()
    json_log(
        "info",
        "startup.sync_configured",
        env=settings.env,
        remote=settings.remote_api_url or None,
        sync_enabled=settings.sync_enabled,
    )


def _shutdown():
    services = sync_routes.get_services()
    if services is not None:
        services.stop_all(timeout=30)
    if _store is not None:
        _store.close()


@app.get("/health")
def health(req: Request):
    return {
        "status": "ok",
        "env": settings.env,
        "service": "pos-replicator",
        "version": settings.api_version,
        "started_at": STARTED_AT_UTC.isoformat(),
        "request_id": _current_request_id(req),
    }


@app.get("/meta")
def meta():
    return {
        "service": "pos-replicator",
        "version": settings.api_version,
        "env": settings.env,
        "uptime_seconds": int((datetime.now(timezone.utc) - STARTED_AT_UTC).total_seconds()),
        "started_at": STARTED_AT_UTC.isoformat(),
    }
