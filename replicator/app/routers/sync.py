from typing import Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..logs import json_log

router = APIRouter(prefix="/sync", tags=["sync"])

# Set by the application at startup (see main.py); tests swap it via set_services().
_services = None


def set_services(services) -> None:
    global _services
    _services = services


def get_services():
    return _services


class ForceSyncIn(BaseModel):
    # Range is checked by the engine so the caller gets the structured result back.
    limit: Optional[int] = None


def _scheduler(engine: str):
    services = get_services()
    name = (engine or "").strip().lower()
    sched = services.get(name) if services is not None else None
    if sched is None:
        raise HTTPException(status_code=404, detail=f"unknown sync engine: {name}")
    return sched


@router.get("/{engine}/stats")
def sync_stats(engine: str):
    sched = _scheduler(engine)
    try:
        return sched.stats()
    except Exception as ex:
        json_log("error", "sync.stats.error", engine=engine, error=str(ex))
        raise HTTPException(status_code=500, detail="failed to read sync stats") from ex


@router.post("/{engine}/force")
def force_sync(engine: str, data: Optional[ForceSyncIn] = None):
    """
    Run one cycle now, out of band. Never queued: if a cycle is already running the
    caller gets 409 with the "already in progress" result.
    """
    sched = _scheduler(engine)
    res = sched.force_now(data.limit if data else None)
    if res["status"] == "invalid":
        return JSONResponse(status_code=400, content=res)
    if res["status"] == "skipped":
        return JSONResponse(status_code=409, content=res)
    return res
