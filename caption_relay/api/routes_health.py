import time
from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends

from caption_relay.services.record_store import SupabaseRecordStore, get_record_store
from caption_relay.services.session_manager import SessionManager, get_session_manager

router = APIRouter()

_STARTED = time.monotonic()


@router.get("")
def health():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - _STARTED, 3),
    }


@router.get("/ready")
async def readiness_probe(
    manager: Annotated[SessionManager, Depends(get_session_manager)],
    store: Annotated[SupabaseRecordStore, Depends(get_record_store)],
):
    store_ok = await store.ping()
    return {
        "status": "ready" if store_ok else "degraded",
        "store": store_ok,
        "processing": manager.is_processing,
        "active_request_id": manager.active_request_id,
    }


@router.get("/live")
def liveness_probe():
    return {"status": "alive"}
