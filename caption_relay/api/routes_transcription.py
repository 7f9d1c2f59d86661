import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from caption_relay.core.exceptions import ConnectFailure, PersistenceError, RecordNotFoundError, SessionStateError
from caption_relay.core.logger import get_logger
from caption_relay.schemas.transcript import RecordStatus
from caption_relay.schemas.transcription import (
    StartRequest,
    StartResponse,
    StatusResponse,
    StopRequest,
    StopResponse,
)
from caption_relay.services.record_store import RecordStore, get_record_store
from caption_relay.services.session_manager import SessionManager, get_session_manager

router = APIRouter()
log = get_logger(__name__)

ManagerDep = Annotated[SessionManager, Depends(get_session_manager)]
StoreDep = Annotated[RecordStore, Depends(get_record_store)]


@router.post("/start", response_model=StartResponse, status_code=status.HTTP_202_ACCEPTED)
async def start_transcription(body: StartRequest, manager: ManagerDep, store: StoreDep):
    """Start relaying the Fireflies transcript `transcriptionId` into a new record."""
    if manager.is_processing:
        log.warning("Rejecting /start: session %s is still processing", manager.active_request_id)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Transcription session {manager.active_request_id} is already processing.",
        )

    request_id = body.request_id or str(uuid.uuid4())
    log.info("Received /start for transcript %s, request %s", body.transcription_id, request_id)

    try:
        await store.create_record(request_id, body.transcription_id)
    except PersistenceError as e:
        log.error("Could not create record %s: %s", request_id, e)
        raise HTTPException(status_code=500, detail="Failed to create transcription request")

    try:
        await manager.start_session(request_id, body.transcription_id)
    except ConnectFailure as e:
        raise HTTPException(status_code=500, detail=f"Failed to start transcription: {e}")
    except SessionStateError as e:
        # Another start won the slot while this record was being created.
        log.warning("Start of %s lost to a concurrent start: %s", request_id, e)
        try:
            await store.append_content(request_id, "", status=RecordStatus.ERROR, error_message=str(e))
        except PersistenceError:
            log.exception("Failed to mark record %s as error", request_id)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return StartResponse(request_id=request_id, message="Transcription process initiated successfully.")


@router.get("/status/{request_id}", response_model=StatusResponse)
async def get_transcription_status(request_id: str, store: StoreDep):
    """Return the persisted record; content can trail the live feed by one flush interval."""
    try:
        record = await store.get_record(request_id)
    except PersistenceError as e:
        log.error("Failed to fetch transcription request %s: %s", request_id, e)
        raise HTTPException(status_code=500, detail="Failed to fetch transcription request")

    if record is None:
        raise RecordNotFoundError(request_id)

    return StatusResponse(
        request_id=record.id,
        status=record.status,
        content=record.content,
        error=record.error_message,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


@router.post("/stop", response_model=StopResponse)
async def stop_transcription(body: StopRequest, manager: ManagerDep):
    """Stop the active session; its buffered fragments are flushed first."""
    log.info("Received /stop for request %s", body.request_id)
    if not manager.is_processing:
        raise HTTPException(status_code=400, detail="No active transcription session to stop.")
    if manager.active_request_id != body.request_id:
        log.warning("Stop requested for %s but active session is %s", body.request_id, manager.active_request_id)
        raise HTTPException(
            status_code=400,
            detail="The provided requestId does not match the currently active session.",
        )

    try:
        await manager.stop_session(body.request_id)
    except SessionStateError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return StopResponse(request_id=body.request_id, message="Transcription session stopped successfully.")
