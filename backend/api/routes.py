"""FastAPI routes for Haven call API."""

import logging
from typing import Optional
from fastapi import APIRouter, HTTPException

from haven.calls import (
    CallAlreadyActiveError,
    CallNotFoundError,
    ClientNotFoundError,
    TurnInProgressError,
)

from .models import (
    CreateClientRequest,
    ClientResponse,
    StartCallRequest,
    StartCallResponse,
    VoiceTurnRequest,
    VoiceTurnResponse,
    EndCallResponse,
    LiveTranscriptResponse,
    HealthResponse,
)
from ..services.call_service import call_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["api"])


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Health check endpoint.

    Returns the status of the call core and its provider chains.
    """
    try:
        return HealthResponse(status="healthy", services=call_service.get_health_status())
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/clients", response_model=ClientResponse, status_code=201)
async def create_client(request: CreateClientRequest):
    """Register a client so an intake call can be started for them."""
    try:
        client = await call_service.storage.create_client(request.model_dump(exclude_none=True))
    except Exception as e:
        logger.error(f"Creating client failed: {e}")
        raise HTTPException(status_code=500, detail=f"Creating client failed: {str(e)}")

    logger.info(f"Created client {client['id']}")
    return client


@router.get("/clients/{client_id}", response_model=ClientResponse)
async def get_client(client_id: str):
    """Fetch a client record, including fields filled in by finalized calls."""
    client = await call_service.storage.get_client(client_id)
    if not client:
        raise HTTPException(status_code=404, detail=f"Client not found: {client_id}")
    return client


@router.post("/clients/{client_id}/call", response_model=StartCallResponse, status_code=201)
async def start_call(client_id: str, request: Optional[StartCallRequest] = None):
    """
    Start an intake call for a client.

    Returns the call ID and the greeting to vocalize.
    """
    external_ref = request.external_ref if request else None
    try:
        started = await call_service.orchestrator.start_call(client_id, external_ref=external_ref)
    except ClientNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CallAlreadyActiveError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Starting call failed: {e}")
        raise HTTPException(status_code=500, detail=f"Starting call failed: {str(e)}")

    return StartCallResponse(call_id=started.call_id, greeting_text=started.greeting_text)


@router.post("/calls/{call_id}/voice-turn", response_model=VoiceTurnResponse)
async def voice_turn(call_id: str, request: VoiceTurnRequest):
    """
    Process one caller turn.

    Args:
        call_id: Active call ID
        request: Transcribed caller speech

    Returns:
        Agent reply, per-sentence emotions and completion flag
    """
    try:
        result = await call_service.orchestrator.process_turn(call_id, request.text or "")
    except CallNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TurnInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Voice turn failed: {e}")
        raise HTTPException(status_code=500, detail=f"Voice turn failed: {str(e)}")

    return VoiceTurnResponse(
        agent_text=result.agent_text,
        sentence_emotions=[s.to_dict() for s in result.sentence_emotions],
        is_complete=result.is_complete,
        latency_ms=result.latency_ms,
    )


@router.post("/calls/{call_id}/end", response_model=EndCallResponse)
async def end_call(call_id: str):
    """End a call and run finalization."""
    try:
        result = await call_service.orchestrator.end_call(call_id)
    except CallNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Ending call failed: {e}")
        raise HTTPException(status_code=500, detail=f"Ending call failed: {str(e)}")

    return EndCallResponse(**result)


@router.get("/calls/{call_id}/live-transcript", response_model=LiveTranscriptResponse)
async def live_transcript(call_id: str):
    """Snapshot of the transcript recorded so far."""
    state = call_service.orchestrator.get_live_state(call_id)
    return LiveTranscriptResponse(
        segments=[s.to_dict() for s in state.segments],
        active=state.active,
        turn_index=state.turn_index,
    )
