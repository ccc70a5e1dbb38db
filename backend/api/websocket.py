"""WebSocket endpoint streaming live transcripts and call events."""

import logging
from typing import Optional
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from haven.calls import SubscriptionError

from ..services.call_service import call_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/transcript")
async def transcript_socket(
    websocket: WebSocket,
    call_id: Optional[str] = None,
    client_id: Optional[str] = None,
):
    """
    Subscribe to a call and/or a client.

    Query params ``call_id`` and ``client_id``; at least one is required.
    """
    await websocket.accept()

    hub = call_service.orchestrator.hub
    try:
        connection = await hub.connect(websocket, call_id=call_id, client_id=client_id)
    except SubscriptionError as e:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=str(e))
        return

    try:
        while True:
            # Inbound messages are ignored; the loop only detects disconnects
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info(f"Transcript socket {connection.id} disconnected")
    finally:
        hub.unregister(connection)
