"""Chat router providing the WebSocket endpoint and the HTTP fallback.

This module provides:
    - WebSocket /ws: Real-time chat messaging
    - GET /api/chat: Upgrade hint for clients hitting the HTTP surface
    - POST /api/chat: Polling fallback ({type: "get_messages"})
    - DELETE /api/chat/sessions/{participant_id}: Explicit logout

The WebSocket protocol supports:
    - Message history replay on join
    - User join/leave notifications
    - Real-time message broadcasting
    - Typing indicators

Each application owns one ChatRoom, stored on ``app.state.room``.
"""
import logging

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, PlainTextResponse

from .engine import ChatRoom

logger = logging.getLogger(__name__)

router = APIRouter()


def get_room(connection) -> ChatRoom:
    return connection.app.state.room


@router.websocket("/ws")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for the shared chat room.

    Every inbound frame (text, or binary holding UTF-8 JSON) is passed to the
    engine until the client goes away. Bad frames are dropped by the engine;
    only a closed transport ends the loop.

    Args:
        websocket: The WebSocket connection.
    """
    room = get_room(websocket)
    await websocket.accept()
    logger.info("[WS] New connection; %d sessions registered", len(room.registry))

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            await room.engine.handle_frame(websocket, raw)

    except WebSocketDisconnect as exc:
        logger.info("[WS] Connection closed (code=%s)", exc.code)
    finally:
        await room.engine.disconnect(websocket)


@router.get("/api/chat")
async def chat_upgrade_hint() -> PlainTextResponse:
    """Point plain HTTP clients at the WebSocket endpoint."""
    return PlainTextResponse(
        "WebSocket endpoint - upgrade required (connect to /ws)",
        status_code=426,
        headers={"Upgrade": "websocket", "Connection": "Upgrade"},
    )


@router.post("/api/chat")
async def chat_fallback(request: Request) -> JSONResponse:
    """Read-only polling substitute for clients without a WebSocket.

    Request body:
        {"type": "get_messages"}

    Returns:
        JSON with the replayable ``messages`` and the number of
        ``connectedUsers``. Unknown types and unparsable bodies get HTTP 400.
    """
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse({"error": "Invalid request"}, status_code=400)

    if not isinstance(body, dict):
        return JSONResponse({"error": "Invalid request"}, status_code=400)

    if body.get("type") != "get_messages":
        return JSONResponse({"error": "Unknown message type"}, status_code=400)

    room = get_room(request)
    return JSONResponse({
        "messages": [msg.model_dump(mode="json") for msg in room.history.snapshot()],
        "connectedUsers": len(room.registry),
    })


@router.delete("/api/chat/sessions/{participant_id}")
async def logout_participant(participant_id: str, request: Request) -> JSONResponse:
    """Remove a participant's session and announce that they left.

    The participant's transport is not closed; it just stops receiving
    room traffic.
    """
    session = await get_room(request).engine.logout(participant_id)
    if session is None:
        return JSONResponse({"error": "Participant not connected"}, status_code=404)
    return JSONResponse({"status": "ok", "user": session.participant.model_dump(mode="json")})
