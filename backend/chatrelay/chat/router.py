"""Chat router providing the WebSocket endpoint and a presence view.

This module provides:
    - WebSocket /ws/chat: Real-time presence and chat
    - GET /presence: Current presence snapshot

Protocol Flow:
    1. Client connects
       → Server sends (to this client only): {type: "historicalMessages", messages, order}
       → Server broadcasts: {type: "activeUsersList", users}
    2. Client sends: {type: "identify", displayName}
       → Server broadcasts: {type: "activeUsersList", users}
    3. Client sends: {type: "chat", sender, message}
       → Server persists, then broadcasts: {type: "chatMessage", sender, message, timestamp}
    4. Client sends {type: "leave"} or disconnects
       → Server broadcasts: {type: "activeUsersList", users}
"""
import logging

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect

from .manager import ChatRelay

logger = logging.getLogger(__name__)

router = APIRouter()


def get_relay(connection) -> ChatRelay:
    """Return the relay owned by the running application."""
    return connection.app.state.relay


async def _receive_frame(websocket: WebSocket) -> str:
    """Receive the next text frame, decoding binary frames as UTF-8."""
    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", 1000))
    text = message.get("text")
    if text is None:
        text = (message.get("bytes") or b"").decode("utf-8", errors="replace")
    return text


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for real-time chat.

    Events from this connection are processed one at a time, in arrival
    order. Other connections keep being served while this one waits on the
    history store.

    Args:
        websocket: The WebSocket connection.
    """
    relay = get_relay(websocket)
    conn = await relay.open(websocket)
    logger.info(f"[WS] Connection {conn.connection_id} accepted")

    try:
        while not conn.is_closed:
            raw = await _receive_frame(websocket)
            await relay.dispatch(conn, raw)
    except WebSocketDisconnect:
        logger.info(f"[WS] Connection {conn.connection_id} disconnected")
        return
    finally:
        await relay.close(conn)

    # Explicit leave: release the transport as well
    try:
        await websocket.close(code=1000)
    except RuntimeError as e:
        logger.debug(f"[WS] Transport for {conn.connection_id} already closed: {e}")


@router.get("/presence")
async def get_presence(request: Request) -> dict:
    """Get the current presence snapshot.

    Returns:
        dict: ``users`` (distinct display names) and ``connections``
        (number of live connections, identified or not).
    """
    relay = get_relay(request)
    return {
        "users": relay.snapshot(),
        "connections": relay.get_connection_count(),
    }
