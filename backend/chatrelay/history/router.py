"""Chat history API endpoint.

Endpoints:
    GET /history: Most recent messages, oldest first

This is a read-only view of the same window a newly joined WebSocket
connection is replayed. Messages are only ever written by the relay.
"""
import logging

from fastapi import APIRouter, HTTPException, Query, Request

from chatrelay.errors import PersistenceError

from .schemas import HistoryResponse
from .service import to_ascending

logger = logging.getLogger(__name__)

router = APIRouter(tags=["history"])

# Maximum page size to prevent abuse
MAX_LIMIT = 200


@router.get("/history", response_model=HistoryResponse)
async def get_history(
    request: Request,
    limit: int = Query(20, ge=1, le=MAX_LIMIT, description="Number of messages to return"),
) -> HistoryResponse:
    """Get the most recent messages in ascending timestamp order.

    Args:
        limit: Maximum number of messages to return (1-200, default 20).

    Returns:
        HistoryResponse with messages (oldest first) and count.

    Raises:
        HTTPException: 503 if the history store is unavailable.
    """
    store = request.app.state.history_store
    try:
        recent = await store.fetch_recent_async(limit)
    except PersistenceError as e:
        logger.warning(f"[History] GET /history failed: {e}")
        raise HTTPException(status_code=503, detail="History store unavailable")

    messages = [msg.to_wire() for msg in to_ascending(recent)]
    return HistoryResponse(messages=messages, count=len(messages))
