"""Pydantic schemas for persisted chat history.

These schemas are used by:
    - HistoryStore: DuckDB storage layer
    - ChatRelay: history replay on join and chat broadcast
    - GET /history: read-only HTTP view of the recent window
"""
from typing import List

from pydantic import BaseModel, Field


class StoredMessage(BaseModel):
    """A single immutable record in the message log.

    Attributes:
        id: Monotonic sequence number assigned by the store.
        sender: Display name of the sender (free text, not an identity).
        body: Message text.
        timestamp: Seconds since epoch, assigned by the store at write time.
            Strictly increasing across appends.
    """
    id: int = Field(..., description="Store-assigned sequence number")
    sender: str = Field(..., description="Sender display name")
    body: str = Field(..., description="Message text")
    timestamp: float = Field(..., description="Server-assigned write time")

    def to_wire(self) -> dict:
        """Client-facing shape: ``body`` travels as ``message``."""
        return {
            "sender": self.sender,
            "message": self.body,
            "timestamp": self.timestamp,
        }


class HistoryResponse(BaseModel):
    """Response from the GET /history endpoint.

    Attributes:
        messages: Most recent messages, oldest first.
        count: Number of messages returned.
    """
    messages: List[dict] = Field(..., description="Messages, ascending")
    count: int = Field(..., description="Number of messages")
