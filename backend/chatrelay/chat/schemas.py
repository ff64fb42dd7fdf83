"""Wire protocol for the chat WebSocket.

Inbound events are JSON objects with a ``type`` field:
    - identify: {type: "identify", displayName}      ("join" also accepted)
    - chat:     {type: "chat", sender, message}      ("chatMessage" also accepted,
                                                      "body" may replace "message")
    - leave:    {type: "leave", displayName?}

Outbound events:
    - chatMessage:        {type, sender, message, timestamp}     (broadcast)
    - activeUsersList:    {type, users: [str]}                   (broadcast)
    - historicalMessages: {type, messages: [...], order}         (joining connection only)
"""
import json
from enum import Enum
from typing import List, Optional, Union

from pydantic import AliasChoices, BaseModel, Field, ValidationError

from chatrelay.config import LimitSettings
from chatrelay.errors import MalformedEventError
from chatrelay.history.schemas import StoredMessage


class EventType(str, Enum):
    """Inbound event types."""
    IDENTIFY = "identify"
    CHAT = "chat"
    LEAVE = "leave"


class OutboundType(str, Enum):
    """Outbound event types."""
    CHAT_MESSAGE = "chatMessage"
    ACTIVE_USERS_LIST = "activeUsersList"
    HISTORICAL_MESSAGES = "historicalMessages"


# Alternate type names accepted from older clients
EVENT_TYPE_ALIASES = {
    "join": EventType.IDENTIFY,
    "chatMessage": EventType.CHAT,
}


class IdentifyEvent(BaseModel):
    """Client declares the display name for its connection."""
    displayName: str = Field(..., description="Display name shown in presence")


class ChatEvent(BaseModel):
    """Client sends a chat message.

    The sender is taken verbatim from the event and is not checked against
    the name the connection identified with.
    """
    sender: str = Field(..., description="Display name of the sender")
    body: str = Field(
        ...,
        validation_alias=AliasChoices("message", "body"),
        description="Message text",
    )


class LeaveEvent(BaseModel):
    """Client announces it is leaving."""
    displayName: Optional[str] = Field(default=None, description="Name being released")


InboundEvent = Union[IdentifyEvent, ChatEvent, LeaveEvent]

_EVENT_MODELS = {
    EventType.IDENTIFY: IdentifyEvent,
    EventType.CHAT: ChatEvent,
    EventType.LEAVE: LeaveEvent,
}


def _resolve_type(raw_type: object) -> EventType:
    if not isinstance(raw_type, str):
        raise MalformedEventError("Event has no type")
    if raw_type in EVENT_TYPE_ALIASES:
        return EVENT_TYPE_ALIASES[raw_type]
    try:
        return EventType(raw_type)
    except ValueError:
        raise MalformedEventError(f"Unknown event type: {raw_type}", raw_type) from None


def parse_event(raw: str, limits: LimitSettings) -> InboundEvent:
    """Parse one inbound WebSocket frame into a typed event.

    Args:
        raw: The text frame as received.
        limits: Length bounds for client-supplied text.

    Returns:
        IdentifyEvent, ChatEvent or LeaveEvent.

    Raises:
        MalformedEventError: If the frame is not a JSON object, has an unknown
            type, misses a required field, or exceeds a length bound.
            Empty strings are present, not missing, and pass through.
    """
    try:
        data = json.loads(raw)
    except (ValueError, TypeError, RecursionError) as e:
        raise MalformedEventError(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedEventError("Event must be a JSON object")

    event_type = _resolve_type(data.get("type"))
    try:
        event = _EVENT_MODELS[event_type].model_validate(data)
    except ValidationError as e:
        raise MalformedEventError(
            f"Invalid {event_type.value} event: {e.error_count()} error(s)", event_type.value
        ) from e

    if isinstance(event, IdentifyEvent):
        _check_name(event.displayName, limits, event_type)
    elif isinstance(event, ChatEvent):
        _check_name(event.sender, limits, event_type)
        if len(event.body) > limits.max_message_length:
            raise MalformedEventError(
                f"Chat message exceeds {limits.max_message_length} characters",
                event_type.value,
            )
    return event


def _check_name(name: str, limits: LimitSettings, event_type: EventType) -> None:
    if len(name) > limits.max_display_name_length:
        raise MalformedEventError(
            f"Display name exceeds {limits.max_display_name_length} characters",
            event_type.value,
        )


# =============================================================================
# Outbound payloads
# =============================================================================


def chat_message_payload(message: StoredMessage) -> dict:
    return {"type": OutboundType.CHAT_MESSAGE.value, **message.to_wire()}


def active_users_payload(users: List[str]) -> dict:
    return {"type": OutboundType.ACTIVE_USERS_LIST.value, "users": users}


def historical_messages_payload(messages: List[StoredMessage]) -> dict:
    """Build the replay for a joining connection. *messages* must be ascending."""
    return {
        "type": OutboundType.HISTORICAL_MESSAGES.value,
        "messages": [msg.to_wire() for msg in messages],
        "order": "ascending",
    }
