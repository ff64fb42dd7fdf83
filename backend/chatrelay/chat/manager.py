"""Broadcast relay for real-time presence and chat.

This module owns the per-connection state machine and mediates between the
PresenceRegistry (who is online) and the HistoryStore (what was said).

Connection lifecycle:
    connected  -> transport accepted, no display name yet
    identified -> display name registered via an identify event
    closed     -> terminal; reached on leave or transport close

Key behaviours:
    - On open the new connection receives the recent history privately,
      then everyone receives the presence list (which does not yet include
      the newcomer).
    - Chat messages are persisted before they are broadcast. If the write
      fails the broadcast is suppressed and the failure is only logged.
    - Broadcasts that arrive while a connection is still receiving its
      history replay are held back and flushed after the replay, skipping
      chat messages already contained in it.
    - Broadcasting uses asyncio.gather() for concurrent delivery; connections
      whose send fails are dropped from the fan-out set.

Thread Safety:
    Designed for a single event loop. Only the history store calls leave
    the loop, and those run in worker threads behind the store's own lock.
"""
import asyncio
import logging
import uuid
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from fastapi import WebSocket

from chatrelay.config import AppSettings, LimitSettings
from chatrelay.errors import MalformedEventError, PersistenceError
from chatrelay.history.schemas import StoredMessage
from chatrelay.history.service import HistoryStore, to_ascending

from .presence import PresenceRegistry
from .schemas import (
    ChatEvent,
    IdentifyEvent,
    LeaveEvent,
    active_users_payload,
    chat_message_payload,
    historical_messages_payload,
    parse_event,
)

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """Lifecycle state of a single connection."""
    CONNECTED = "connected"
    IDENTIFIED = "identified"
    CLOSED = "closed"


class RelayConnection:
    """One live transport session and its relay-side state.

    Attributes:
        connection_id: Server-assigned unique identifier.
        websocket: The underlying transport.
        state: Current lifecycle state.
        display_name: Name from the last identify event, if any.
    """

    def __init__(self, websocket: WebSocket, connection_id: Optional[str] = None) -> None:
        self.connection_id = connection_id or str(uuid.uuid4())
        self.websocket = websocket
        self.state = ConnectionState.CONNECTED
        self.display_name: Optional[str] = None
        self._replaying = True
        # (message id for chat broadcasts, payload)
        self._pending: List[Tuple[Optional[int], dict]] = []

    @property
    def is_closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    async def send(self, payload: dict) -> bool:
        """Send directly, bypassing the replay buffer.

        Returns:
            True if sent (or the connection is already closed), False if the
            transport failed.
        """
        if self.is_closed:
            return True
        try:
            await self.websocket.send_json(payload)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to connection {self.connection_id}: {e}")
            return False

    async def deliver(self, payload: dict, message_id: Optional[int] = None) -> bool:
        """Deliver a broadcast, holding it back while the replay is in progress."""
        if self._replaying:
            self._pending.append((message_id, payload))
            return True
        return await self.send(payload)

    async def finish_replay(self, replayed_ids: Set[int]) -> bool:
        """Flush broadcasts held back during the history replay.

        Chat messages whose id is in *replayed_ids* were already delivered as
        part of the history and are skipped.
        """
        ok = True
        while self._pending:
            message_id, payload = self._pending.pop(0)
            if message_id is not None and message_id in replayed_ids:
                continue
            ok = await self.send(payload) and ok
        self._replaying = False
        return ok


class ChatRelay:
    """Orchestrates connect, identify, chat, leave and disconnect events.

    The relay owns the fan-out set of live connections. The presence
    registry and history store are passed in, so their lifetime is tied to
    whoever builds the relay (the FastAPI lifespan in production).
    """

    def __init__(
        self,
        registry: PresenceRegistry,
        store: HistoryStore,
        window_size: int = 20,
        welcome_sender: str = "System",
        welcome_message: str = "Welcome to the chat!",
        limits: Optional[LimitSettings] = None,
    ) -> None:
        self.registry = registry
        self.store = store
        self.window_size = window_size
        self.welcome_sender = welcome_sender
        self.welcome_message = welcome_message
        self.limits = limits or LimitSettings()

        # connection_id -> RelayConnection for every connection receiving broadcasts
        self.connections: Dict[str, RelayConnection] = {}

    @classmethod
    def from_settings(
        cls, settings: AppSettings, registry: PresenceRegistry, store: HistoryStore
    ) -> "ChatRelay":
        return cls(
            registry,
            store,
            window_size=settings.history.window_size,
            welcome_sender=settings.history.welcome_sender,
            welcome_message=settings.history.welcome_message,
            limits=settings.limits,
        )

    # =========================================================================
    # Lifecycle events
    # =========================================================================

    async def open(self, websocket: WebSocket) -> RelayConnection:
        """Accept a transport, replay history to it, then broadcast presence.

        A history failure degrades to an empty replay; the join is never
        blocked on the store.
        """
        await websocket.accept()
        conn = RelayConnection(websocket)
        # Join the fan-out set before reading history so no live message is missed
        self.connections[conn.connection_id] = conn
        logger.info(
            f"[Relay] Connection {conn.connection_id} opened. "
            f"{len(self.connections)} connections"
        )

        history = await self._load_history()
        sent = await conn.send(historical_messages_payload(history))
        sent = await conn.finish_replay({msg.id for msg in history}) and sent
        if not sent:
            # Transport went away while the history was loading
            await self.close(conn)
            return conn

        await self.broadcast_presence()
        return conn

    async def identify(self, conn: RelayConnection, event: IdentifyEvent) -> None:
        """Register the connection's display name and broadcast presence."""
        if conn.is_closed:
            return
        self.registry.register(conn.connection_id, event.displayName)
        conn.display_name = event.displayName
        conn.state = ConnectionState.IDENTIFIED
        logger.info(f"[Relay] {conn.connection_id} identified as {event.displayName!r}")
        await self.broadcast_presence()

    async def chat(self, conn: RelayConnection, event: ChatEvent) -> Optional[StoredMessage]:
        """Persist a chat message, then broadcast it to every connection.

        Allowed before identify. On PersistenceError nothing is broadcast.

        Returns:
            The stored message, or None if it was not persisted.
        """
        if conn.is_closed:
            return None
        try:
            message = await self.store.append_async(event.sender, event.body)
        except PersistenceError as e:
            logger.error(
                f"[Relay] Dropping chat from {conn.connection_id} "
                f"(sender={event.sender!r}): {e}"
            )
            return None

        logger.debug(f"[Relay] Broadcasting message {message.id} to {len(self.connections)} connections")
        await self.broadcast(chat_message_payload(message), message_id=message.id)
        return message

    async def leave(self, conn: RelayConnection, event: LeaveEvent) -> bool:
        """Handle an explicit leave. Tolerated on never-identified connections."""
        if event.displayName and conn.display_name and event.displayName != conn.display_name:
            logger.debug(
                f"[Relay] Leave from {conn.connection_id} names {event.displayName!r}, "
                f"registered as {conn.display_name!r}"
            )
        return await self.close(conn)

    async def close(self, conn: RelayConnection) -> bool:
        """Move a connection to closed and drop it from presence.

        Safe to call more than once.

        Returns:
            True if a presence entry was removed (and presence rebroadcast).
        """
        if conn.is_closed:
            return False
        conn.state = ConnectionState.CLOSED
        self.connections.pop(conn.connection_id, None)
        removed = self.registry.remove(conn.connection_id)
        logger.info(
            f"[Relay] Connection {conn.connection_id} closed. "
            f"{len(self.connections)} connections remain"
        )
        if removed:
            await self.broadcast_presence()
        return removed

    async def dispatch(self, conn: RelayConnection, raw: str) -> bool:
        """Parse one inbound frame and run the matching handler.

        Malformed events are logged and dropped.

        Returns:
            False once the connection has closed (the caller should stop
            reading), True otherwise.
        """
        if conn.is_closed:
            return False
        try:
            event = parse_event(raw, self.limits)
        except MalformedEventError as e:
            logger.warning(
                f"[Relay] Dropped malformed event from {conn.connection_id} "
                f"(type={e.event_type or '?'}): {e}"
            )
            return True

        if isinstance(event, IdentifyEvent):
            await self.identify(conn, event)
        elif isinstance(event, ChatEvent):
            await self.chat(conn, event)
        elif isinstance(event, LeaveEvent):
            await self.leave(conn, event)
        return not conn.is_closed

    # =========================================================================
    # History
    # =========================================================================

    async def _load_history(self) -> List[StoredMessage]:
        """Bootstrap the log if empty and return the recent window, ascending."""
        try:
            await self.store.bootstrap_if_empty_async(self.welcome_sender, self.welcome_message)
            recent = await self.store.fetch_recent_async(self.window_size)
        except PersistenceError as e:
            logger.warning(f"[Relay] History unavailable, sending empty replay: {e}")
            return []
        return to_ascending(recent)

    # =========================================================================
    # Fan-out
    # =========================================================================

    def snapshot(self) -> List[str]:
        return self.registry.snapshot()

    def get_connection_count(self) -> int:
        return len(self.connections)

    async def broadcast_presence(self) -> None:
        await self.broadcast(active_users_payload(self.registry.snapshot()))

    async def broadcast(self, payload: dict, message_id: Optional[int] = None) -> None:
        """Broadcast a payload to all connections concurrently.

        Connections whose send fails are removed from the fan-out set. Their
        presence entry stays until the transport reports the disconnect.

        Args:
            payload: JSON-serializable message to broadcast.
            message_id: Stored message id, for chat broadcasts.
        """
        connections = list(self.connections.values())
        if not connections:
            return

        results = await asyncio.gather(
            *[conn.deliver(payload, message_id) for conn in connections],
            return_exceptions=True
        )

        failed_connections = [
            conn for conn, success in zip(connections, results)
            if success is not True
        ]
        self._cleanup_connections(failed_connections)

    def _cleanup_connections(self, failed_connections: List[RelayConnection]) -> None:
        for conn in failed_connections:
            if self.connections.pop(conn.connection_id, None) is not None:
                logger.debug(f"Removed dead connection {conn.connection_id}")
