"""Presence registry: who is currently online.

Maps connection IDs to display names. Display names are free text and are
not required to be unique; two connections sharing a name appear once in
the snapshot.
"""
import logging
import threading
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """In-memory mapping from connection ID to display name.

    Mutations are serialized by a lock, so the registry stays consistent
    even if it is touched from worker threads as well as the event loop.
    """

    def __init__(self) -> None:
        self._names: Dict[str, str] = {}
        self._lock = threading.Lock()

    def register(self, connection_id: str, display_name: str) -> None:
        """Insert or overwrite the display name for a connection."""
        with self._lock:
            self._names[connection_id] = display_name
        logger.debug("[Presence] %s registered as %r", connection_id, display_name)

    def remove(self, connection_id: str) -> bool:
        """Remove a connection's entry.

        Returns:
            True if an entry was removed, False if the connection never
            registered (not an error).
        """
        with self._lock:
            removed = self._names.pop(connection_id, None) is not None
        if removed:
            logger.debug("[Presence] %s removed", connection_id)
        return removed

    def snapshot(self) -> List[str]:
        """Return the distinct display names currently present.

        The list is sorted, but consumers should treat it as a set.
        """
        with self._lock:
            return sorted(set(self._names.values()))

    def display_name(self, connection_id: str) -> Optional[str]:
        with self._lock:
            return self._names.get(connection_id)

    def clear(self) -> None:
        with self._lock:
            self._names.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._names)

    def __contains__(self, connection_id: object) -> bool:
        with self._lock:
            return connection_id in self._names
