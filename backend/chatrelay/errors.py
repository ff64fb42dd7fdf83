"""Error types shared by the relay and the history store.

Neither error is ever sent to a client. Both are handled locally by the
relay and surfaced only in server-side logs.
"""
from typing import Optional


class RelayError(Exception):
    """Base class for all chat relay errors."""


class PersistenceError(RelayError):
    """The history store is unreachable, rejected a read/write, or timed out."""


class MalformedEventError(RelayError):
    """An inbound event is missing a required field or is otherwise invalid.

    Attributes:
        event_type: The ``type`` field of the offending event, if any.
    """

    def __init__(self, message: str, event_type: Optional[str] = None) -> None:
        super().__init__(message)
        self.event_type = event_type
