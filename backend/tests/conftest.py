"""Shared test fixtures and configuration for backend tests."""
import pytest
from fastapi.testclient import TestClient

from chatrelay.chat.manager import ChatRelay
from chatrelay.chat.presence import PresenceRegistry
from chatrelay.config import AppSettings
from chatrelay.history.service import HistoryStore
from chatrelay.main import create_app


class FakeWebSocket:
    """Minimal stand-in for a FastAPI WebSocket used by relay unit tests."""

    def __init__(self, fail: bool = False) -> None:
        self.sent = []
        self.accepted = False
        self.fail = fail

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data: dict) -> None:
        if self.fail:
            raise RuntimeError("transport closed")
        self.sent.append(data)

    def of_type(self, message_type: str) -> list:
        return [msg for msg in self.sent if msg["type"] == message_type]

    @property
    def types(self) -> list:
        return [msg["type"] for msg in self.sent]


@pytest.fixture
def settings(tmp_path):
    """Settings pointing the history store at a per-test DuckDB file."""
    return AppSettings(history={"db_path": str(tmp_path / "history.duckdb")})


@pytest.fixture
def history_store(tmp_path):
    store = HistoryStore(db_path=str(tmp_path / "store.duckdb"))
    yield store
    store.close()


@pytest.fixture
def relay(history_store):
    return ChatRelay(PresenceRegistry(), history_store)


@pytest.fixture
def api_client(settings):
    """Provide a TestClient with the lifespan running (relay on app.state)."""
    app = create_app(settings)
    with TestClient(app) as client:
        yield client
