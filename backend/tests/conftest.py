"""Shared test fixtures and configuration for backend tests."""
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from app.config import AppConfig, AuthSettings, JWTSecrets, Secrets, StorageSettings
from app.main import create_app

TEST_SECRET = "test-secret-key-that-is-long-enough-for-hs256"


@pytest.fixture
def app_config() -> AppConfig:
    """In-memory database, dev tokens on, a fixed JWT secret."""
    return AppConfig(
        auth=AuthSettings(allow_dev_tokens=True),
        storage=StorageSettings(db_path=":memory:"),
        secrets=Secrets(jwt=JWTSecrets(secret_key=TEST_SECRET)),
    )


@pytest.fixture
def api_client(app_config):
    """Provide a TestClient for a freshly built app.

    Entered as a context manager so the lifespan runs and HTTP requests and
    WebSocket sessions share one event loop.
    """
    with TestClient(create_app(app_config)) as client:
        yield client


class FakeTransport:
    """Records frames the way a WebSocket would send them."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.fail = fail

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise ConnectionResetError("peer went away")
        self.sent.append(data)

    @property
    def events(self) -> List[str]:
        return [frame["event"] for frame in self.sent]


def create_user(client: TestClient, username: str, email: Optional[str] = None) -> Dict[str, Any]:
    """Create a user through the API and return its JSON record."""
    response = client.post(
        "/api/v1/users/",
        json={"username": username, "email": email or f"{username}@example.com"},
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


def token_for(client: TestClient, user_id: str) -> str:
    """Issue an access token for a user through the dev token endpoint."""
    response = client.post(f"/api/v1/users/token/{user_id}")
    assert response.status_code == 200, response.text
    # Keep the client jar clean; tests pass tokens explicitly.
    client.cookies.clear()
    return response.json()["data"]["accessToken"]


def auth_headers(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def receive_event(ws, expected: str) -> Any:
    """Receive one frame, assert its event name, return its data."""
    frame = ws.receive_json()
    assert frame["event"] == expected, frame
    return frame["data"]


def sync_point(ws) -> None:
    """Round-trip an unknown event.

    Frames from one connection are handled in order, so once the error for
    the sync event comes back every earlier frame has been processed and any
    fan-out it caused has been queued.
    """
    ws.send_json({"event": "__sync__", "data": None})
    assert receive_event(ws, "socketError") == "Unknown event: __sync__"
