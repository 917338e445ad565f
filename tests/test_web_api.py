"""Tests for the FastAPI surface: HTTP reads and the WebSocket envelope."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from imposter.config.settings import ServerConfig
from imposter.services.hub import SessionHub
from imposter.services.web_api import create_app


@pytest.fixture
def client(hub: SessionHub) -> TestClient:
    return TestClient(create_app(ServerConfig(), hub=hub))


def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["uptime"] >= 0


def test_cards_lists_catalog_names(client: TestClient) -> None:
    response = client.get("/api/cards")

    assert response.status_code == 200
    assert response.json()["names"][:3] == ["Cannon", "Fireball", "Goblin Gang"]


def test_packaged_catalog_served_by_default() -> None:
    client = TestClient(create_app(ServerConfig()))

    names = client.get("/api/cards").json()["names"]

    assert "Knight" in names


def test_stats_reflect_open_sessions(client: TestClient, hub: SessionHub) -> None:
    assert client.get("/api/stats").json() == {"count": 0, "sessions": []}

    session = hub.registry.create("host", "Ana")

    stats = client.get("/api/stats").json()
    assert stats["count"] == 1
    assert stats["sessions"][0]["code"] == session.code
    assert set(stats["sessions"][0]) == {"code", "seatCount", "state", "createdAt"}


def test_session_summary_by_code(client: TestClient, hub: SessionHub) -> None:
    session = hub.registry.create("host", "Ana")

    response = client.get(f"/api/sessions/{session.code.lower()}")

    assert response.status_code == 200
    assert response.json()["seatCount"] == 1
    assert client.get("/api/sessions/ZZZZZZ").status_code == 404


def test_websocket_assigns_identity_when_missing(client: TestClient) -> None:
    with client.websocket_connect("/ws") as websocket:
        hello = websocket.receive_json()

    assert hello["event"] == "connected"
    assert len(hello["data"]["clientId"]) == 32


def test_websocket_lobby_flow(client: TestClient, hub: SessionHub) -> None:
    with client.websocket_connect("/ws?clientId=host") as host:
        assert host.receive_json() == {"event": "connected", "data": {"clientId": "host"}}
        host.send_json({"event": "create-session", "data": {"displayName": "Ana"}})
        created = host.receive_json()
        assert created["event"] == "session-created"
        code = created["data"]["code"]

        with client.websocket_connect("/ws?clientId=guest") as guest:
            guest.receive_json()
            guest.send_json({"event": "join-session", "data": {"code": code, "displayName": "Bo"}})

            assert guest.receive_json()["event"] == "session-joined"
            assert guest.receive_json()["event"] == "seats-updated"
            update = host.receive_json()
            assert update["event"] == "seats-updated"
            assert [seat["name"] for seat in update["data"]["seats"]] == ["Ana", "Bo"]

        left = host.receive_json()
        assert left["event"] == "seat-left"
        assert left["data"]["seatIndex"] == 1

    assert hub.registry.get(code).connected_seats() == []


def test_websocket_rejects_malformed_messages(client: TestClient) -> None:
    with client.websocket_connect("/ws?clientId=x") as websocket:
        websocket.receive_json()

        websocket.send_text("{not json")
        assert websocket.receive_json()["data"]["code"] == "PARSE_ERROR"

        websocket.send_json({"data": {}})
        assert websocket.receive_json()["data"]["code"] == "PARSE_ERROR"

        websocket.send_json({"event": "ping"})
        assert websocket.receive_json() == {"event": "pong", "data": {}}
