"""
Tests for the HTTP API.

Tests:
- Game listing
- Starting sessions and submitting actions with camelCase payloads
- Session views and error statuses
"""

import pytest
from fastapi.testclient import TestClient

from chatcade.services.engine import GameEngine
from chatcade.services.web_api import create_app


@pytest.fixture
def client(config, rng, clock):
    """API client around an in-memory engine; the lifespan runs startup and shutdown."""
    engine = GameEngine(config=config, rng=rng, clock=clock)
    with TestClient(create_app(engine)) as test_client:
        yield test_client


def start_tictactoe(client):
    return client.post(
        "/api/sessions",
        json={"requesterId": "alice", "requesterName": "Alice", "channelId": "c1", "gameKind": "tictactoe"},
    )


class TestGames:
    """Tests for GET /api/games."""

    def test_lists_every_game(self, client):
        """All nine games are listed with their prefixes."""
        response = client.get("/api/games")

        games = response.json()["games"]
        assert response.status_code == 200
        assert len(games) == 9
        assert {"kind": "blackjack", "prefix": "bj", "title": "Blackjack"} in games


class TestSessions:
    """Tests for starting games and acting on them."""

    def test_start_returns_view(self, client):
        """Starting a game returns its key and first view."""
        response = start_tictactoe(client)

        body = response.json()
        assert response.status_code == 200
        assert body["ok"] is True
        assert body["session_key"] == "alice"
        assert "ttt:move:4" in [choice["id"] for choice in body["view"]["choices"]]

    def test_action_applies_move(self, client):
        """Actions are routed to the running game."""
        start_tictactoe(client)

        response = client.post("/api/actions", json={"actorId": "alice", "actionId": "ttt:move:0", "channelId": "c1"})

        assert response.json()["ok"] is True
        view = client.get("/api/sessions/alice").json()
        assert view["title"] == "Tic-Tac-Toe"

    def test_rejected_action_is_not_an_http_error(self, client):
        """Game-level rejections come back as ok=false."""
        response = client.post("/api/actions", json={"actorId": "alice", "actionId": "ttt:move:0", "channelId": "c1"})

        assert response.status_code == 200
        assert response.json() == {
            "ok": False,
            "session_key": None,
            "view": None,
            "message": "No active game found!",
            "ephemeral": True,
        }

    def test_unknown_session_is_404(self, client):
        """Missing sessions map to 404."""
        response = client.get("/api/sessions/missing")

        assert response.status_code == 404
        assert response.json()["detail"] == "No active game found!"

    @pytest.mark.parametrize(
        "path, payload",
        [
            ("/api/actions", {"actorId": "alice", "channelId": "c1"}),
            ("/api/sessions", {"requesterId": "alice", "channelId": "c1", "gameKind": "poker"}),
        ],
    )
    def test_invalid_payload_is_422(self, client, path, payload):
        """Missing fields and unknown games fail validation."""
        assert client.post(path, json=payload).status_code == 422
