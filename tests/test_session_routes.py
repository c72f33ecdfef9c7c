"""
Tests for the HTTP and WebSocket surface.
"""

import pytest
from starlette.websockets import WebSocketDisconnect

from services import coordinator


def _profile(player_id, name):
    return {"id": player_id, "name": name, "photoURL": None}


@pytest.fixture
def created(client, auth):
    res = client.post(
        "/sessions/",
        json={"profile": _profile("alice", "Alice"), "difficulty": "easy", "theme_id": "animals", "words": ["CHAT", "CHIEN"]},
        headers=auth("alice"),
    )
    assert res.status_code == 201
    return res.json()

@pytest.fixture
def started(client, auth, created):
    sid = created["id"]
    client.post("/sessions/join", json={"room_code": created["roomCode"], "profile": _profile("bob", "Bob")}, headers=auth("bob"))
    client.post(f"/sessions/{sid}/ready", json={"is_ready": True}, headers=auth("bob"))
    assert client.post(f"/sessions/{sid}/start", headers=auth("alice")).status_code == 204
    return sid


class TestLobbyRoutes:

    def test_create(self, created):
        assert len(created["roomCode"]) == 6
        assert created["hostId"] == "alice"
        assert created["status"] == "waiting"
        assert created["players"][0]["isReady"] is True
        assert created["words"] == ["CHAT", "CHIEN"]
        assert len(created["grid"]["cells"]) == created["grid"]["size"]
        assert isinstance(created["grid"]["cells"][0], list)

    def test_create_requires_token(self, client):
        res = client.post("/sessions/", json={})
        assert res.status_code in (401, 403)

    def test_create_for_someone_else(self, client, auth):
        res = client.post(
            "/sessions/",
            json={"profile": _profile("bob", "Bob"), "theme_id": "animals", "words": ["CHAT"]},
            headers=auth("alice"),
        )
        assert res.status_code == 403

    def test_create_rejects_too_many_players(self, client, auth):
        res = client.post(
            "/sessions/",
            json={"profile": _profile("alice", "Alice"), "theme_id": "animals", "words": ["CHAT"], "max_players": 9},
            headers=auth("alice"),
        )
        assert res.status_code == 422

    def test_join(self, client, auth, created):
        res = client.post(
            "/sessions/join",
            json={"room_code": created["roomCode"].lower(), "profile": _profile("bob", "Bob")},
            headers=auth("bob"),
        )
        assert res.status_code == 200
        assert [p["id"] for p in res.json()["players"]] == ["alice", "bob"]

    def test_join_unknown_code(self, client, auth):
        res = client.post("/sessions/join", json={"room_code": "ZZZZZZ", "profile": _profile("bob", "Bob")}, headers=auth("bob"))

        assert res.status_code == 404
        assert res.json()["error_code"] == "SESSION_NOT_FOUND"

    def test_join_duplicate_identity(self, client, auth, created):
        res = client.post(
            "/sessions/join",
            json={"room_code": created["roomCode"], "profile": _profile("alice-phone", "Alice")},
            headers=auth("alice-phone"),
        )
        assert res.status_code == 409
        assert res.json()["error_code"] == "DUPLICATE_IDENTITY"

    def test_get_session_is_for_members(self, client, auth, created):
        assert client.get(f"/sessions/{created['id']}", headers=auth("alice")).status_code == 200
        assert client.get(f"/sessions/{created['id']}", headers=auth("mallory")).status_code == 403

    def test_start_errors_are_actionable(self, client, auth, created):
        sid = created["id"]
        res = client.post(f"/sessions/{sid}/start", headers=auth("alice"))
        assert res.status_code == 400
        assert res.json()["error_code"] == "INSUFFICIENT_PLAYERS"
        assert res.json()["detail"]

        client.post("/sessions/join", json={"room_code": created["roomCode"], "profile": _profile("bob", "Bob")}, headers=auth("bob"))
        res = client.post(f"/sessions/{sid}/start", headers=auth("bob"))
        assert res.status_code == 403
        assert res.json()["error_code"] == "NOT_HOST"

        res = client.post(f"/sessions/{sid}/start", headers=auth("alice"))
        assert res.json()["error_code"] == "PLAYERS_NOT_READY"

    def test_leave_migrates_host(self, client, auth, store, started):
        assert client.post(f"/sessions/{started}/leave", headers=auth("alice")).status_code == 204
        assert store.get(started)["hostId"] == "bob"


class TestGameRoutes:

    def test_play_to_completion(self, client, auth, store, started):
        res = client.post(f"/sessions/{started}/words", json={"word": "chat"}, headers=auth("alice"))
        assert res.json() == {"accepted": True}

        res = client.post(f"/sessions/{started}/words", json={"word": "CHAT"}, headers=auth("bob"))
        assert res.json() == {"accepted": False}

        res = client.post(f"/sessions/{started}/words", json={"word": "CHIEN"}, headers=auth("bob"))
        assert res.json() == {"accepted": True}

        session = client.get(f"/sessions/{started}", headers=auth("alice")).json()
        assert session["status"] == "completed"
        assert session["completedAt"] is not None
        assert {p["id"]: p["score"] for p in session["players"]} == {"alice": 40, "bob": 50}

    def test_cursor_and_cursors(self, client, auth, started):
        res = client.put(f"/sessions/{started}/cursor", json={"position": {"row": 3, "col": 4}}, headers=auth("bob"))
        assert res.status_code == 202

        cursors = client.get(f"/sessions/{started}/cursors", headers=auth("alice")).json()
        assert len(cursors) == 1
        assert cursors[0]["playerId"] == "bob"
        assert cursors[0]["position"] == {"row": 3, "col": 4}
        assert cursors[0]["color"] == coordinator.PLAYER_COLORS[1]

    def test_cursors_are_for_members(self, client, auth, started):
        client.put(f"/sessions/{started}/cursor", json={"position": {"row": 1, "col": 1}}, headers=auth("bob"))

        res = client.get(f"/sessions/{started}/cursors", headers=auth("mallory"))
        assert res.status_code == 403

    def test_selection(self, client, auth, store, started):
        res = client.put(
            f"/sessions/{started}/selection",
            json={"cells": [{"row": 0, "col": 0, "letter": "C"}]},
            headers=auth("bob"),
        )
        assert res.status_code == 202
        assert store.get(started)["activeSelections"]["bob"]["cells"][0]["letter"] == "C"


class TestStream:

    def test_stream_pushes_session_updates(self, client, auth, created):
        sid = created["id"]
        with client.websocket_connect(f"/sessions/{sid}/stream?token={auth('alice')['Authorization'][7:]}") as ws:
            first = ws.receive_json()
            assert first["type"] == "session"
            assert first["session"]["id"] == sid

            client.post(f"/sessions/{sid}/ready", json={"is_ready": False}, headers=auth("alice"))
            update = ws.receive_json()
            assert update["type"] == "session"
            assert update["session"]["players"][0]["isReady"] is False

    def test_stream_rejects_non_members(self, client, auth, created):
        token = auth("mallory")["Authorization"][7:]
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect(f"/sessions/{created['id']}/stream?token={token}") as ws:
                ws.receive_json()

    def test_stream_rejects_bad_token(self, client, created):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect(f"/sessions/{created['id']}/stream?token=garbage") as ws:
                ws.receive_json()

    def test_leave_command(self, client, auth, store, started):
        token = auth("bob")["Authorization"][7:]
        with client.websocket_connect(f"/sessions/{started}/stream?token={token}") as ws:
            assert ws.receive_json()["type"] == "session"
            ws.send_text("leave")
            with pytest.raises(WebSocketDisconnect):
                ws.receive_json()

        assert [p["id"] for p in store.get(started)["players"]] == ["alice"]
