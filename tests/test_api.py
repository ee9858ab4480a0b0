"""HTTP and WebSocket integration tests against the FastAPI app."""
import pytest
from fastapi.testclient import TestClient

import routers.rooms
from app import app, event_router
from backend import room_store
from resolver import ResolutionError, SourceUnavailableError


def reset_rooms():
    for room in room_store.rooms():
        event_router.forget(room.code)
    room_store.clear()


@pytest.fixture()
def client():
    reset_rooms()
    with TestClient(app) as test_client:
        yield test_client
    reset_rooms()


class FakeStreamResolver:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def resolve_async(self, source_id):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def send(ws, event, **data):
    ws.send_json({"event": event, "data": data})


# ---------------------------------------------------------------------------
# REST
# ---------------------------------------------------------------------------


def test_index(client):
    resp = client.get("/")
    assert resp.status_code == 200
    assert resp.json() == {"message": "Jam server is online"}


def test_create_room_and_get_summary(client):
    resp = client.post("/api/rooms", json={"roomCode": "ABC"})
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "roomCode": "ABC"}

    resp = client.get("/api/rooms/ABC")
    assert resp.status_code == 200
    assert resp.json() == {"exists": True, "memberCount": 0, "isPlaying": False}


def test_create_room_twice_returns_same_room(client):
    client.post("/api/rooms", json={"roomCode": "ABC"})
    room = room_store.get("ABC")
    client.post("/api/rooms", json={"roomCode": "ABC"})
    assert room_store.get("ABC") is room


def test_create_room_requires_code(client):
    resp = client.post("/api/rooms", json={})
    assert resp.status_code == 422


def test_missing_room_summary(client):
    resp = client.get("/api/rooms/NOPE")
    assert resp.status_code == 404
    assert resp.json() == {"exists": False}


def test_stream_redirects_to_resolved_url(client, monkeypatch):
    fake = FakeStreamResolver(["https://cdn.example/audio.m4a"])
    monkeypatch.setattr(routers.rooms, "audio_resolver", fake)

    resp = client.get("/stream/abc123", follow_redirects=False)

    assert resp.status_code == 307
    assert resp.headers["location"] == "https://cdn.example/audio.m4a"


def test_stream_unavailable_source_is_not_retried(client, monkeypatch):
    fake = FakeStreamResolver([SourceUnavailableError("Private video")])
    monkeypatch.setattr(routers.rooms, "audio_resolver", fake)

    resp = client.get("/stream/abc123", follow_redirects=False)

    assert resp.status_code == 404
    assert fake.calls == 1


def test_stream_retries_transient_failure_once(client, monkeypatch):
    fake = FakeStreamResolver([ResolutionError("timeout"), "https://cdn.example/a.m4a"])
    monkeypatch.setattr(routers.rooms, "audio_resolver", fake)

    resp = client.get("/stream/abc123", follow_redirects=False)

    assert resp.status_code == 307
    assert fake.calls == 2


def test_stream_gives_up_after_second_transient_failure(client, monkeypatch):
    fake = FakeStreamResolver([ResolutionError("timeout"), ResolutionError("timeout")])
    monkeypatch.setattr(routers.rooms, "audio_resolver", fake)

    resp = client.get("/stream/abc123", follow_redirects=False)

    assert resp.status_code == 502


# ---------------------------------------------------------------------------
# WebSocket protocol
# ---------------------------------------------------------------------------


def test_join_and_request_song_over_websocket(client):
    with client.websocket_connect("/ws") as ws:
        send(ws, "join_room", roomCode="ABC", username="Alice")

        users = ws.receive_json()
        assert users["event"] == "update_users"
        assert [u["displayName"] for u in users["data"]] == ["Alice"]

        sync = ws.receive_json()
        assert sync["event"] == "sync_state"
        assert sync["data"]["roomCode"] == "ABC"
        assert sync["data"]["queue"] == []

        send(ws, "request_song", roomCode="ABC", sourceId="abc123", title="Song X", thumbnail="t.jpg")
        play = ws.receive_json()
        assert play["event"] == "play_song"
        assert play["data"]["sourceRef"] == "abc123"
        assert play["data"]["title"] == "Song X"
        assert ws.receive_json() == {"event": "queue_updated", "data": []}

        summary = client.get("/api/rooms/ABC").json()
        assert summary == {"exists": True, "memberCount": 1, "isPlaying": True}


def test_second_member_gets_snapshot_and_first_sees_membership(client):
    with client.websocket_connect("/ws") as first:
        send(first, "join_room", roomCode="ABC", username="Alice")
        first.receive_json()
        first.receive_json()
        send(first, "request_song", roomCode="ABC", sourceId="abc123", title="Song X")
        first.receive_json()
        first.receive_json()

        with client.websocket_connect("/ws") as second:
            send(second, "join_room", roomCode="ABC", username="Bob")

            update = first.receive_json()
            assert update["event"] == "update_users"
            assert [u["displayName"] for u in update["data"]] == ["Alice", "Bob"]

            assert second.receive_json()["event"] == "update_users"
            sync = second.receive_json()
            assert sync["event"] == "sync_state"
            assert sync["data"]["currentPlayback"]["sourceRef"] == "abc123"
            assert sync["data"]["isPlaying"] is True
            assert sync["data"]["elapsedSeconds"] >= 0

        left = first.receive_json()
        assert left["event"] == "update_users"
        assert [u["displayName"] for u in left["data"]] == ["Alice"]


def test_invalid_frames_keep_connection_open(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_text("not json")
        send(ws, "seek_track", roomCode="ABC", timestampSeconds=-1)
        send(ws, "join_room", roomCode="ABC")
        assert ws.receive_json()["event"] == "update_users"
        assert ws.receive_json()["event"] == "sync_state"
