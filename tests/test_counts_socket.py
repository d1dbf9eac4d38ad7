import pytest
from starlette.websockets import WebSocketDisconnect


def counts(post_id, like_count, comment_count=0, state="idle"):
    return {
        "type": "counts",
        "post_id": post_id,
        "like_count": like_count,
        "comment_count": comment_count,
        "state": state,
    }


def test_ping(client):
    with client.websocket_connect("/counts/ws?token=t") as ws:
        ws.send_text("ping")
        assert ws.receive_text() == "pong"


def test_watch_sends_current_counts(client, store, backend):
    store.insert_like_row("p1", "bob")

    with client.websocket_connect("/counts/ws?token=t") as ws:
        ws.send_json({"action": "watch", "post_id": "p1"})
        assert ws.receive_json() == counts("p1", 1)
        assert backend.active_watches("p1") == 1

        ws.send_json({"action": "unwatch", "post_id": "p1"})
        ws.send_text("ping")
        assert ws.receive_text() == "pong"
        assert backend.active_watches("p1") == 0


def test_like_is_optimistic_then_confirmed(client, store):
    with client.websocket_connect("/counts/ws?token=t") as ws:
        ws.send_json({"action": "watch", "post_id": "p1"})
        assert ws.receive_json() == counts("p1", 0)

        ws.send_json({"action": "like", "post_id": "p1"})
        assert ws.receive_json() == counts("p1", 1, state="optimistic")
        assert ws.receive_json() == counts("p1", 1)

    assert store.user_has_liked_post("p1", "alice")
    assert store.get_notifications("bob")[0]["notification_type"] == "like"


def test_failed_like_is_reverted(client, store):
    store.fail_likes = True

    with client.websocket_connect("/counts/ws?token=t") as ws:
        ws.send_json({"action": "watch", "post_id": "p1"})
        assert ws.receive_json() == counts("p1", 0)

        ws.send_json({"action": "like", "post_id": "p1"})
        assert ws.receive_json() == counts("p1", 1, state="optimistic")
        assert ws.receive_json() == counts("p1", 0)
        error = ws.receive_json()

    assert error["type"] == "error"
    assert error["post_id"] == "p1"
    assert error["error_type"] == "network"
    assert not store.user_has_liked_post("p1", "alice")


def test_watch_without_live_updates(client, backend):
    backend.fail_watch = ConnectionError("realtime unavailable")

    with client.websocket_connect("/counts/ws?token=t") as ws:
        ws.send_json({"action": "watch", "post_id": "p1"})
        assert ws.receive_json()["type"] == "error"
        assert ws.receive_json() == counts("p1", 0)


def test_like_without_live_updates_still_reports_counts(client, store, backend):
    backend.fail_watch = ConnectionError("realtime unavailable")

    with client.websocket_connect("/counts/ws?token=t") as ws:
        ws.send_json({"action": "watch", "post_id": "p1"})
        assert ws.receive_json()["type"] == "error"
        assert ws.receive_json() == counts("p1", 0)

        ws.send_json({"action": "like", "post_id": "p1"})
        assert ws.receive_json() == counts("p1", 1)

        ws.send_text("ping")
        assert ws.receive_text() == "pong"

    assert store.count_likes("p1") == 1
    assert backend.watches_opened == 0


def test_failed_like_without_watch_is_reported(client, store):
    store.fail_likes = True

    with client.websocket_connect("/counts/ws?token=t") as ws:
        ws.send_json({"action": "like", "post_id": "p1"})
        assert ws.receive_json() == counts("p1", 0)
        error = ws.receive_json()

    assert error["type"] == "error"
    assert error["error_type"] == "network"


def test_binary_frame_closes_session_with_internal_error(client, backend):
    with client.websocket_connect("/counts/ws?token=t") as ws:
        ws.send_json({"action": "watch", "post_id": "p1"})
        ws.receive_json()

        ws.send_bytes(b"\x00\x01")
        with pytest.raises(WebSocketDisconnect) as excinfo:
            ws.receive_text()

    assert excinfo.value.code == 1011
    assert backend.active_watches("p1") == 0


def test_invalid_message(client):
    with client.websocket_connect("/counts/ws?token=t") as ws:
        ws.send_json({"action": "explode", "post_id": "p1"})
        error = ws.receive_json()

    assert error["type"] == "error"
    assert error["error_type"] == "validation"


def test_disconnect_closes_watches(client, backend):
    with client.websocket_connect("/counts/ws?token=t") as ws:
        ws.send_json({"action": "watch", "post_id": "p1"})
        ws.receive_json()

    assert backend.active_watches("p1") == 0
