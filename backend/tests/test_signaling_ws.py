"""End-to-end tests for the signaling WebSocket with multiple clients.

Every connection to /ws/rooms/{room_id} listens to that room's topic, so a
client sees room broadcasts even before it sends JOIN_ROOM.
"""
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from relay.config import AppSettings, SignalingSettings
from relay.main import create_app

SDP_OFFER = {"type": "offer", "sdp": "v=0\r\no=- 46117314 2 IN IP4 127.0.0.1\r\n"}
SDP_ANSWER = {"type": "answer", "sdp": "v=0\r\no=- 98765432 2 IN IP4 127.0.0.1\r\n"}


@pytest.fixture
def client(app):
    """Client whose WebSocket sessions all share one event loop."""
    with TestClient(app) as test_client:
        yield test_client


def join_frame(room_id: str, user_id: str, name: str) -> dict:
    return {"type": "JOIN_ROOM", "roomId": room_id, "userId": user_id, "userName": name}


def receive_frames(ws, count: int) -> list:
    """Receive ``count`` frames and return them."""
    return [ws.receive_json() for _ in range(count)]


def find_session(app, user_id: str):
    for session in app.state.broker.sessions.values():
        if session.principal == user_id:
            return session
    raise AssertionError(f"No session for {user_id}")


def test_demo_scenario(app, client):
    """A joins, B joins, A drops: every step is visible to the right clients.

    A's drop is driven at broker/listener level on the client's event loop
    to avoid flaky context-manager disconnect timing.
    """
    room = "demo"
    with client.websocket_connect(f"/ws/rooms/{room}") as ws_a, \
         client.websocket_connect(f"/ws/rooms/{room}") as ws_b:

        ws_a.send_json(join_frame(room, "A", "Alice"))
        roster, joined = receive_frames(ws_a, 2)
        assert roster["type"] == "ROOM_USERS"
        assert roster["userIds"] == ["A"]
        assert roster["userId"] is None
        assert joined["type"] == "USER_JOINED"
        assert joined["userId"] == "A"
        assert joined["userName"] == "Alice"
        # B is subscribed to the topic already
        assert receive_frames(ws_b, 2) == [roster, joined]

        ws_b.send_json(join_frame(room, "B", "Bob"))
        for ws in (ws_a, ws_b):
            roster, joined = receive_frames(ws, 2)
            assert roster["type"] == "ROOM_USERS"
            assert roster["userIds"] == ["A", "B"]
            assert joined["type"] == "USER_JOINED"
            assert joined["userId"] == "B"
            assert joined["userName"] == "Bob"

        session_a = find_session(app, "A")
        app.state.broker.disconnect(session_a)
        client.portal.call(app.state.session_listener.on_disconnect, session_a)

        left, roster = receive_frames(ws_b, 2)
        assert left["type"] == "USER_LEFT"
        assert left["userId"] == "A"
        assert roster["type"] == "ROOM_USERS"
        assert roster["userIds"] == ["B"]
        assert not app.state.registry.is_member(room, "A")
        assert app.state.registry.display_name("A") is None


def test_offer_and_answer_are_point_to_point(app, client):
    room = "p2p"
    with client.websocket_connect(f"/ws/rooms/{room}") as ws_a, \
         client.websocket_connect(f"/ws/rooms/{room}") as ws_b, \
         client.websocket_connect(f"/ws/rooms/{room}") as ws_c:

        for ws, user, name in ((ws_a, "A", "Alice"), (ws_b, "B", "Bob"), (ws_c, "C", "Carol")):
            ws.send_json(join_frame(room, user, name))
            for listener_ws in (ws_a, ws_b, ws_c):
                receive_frames(listener_ws, 2)

        offer = {
            "type": "OFFER", "roomId": room, "userId": "A",
            "targetUserId": "B", "offer": SDP_OFFER, "timestamp": 1700000000000,
        }
        ws_a.send_json(offer)
        received = ws_b.receive_json()
        assert received["type"] == "OFFER"
        assert received["offer"] == SDP_OFFER
        assert received["userId"] == "A"
        assert received["targetUserId"] == "B"
        assert received["timestamp"] == 1700000000000

        answer = {
            "type": "ANSWER", "roomId": room, "userId": "B",
            "targetUserId": "A", "answer": SDP_ANSWER,
        }
        ws_b.send_json(answer)
        received = ws_a.receive_json()
        assert received["type"] == "ANSWER"
        assert received["answer"] == SDP_ANSWER

        # C's next frame answers its own request, not the offer or answer
        ws_c.send_json({
            "type": "ICE_CANDIDATE", "roomId": room, "userId": "C",
            "targetUserId": "nobody", "candidate": {"candidate": "x"},
        })
        reply = ws_c.receive_json()
        assert reply["type"] == "ERROR"
        assert reply["errorCode"] == "USER_NOT_IN_ROOM"


def test_target_not_in_room_errors_only_to_sender(client):
    room = "missing-target"
    with client.websocket_connect(f"/ws/rooms/{room}") as ws_a, \
         client.websocket_connect(f"/ws/rooms/{room}") as ws_b:

        ws_a.send_json(join_frame(room, "A", "Alice"))
        receive_frames(ws_a, 2)
        receive_frames(ws_b, 2)
        ws_b.send_json(join_frame(room, "B", "Bob"))
        receive_frames(ws_a, 2)
        receive_frames(ws_b, 2)

        ws_a.send_json({
            "type": "OFFER", "roomId": room, "userId": "A",
            "targetUserId": "ghost", "offer": SDP_OFFER,
        })
        error = ws_a.receive_json()
        assert error["type"] == "ERROR"
        assert error["errorCode"] == "USER_NOT_IN_ROOM"
        assert error["userId"] == "A"

        # B only sees what follows A's explicit leave
        ws_a.send_json({"type": "LEAVE_ROOM", "roomId": room, "userId": "A"})
        left, roster = receive_frames(ws_b, 2)
        assert left["type"] == "USER_LEFT"
        assert roster["userIds"] == ["B"]


def test_error_reaches_sender_before_join(client):
    with client.websocket_connect("/ws/rooms/early") as ws:
        ws.send_json({
            "type": "OFFER", "roomId": "early", "userId": "A",
            "targetUserId": "B", "offer": SDP_OFFER,
        })
        error = ws.receive_json()
        assert error["errorCode"] == "USER_NOT_IN_ROOM"


def test_malformed_offer_reports_offer_error(client):
    with client.websocket_connect("/ws/rooms/malformed") as ws:
        ws.send_json({"type": "OFFER", "roomId": "malformed", "userId": "A"})
        error = ws.receive_json()
        assert error["type"] == "ERROR"
        assert error["errorCode"] == "OFFER_ERROR"
        assert error["errorMessage"] == "Failed to handle offer"


def test_unknown_type_reports_invalid_message(client):
    with client.websocket_connect("/ws/rooms/unknown") as ws:
        ws.send_json({"type": "SUBSCRIBE", "roomId": "unknown", "userId": "A"})
        error = ws.receive_json()
        assert error["type"] == "ERROR"
        assert error["errorCode"] == "INVALID_MESSAGE"
        assert error["roomId"] == "unknown"

        # Connection stays usable
        ws.send_json(join_frame("unknown", "A", "Alice"))
        assert ws.receive_json()["type"] == "ROOM_USERS"


def test_non_json_frame_reports_invalid_message(client):
    with client.websocket_connect("/ws/rooms/garbage") as ws:
        ws.send_text("not json at all")
        error = ws.receive_json()
        assert error["errorCode"] == "INVALID_MESSAGE"
        assert error["roomId"] == "garbage"


def test_join_room_other_than_url_room(app, client):
    """Joining a room other than the URL room still delivers its broadcasts."""
    with client.websocket_connect("/ws/rooms/demo") as ws_b, \
         client.websocket_connect("/ws/rooms/lobby") as ws_a:

        ws_a.send_json(join_frame("demo", "A", "Alice"))
        roster, joined = receive_frames(ws_a, 2)
        assert roster["type"] == "ROOM_USERS"
        assert roster["roomId"] == "demo"
        assert roster["userIds"] == ["A"]
        assert joined["type"] == "USER_JOINED"
        assert joined["userId"] == "A"
        assert receive_frames(ws_b, 2) == [roster, joined]

        ws_b.send_json(join_frame("demo", "B", "Bob"))
        for ws in (ws_a, ws_b):
            roster, joined = receive_frames(ws, 2)
            assert roster["userIds"] == ["A", "B"]
            assert joined["userId"] == "B"

        ws_a.send_json({"type": "LEAVE_ROOM", "roomId": "demo", "userId": "A"})
        for ws in (ws_a, ws_b):
            left, roster = receive_frames(ws, 2)
            assert left["type"] == "USER_LEFT"
            assert left["userId"] == "A"
            assert roster["userIds"] == ["B"]

        broker = app.state.broker
        assert broker.connection_count("demo") == 1
        assert broker.connection_count("lobby") == 1


def test_rooms_are_isolated(client):
    with client.websocket_connect("/ws/rooms/room-1") as ws1, \
         client.websocket_connect("/ws/rooms/room-2") as ws2:

        ws1.send_json(join_frame("room-1", "A", "Alice"))
        roster, _ = receive_frames(ws1, 2)
        assert roster["userIds"] == ["A"]

        ws2.send_json(join_frame("room-2", "B", "Bob"))
        roster, joined = receive_frames(ws2, 2)
        assert roster["roomId"] == "room-2"
        assert roster["userIds"] == ["B"]
        assert joined["userId"] == "B"


def test_full_room_rejects_connection():
    app = create_app(AppSettings(signaling=SignalingSettings(max_participants=1)))

    with TestClient(app) as client, client.websocket_connect("/ws/rooms/tiny"):
        with pytest.raises(WebSocketDisconnect) as info:
            with client.websocket_connect("/ws/rooms/tiny"):
                pass
        assert info.value.code == 1008
