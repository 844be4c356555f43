"""Tests for the development server (REST API and STOMP endpoint)."""
import json

import pytest
from fastapi.testclient import TestClient

from roomchat.broker import ChatRoomBroker
from roomchat.dev_server import STOMP_PATH, create_app
from roomchat.transport.frames import StompFrame, decode_frames, encode_frame
from tests.conftest import ROOM, T1


@pytest.fixture
def server_broker():
    return ChatRoomBroker(clock=lambda: T1)


@pytest.fixture
def client(server_broker):
    with TestClient(create_app(server_broker)) as c:
        yield c


def _receive(ws) -> StompFrame:
    frames = decode_frames(ws.receive_text())
    assert len(frames) == 1
    return frames[0]


def _handshake(ws) -> StompFrame:
    ws.send_text(encode_frame(StompFrame(command="CONNECT", headers={"accept-version": "1.1,1.2", "host": "test"})))
    return _receive(ws)


class TestRoomApi:

    def test_create_room(self, client):
        response = client.post("/api/v1/rooms", content=ROOM)
        assert response.status_code == 201
        assert response.json() == {"roomId": ROOM, "messages": []}

    def test_create_duplicate_room(self, client):
        client.post("/api/v1/rooms", content=ROOM)
        response = client.post("/api/v1/rooms", content=ROOM)
        assert response.status_code == 400
        assert response.text == "Room already exists!"

    def test_create_without_id(self, client):
        response = client.post("/api/v1/rooms", content="  ")
        assert response.status_code == 400

    def test_join_room(self, client, server_broker):
        server_broker.create_room(ROOM)
        response = client.get(f"/api/v1/rooms/{ROOM}")
        assert response.status_code == 200
        assert response.json()["roomId"] == ROOM

    def test_join_unknown_room(self, client):
        response = client.get("/api/v1/rooms/nope")
        assert response.status_code == 400
        assert response.text == "Room not found!"

    def test_messages(self, client, server_broker):
        server_broker.create_room(ROOM)
        for i in range(3):
            server_broker.handle_send(
                f"/app/sendMessage/{ROOM}",
                json.dumps({"sender": "Alice", "content": f"m{i}", "roomId": ROOM}),
            )

        response = client.get(f"/api/v1/rooms/{ROOM}/messages", params={"page": 0, "size": 2})
        assert response.status_code == 200
        body = response.json()
        assert [m["content"] for m in body] == ["m1", "m2"]
        assert body[0]["timeStamp"].startswith("2024-05-01T12:00:05")

    def test_messages_unknown_room(self, client):
        assert client.get("/api/v1/rooms/nope/messages").status_code == 400


class TestStompEndpoint:

    def test_handshake(self, client):
        with client.websocket_connect(STOMP_PATH, subprotocols=["v12.stomp"]) as ws:
            assert ws.accepted_subprotocol == "v12.stomp"
            connected = _handshake(ws)
            assert connected.command == "CONNECTED"
            assert connected.header("version") == "1.2"

    def test_message_round_trip(self, client, server_broker):
        server_broker.create_room(ROOM)
        with client.websocket_connect(STOMP_PATH, subprotocols=["v12.stomp"]) as ws:
            _handshake(ws)
            ws.send_text(encode_frame(StompFrame(
                command="SUBSCRIBE", headers={"id": "sub-1", "destination": f"/topic/room/{ROOM}"},
            )))
            ws.send_text(encode_frame(StompFrame(
                command="SEND",
                headers={"destination": f"/app/sendMessage/{ROOM}", "content-type": "application/json"},
                body=json.dumps({"sender": "Alice", "content": "hi", "roomId": ROOM}),
            )))

            message = _receive(ws)
            assert message.command == "MESSAGE"
            assert message.header("subscription") == "sub-1"
            assert message.header("destination") == f"/topic/room/{ROOM}"
            assert json.loads(message.body)["content"] == "hi"

        assert [m.content for m in server_broker.get_room(ROOM).messages] == ["hi"]

    def test_typing_relay(self, client, server_broker):
        server_broker.create_room(ROOM)
        with client.websocket_connect(STOMP_PATH, subprotocols=["v12.stomp"]) as ws:
            _handshake(ws)
            ws.send_text(encode_frame(StompFrame(
                command="SUBSCRIBE", headers={"id": "t", "destination": f"/topic/typing/{ROOM}"},
            )))
            ws.send_text(encode_frame(StompFrame(
                command="SEND", headers={"destination": f"/app/typing/{ROOM}"}, body="Bob",
            )))
            frame = _receive(ws)
            assert frame.body == "Bob"
            assert frame.header("subscription") == "t"

    def test_disconnect_receipt(self, client):
        with client.websocket_connect(STOMP_PATH, subprotocols=["v12.stomp"]) as ws:
            _handshake(ws)
            ws.send_text(encode_frame(StompFrame(command="DISCONNECT", headers={"receipt": "bye"})))
            receipt = _receive(ws)
            assert receipt.command == "RECEIPT"
            assert receipt.header("receipt-id") == "bye"

    def test_malformed_frame_gets_error(self, client):
        with client.websocket_connect(STOMP_PATH, subprotocols=["v12.stomp"]) as ws:
            _handshake(ws)
            ws.send_text("not a frame")
            error = _receive(ws)
            assert error.command == "ERROR"

    def test_subscriptions_released_on_close(self, client, server_broker):
        server_broker.create_room(ROOM)
        with client.websocket_connect(STOMP_PATH, subprotocols=["v12.stomp"]) as ws:
            _handshake(ws)
            ws.send_text(encode_frame(StompFrame(
                command="SUBSCRIBE", headers={"id": "sub-1", "destination": f"/topic/room/{ROOM}"},
            )))
            ws.send_text(encode_frame(StompFrame(command="DISCONNECT", headers={"receipt": "1"})))
            _receive(ws)
        assert server_broker.subscriber_count(f"/topic/room/{ROOM}") == 0
