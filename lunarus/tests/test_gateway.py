"""
End-to-end tests for the WebSocket gateway through the ASGI app.
"""
import pytest
from fastapi import WebSocketDisconnect, status

from lunarus.gateway.handler import GatewayProtocolHandler


def login(client, username: str) -> str:
    response = client.post("/auth/login", json={"username": username})
    assert response.status_code == 200
    return response.json()["token"]


def post_message(client, token: str, channel_id: str, content: str):
    return client.post(
        f"/channels/{channel_id}/messages",
        json={"content": content, "kind": "text"},
        headers={"Authorization": f"Bearer {token}"}
    )


def assert_rejected(client, url: str) -> None:
    """The socket is accepted, then closed with 1008 before any frame."""
    with client.websocket_connect(url) as ws:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_json()
    assert exc_info.value.code == status.WS_1008_POLICY_VIOLATION


class TestHandshake:
    """Tests for gateway authentication."""

    def test_ready_is_first_frame(self, test_client, app):
        token = login(test_client, "alice")

        with test_client.websocket_connect(f"/gateway?token={token}") as ws:
            assert ws.receive_json() == {"t": "READY", "d": {"user": {"id": "alice", "username": "alice"}}}
            assert len(app.state.registry) == 1

    def test_missing_token_is_rejected(self, test_client, app):
        assert_rejected(test_client, "/gateway")
        assert len(app.state.registry) == 0

    def test_forged_token_is_rejected(self, test_client, app):
        assert_rejected(test_client, "/gateway?token=not-a-jwt")
        assert len(app.state.registry) == 0

    def test_rejection_leaves_existing_connections_alone(self, test_client, app):
        token = login(test_client, "alice")

        with test_client.websocket_connect(f"/gateway?token={token}") as ws:
            ws.receive_json()
            assert_rejected(test_client, "/gateway?token=bad")
            assert len(app.state.registry) == 1

    def test_disconnect_unregisters(self, test_client, app):
        token = login(test_client, "alice")

        with test_client.websocket_connect(f"/gateway?token={token}") as ws:
            ws.receive_json()

        assert len(app.state.registry) == 0


class TestControlFrames:
    """Tests for SUBSCRIBE and TYPING."""

    def test_subscribe_acknowledges_new_channel(self, test_client):
        token = login(test_client, "alice")

        with test_client.websocket_connect(f"/gateway?token={token}") as ws:
            ws.receive_json()
            ws.send_json({"op": "SUBSCRIBE", "d": {"channelId": "random"}})
            assert ws.receive_json() == {"t": "SUBSCRIBED", "d": {"channelId": "random"}}

    def test_subscribe_without_channel_keeps_current(self, test_client):
        token = login(test_client, "alice")

        with test_client.websocket_connect(f"/gateway?token={token}&channelId=random") as ws:
            ws.receive_json()
            ws.send_json({"op": "SUBSCRIBE"})
            assert ws.receive_json() == {"t": "SUBSCRIBED", "d": {"channelId": "random"}}

    def test_malformed_frames_are_ignored(self, test_client):
        token = login(test_client, "alice")

        with test_client.websocket_connect(f"/gateway?token={token}") as ws:
            ws.receive_json()
            ws.send_text("not json")
            ws.send_json(["SUBSCRIBE"])
            ws.send_json({"op": "DANCE", "d": {}})
            ws.send_json({"op": "SUBSCRIBE", "d": {"channelId": 5}})
            ws.send_json({"op": "SUBSCRIBE", "d": {"channelId": "random"}})
            # The numeric channel id is coerced to "5"; everything before it was dropped
            assert ws.receive_json() == {"t": "SUBSCRIBED", "d": {"channelId": "5"}}
            assert ws.receive_json() == {"t": "SUBSCRIBED", "d": {"channelId": "random"}}

    def test_typing_reaches_others_but_not_sender(self, test_client):
        alice_token = login(test_client, "alice")
        bob_token = login(test_client, "bob")

        with test_client.websocket_connect(f"/gateway?token={alice_token}") as alice, \
                test_client.websocket_connect(f"/gateway?token={bob_token}") as bob:
            alice.receive_json()
            bob.receive_json()

            alice.send_json({"op": "TYPING", "d": {"channelId": "general"}})
            assert bob.receive_json() == {"t": "TYPING_START", "d": {"channelId": "general", "userId": "alice"}}

            # The next frame alice sees is her own SUBSCRIBED, not a TYPING_START echo
            alice.send_json({"op": "SUBSCRIBE", "d": {"channelId": "general"}})
            assert alice.receive_json()["t"] == "SUBSCRIBED"


class TestMessageDelivery:
    """Tests for MESSAGE_CREATE fanout from REST sends."""

    def test_message_reaches_channel_subscribers(self, test_client):
        alice_token = login(test_client, "alice")
        bob_token = login(test_client, "bob")

        with test_client.websocket_connect(f"/gateway?token={bob_token}&channelId=general") as bob:
            bob.receive_json()

            response = post_message(test_client, alice_token, "general", "hello")
            assert response.status_code == 200
            item = response.json()["item"]

            event = bob.receive_json()
            assert event["t"] == "MESSAGE_CREATE"
            assert event["d"] == item
            assert event["d"]["authorId"] == "alice"

    def test_message_not_delivered_to_other_channels(self, test_client):
        alice_token = login(test_client, "alice")
        bob_token = login(test_client, "bob")

        with test_client.websocket_connect(f"/gateway?token={bob_token}&channelId=random") as bob:
            bob.receive_json()

            post_message(test_client, alice_token, "general", "for general")
            post_message(test_client, alice_token, "random", "for random")

            event = bob.receive_json()
            assert event["d"]["content"] == "for random"

    def test_every_connection_of_a_user_receives(self, test_client):
        token = login(test_client, "alice")

        with test_client.websocket_connect(f"/gateway?token={token}") as tab1, \
                test_client.websocket_connect(f"/gateway?token={token}") as tab2:
            tab1.receive_json()
            tab2.receive_json()

            post_message(test_client, token, "general", "both tabs")

            assert tab1.receive_json()["d"]["content"] == "both tabs"
            assert tab2.receive_json()["d"]["content"] == "both tabs"

    def test_subscribe_moves_delivery(self, test_client):
        token = login(test_client, "alice")

        with test_client.websocket_connect(f"/gateway?token={token}") as ws:
            ws.receive_json()
            ws.send_json({"op": "SUBSCRIBE", "d": {"channelId": "random"}})
            ws.receive_json()

            post_message(test_client, token, "general", "old channel")
            post_message(test_client, token, "random", "new channel")

            assert ws.receive_json()["d"]["content"] == "new channel"

    def test_bad_kind_is_not_broadcast(self, test_client):
        token = login(test_client, "alice")

        with test_client.websocket_connect(f"/gateway?token={token}") as ws:
            ws.receive_json()

            response = test_client.post(
                "/channels/general/messages",
                json={"content": "x", "kind": "video"},
                headers={"Authorization": f"Bearer {token}"}
            )
            assert response.status_code == 400
            assert response.json() == {"detail": "bad kind"}

            post_message(test_client, token, "general", "valid")
            assert ws.receive_json()["d"]["content"] == "valid"


class TestHandlerDefaults:
    """Tests for handler construction."""

    def test_handler_uses_configured_default_channel(self, app):
        handler = app.state.gateway
        assert isinstance(handler, GatewayProtocolHandler)
        assert handler.default_channel_id == "general"
