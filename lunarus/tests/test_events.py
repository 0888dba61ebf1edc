"""
Tests for the gateway wire format.
"""
import json
import pytest
from pydantic import TypeAdapter, ValidationError

from lunarus.api.schemas import CanonicalMessage
from lunarus.gateway import events


class TestOutboundEvents:
    """Tests for server-to-client frames."""

    def test_ready_frame(self):
        assert json.loads(events.ready("u1", "Alice").to_frame()) == {
            "t": "READY",
            "d": {"user": {"id": "u1", "username": "Alice"}},
        }

    def test_typing_frame_uses_camel_case(self):
        assert json.loads(events.typing_start("general", "u1").to_frame()) == {
            "t": "TYPING_START",
            "d": {"channelId": "general", "userId": "u1"},
        }

    def test_message_create_payload_is_the_message(self):
        message = CanonicalMessage(
            id="7", channel_id="general", author_id="u1", content="hi", kind="image",
            media={"url": "/uploads/files/x.png"}, ts=1
        )

        frame = json.loads(events.message_create(message).to_frame())

        assert frame["t"] == "MESSAGE_CREATE"
        assert frame["d"] == message.model_dump(mode="json", by_alias=True)

    def test_outbound_union_parses_by_tag(self):
        adapter = TypeAdapter(events.GatewayEvent)

        parsed = adapter.validate_json(events.subscribed("random").to_frame())

        assert isinstance(parsed, events.SubscribedEvent)
        assert parsed.d.channel_id == "random"

    def test_events_are_immutable(self):
        event = events.subscribed("random")

        with pytest.raises(ValidationError):
            event.t = "READY"


class TestInboundFrames:
    """Tests for client-to-server frame parsing."""

    def test_subscribe(self):
        frame = events.parse_frame('{"op": "SUBSCRIBE", "d": {"channelId": "random"}}')

        assert isinstance(frame, events.SubscribeFrame)
        assert events.requested_channel(frame) == "random"

    def test_typing_without_payload(self):
        frame = events.parse_frame('{"op": "TYPING"}')

        assert isinstance(frame, events.TypingFrame)
        assert events.requested_channel(frame) is None

    def test_bytes_frame(self):
        frame = events.parse_frame(b'{"op": "SUBSCRIBE", "d": {"channelId": "x"}}')

        assert events.requested_channel(frame) == "x"

    @pytest.mark.parametrize("raw", [
        "",
        "not json",
        "[]",
        '"SUBSCRIBE"',
        '{"d": {"channelId": "x"}}',
        '{"op": "DELETE_EVERYTHING"}',
        '{"op": "SUBSCRIBE", "d": "random"}',
        '{"op": "SUBSCRIBE", "d": {"channelId": ["a"]}}',
    ])
    def test_malformed_frames_yield_none(self, raw):
        assert events.parse_frame(raw) is None
