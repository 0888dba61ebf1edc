"""
Gateway wire protocol.

Outbound frames are {"t": <event type>, "d": <payload>}; inbound frames are
{"op": <operation>, "d": <payload>}. Both are closed tagged unions: adding a
new event or operation means adding a model here.
"""
from typing import Annotated, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from lunarus.api.schemas import CanonicalMessage, UserOut


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        coerce_numbers_to_str=True,
    )


# Outbound events (server -> client)
class ReadyPayload(_WireModel):
    user: UserOut


class ChannelPayload(_WireModel):
    channel_id: str


class TypingPayload(_WireModel):
    channel_id: str
    user_id: str


class _Event(_WireModel):
    def to_frame(self) -> str:
        """Serialize to the JSON text frame sent over the socket."""
        return self.model_dump_json(by_alias=True)


class ReadyEvent(_Event):
    """Sent once after the handshake, carrying the resolved principal."""
    t: Literal["READY"] = "READY"
    d: ReadyPayload


class SubscribedEvent(_Event):
    """Acknowledges a SUBSCRIBE, echoing the connection's new channel."""
    t: Literal["SUBSCRIBED"] = "SUBSCRIBED"
    d: ChannelPayload


class TypingStartEvent(_Event):
    t: Literal["TYPING_START"] = "TYPING_START"
    d: TypingPayload


class MessageCreateEvent(_Event):
    """A message was durably stored; d is the canonical message itself."""
    t: Literal["MESSAGE_CREATE"] = "MESSAGE_CREATE"
    d: CanonicalMessage


GatewayEvent = Annotated[
    Union[ReadyEvent, SubscribedEvent, TypingStartEvent, MessageCreateEvent],
    Field(discriminator="t"),
]


def ready(user_id: str, username: str) -> ReadyEvent:
    return ReadyEvent(d=ReadyPayload(user=UserOut(id=user_id, username=username)))


def subscribed(channel_id: str) -> SubscribedEvent:
    return SubscribedEvent(d=ChannelPayload(channel_id=channel_id))


def typing_start(channel_id: str, user_id: str) -> TypingStartEvent:
    return TypingStartEvent(d=TypingPayload(channel_id=channel_id, user_id=user_id))


def message_create(message: CanonicalMessage) -> MessageCreateEvent:
    return MessageCreateEvent(d=message)


# Inbound control frames (client -> server)
class ChannelRef(_WireModel):
    channel_id: Optional[str] = None


class SubscribeFrame(_WireModel):
    op: Literal["SUBSCRIBE"]
    d: Optional[ChannelRef] = None


class TypingFrame(_WireModel):
    op: Literal["TYPING"]
    d: Optional[ChannelRef] = None


InboundFrame = Annotated[Union[SubscribeFrame, TypingFrame], Field(discriminator="op")]

_inbound_adapter: TypeAdapter = TypeAdapter(InboundFrame)


def parse_frame(raw: Union[str, bytes]) -> Optional[Union[SubscribeFrame, TypingFrame]]:
    """
    Parse an inbound text frame.

    Returns None for anything that is not a recognized, well-formed control
    frame: invalid JSON, non-object payloads, unknown ops, bad field types.
    """
    try:
        return _inbound_adapter.validate_json(raw)
    except ValidationError:
        return None


def requested_channel(frame: Union[SubscribeFrame, TypingFrame]) -> Optional[str]:
    """Channel named by a frame, or None when the client left it out."""
    if frame.d is None:
        return None
    return frame.d.channel_id
