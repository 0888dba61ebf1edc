"""
Pydantic schemas for request/response validation.
Defines all data transfer objects (DTOs) for the API.

Wire names are camelCase (channelId, ownerId, ...) to stay compatible with
existing web and desktop clients; Python attributes stay snake_case.
"""
import enum
from typing import Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel


class MessageKind(str, enum.Enum):
    """Allowed message kinds."""
    TEXT = "text"
    IMAGE = "image"
    GIF = "gif"


class ChannelType(str, enum.Enum):
    """Allowed channel types."""
    TEXT = "text"
    VOICE = "voice"
    FORUM = "forum"


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Messages
class CanonicalMessage(CamelModel):
    """
    Durably stored, server-assigned version of a chat message.

    Example:
        ```json
        {
            "id": "42",
            "channelId": "general",
            "authorId": "alice",
            "content": "hello",
            "kind": "text",
            "media": null,
            "ts": 1767225600000
        }
        ```
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(..., description="Store-assigned message ID")
    channel_id: str = Field(..., description="Channel the message belongs to")
    author_id: str = Field(..., description="Author user ID")
    content: str = Field("", description="Message text")
    kind: MessageKind = Field(MessageKind.TEXT, description="text, image or gif")
    media: Optional[Any] = Field(None, description="Structured attachment descriptor")
    ts: int = Field(..., description="Server timestamp, epoch milliseconds")


class MessageCreate(CamelModel):
    """
    Message send request. Fields are loosely typed and stringified downstream,
    so a non-string kind still reaches the ingress bridge and is rejected
    there with the "bad kind" error rather than a 422.
    """
    channel_id: Optional[Any] = Field("general", description="Target channel (POST /messages only)")
    content: Optional[Any] = Field("", description="Message text")
    kind: Optional[Any] = Field("text", description="text, image or gif")
    media: Optional[Any] = Field(None, description="Attachment descriptor")


class MessageCreateResponse(CamelModel):
    ok: bool = True
    item: CanonicalMessage


class MessageListResponse(CamelModel):
    items: List[CanonicalMessage]


# Authentication
class LoginRequest(BaseModel):
    """Development login: any username is accepted and becomes the user ID."""
    username: Optional[str] = Field(None, max_length=64)


class UserOut(BaseModel):
    id: str
    username: str


class LoginResponse(BaseModel):
    token: str
    user: UserOut


# Servers
class ServerCreate(BaseModel):
    name: Optional[str] = None
    icon: Optional[str] = None


class ServerUpdate(BaseModel):
    """Partial update; fields left out keep their current value, explicit null clears icon."""
    name: Optional[str] = None
    icon: Optional[str] = None


class ServerOut(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    name: str
    icon: Optional[str] = None
    owner_id: str
    created_at: int


class ServerResponse(CamelModel):
    ok: bool = True
    item: ServerOut


class ServerListResponse(CamelModel):
    items: List[ServerOut]


# Channels
class ChannelCreate(CamelModel):
    name: Optional[str] = None
    type: Optional[str] = "text"
    icon: Optional[str] = None
    nsfw: bool = False
    is_private: bool = False


class ChannelUpdate(CamelModel):
    """Partial update; only fields present in the request body are applied."""
    name: Optional[str] = None
    icon: Optional[str] = None
    nsfw: Optional[bool] = None
    is_private: Optional[bool] = None
    type: Optional[str] = None
    position: Optional[int] = None
    linked_text_channel_id: Optional[str] = None
    room: Optional[str] = None


class ChannelOut(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    server_id: str
    name: str
    type: str
    position: int
    icon: Optional[str] = None
    nsfw: bool = False
    is_private: bool = False
    linked_text_channel_id: Optional[str] = None
    room: Optional[str] = None
    created_at: int


class ChannelResponse(CamelModel):
    ok: bool = True
    item: ChannelOut


class ChannelListResponse(CamelModel):
    items: List[ChannelOut]


# Invites
class InviteCreate(CamelModel):
    channel_id: Optional[str] = None
    expires_at: Optional[int] = Field(None, description="Epoch milliseconds")
    max_uses: Optional[int] = Field(None, ge=1)


class InviteOut(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    code: str
    server_id: str
    channel_id: Optional[str] = None
    created_by: str
    created_at: int
    expires_at: Optional[int] = None
    max_uses: Optional[int] = None
    uses: int = 0


class InviteResponse(CamelModel):
    ok: bool = True
    item: InviteOut


class InvitePreview(CamelModel):
    code: str
    server_id: str
    channel_id: Optional[str] = None
    expires_at: Optional[int] = None
    max_uses: Optional[int] = None
    uses: int = 0
    server_name: str
    server_icon: Optional[str] = None


class InvitePreviewResponse(CamelModel):
    item: InvitePreview


# Media
class UploadResponse(BaseModel):
    ok: bool = True
    filename: str
    url: str
    rel: str
    mime: Optional[str] = None
    size: int


class GifItem(CamelModel):
    id: str
    url: str
    preview_url: Optional[str] = None
    dims: Optional[List[int]] = None


class GifSearchResponse(CamelModel):
    items: List[GifItem]


# Voice
class VoiceJoinRequest(BaseModel):
    room: Optional[str] = None


class VoiceJoinResponse(BaseModel):
    url: str
    token: str
    room: str
