"""
API endpoint implementations.
Defines REST endpoints for servers, channels, invites, messages, media and
voice, plus the WebSocket gateway endpoint.
"""
import logging
import re
from typing import Optional
from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile, WebSocket, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
import httpx

from lunarus.api.dependencies import (
    get_current_principal, get_db, get_ingress, get_message_store,
    get_tenor_client, get_upload_storage,
)
from lunarus.api.schemas import (
    ChannelCreate, ChannelListResponse, ChannelOut, ChannelResponse, ChannelType, ChannelUpdate,
    GifSearchResponse, InviteCreate, InviteOut, InvitePreview, InvitePreviewResponse, InviteResponse,
    MessageCreate, MessageCreateResponse, MessageListResponse,
    ServerCreate, ServerListResponse, ServerOut, ServerResponse, ServerUpdate,
    UploadResponse, VoiceJoinRequest, VoiceJoinResponse,
)
from lunarus.core.config import settings
from lunarus.core.security import Principal, create_voice_token
from lunarus.db.models import now_ms
from lunarus.db.repository import Repository
from lunarus.services.ingress import MessageIngress
from lunarus.services.message_store import MessageStore, clamp_limit
from lunarus.services.tenor_client import TenorClient, TenorError
from lunarus.services.upload_storage import UploadStorage

logger = logging.getLogger(__name__)

# Create routers
servers_router = APIRouter()
channels_router = APIRouter()
invites_router = APIRouter()
messages_router = APIRouter()
media_router = APIRouter()
voice_router = APIRouter()
gateway_router = APIRouter()

CHANNEL_TYPES = frozenset(channel_type.value for channel_type in ChannelType)
INTERNAL_HOST_PATTERN = re.compile(r"(^|//)(localhost|127\.0\.0\.1|livekit)(:|/|$)", re.IGNORECASE)


def _forbidden(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def _not_found(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


# Servers
@servers_router.get("", response_model=ServerListResponse)
def list_servers(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """
    List the caller's servers, oldest first.

    Every caller is (re)joined to the default server first, so a fresh
    account always sees at least one server.
    """
    repository = Repository(db)
    repository.ensure_member(settings.default_server_id, principal.user_id)
    servers = repository.list_user_servers(principal.user_id)
    return ServerListResponse(items=[ServerOut.model_validate(server) for server in servers])


@servers_router.post("", response_model=ServerResponse)
def create_server(
    request: ServerCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """
    Create a server owned by the caller, seeded with general, random and a
    voice Lobby (with its linked lobby-chat).

    Raises:
        HTTPException: 400 if name is blank
    """
    name = (request.name or "").strip()
    if not name:
        raise _bad_request("name required")
    icon = (request.icon or "").strip() or None

    server = Repository(db).create_server(name=name, icon=icon, owner_id=principal.user_id)
    logger.info(f"User {principal.user_id} created server {server.id}")
    return ServerResponse(item=ServerOut.model_validate(server))


@servers_router.get("/{server_id}")
def get_server(
    server_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Server info (members only)."""
    repository = Repository(db)
    if not repository.is_member(server_id, principal.user_id):
        raise _forbidden("not a member")
    server = repository.get_server(server_id)
    if server is None:
        raise _not_found("server not found")
    return {"item": ServerOut.model_validate(server).model_dump(by_alias=True)}


@servers_router.patch("/{server_id}", response_model=ServerResponse)
def update_server(
    server_id: str,
    request: ServerUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """
    Update server name/icon (owner only). Omitted fields are unchanged;
    an explicit null icon clears it.
    """
    repository = Repository(db)
    if not repository.is_owner(server_id, principal.user_id):
        raise _forbidden("not owner")
    server = repository.get_server(server_id)

    fields = request.model_fields_set
    next_name = (request.name or "").strip() if "name" in fields else server.name
    if "icon" in fields:
        next_icon = request.icon.strip() if request.icon is not None else None
    else:
        next_icon = server.icon
    if not next_name:
        raise _bad_request("name required")

    server = repository.update_server(server, next_name, next_icon)
    return ServerResponse(item=ServerOut.model_validate(server))


@servers_router.delete("/{server_id}")
def delete_server(
    server_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Delete a server with all its channels, members and invites (owner only)."""
    repository = Repository(db)
    if not repository.is_owner(server_id, principal.user_id):
        raise _forbidden("not owner")
    repository.delete_server(repository.get_server(server_id))
    logger.info(f"User {principal.user_id} deleted server {server_id}")
    return {"ok": True}


# Channels
@servers_router.get("/{server_id}/channels", response_model=ChannelListResponse)
def list_channels(
    server_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """List a server's channels by position (members only)."""
    repository = Repository(db)
    if not repository.is_member(server_id, principal.user_id):
        raise _forbidden("not a member")
    channels = repository.list_channels(server_id)
    return ChannelListResponse(items=[ChannelOut.model_validate(channel) for channel in channels])


@servers_router.post("/{server_id}/channels", response_model=ChannelResponse)
def create_channel(
    server_id: str,
    request: ChannelCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """
    Create a channel at the end of the list (owner only).

    Voice channels also get a linked "<name>-chat" text channel and a media
    room named "<server>-<channel>".
    """
    repository = Repository(db)
    if not repository.is_owner(server_id, principal.user_id):
        raise _forbidden("not owner")

    name = (request.name or "").strip()
    if not name:
        raise _bad_request("name required")
    channel_type = request.type or "text"
    if channel_type not in CHANNEL_TYPES:
        raise _bad_request("bad type")
    icon = request.icon.strip() if request.icon is not None else None

    channel = repository.create_channel(
        server_id=server_id,
        name=name,
        channel_type=channel_type,
        icon=icon,
        nsfw=bool(request.nsfw),
        is_private=bool(request.is_private),
    )
    return ChannelResponse(item=ChannelOut.model_validate(channel))


@channels_router.patch("/{channel_id}", response_model=ChannelResponse)
def update_channel(
    channel_id: str,
    request: ChannelUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """
    Update channel metadata. Any member may edit; only fields present in
    the body are applied.
    """
    repository = Repository(db)
    channel = repository.get_channel(channel_id)
    if channel is None:
        raise _not_found("channel not found")
    if not repository.is_member(channel.server_id, principal.user_id):
        raise _forbidden("not a member")

    changes = {field: getattr(request, field) for field in request.model_fields_set}
    if "type" in changes and changes["type"] not in CHANNEL_TYPES:
        raise _bad_request("bad type")
    for required in ("name", "type", "position", "nsfw", "is_private"):
        if required in changes and changes[required] is None:
            changes.pop(required)

    channel = repository.update_channel(channel, changes)
    return ChannelResponse(item=ChannelOut.model_validate(channel))


@channels_router.delete("/{channel_id}")
def delete_channel(
    channel_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Delete a channel (owner only); voice channels take their linked chat with them."""
    repository = Repository(db)
    channel = repository.get_channel(channel_id)
    if channel is None:
        raise _not_found("channel not found")
    if not repository.is_owner(channel.server_id, principal.user_id):
        raise _forbidden("not owner")
    repository.delete_channel(channel)
    return {"ok": True}


# Invites
@servers_router.post("/{server_id}/invites", response_model=InviteResponse)
def create_invite(
    server_id: str,
    request: Optional[InviteCreate] = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Create an invite code for a server (members only)."""
    repository = Repository(db)
    if not repository.is_member(server_id, principal.user_id):
        raise _forbidden("not a member")

    request = request or InviteCreate()
    invite = repository.create_invite(
        server_id=server_id,
        created_by=principal.user_id,
        channel_id=request.channel_id,
        expires_at=request.expires_at or None,
        max_uses=request.max_uses or None,
    )
    return InviteResponse(item=InviteOut.model_validate(invite))


def _usable_invite(repository: Repository, code: str):
    invite = repository.get_invite(code)
    if invite is None:
        raise _not_found("invite not found")
    if invite.is_expired(now_ms()):
        raise HTTPException(status_code=status.HTTP_410_GONE, detail="invite expired")
    if invite.is_exhausted():
        raise HTTPException(status_code=status.HTTP_410_GONE, detail="invite max uses reached")
    return invite


@invites_router.get("/{code}", response_model=InvitePreviewResponse)
def preview_invite(
    code: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """
    Invite preview with the target server's name and icon.

    Raises:
        HTTPException: 404 unknown code, 410 expired or used up
    """
    repository = Repository(db)
    invite = _usable_invite(repository, code)
    server = invite.server
    return InvitePreviewResponse(item=InvitePreview(
        code=invite.code,
        server_id=invite.server_id,
        channel_id=invite.channel_id,
        expires_at=invite.expires_at,
        max_uses=invite.max_uses,
        uses=invite.uses,
        server_name=server.name,
        server_icon=server.icon,
    ))


@invites_router.post("/{code}/join", response_model=ServerResponse)
def join_invite(
    code: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Join the invite's server. Re-joining is harmless but still counts a use."""
    repository = Repository(db)
    invite = _usable_invite(repository, code)
    server = repository.redeem_invite(invite, principal.user_id)
    logger.info(f"User {principal.user_id} joined server {server.id} via invite {invite.code}")
    return ServerResponse(item=ServerOut.model_validate(server))


# Messages
def _authorize_channel(db: Session, channel_id: str, user_id: str) -> None:
    """
    Enforce server membership for channels the store knows about.
    Unknown channel ids are free-form and open to any authenticated user.
    """
    repository = Repository(db)
    channel = repository.get_channel(channel_id)
    if channel is not None and not repository.is_member(channel.server_id, user_id):
        raise _forbidden("not a member")


def _history(channel_id: str, limit, principal: Principal, db: Session, store: MessageStore):
    _authorize_channel(db, channel_id, principal.user_id)
    limit = clamp_limit(limit, settings.history_default_limit, settings.history_max_limit)
    return MessageListResponse(items=store.query_recent_messages(channel_id, limit))


async def _send(
    channel_id: str,
    payload: MessageCreate,
    principal: Principal,
    db: Session,
    ingress: MessageIngress,
) -> MessageCreateResponse:
    # MessageValidationError and StoreError are mapped by the app's exception handlers.
    await run_in_threadpool(_authorize_channel, db, channel_id, principal.user_id)
    item = await ingress.ingest(
        channel_id=channel_id,
        author_id=principal.user_id,
        content=payload.content,
        kind=payload.kind,
        media=payload.media,
    )
    return MessageCreateResponse(item=item)


@channels_router.get("/{channel_id}/messages", response_model=MessageListResponse)
def get_channel_messages(
    channel_id: str,
    limit: Optional[str] = Query(None),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    store: MessageStore = Depends(get_message_store)
):
    """
    Most recent messages of a channel, oldest first.

    Example Request:
        ```
        GET /channels/general/messages?limit=20
        Authorization: Bearer <token>
        ```
    """
    return _history(channel_id, limit, principal, db, store)


@channels_router.post("/{channel_id}/messages", response_model=MessageCreateResponse)
async def send_channel_message(
    channel_id: str,
    payload: Optional[MessageCreate] = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    ingress: MessageIngress = Depends(get_ingress)
):
    """
    Send a message to a channel.

    The message is committed before it is pushed to gateway subscribers of
    the channel as MESSAGE_CREATE. The response does not wait for socket
    delivery.

    Example Request:
        ```json
        POST /channels/general/messages
        {"content": "hello", "kind": "text"}
        ```

    Example Response:
        ```json
        {"ok": true, "item": {"id": "1", "channelId": "general", "authorId": "alice",
                              "content": "hello", "kind": "text", "media": null, "ts": 1767225600000}}
        ```
    """
    return await _send(channel_id, payload or MessageCreate(), principal, db, ingress)


@messages_router.get("", response_model=MessageListResponse)
def get_messages(
    channel_id: str = Query("general", alias="channelId"),
    limit: Optional[str] = Query(None),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    store: MessageStore = Depends(get_message_store)
):
    """Same as GET /channels/{channel_id}/messages with the channel in the query string."""
    return _history(channel_id, limit, principal, db, store)


@messages_router.post("", response_model=MessageCreateResponse)
async def send_message(
    payload: Optional[MessageCreate] = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    ingress: MessageIngress = Depends(get_ingress)
):
    """Same as POST /channels/{channel_id}/messages with channelId in the body."""
    payload = payload or MessageCreate()
    return await _send(str(payload.channel_id or "general"), payload, principal, db, ingress)


# Media
@media_router.post("/upload", response_model=UploadResponse)
async def upload_file(
    file: Optional[UploadFile] = File(None),
    principal: Principal = Depends(get_current_principal),
    storage: UploadStorage = Depends(get_upload_storage)
):
    """Store an uploaded image (multipart field "file") and return its public URL."""
    if file is None:
        raise _bad_request("missing file")
    stored = await run_in_threadpool(storage.save, file.file, file.filename or "file")
    return UploadResponse(mime=file.content_type, **stored)


@media_router.get("/tenor/search", response_model=GifSearchResponse)
async def search_gifs(
    q: str = Query(""),
    limit: Optional[str] = Query(None),
    principal: Principal = Depends(get_current_principal),
    tenor: Optional[TenorClient] = Depends(get_tenor_client)
):
    """
    GIF search proxied to Tenor.

    Raises:
        HTTPException: 501 without an API key, 400 without q, 502 on upstream failure
    """
    if tenor is None:
        raise HTTPException(status_code=status.HTTP_501_NOT_IMPLEMENTED, detail="TENOR_API_KEY not configured")
    query = q.strip()
    if not query:
        raise _bad_request("missing q")
    limit = clamp_limit(limit, settings.tenor_default_limit, settings.tenor_max_limit)

    try:
        items = await tenor.search(query, limit)
    except TenorError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "tenor upstream error", "status": e.status_code, "body": e.body}
        )
    except httpx.HTTPError as e:
        logger.warning(f"Tenor request failed: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="tenor upstream error")
    return GifSearchResponse(items=items)


# Voice
def _public_base_url(request: Request) -> str:
    """Explicit PUBLIC_BASE_URL, else derived from reverse-proxy headers."""
    if settings.public_base_url:
        return settings.public_base_url.rstrip("/")
    proto = (request.headers.get("x-forwarded-proto") or request.url.scheme or "http").split(",")[0].strip()
    host = (request.headers.get("x-forwarded-host") or request.headers.get("host") or "").split(",")[0].strip()
    if not host:
        return ""
    return f"{proto}://{host}".rstrip("/")


def _livekit_client_url(request: Request) -> str:
    # Clients need a publicly reachable URL; internal docker hosts fall back
    # to this API's own origin, where the media server is reverse-proxied.
    url = (settings.livekit_public_url or settings.livekit_url or "").rstrip("/")
    if not url or INTERNAL_HOST_PATTERN.search(url):
        url = _public_base_url(request) or url
    return url


@voice_router.post("/join", response_model=VoiceJoinResponse)
def join_voice(
    http_request: Request,
    request: Optional[VoiceJoinRequest] = None,
    principal: Principal = Depends(get_current_principal)
):
    """Issue a media-server token for a voice room."""
    room = (request.room if request else None) or "demo-room"
    identity = principal.display_name or principal.user_id
    token = create_voice_token(identity, room)
    return VoiceJoinResponse(url=_livekit_client_url(http_request), token=token, room=room)


# WebSocket Gateway
@gateway_router.websocket("/gateway")
async def gateway_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None, description="JWT bearer token"),
    channel_id: Optional[str] = Query(None, alias="channelId", description="Initial channel")
):
    """
    WebSocket gateway for real-time events.

    Connection Flow:
        1. Client connects: ws://api/gateway?token={jwt}&channelId=general
        2. Invalid or missing token: accepted, then closed with 1008
        3. Server sends {"t": "READY", "d": {"user": {"id", "username"}}}
        4. Client sends {"op": "SUBSCRIBE", "d": {"channelId": "random"}}
           -> {"t": "SUBSCRIBED", "d": {"channelId": "random"}}
        5. Client sends {"op": "TYPING", "d": {"channelId": "random"}}
           -> others in the channel get {"t": "TYPING_START", "d": {"channelId", "userId"}}
        6. Messages posted over REST arrive as {"t": "MESSAGE_CREATE", "d": {...}}

    Malformed or unknown frames are ignored without reply.
    """
    await websocket.app.state.gateway.serve(websocket, token, channel_id)
