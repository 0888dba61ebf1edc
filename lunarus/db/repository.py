"""
Repository layer for database operations.
Provides high-level methods for common database queries and operations.
"""
import secrets
from typing import Any, Dict, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
from lunarus.db.models import Server, ServerMember, Channel, Invite, Message, now_ms

INVITE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # no ambiguous 0/O, 1/I
INVITE_CODE_LENGTH = 8
INVITE_CODE_ATTEMPTS = 5


def generate_id(prefix: str = "") -> str:
    """Short-ish opaque id for URLs, e.g. s_6f3a..."""
    value = secrets.token_hex(12)
    return f"{prefix}_{value}" if prefix else value


def generate_invite_code() -> str:
    return "".join(secrets.choice(INVITE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))


class Repository:
    """Repository class for database operations."""

    def __init__(self, db: Session):
        """
        Initialize repository with database session.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db

    # Membership
    def is_member(self, server_id: str, user_id: str) -> bool:
        """Check whether user_id belongs to server_id."""
        return self.db.get(ServerMember, (server_id, user_id)) is not None

    def is_owner(self, server_id: str, user_id: str) -> bool:
        server = self.get_server(server_id)
        return server is not None and str(server.owner_id) == str(user_id)

    def ensure_member(self, server_id: str, user_id: str) -> bool:
        """
        Add user_id to server_id unless already a member.

        Returns:
            True if a membership row was created
        """
        if self.is_member(server_id, user_id):
            return False
        if self.get_server(server_id) is None:
            return False
        self.db.add(ServerMember(server_id=server_id, user_id=user_id, joined_at=now_ms()))
        self.db.commit()
        return True

    # Servers
    def get_server(self, server_id: str) -> Optional[Server]:
        return self.db.get(Server, server_id)

    def list_user_servers(self, user_id: str) -> List[Server]:
        """Servers the user belongs to, oldest first."""
        return (
            self.db.query(Server)
            .join(ServerMember, ServerMember.server_id == Server.id)
            .filter(ServerMember.user_id == user_id)
            .order_by(Server.created_at.asc())
            .all()
        )

    def create_server(
        self,
        name: str,
        icon: Optional[str],
        owner_id: str,
        server_id: Optional[str] = None,
        channel_prefix: Optional[str] = "",
    ) -> Server:
        """
        Create a server, add the owner as member and seed the default channels.

        Args:
            name: Display name
            icon: Optional icon (emoji or URL)
            owner_id: Creating user
            server_id: Explicit id (generated when omitted)
            channel_prefix: Prefix for seeded channel ids; "" means the server id,
                None means unprefixed ids (the default server)
        """
        from lunarus.db.database import DEFAULT_CHANNELS

        now = now_ms()
        server_id = server_id or generate_id("s")
        prefix = server_id if channel_prefix == "" else channel_prefix

        def scoped(value: Optional[str]) -> Optional[str]:
            if value is None:
                return None
            return f"{prefix}-{value}" if prefix else value

        server = Server(id=server_id, name=name, icon=icon, owner_id=owner_id, created_at=now)
        self.db.add(server)
        self.db.add(ServerMember(server_id=server_id, user_id=owner_id, joined_at=now))
        for seed in DEFAULT_CHANNELS:
            self.db.add(Channel(
                id=scoped(seed["suffix"]),
                server_id=server_id,
                name=seed["name"],
                type=seed["type"],
                position=seed["position"],
                icon=seed["icon"],
                nsfw=False,
                is_private=False,
                linked_text_channel_id=scoped(seed["linked"]),
                room=scoped(seed["room"]),
                created_at=now,
            ))
        self.db.commit()
        self.db.refresh(server)
        return server

    def update_server(self, server: Server, name: str, icon: Optional[str]) -> Server:
        server.name = name
        server.icon = icon
        self.db.commit()
        self.db.refresh(server)
        return server

    def delete_server(self, server: Server) -> None:
        """Delete a server with its members, channels and invites."""
        self.db.delete(server)
        self.db.commit()

    # Channels
    def get_channel(self, channel_id: str) -> Optional[Channel]:
        return self.db.get(Channel, channel_id)

    def list_channels(self, server_id: str) -> List[Channel]:
        return (
            self.db.query(Channel)
            .filter(Channel.server_id == server_id)
            .order_by(Channel.position.asc(), Channel.created_at.asc())
            .all()
        )

    def create_channel(
        self,
        server_id: str,
        name: str,
        channel_type: str,
        icon: Optional[str],
        nsfw: bool,
        is_private: bool,
    ) -> Channel:
        """
        Create a channel at the end of the server's channel list.
        Voice channels get a linked "<name>-chat" text channel and a media room.
        """
        now = now_ms()
        channel_id = generate_id("c")
        max_position = (
            self.db.query(func.coalesce(func.max(Channel.position), 0))
            .filter(Channel.server_id == server_id)
            .scalar()
        )
        position = int(max_position or 0) + 10

        linked_text_channel_id = None
        room = None
        if channel_type == "voice":
            linked_text_channel_id = f"{channel_id}-chat"
            room = f"{server_id}-{channel_id}"

        channel = Channel(
            id=channel_id,
            server_id=server_id,
            name=name,
            type=channel_type,
            position=position,
            icon=icon,
            nsfw=nsfw,
            is_private=is_private,
            linked_text_channel_id=linked_text_channel_id,
            room=room,
            created_at=now,
        )
        self.db.add(channel)
        if linked_text_channel_id:
            self.db.add(Channel(
                id=linked_text_channel_id,
                server_id=server_id,
                name=f"{name}-chat",
                type="text",
                position=position + 1,
                icon="#",
                nsfw=False,
                is_private=False,
                created_at=now,
            ))
        self.db.commit()
        self.db.refresh(channel)
        return channel

    def update_channel(self, channel: Channel, changes: Dict[str, Any]) -> Channel:
        for field, value in changes.items():
            setattr(channel, field, value)
        self.db.commit()
        self.db.refresh(channel)
        return channel

    def delete_channel(self, channel: Channel) -> None:
        """Delete a channel and, for voice channels, its linked text chat."""
        linked = channel.linked_text_channel_id
        server_id = channel.server_id
        self.db.delete(channel)
        if linked:
            linked_channel = self.get_channel(linked)
            if linked_channel is not None and linked_channel.server_id == server_id:
                self.db.delete(linked_channel)
        self.db.commit()

    # Invites
    def create_invite(
        self,
        server_id: str,
        created_by: str,
        channel_id: Optional[str] = None,
        expires_at: Optional[int] = None,
        max_uses: Optional[int] = None,
    ) -> Invite:
        code = generate_invite_code()
        for _ in range(INVITE_CODE_ATTEMPTS):
            if self.db.get(Invite, code) is None:
                break
            code = generate_invite_code()

        invite = Invite(
            code=code,
            server_id=server_id,
            channel_id=channel_id,
            created_by=created_by,
            created_at=now_ms(),
            expires_at=expires_at,
            max_uses=max_uses,
            uses=0,
        )
        self.db.add(invite)
        self.db.commit()
        self.db.refresh(invite)
        return invite

    def get_invite(self, code: str) -> Optional[Invite]:
        return self.db.get(Invite, code.strip().upper())

    def redeem_invite(self, invite: Invite, user_id: str) -> Server:
        """Join the invite's server (idempotent membership) and count the use."""
        if not self.is_member(invite.server_id, user_id):
            self.db.add(ServerMember(server_id=invite.server_id, user_id=user_id, joined_at=now_ms()))
        invite.uses = Invite.uses + 1
        self.db.commit()
        self.db.refresh(invite)
        return self.get_server(invite.server_id)

    # Messages
    def insert_message(
        self,
        channel_id: str,
        author_id: str,
        content: str,
        kind: str,
        media: Any,
    ) -> Message:
        message = Message(
            channel_id=channel_id,
            author_id=author_id,
            content=content,
            kind=kind,
            media=media,
            ts=now_ms(),
        )
        self.db.add(message)
        self.db.commit()
        self.db.refresh(message)
        return message

    def get_recent_messages(self, channel_id: str, limit: int) -> List[Message]:
        """Newest `limit` messages of a channel, returned oldest first."""
        rows = (
            self.db.query(Message)
            .filter(Message.channel_id == channel_id)
            .order_by(Message.ts.desc(), Message.id.desc())
            .limit(limit)
            .all()
        )
        rows.reverse()
        return rows
