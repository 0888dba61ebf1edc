"""
SQLAlchemy ORM models for the Lunarus database.
Defines all entities: Server, ServerMember, Channel, Invite, Message.

Timestamps are epoch milliseconds (BigInteger) to match the wire format.
Channel IDs are stable strings because messages reference them as text.
"""
import time
from sqlalchemy import (
    Column, String, Integer, ForeignKey, BigInteger, Boolean, Text, JSON, Index
)
from sqlalchemy.orm import relationship
from lunarus.db.database import Base


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


class Server(Base):
    """Guild-like server owning channels, members and invites."""
    __tablename__ = "servers"

    id = Column(String(64), primary_key=True)
    name = Column(String(100), nullable=False)
    icon = Column(Text, nullable=True)
    owner_id = Column(String(64), nullable=False)
    created_at = Column(BigInteger, default=now_ms, nullable=False)

    # Relationships
    members = relationship("ServerMember", back_populates="server", cascade="all, delete-orphan")
    channels = relationship("Channel", back_populates="server", cascade="all, delete-orphan")
    invites = relationship("Invite", back_populates="server", cascade="all, delete-orphan")


class ServerMember(Base):
    """Membership of a user in a server."""
    __tablename__ = "server_members"

    server_id = Column(String(64), ForeignKey("servers.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String(64), primary_key=True, index=True)
    nickname = Column(String(100), nullable=True)
    joined_at = Column(BigInteger, default=now_ms, nullable=False)

    # Relationships
    server = relationship("Server", back_populates="members")


class Channel(Base):
    """Text, voice or forum channel. Voice channels may link a text chat and a media room."""
    __tablename__ = "channels"
    __table_args__ = (Index("idx_channels_server_pos", "server_id", "position"),)

    id = Column(String(128), primary_key=True)
    server_id = Column(String(64), ForeignKey("servers.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(100), nullable=False)
    type = Column(String(16), default="text", nullable=False)  # text | voice | forum
    position = Column(Integer, default=0, nullable=False)
    icon = Column(Text, nullable=True)  # emoji, custom emoji code, or URL
    nsfw = Column(Boolean, default=False, nullable=False)
    is_private = Column(Boolean, default=False, nullable=False)
    linked_text_channel_id = Column(String(128), nullable=True)
    room = Column(String(128), nullable=True)
    created_at = Column(BigInteger, default=now_ms, nullable=False)

    # Relationships
    server = relationship("Server", back_populates="channels")


class Invite(Base):
    """Server invite code with optional expiry and use limit."""
    __tablename__ = "invites"

    code = Column(String(16), primary_key=True)
    server_id = Column(String(64), ForeignKey("servers.id", ondelete="CASCADE"), nullable=False, index=True)
    channel_id = Column(String(128), nullable=True)
    created_by = Column(String(64), nullable=False)
    created_at = Column(BigInteger, default=now_ms, nullable=False)
    expires_at = Column(BigInteger, nullable=True)
    max_uses = Column(Integer, nullable=True)
    uses = Column(Integer, default=0, nullable=False)

    # Relationships
    server = relationship("Server", back_populates="invites")

    def is_expired(self, at_ms: int) -> bool:
        return bool(self.expires_at) and self.expires_at < at_ms

    def is_exhausted(self) -> bool:
        return bool(self.max_uses) and self.uses >= self.max_uses


class Message(Base):
    """Persisted chat message. The store assigns id and ts."""
    __tablename__ = "messages"
    __table_args__ = (Index("idx_messages_channel_ts", "channel_id", "ts"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    channel_id = Column(String(128), nullable=False)
    author_id = Column(String(64), nullable=False)
    content = Column(Text, default="", nullable=False)
    kind = Column(String(16), default="text", nullable=False)
    media = Column(JSON, nullable=True)
    ts = Column(BigInteger, nullable=False)
