"""
Durable message store used by the ingress bridge and the history endpoints.
"""
import logging
from typing import Any, List, NamedTuple, Protocol
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from lunarus.api.schemas import CanonicalMessage
from lunarus.core.config import settings
from lunarus.core.exceptions import StoreError
from lunarus.db.models import Message
from lunarus.db.repository import Repository

logger = logging.getLogger(__name__)


class InsertResult(NamedTuple):
    """Server-assigned identity of a stored message."""
    id: str
    ts: int


class MessageStore(Protocol):
    """Boundary contract for the durable store."""

    def insert_message(self, channel_id: str, author_id: str, content: str, kind: str, media: Any) -> InsertResult:
        ...

    def query_recent_messages(self, channel_id: str, limit: int) -> List[CanonicalMessage]:
        ...


def clamp_limit(limit: Any, default: int, maximum: int) -> int:
    """Clamp a requested page size into [1, maximum]; unparseable values use default."""
    try:
        value = int(limit)
    except (TypeError, ValueError):
        return default
    return max(1, min(maximum, value))


def to_canonical(row: Message) -> CanonicalMessage:
    return CanonicalMessage(
        id=str(row.id),
        channel_id=str(row.channel_id),
        author_id=str(row.author_id),
        content=str(row.content or ""),
        kind=row.kind or "text",
        media=row.media,
        ts=int(row.ts),
    )


class SqlMessageStore:
    """
    SQLAlchemy-backed message store.

    Opens one short-lived session per call; methods are blocking and are
    meant to run in a worker thread when called from async code.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def insert_message(self, channel_id: str, author_id: str, content: str, kind: str, media: Any) -> InsertResult:
        """
        Insert a message and return its store-assigned id and timestamp.

        Raises:
            StoreError: if the database is unreachable or the write fails
        """
        db = self.session_factory()
        try:
            row = Repository(db).insert_message(channel_id, author_id, content, kind, media)
            return InsertResult(id=str(row.id), ts=int(row.ts))
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Message insert failed for channel {channel_id}: {e}")
            raise StoreError("message store unavailable") from e
        finally:
            db.close()

    def query_recent_messages(self, channel_id: str, limit: int) -> List[CanonicalMessage]:
        """
        Recent messages of a channel, oldest first, capped at history_max_limit.

        Raises:
            StoreError: if the database is unreachable
        """
        limit = clamp_limit(limit, settings.history_default_limit, settings.history_max_limit)
        db = self.session_factory()
        try:
            rows = Repository(db).get_recent_messages(channel_id, limit)
            return [to_canonical(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Message history query failed for channel {channel_id}: {e}")
            raise StoreError("message store unavailable") from e
        finally:
            db.close()
