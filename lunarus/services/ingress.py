"""
Message ingress bridge: durable write first, live broadcast second.

REST send handlers call ingest(). A MESSAGE_CREATE event is never visible to
gateway subscribers before the insert it announces has committed.
"""
import logging
from typing import Any
from starlette.concurrency import run_in_threadpool

from lunarus.api.metrics import messages_created_total, messages_rejected_total
from lunarus.api.schemas import CanonicalMessage, MessageKind
from lunarus.core.exceptions import MessageValidationError, StoreError
from lunarus.gateway import events
from lunarus.gateway.fanout import FanoutRouter, in_channel
from lunarus.services.message_store import MessageStore

logger = logging.getLogger(__name__)

ALLOWED_KINDS = frozenset(kind.value for kind in MessageKind)


class MessageIngress:
    """Bridges synchronous message writes to asynchronous gateway delivery."""

    def __init__(self, store: MessageStore, fanout: FanoutRouter):
        self.store = store
        self.fanout = fanout

    async def ingest(
        self,
        channel_id: str,
        author_id: str,
        content: Any,
        kind: Any,
        media: Any = None,
    ) -> CanonicalMessage:
        """
        Persist a message and announce it to the channel's live subscribers.

        Args:
            channel_id: Target channel
            author_id: Authenticated author
            content: Message text (None is stored as "")
            kind: text, image or gif (None or "" means text)
            media: Optional attachment descriptor

        Returns:
            The canonical message as stored

        Raises:
            MessageValidationError: kind is not allowed (nothing is written)
            StoreError: the insert failed (nothing is broadcast)
        """
        kind = str(kind or MessageKind.TEXT.value)
        if kind not in ALLOWED_KINDS:
            messages_rejected_total.labels(reason="bad_kind").inc()
            raise MessageValidationError("bad kind")

        content = "" if content is None else str(content)

        try:
            stored = await run_in_threadpool(
                self.store.insert_message, channel_id, author_id, content, kind, media
            )
        except StoreError:
            messages_rejected_total.labels(reason="store").inc()
            raise

        message = CanonicalMessage(
            id=stored.id,
            channel_id=channel_id,
            author_id=author_id,
            content=content,
            kind=kind,
            media=media,
            ts=stored.ts,
        )
        messages_created_total.labels(kind=kind).inc()

        delivered = self.fanout.broadcast(events.message_create(message), in_channel(message.channel_id))
        logger.info(
            f"Message {message.id} stored in channel {message.channel_id} "
            f"(queued for {delivered} connections)"
        )
        return message
