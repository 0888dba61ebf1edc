"""
A single authenticated gateway connection.

Each connection owns a FIFO outbound queue drained by exactly one writer task,
so events reach a given socket in the order they were handed to send().
send() never awaits: REST handlers and other connections can fan out without
waiting on this socket's I/O.
"""
import asyncio
import logging
from typing import Optional
from uuid import uuid4
from fastapi import WebSocket, WebSocketDisconnect, status
from starlette.websockets import WebSocketState

from lunarus.api.metrics import gateway_delivery_failures_total, gateway_events_sent_total
from lunarus.core.exceptions import TransportDeliveryFailure
from lunarus.core.security import Principal

logger = logging.getLogger(__name__)


def is_ws_connected(websocket: WebSocket) -> bool:
    """True while both sides of the socket still consider it open."""
    return (
        websocket.client_state == WebSocketState.CONNECTED
        and websocket.application_state == WebSocketState.CONNECTED
    )


class Connection:
    """
    Registry entry for one open gateway socket.

    Attributes:
        websocket: Underlying transport
        user_id: Authenticated user ID
        display_name: Authenticated display name
        channel_id: Channel of interest; changed only by this connection's own frames
    """

    def __init__(
        self,
        websocket: WebSocket,
        principal: Principal,
        channel_id: str,
        queue_size: int = 256,
    ):
        self.websocket = websocket
        self.user_id = principal.user_id
        self.display_name = principal.display_name
        self.channel_id = channel_id
        self.connection_id = uuid4().hex[:12]
        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._writer: Optional[asyncio.Task] = None
        self._closed = False

    def __repr__(self) -> str:
        return f"<Connection {self.connection_id} user={self.user_id} channel={self.channel_id}>"

    @property
    def is_open(self) -> bool:
        return not self._closed

    def start(self) -> None:
        """Start the writer task. Must be called from the event loop serving the socket."""
        if self._writer is None:
            self._writer = asyncio.create_task(
                self._drain(), name=f"gateway-writer-{self.connection_id}"
            )

    def send(self, event) -> bool:
        """
        Best-effort send: queue an event for this socket.

        Returns:
            True if the event was queued, False if the connection is closed or
            its queue is full. Callers fanning out to many connections are
            expected to ignore the result.
        """
        if self._closed:
            return False
        try:
            self._outbox.put_nowait(event)
        except asyncio.QueueFull:
            gateway_delivery_failures_total.labels(event_type=event.t, stage="queue").inc()
            logger.warning(f"Outbound queue full for {self!r}, dropping {event.t}")
            return False
        return True

    async def close(self) -> None:
        """Stop accepting events and stop the writer. Idempotent."""
        self._closed = True
        writer = self._writer
        if writer is not None and not writer.done():
            writer.cancel()
            try:
                await writer
            except asyncio.CancelledError:
                pass

    async def _drain(self) -> None:
        while True:
            event = await self._outbox.get()
            try:
                await self._transmit(event)
            except TransportDeliveryFailure as e:
                self._closed = True
                gateway_delivery_failures_total.labels(event_type=event.t, stage="transport").inc()
                logger.info(f"Delivery to {self!r} failed, writer stopping: {e}")
                await self._abort()
                return
            gateway_events_sent_total.labels(event_type=event.t).inc()

    async def _transmit(self, event) -> None:
        if not is_ws_connected(self.websocket):
            raise TransportDeliveryFailure("socket is not open")
        try:
            await self.websocket.send_text(event.to_frame())
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            raise TransportDeliveryFailure(str(e) or type(e).__name__) from e

    async def _abort(self) -> None:
        # Closing the transport ends the receive loop, which unregisters this connection.
        if self.websocket.application_state != WebSocketState.CONNECTED:
            return
        try:
            await self.websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        except (RuntimeError, OSError) as e:
            logger.debug(f"Close after failed delivery to {self!r} also failed: {e}")
