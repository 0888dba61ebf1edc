"""
Gateway protocol handler: per-connection state machine.

Connecting -> Open -> Closed. The credential arrives with the upgrade request
(query string), never as a protocol frame. A failed handshake closes with
1008 before anything is registered.
"""
import logging
from typing import Optional, Union
from fastapi import WebSocket, WebSocketDisconnect, status

from lunarus.api.metrics import (
    gateway_connections_total, gateway_disconnections_total,
    gateway_frames_received_total, gateway_handshake_rejections_total,
)
from lunarus.core.exceptions import InvalidCredential
from lunarus.core.security import verify_token
from lunarus.gateway import events
from lunarus.gateway.connection import Connection
from lunarus.gateway.events import SubscribeFrame, TypingFrame
from lunarus.gateway.fanout import FanoutRouter, in_channel_except_user
from lunarus.gateway.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class GatewayProtocolHandler:
    """
    Serves gateway sockets against a shared registry.

    Accepted control frames while open:
        - {"op": "SUBSCRIBE", "d": {"channelId": ...}} -> SUBSCRIBED ack
        - {"op": "TYPING", "d": {"channelId": ...}} -> TYPING_START to others, no ack

    Anything else is ignored without reply or close.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        fanout: FanoutRouter,
        default_channel_id: str = "general",
        send_queue_size: int = 256,
    ):
        self.registry = registry
        self.fanout = fanout
        self.default_channel_id = default_channel_id
        self.send_queue_size = send_queue_size

    async def serve(self, websocket: WebSocket, token: Optional[str], channel_id: Optional[str] = None) -> None:
        """
        Run one connection from handshake to close.

        Args:
            websocket: Not-yet-accepted socket
            token: Bearer credential from the upgrade request
            channel_id: Initial channel of interest (defaults to the default channel)
        """
        try:
            principal = verify_token(token)
        except InvalidCredential as e:
            reason = "missing token" if not token else "bad token"
            gateway_handshake_rejections_total.labels(reason=reason.replace(" ", "_")).inc()
            logger.warning(f"Gateway handshake rejected: {reason} ({e})")
            # Accept first so the client sees the close code rather than an HTTP 403
            await websocket.accept()
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=reason)
            return

        await websocket.accept()

        connection = Connection(
            websocket,
            principal,
            channel_id if channel_id is not None else self.default_channel_id,
            queue_size=self.send_queue_size,
        )
        # No await between registering and queueing READY: READY is always first.
        self.registry.add(connection)
        connection.send(events.ready(connection.user_id, connection.display_name))
        connection.start()
        gateway_connections_total.inc()

        logger.info(
            f"Gateway connection opened for user {connection.user_id} "
            f"in channel {connection.channel_id} ({len(self.registry)} open)"
        )

        reason = "normal"
        try:
            while True:
                raw = await self._receive(websocket)
                self.handle_frame(connection, raw)
        except WebSocketDisconnect:
            pass
        except (RuntimeError, OSError) as e:
            reason = "error"
            logger.warning(f"Gateway transport error for user {connection.user_id}: {e}")
        finally:
            self.registry.remove(connection)
            await connection.close()
            gateway_disconnections_total.labels(reason=reason).inc()
            logger.info(
                f"Gateway connection closed for user {connection.user_id} "
                f"({len(self.registry)} open)"
            )

    async def _receive(self, websocket: WebSocket) -> Union[str, bytes]:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(message.get("code", status.WS_1000_NORMAL_CLOSURE))
        text = message.get("text")
        if text is not None:
            return text
        return message.get("bytes") or b""

    def handle_frame(self, connection: Connection, raw: Union[str, bytes]) -> None:
        """
        Process one inbound frame for connection. Frames of a single
        connection are handled strictly one at a time by its receive loop.
        """
        frame = events.parse_frame(raw)
        if frame is None:
            gateway_frames_received_total.labels(op="ignored").inc()
            logger.debug(f"Ignoring malformed frame from {connection!r}")
            return

        gateway_frames_received_total.labels(op=frame.op).inc()
        if isinstance(frame, SubscribeFrame):
            self._subscribe(connection, frame)
        elif isinstance(frame, TypingFrame):
            self._typing(connection, frame)

    def _subscribe(self, connection: Connection, frame: SubscribeFrame) -> None:
        # No membership check here; REST enforces membership on reads and writes.
        channel_id = events.requested_channel(frame)
        if channel_id is not None:
            connection.channel_id = channel_id
        connection.send(events.subscribed(connection.channel_id))
        logger.debug(f"{connection!r} subscribed")

    def _typing(self, connection: Connection, frame: TypingFrame) -> None:
        channel_id = events.requested_channel(frame)
        if channel_id is None:
            channel_id = connection.channel_id
        self.fanout.broadcast(
            events.typing_start(channel_id, connection.user_id),
            in_channel_except_user(channel_id, connection.user_id),
        )
