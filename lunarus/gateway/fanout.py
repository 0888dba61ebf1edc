"""
Fanout router: deliver one event to every matching gateway connection.
"""
import logging
from typing import Callable

from lunarus.gateway.connection import Connection
from lunarus.gateway.registry import ConnectionRegistry

logger = logging.getLogger(__name__)

Predicate = Callable[[Connection], bool]


def everyone(connection: Connection) -> bool:
    return True


def in_channel(channel_id: str) -> Predicate:
    """Match connections currently subscribed to channel_id."""
    def predicate(connection: Connection) -> bool:
        return connection.channel_id == channel_id
    return predicate


def in_channel_except_user(channel_id: str, user_id: str) -> Predicate:
    """Match connections in channel_id that belong to anyone but user_id."""
    def predicate(connection: Connection) -> bool:
        return connection.channel_id == channel_id and connection.user_id != user_id
    return predicate


class FanoutRouter:
    """Routes events from REST handlers and gateway frames to live connections."""

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    def broadcast(self, event, predicate: Predicate = everyone) -> int:
        """
        Queue event on every connection matching predicate at call time.

        Per-connection failures (closed socket, full queue) never abort the
        loop and never reach the caller. Does not await socket writes.

        Args:
            event: Gateway event to deliver
            predicate: Filter evaluated against each connection

        Returns:
            Number of connections that accepted the event
        """
        matched = 0
        accepted = 0
        for connection in self.registry.snapshot():
            if not predicate(connection):
                continue
            matched += 1
            # Best-effort: a False result is a local delivery failure, deliberately dropped.
            if connection.send(event):
                accepted += 1

        if matched:
            logger.debug(f"Broadcast {event.t}: {accepted}/{matched} connections")
        return accepted
