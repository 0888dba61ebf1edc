"""
Connection registry: the set of open gateway connections.

The registry is the only shared mutable state between REST handlers and
gateway sockets. Mutation happens under a lock that is never held across an
await; iteration works on an immutable snapshot, so visitors may remove
entries (their own or others) while a traversal is in progress.
"""
import logging
import threading
from typing import Callable, Iterator, Tuple

from lunarus.api.metrics import gateway_connections_active
from lunarus.gateway.connection import Connection

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """
    Tracks open gateway connections.

    Features:
    - Multiple connections per user (devices/tabs), no dedup by user ID
    - Idempotent removal (close and error callbacks may both fire)
    - Copy-on-iterate snapshots for safe traversal during removal
    """

    def __init__(self):
        self._connections: set[Connection] = set()
        self._lock = threading.Lock()

    def add(self, connection: Connection) -> None:
        """
        Register a connection.

        Args:
            connection: Newly authenticated connection
        """
        with self._lock:
            self._connections.add(connection)
            total = len(self._connections)
        gateway_connections_active.set(total)
        logger.debug(f"Registered {connection!r} (total connections: {total})")

    def remove(self, connection: Connection) -> bool:
        """
        Unregister a connection. Removing an absent connection is a no-op.

        Args:
            connection: Connection to drop

        Returns:
            True if the connection was registered, False otherwise
        """
        with self._lock:
            if connection not in self._connections:
                return False
            self._connections.discard(connection)
            total = len(self._connections)
        gateway_connections_active.set(total)
        logger.debug(f"Unregistered {connection!r} (remaining connections: {total})")
        return True

    def snapshot(self) -> Tuple[Connection, ...]:
        """Immutable view of the registry at this instant."""
        with self._lock:
            return tuple(self._connections)

    def for_each(self, visitor: Callable[[Connection], None]) -> None:
        """
        Call visitor for every connection in a snapshot taken now.

        Connections added after the snapshot are not visited; the visitor may
        call remove() freely.
        """
        for connection in self.snapshot():
            visitor(connection)

    def user_count(self) -> int:
        """Number of distinct users with at least one open connection."""
        return len({connection.user_id for connection in self.snapshot()})

    def __iter__(self) -> Iterator[Connection]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def __contains__(self, connection: object) -> bool:
        with self._lock:
            return connection in self._connections
