"""
Unit tests for the gateway connection registry.
"""
import threading
from lunarus.gateway.connection import Connection
from lunarus.gateway.registry import ConnectionRegistry


def make_connection(fake_websocket, principal, user_id: str, channel_id: str = "general") -> Connection:
    return Connection(fake_websocket(), principal(user_id), channel_id)


class TestConnectionRegistry:
    """Tests for registration, removal and traversal."""

    def test_add_and_remove(self, fake_websocket, principal):
        registry = ConnectionRegistry()
        connection = make_connection(fake_websocket, principal, "alice")

        registry.add(connection)
        assert len(registry) == 1
        assert connection in registry

        assert registry.remove(connection) is True
        assert len(registry) == 0
        assert connection not in registry

    def test_remove_is_idempotent(self, fake_websocket, principal):
        """Close and error paths may both remove the same connection."""
        registry = ConnectionRegistry()
        connection = make_connection(fake_websocket, principal, "alice")
        registry.add(connection)

        assert registry.remove(connection) is True
        assert registry.remove(connection) is False
        assert len(registry) == 0

    def test_remove_unknown_connection_is_noop(self, fake_websocket, principal):
        registry = ConnectionRegistry()
        registry.add(make_connection(fake_websocket, principal, "alice"))

        assert registry.remove(make_connection(fake_websocket, principal, "bob")) is False
        assert len(registry) == 1

    def test_same_user_keeps_every_connection(self, fake_websocket, principal):
        """Two tabs of one user are two entries, not deduplicated."""
        registry = ConnectionRegistry()
        first = make_connection(fake_websocket, principal, "alice")
        second = make_connection(fake_websocket, principal, "alice")

        registry.add(first)
        registry.add(second)

        assert len(registry) == 2
        assert registry.user_count() == 1

    def test_snapshot_is_unaffected_by_later_mutation(self, fake_websocket, principal):
        registry = ConnectionRegistry()
        first = make_connection(fake_websocket, principal, "alice")
        registry.add(first)

        snapshot = registry.snapshot()
        registry.add(make_connection(fake_websocket, principal, "bob"))
        registry.remove(first)

        assert snapshot == (first,)
        assert len(registry) == 1

    def test_visitor_may_remove_during_traversal(self, fake_websocket, principal):
        """Every connection in the snapshot is visited even if others are removed mid-walk."""
        registry = ConnectionRegistry()
        connections = [make_connection(fake_websocket, principal, f"user{i}") for i in range(5)]
        for connection in connections:
            registry.add(connection)

        visited = []

        def visitor(connection):
            visited.append(connection)
            for other in connections:
                registry.remove(other)

        registry.for_each(visitor)

        assert sorted(visited, key=id) == sorted(connections, key=id)
        assert len(registry) == 0

    def test_connection_added_after_snapshot_is_not_visited(self, fake_websocket, principal):
        registry = ConnectionRegistry()
        registry.add(make_connection(fake_websocket, principal, "alice"))
        late = make_connection(fake_websocket, principal, "late")

        visited = []

        def visitor(connection):
            visited.append(connection)
            registry.add(late)

        registry.for_each(visitor)

        assert late not in visited
        assert late in registry

    def test_concurrent_add_and_remove(self, fake_websocket, principal):
        registry = ConnectionRegistry()
        connections = [make_connection(fake_websocket, principal, f"user{i}") for i in range(200)]

        def churn(batch):
            for connection in batch:
                registry.add(connection)
            for connection in batch[::2]:
                registry.remove(connection)

        threads = [threading.Thread(target=churn, args=(connections[i::4],)) for i in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        expected = sum(len(connections[i::4][1::2]) for i in range(4))
        assert len(registry) == expected
