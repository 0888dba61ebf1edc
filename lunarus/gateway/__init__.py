"""Real-time gateway: connection registry, fanout and the WebSocket protocol."""
from lunarus.gateway.connection import Connection
from lunarus.gateway.fanout import FanoutRouter
from lunarus.gateway.handler import GatewayProtocolHandler
from lunarus.gateway.registry import ConnectionRegistry

__all__ = ["Connection", "ConnectionRegistry", "FanoutRouter", "GatewayProtocolHandler"]
