"""Services package initialization."""
from lunarus.services.ingress import MessageIngress
from lunarus.services.message_store import MessageStore, SqlMessageStore

__all__ = ["MessageIngress", "MessageStore", "SqlMessageStore"]
