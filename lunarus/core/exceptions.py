"""
Domain error taxonomy shared by the REST layer and the gateway.
"""


class LunarusError(Exception):
    """Base class for domain errors."""


class InvalidCredential(LunarusError):
    """Bearer credential is missing, malformed, forged or expired. Always deny."""


class MessageValidationError(LunarusError):
    """Caller supplied a disallowed message kind or malformed input."""


class StoreError(LunarusError):
    """Durable store is unavailable or the write failed."""


class TransportDeliveryFailure(LunarusError):
    """A best-effort send to a single gateway connection failed."""
