"""
Errors surfaced by the radio when connecting to its room.

Track-level failures (no stream, sink errors) never raise out of the
orchestrator — they are logged and turned into "advance the queue".  Only
connection setup failures reach the caller of ``Orchestrator.initialize``.
"""


class ConfigurationError(Exception):
    """Required setup is missing, e.g. no room configured."""


class RoomPermissionError(PermissionError):
    """The configured room exists but the radio may not join it."""


class RoomLookupError(LookupError):
    """The configured room does not exist or could not be looked up."""


class RoomNotFound(KeyError):
    """Raised by a room directory for an unknown room id."""
