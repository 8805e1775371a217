"""Exceptions raised across the bridge."""


class BridgeError(Exception):
    pass


class ConfigError(BridgeError):
    """Required setting missing or unusable; fatal at startup."""


class SnapshotError(BridgeError):
    """Inbound frame is not a JSON object."""


class SessionError(BridgeError):
    """First WebSocket connection to the printer could not be established."""


class SessionNotConnected(BridgeError):
    """No live WebSocket connection to send on."""
