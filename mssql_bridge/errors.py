"""Error taxonomy shared by discovery, synthesis and request handling."""


class BridgeError(Exception):
    """Base class for every error raised by the bridge."""


class ConfigError(BridgeError):
    """The connection file is missing, unreadable or invalid."""


class ConnectFailure(BridgeError):
    """A target could not be reached or rejected the credentials."""


class DiscoveryFailure(BridgeError):
    """A catalog query failed after a successful connect."""


class ValidationFailure(BridgeError):
    """The request cannot be turned into a statement."""


class ExecutionFailure(BridgeError):
    """The database rejected a synthesized statement."""


class NotFound(BridgeError):
    """A keyed operation matched no row."""
