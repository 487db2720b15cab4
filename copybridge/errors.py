"""Exception hierarchy for the copy bridge.

Fatal errors mean the bridge's model of the account can no longer be
trusted and the process should halt.  Broker errors only abort the signal
currently being handled.
"""


class BridgeError(Exception):
    """Base class for all copy bridge errors."""


class FatalError(BridgeError):
    """Unrecoverable error — callers must stop processing signals."""


class StateLoadError(FatalError):
    """The persisted pair state file is corrupt or inconsistent."""


class ConsistencyError(FatalError):
    """Broker-reported or in-memory state diverged from the bridge's model."""


class BrokerError(BridgeError):
    """A broker call failed; only the current signal is affected."""
