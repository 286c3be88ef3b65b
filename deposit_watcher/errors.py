"""Exceptions raised by the Deposit Watcher."""


class DepositWatcherError(Exception):
    """Base class for watcher errors."""


class ConfigError(DepositWatcherError):
    """Configuration is missing or invalid. Fatal at startup."""


class UpstreamError(DepositWatcherError):
    """The ledger feed could not be used this cycle."""


class UpstreamUnavailable(UpstreamError):
    """Network failure, timeout or non-200 response from the ledger API."""

    def __init__(self, message: str, status: str = "unknown"):
        super().__init__(message)
        self.status = status


class UpstreamMalformed(UpstreamError):
    """The ledger API answered with a payload we cannot parse."""


class InvalidEventData(DepositWatcherError):
    """A transfer event is missing its destination or carries no amount."""


class StorageError(DepositWatcherError):
    """A storage query or transaction failed."""


class DuplicateDepositError(StorageError):
    """Insert hit the unique constraint on deposit.tx_hash."""
