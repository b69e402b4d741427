"""Exception hierarchy for the auto-unseal controller."""

from __future__ import annotations

from typing import Optional


class AutoUnsealError(Exception):
    """Base class for every controller error."""


class ConfigError(AutoUnsealError):
    """Raised when configuration is invalid or a client cannot be built."""


class DiscoveryError(AutoUnsealError):
    """Raised when the Vault pods cannot be listed."""


class ProbeError(AutoUnsealError):
    """Raised when a health probe fails or its answer cannot be classified.

    Attributes:
        address: Base URL of the probed instance.
        status_code: HTTP status of the response, if one was received.
    """

    def __init__(self, message: str, address: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.address = address
        self.status_code = status_code


class InitializationError(AutoUnsealError):
    """Raised when the remote init call fails or returns non-200.

    Attributes:
        committed: The instance answered 200, so it is initialized even
            though its response was rejected.
        root_token: Root token found in a rejected response, if any.
        keys: Key shares found in a rejected response.
    """

    def __init__(
        self,
        message: str,
        committed: bool = False,
        root_token: Optional[str] = None,
        keys: Optional[list[str]] = None,
    ):
        super().__init__(message)
        self.committed = committed
        self.root_token = root_token
        self.keys = list(keys or [])


class PersistenceError(AutoUnsealError):
    """Raised when the secret store cannot create, read or update a record."""


class RecordExistsError(PersistenceError):
    """Raised by a conditional create when the record is already there."""


class RecordNotFoundError(PersistenceError):
    """Raised when a record is missing from the secret store."""


class UnsealError(AutoUnsealError):
    """Raised when a key share cannot be applied.

    Attributes:
        key_index: 1-based position of the share that failed (0 if none
            was attempted, e.g. unreadable key files).
        applied: Number of shares successfully applied before the failure.
    """

    def __init__(self, message: str, key_index: int = 0, applied: int = 0):
        super().__init__(message)
        self.key_index = key_index
        self.applied = applied
