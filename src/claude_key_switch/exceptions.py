"""Custom exceptions for claude-key-switch.

Each exception carries the process exit code the CLI reports for it, so that
calling scripts can branch on the failure kind without parsing messages.
"""


class KeySwitchError(Exception):
    """Base exception for claude-key-switch errors."""

    exit_code = 1


class EmptyStore(KeySwitchError):
    """No keys are configured."""

    exit_code = 3


class AllKeysDisabled(KeySwitchError):
    """Keys are configured but every one of them is disabled."""

    exit_code = 4


class StoreCorrupt(KeySwitchError):
    """The persisted store is unreadable or its cursor is out of range."""

    exit_code = 5


class StoreBusy(KeySwitchError):
    """The store lock could not be acquired in time."""

    exit_code = 6


class StoreWriteError(KeySwitchError):
    """Failed to persist the store."""

    exit_code = 7


class KeyNotFoundError(KeySwitchError):
    """Key not found."""

    pass


class ValidationError(KeySwitchError):
    """Validation error."""

    pass
