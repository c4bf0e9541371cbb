"""
Error Types

Every error the relay raises on purpose derives from RelayError and
carries the process exit code the CLI reports for it.
"""

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONNECT_FAILED = 2


class RelayError(Exception):
    """Base class for relay errors."""
    exit_code = EXIT_ERROR


class ResolveError(RelayError):
    """Address lookup failed or returned no candidates."""


class ConnectError(RelayError):
    """No resolved candidate endpoint accepted a connection."""
    exit_code = EXIT_CONNECT_FAILED


class SourceFileError(RelayError):
    """The file to send could not be opened or read."""


class TransferError(RelayError):
    """A send failed partway through a transfer."""


class BindError(RelayError):
    """No local candidate endpoint could be bound."""


class SemaphoreUnlinkedError(RelayError):
    """A new worker tried to use an admission semaphore after it was unlinked."""
