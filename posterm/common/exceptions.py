"""
Custom Exception Classes for the POS Terminal

Hierarchical exception structure for error handling across services.
"""


class PosTerminalError(Exception):
    """Base exception for all POS terminal errors"""

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(message)


class ConfigError(PosTerminalError):
    """Configuration-related errors"""

    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(f"Config Error: {message}", recoverable)


class StorageError(PosTerminalError):
    """Local persistence I/O errors"""

    def __init__(self, message: str, key: str | None = None):
        self.key = key
        super().__init__(f"Storage Error: {message}", recoverable=True)


class SyncError(PosTerminalError):
    """Remote synchronization errors"""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        self.operation = operation
        super().__init__(f"Sync Error: {message}", recoverable)


class NetworkError(SyncError):
    """Transport failure, timeout, or non-2xx response - retryable"""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, operation, recoverable=True)


class AuthError(SyncError):
    """Rejected or missing credential (HTTP 401)"""

    def __init__(self, message: str = "Session expired - please log in again", operation: str | None = None):
        super().__init__(message, operation, recoverable=False)


class ExhaustedRetriesError(SyncError):
    """Mutation has used up its retry budget and is dead-lettered"""

    def __init__(self, mutation_id: str, retry_count: int):
        self.mutation_id = mutation_id
        self.retry_count = retry_count
        super().__init__(
            f"Mutation {mutation_id} exhausted retries ({retry_count})",
            operation="flush",
            recoverable=False,
        )


class MutationNotFoundError(PosTerminalError):
    """Operator action referenced a mutation that is not queued"""

    def __init__(self, mutation_id: str):
        self.mutation_id = mutation_id
        super().__init__(f"Mutation not found: {mutation_id}", recoverable=False)
