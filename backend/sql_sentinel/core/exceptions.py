"""
Error taxonomy for the gatekeeper, pool manager and executor
"""
from typing import Optional


class SentinelError(Exception):
    """Base class for all recoverable SQL Sentinel errors."""
    pass


class BlockedError(SentinelError):
    """A request refused before execution. Audited as BLOCKED."""
    pass


class PolicyViolation(BlockedError):
    """Operation, modifier, table or statement shape not permitted."""
    pass


class AccessDenied(BlockedError):
    """Caller lacks a grant for the target database."""
    pass


class PermissionUpdateError(SentinelError):
    """Administrative permission change refused."""
    pass


class ConnectionNotFoundError(SentinelError):
    """No database connection config with the given id."""

    def __init__(self, connection_id: int):
        self.connection_id = connection_id
        super().__init__(f"Database connection not found: {connection_id}")


class ConnectionInactiveError(SentinelError):
    """Connection config exists but is switched off."""

    def __init__(self, connection_id: int, name: Optional[str] = None):
        self.connection_id = connection_id
        super().__init__(f"Database connection is inactive: {name or connection_id}")


class DriverUnavailableError(SentinelError):
    """Driver for an engine type is missing or not registered."""

    def __init__(self, engine: str, detail: Optional[str] = None):
        self.engine = engine
        message = f"Driver unavailable for {engine}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class PoolConstructionError(SentinelError):
    """Lazy pool creation failed. The pool is not registered."""
    pass


class CredentialDecryptionError(PoolConstructionError):
    """Stored credential could not be decrypted."""
    pass


class PoolExhaustedError(SentinelError):
    """No pooled connection became free within the checkout timeout."""
    pass


class ExecutionError(SentinelError):
    """The backend rejected or failed the query. Audited as FAILED."""

    def __init__(self, message: str, execution_time_ms: int = 0):
        self.execution_time_ms = execution_time_ms
        super().__init__(message)


class QueryTimeoutError(ExecutionError):
    """Query exceeded its deadline or was cancelled."""
    pass


class ConnectionConfigError(SentinelError):
    """Connection config rejected by the administrative path."""
    pass


class DuplicateConnectionError(ConnectionConfigError):
    """Another connection already uses the name."""
    pass
