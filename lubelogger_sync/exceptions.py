"""
Custom exceptions for the LubeLogger sync engine.

Transport, store and orchestration code raise these so callers can
tell a tripped circuit apart from an ordinary network failure.
"""


class LubeLoggerSyncError(Exception):
    """Base exception for all sync engine errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class TransportError(LubeLoggerSyncError):
    """Raised when an HTTP call fails after the retry budget is spent."""

    def __init__(
        self,
        method: str,
        url: str,
        attempts: int,
        cause: Exception | None = None,
    ):
        details: dict = {"method": method, "url": url, "attempts": attempts}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"{method} {url} failed after {attempts} attempt(s)", details)
        self.method = method
        self.url = url
        self.attempts = attempts
        self.cause = cause


class ServerError(TransportError):
    """Raised when the server keeps answering with a 5xx status."""

    def __init__(self, method: str, url: str, attempts: int, status: int):
        super().__init__(method, url, attempts)
        self.status = status
        self.details["status"] = status
        self.message = f"{method} {url} returned {status} after {attempts} attempt(s)"
        self.args = (self.message,)


class CircuitOpenError(LubeLoggerSyncError):
    """Raised when the circuit breaker rejects a call without touching the network."""

    def __init__(self, url: str, retry_at: str | None = None, state: str = "Open"):
        details = {"url": url, "state": state}
        if retry_at:
            details["retry_at"] = retry_at
        super().__init__(f"Circuit breaker is {state}, rejected call to {url}", details)
        self.url = url
        self.retry_at = retry_at
        self.state = state


class RemoteOperationError(LubeLoggerSyncError):
    """Raised when a resource call returns a non-success response."""

    def __init__(self, entity_type: str, operation: str, status: int, body: str | None = None):
        details: dict = {"entity_type": entity_type, "operation": operation, "status": status}
        if body:
            details["body"] = body[:500]
        super().__init__(f"{operation} {entity_type} failed with HTTP {status}", details)
        self.entity_type = entity_type
        self.operation = operation
        self.status = status


class StoreError(LubeLoggerSyncError):
    """Raised when the local store cannot complete an operation."""

    def __init__(self, operation: str, entity_type: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if entity_type:
            details["entity_type"] = entity_type
        if cause:
            details["cause"] = str(cause)
        message = f"Store error during {operation}"
        if entity_type:
            message += f" ({entity_type})"
        super().__init__(message, details)
        self.operation = operation
        self.entity_type = entity_type
        self.cause = cause


class EntityNotFoundError(StoreError):
    """Raised when an entity is not present in the local store."""

    def __init__(self, entity_type: str, entity_id: int):
        super().__init__("find", entity_type)
        self.entity_id = entity_id
        self.details["entity_id"] = entity_id
        self.message = f"{entity_type} {entity_id} not found"
        self.args = (self.message,)


class ValidationError(LubeLoggerSyncError):
    """Raised when an argument violates a state-machine or data rule."""

    def __init__(self, field: str, reason: str, value: str | None = None):
        details = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value
        super().__init__(f"Validation failed for {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value


class ConfigurationError(LubeLoggerSyncError):
    """Raised when settings cannot be loaded or are inconsistent."""

    def __init__(self, message: str, source: str | None = None):
        details = {}
        if source:
            details["source"] = source
        super().__init__(message, details)
        self.source = source
