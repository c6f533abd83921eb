"""
Service layer exceptions.
"""


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class UpstreamError(ServiceError):
    """The upstream data API could not produce data."""

    pass


class UpstreamUnavailableError(UpstreamError):
    """Upstream kept answering with a retryable status until the attempts ran out."""

    def __init__(self, service_id: str, status_code: int, attempts: int):
        self.status_code = status_code
        self.attempts = attempts
        super().__init__(
            f"Upstream '{service_id}' still returned HTTP {status_code} "
            f"after {attempts} attempts",
            service_id=service_id,
        )


class UpstreamFatalError(UpstreamError):
    """Unexpected status, network failure or unparseable body."""

    pass


class RequestTimeoutError(UpstreamFatalError):
    """Request timed out."""

    def __init__(self, service_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Request to service '{service_id}' timed out after {timeout}s",
            service_id=service_id,
        )


class CacheError(ServiceError):
    """Cache operation failed."""

    pass


class CacheUnavailableError(CacheError):
    """The shared cache tier could not be read or written."""

    def __init__(self, operation: str, key: str, reason: str):
        self.operation = operation
        self.key = key
        super().__init__(
            f"Shared cache {operation} failed for '{key}': {reason}",
            service_id="shared-cache",
        )
