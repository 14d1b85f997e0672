"""Classified errors raised across the generation gateway.

Provider adapters translate SDK failures into ``ClassifiedError`` so that
retry, circuit-breaking and fallback decisions read a structured ``kind``
instead of parsing exception messages.
"""

from typing import Any, Dict, Optional

from scenecast.schemas.generation import ErrorDetail, ErrorKind


# Kinds worth retrying with backoff
RETRYABLE_KINDS = frozenset({
    ErrorKind.RATE_LIMITED,
    ErrorKind.QUOTA_EXCEEDED,
    ErrorKind.TIMEOUT,
    ErrorKind.REGION_UNAVAILABLE,
    ErrorKind.SERVICE_ERROR,
})


# Kinds that need a caller-side fix (configuration or different input)
NON_RETRYABLE_KINDS = frozenset({
    ErrorKind.INVALID_CREDENTIAL,
    ErrorKind.CONTENT_POLICY_VIOLATION,
})


class ClassifiedError(Exception):
    """Provider or gateway failure with a machine-readable classification.

    Attributes:
        kind: Failure classification
        message: Human-readable error message
        retryable: Whether a retry may succeed (defaults from ``kind``)
        retry_after: Seconds the provider asked callers to wait, if known
        context: Additional context about the failure
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        retryable: Optional[bool] = None,
        retry_after: Optional[float] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.kind = ErrorKind(kind)
        self.message = message
        self.retryable = self.kind in RETRYABLE_KINDS if retryable is None else retryable
        self.retry_after = None if retry_after is None else max(0.0, retry_after)
        self.context = context or {}
        super().__init__(f"[{self.kind.value}] {message}")

    @property
    def error_code(self) -> str:
        """Error code string, matching the kind's value."""
        return self.kind.value

    def to_detail(self) -> ErrorDetail:
        """Return a serializable view of this error."""
        return ErrorDetail(
            kind=self.kind,
            retryable=self.retryable,
            retry_after=self.retry_after,
            message=self.message
        )


class CircuitOpenError(ClassifiedError):
    """Raised when a circuit breaker rejects a call without invoking it."""

    def __init__(self, channel: str, retry_after: Optional[float] = None):
        super().__init__(
            ErrorKind.SERVICE_ERROR,
            f"Circuit breaker for {channel} is OPEN - service unavailable",
            retryable=False,
            retry_after=retry_after,
            context={"channel": channel}
        )
        self.channel = channel


def classify_exception(error: Exception) -> ClassifiedError:
    """Coerce any exception into a ``ClassifiedError``.

    Already-classified errors are returned unchanged; everything else is
    treated as an unknown, retryable service error.
    """
    if isinstance(error, ClassifiedError):
        return error
    return ClassifiedError(
        ErrorKind.SERVICE_ERROR,
        str(error) or type(error).__name__,
        context={"exception_type": type(error).__name__}
    )
