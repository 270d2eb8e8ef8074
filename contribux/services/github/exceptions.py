"""
Exceptions for the GitHub client layer.

Every failure surfaced to callers is a `GitHubAPIError` tagged with an
`ErrorCategory` and a retryability flag that is decided once, at
construction, from the category and HTTP status. Instances are immutable.

Hierarchy:
- ClientError: 4xx and bad input (not retried, except 408/429)
  - RateLimitError: primary or secondary rate limit (retried after a delay)
  - ConfigurationError: invalid client configuration
  - CircuitOpenError: calls refused while the circuit breaker is open
- ServerError: 5xx (retried)
- NetworkError: connection failures and timeouts (retried)
- ValidationError: response did not match the expected schema (never retried)
"""

from enum import Enum
from typing import Any

from contribux.services.github.types import RequestContext


class ErrorCategory(str, Enum):
    """Closed set of failure categories used by the retry policy."""

    CLIENT = "client"
    SERVER = "server"
    NETWORK = "network"
    VALIDATION = "validation"


RETRYABLE_CLIENT_STATUSES: frozenset[int] = frozenset({408, 429})


def is_retryable(
    category: ErrorCategory,
    status_code: int | None = None,
    rate_limited: bool = False,
) -> bool:
    """Decide retryability from category and status alone."""
    if category is ErrorCategory.VALIDATION:
        return False
    if category in (ErrorCategory.SERVER, ErrorCategory.NETWORK):
        return True
    if rate_limited:
        return True
    return status_code in RETRYABLE_CLIENT_STATUSES


class GitHubAPIError(Exception):
    """Error from the GitHub API or the client layer around it."""

    default_category = ErrorCategory.CLIENT

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        *,
        category: ErrorCategory | None = None,
        context: RequestContext | None = None,
        retryable: bool | None = None,
        documentation_url: str | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.category = category or self.default_category
        self.context = context
        self.documentation_url = documentation_url
        if retryable is None:
            retryable = is_retryable(self.category, status_code, self._rate_limited)
        self.retryable = retryable
        super().__init__(message)
        self._frozen = True

    _rate_limited = False

    def __setattr__(self, name: str, value: Any) -> None:
        # Dunder attributes (__traceback__, __notes__, ...) stay writable for the interpreter
        if getattr(self, "_frozen", False) and not name.startswith("__"):
            raise AttributeError(f"{type(self).__name__} is immutable")
        super().__setattr__(name, value)

    def __delattr__(self, name: str) -> None:
        if getattr(self, "_frozen", False) and not name.startswith("__"):
            raise AttributeError(f"{type(self).__name__} is immutable")
        super().__delattr__(name)

    @property
    def operation(self) -> str | None:
        return self.context.operation if self.context else None

    @property
    def attempt(self) -> int | None:
        return self.context.attempt if self.context else None

    @property
    def max_retries(self) -> int | None:
        return self.context.max_retries if self.context else None

    def to_dict(self) -> dict[str, Any]:
        """Log-safe representation. Context params are already redacted."""
        data: dict[str, Any] = {
            "type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "status_code": self.status_code,
            "retryable": self.retryable,
        }
        if self.documentation_url:
            data["documentation_url"] = self.documentation_url
        if self.context is not None:
            data["context"] = self.context.to_dict()
        return data

    def __str__(self) -> str:
        details = [f"category={self.category.value}"]
        if self.status_code is not None:
            details.append(f"status={self.status_code}")
        if self.context is not None:
            details.append(f"operation={self.context.operation}")
            details.append(f"attempt={self.context.attempt}/{self.context.max_retries}")
        return f"{self.message} ({', '.join(details)})"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(message={self.message!r}, "
            f"category={self.category.value!r}, status_code={self.status_code!r}, "
            f"retryable={self.retryable!r}, operation={self.operation!r})"
        )


class ClientError(GitHubAPIError):
    """Request problem on the caller side: bad input, forbidden, not found."""

    default_category = ErrorCategory.CLIENT


class RateLimitError(ClientError):
    """Primary or secondary (abuse detection) rate limit was hit."""

    _rate_limited = True

    def __init__(
        self,
        message: str,
        status_code: int | None = 403,
        *,
        retry_after: float | None = None,
        rate_limit_reset: int | None = None,
        secondary: bool = False,
        context: RequestContext | None = None,
        documentation_url: str | None = None,
    ):
        self.retry_after = retry_after  # Seconds from the Retry-After header
        self.rate_limit_reset = rate_limit_reset  # Unix timestamp when rate limit resets
        self.secondary = secondary
        super().__init__(
            message,
            status_code,
            category=ErrorCategory.CLIENT,
            context=context,
            documentation_url=documentation_url,
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["retry_after"] = self.retry_after
        data["rate_limit_reset"] = self.rate_limit_reset
        data["secondary"] = self.secondary
        return data


class ServerError(GitHubAPIError):
    """GitHub answered with a 5xx."""

    default_category = ErrorCategory.SERVER


class NetworkError(GitHubAPIError):
    """Connection-level failure or timeout; no usable HTTP response."""

    default_category = ErrorCategory.NETWORK

    def __init__(
        self,
        message: str,
        *,
        timed_out: bool = False,
        context: RequestContext | None = None,
    ):
        self.timed_out = timed_out
        super().__init__(message, None, category=ErrorCategory.NETWORK, context=context)


class ValidationError(GitHubAPIError):
    """Response body did not match the expected schema.

    Signals an upstream contract change, so it is never retried regardless
    of the status code that carried it.
    """

    default_category = ErrorCategory.VALIDATION

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        *,
        context: RequestContext | None = None,
    ):
        super().__init__(
            message,
            status_code,
            category=ErrorCategory.VALIDATION,
            context=context,
            retryable=False,
        )


class ConfigurationError(ClientError, ValueError):
    """Client configuration was rejected at construction time."""

    def __init__(self, message: str):
        super().__init__(message, None, retryable=False)


class CircuitOpenError(ClientError):
    """The circuit breaker is open and the call was not attempted."""

    def __init__(
        self,
        message: str,
        *,
        retry_in: float = 0.0,
        context: RequestContext | None = None,
    ):
        self.retry_in = retry_in
        super().__init__(message, None, context=context, retryable=False)
