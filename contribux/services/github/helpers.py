"""
GitHub API helper utilities.

Provides rate limit header parsing and the classification of raw failures
(HTTP error responses, transport exceptions, schema mismatches, GraphQL
error payloads) into the typed error taxonomy in `exceptions.py`.
"""

import asyncio
import json
import logging
import time
from collections.abc import Iterable, Mapping
from email.utils import parsedate_to_datetime
from typing import Any

import httpx
import pydantic

from contribux.services.github.constants import SECONDARY_RATE_LIMIT_MARKERS
from contribux.services.github.exceptions import (
    ClientError,
    ErrorCategory,
    GitHubAPIError,
    NetworkError,
    RateLimitError,
    ServerError,
    ValidationError,
)
from contribux.services.github.types import RateLimitState, RequestContext, scrub_text

logger = logging.getLogger(__name__)

# Status -> (category, retryable). Anything else is resolved by range in classify_status().
STATUS_CATEGORY: dict[int, tuple[ErrorCategory, bool]] = {
    400: (ErrorCategory.CLIENT, False),
    401: (ErrorCategory.CLIENT, False),
    403: (ErrorCategory.CLIENT, False),
    404: (ErrorCategory.CLIENT, False),
    408: (ErrorCategory.CLIENT, True),
    422: (ErrorCategory.CLIENT, False),
    429: (ErrorCategory.CLIENT, True),
}

# GraphQL error `type` values -> category
GRAPHQL_ERROR_CATEGORY: dict[str, ErrorCategory] = {
    "FORBIDDEN": ErrorCategory.CLIENT,
    "UNAUTHORIZED": ErrorCategory.CLIENT,
    "NOT_FOUND": ErrorCategory.CLIENT,
    "VALIDATION": ErrorCategory.CLIENT,
    "GRAPHQL_PARSE_FAILED": ErrorCategory.CLIENT,
}


def classify_status(status_code: int) -> tuple[ErrorCategory, bool]:
    """Map an HTTP status to its (category, retryable) pair."""
    if status_code in STATUS_CATEGORY:
        return STATUS_CATEGORY[status_code]
    if status_code >= 500:
        return ErrorCategory.SERVER, True
    return ErrorCategory.CLIENT, False


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def parse_retry_after(value: str | None, now: float | None = None) -> float | None:
    """
    Parse a Retry-After header value into seconds.

    Accepts both the delta-seconds form ("60") and the HTTP-date form.
    """
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    current = time.time() if now is None else now
    return max(0.0, retry_at.timestamp() - current)


class RateLimitInfo:
    """Rate limit information from GitHub API response."""

    def __init__(self, response: httpx.Response) -> None:
        headers = response.headers
        self.limit = headers.get("X-RateLimit-Limit")
        self.remaining = headers.get("X-RateLimit-Remaining")
        self.reset = headers.get("X-RateLimit-Reset")
        self.used = headers.get("X-RateLimit-Used")
        self.resource = headers.get("X-RateLimit-Resource")
        self.retry_after = parse_retry_after(headers.get("Retry-After"))

    @property
    def reset_timestamp(self) -> int | None:
        """Get reset timestamp as integer, or None if not available."""
        return _parse_int(self.reset)

    @property
    def is_exhausted(self) -> bool:
        """Check if rate limit is exhausted."""
        return self.remaining is not None and _parse_int(self.remaining) == 0

    @property
    def has_limits(self) -> bool:
        return self.limit is not None and self.remaining is not None

    def to_state(self) -> RateLimitState | None:
        """Snapshot for the client's per-resource rate limit map."""
        limit = _parse_int(self.limit)
        remaining = _parse_int(self.remaining)
        if limit is None or remaining is None:
            return None
        return RateLimitState(
            resource=self.resource or "core",
            limit=limit,
            remaining=remaining,
            reset=self.reset_timestamp or 0,
            used=_parse_int(self.used) or 0,
        )


def _error_body(response: httpx.Response) -> Mapping[str, Any]:
    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return body if isinstance(body, Mapping) else {}


def is_secondary_rate_limit(response: httpx.Response) -> bool:
    """
    Detect GitHub's abuse-detection (secondary) rate limit.

    Secondary limits arrive as 403/429 whose message mentions the secondary
    limit, or carry a Retry-After while the primary quota is not exhausted.
    """
    if response.status_code not in (403, 429):
        return False
    message = str(_error_body(response).get("message", "")).lower()
    if any(marker in message for marker in SECONDARY_RATE_LIMIT_MARKERS):
        return True
    rate_info = RateLimitInfo(response)
    return rate_info.retry_after is not None and not rate_info.is_exhausted


def classify_response(
    response: httpx.Response,
    context: RequestContext | None = None,
    secrets: Iterable[str] = (),
) -> GitHubAPIError:
    """
    Convert a non-success GitHub response into a classified error.

    Args:
        response: The HTTP response from GitHub API
        context: Request context to attach for diagnostics
        secrets: Secret values that must never appear in the error message

    Returns:
        The classified error (the caller decides whether to raise it)
    """
    status = response.status_code
    body = _error_body(response)
    api_message = scrub_text(str(body.get("message", "")), secrets)
    documentation_url = body.get("documentation_url")
    operation = context.operation if context else "request"
    rate_info = RateLimitInfo(response)

    if status in (403, 429):
        if is_secondary_rate_limit(response):
            logger.warning(f"Secondary rate limit hit during {operation}")
            return RateLimitError(
                "GitHub API secondary rate limit exceeded",
                status,
                retry_after=rate_info.retry_after,
                rate_limit_reset=rate_info.reset_timestamp,
                secondary=True,
                context=context,
                documentation_url=documentation_url,
            )
        if rate_info.is_exhausted or status == 429:
            logger.warning(f"Primary rate limit hit during {operation}")
            return RateLimitError(
                "GitHub API rate limit exceeded",
                status,
                retry_after=rate_info.retry_after,
                rate_limit_reset=rate_info.reset_timestamp,
                context=context,
                documentation_url=documentation_url,
            )

    category, retryable = classify_status(status)

    if status == 401:
        message = "Invalid or expired GitHub token"
    elif status == 403:
        message = f"GitHub API forbidden: {api_message}" if api_message else "GitHub API forbidden"
    elif status == 404:
        message = f"Resource not found: {operation}"
    elif status == 422:
        message = f"Unprocessable request: {api_message}" if api_message else "Unprocessable"
    elif api_message:
        message = f"GitHub API error {status}: {api_message}"
    else:
        message = f"GitHub API error: {status}"

    error_cls = ServerError if category is ErrorCategory.SERVER else ClientError
    return error_cls(
        message,
        status,
        category=category,
        context=context,
        retryable=retryable,
        documentation_url=documentation_url,
    )


def raise_for_response(
    response: httpx.Response,
    context: RequestContext | None = None,
    secrets: Iterable[str] = (),
) -> None:
    """
    Raise the classified error for any non-2xx response.

    Raises:
        GitHubAPIError: Classified error for the response
    """
    if 200 <= response.status_code < 300:
        return
    raise classify_response(response, context, secrets)


def classify_exception(
    exc: BaseException,
    context: RequestContext | None = None,
    secrets: Iterable[str] = (),
) -> GitHubAPIError | None:
    """
    Convert a raised exception into a classified error.

    Returns None for exceptions that are not httpx request, timeout or schema
    failures (programming errors), so callers can re-raise them unchanged.
    """
    if isinstance(exc, GitHubAPIError):
        return exc
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return NetworkError(
            f"Request timed out during {context.operation if context else 'request'}",
            timed_out=True,
            context=context,
        )
    if isinstance(exc, httpx.TransportError):
        detail = scrub_text(str(exc), secrets)
        message = f"Network error ({type(exc).__name__})"
        if detail:
            message = f"{message}: {detail}"
        return NetworkError(message, context=context)
    if isinstance(exc, httpx.DecodingError):
        return ValidationError("Response body could not be decoded", context=context)
    if isinstance(exc, httpx.TooManyRedirects):
        return ClientError(
            f"Too many redirects during {context.operation if context else 'request'}",
            context=context,
            retryable=False,
        )
    if isinstance(exc, httpx.RequestError):
        detail = scrub_text(str(exc), secrets)
        return NetworkError(f"Request failed ({type(exc).__name__}): {detail}", context=context)
    if isinstance(exc, pydantic.ValidationError):
        operation = context.operation if context else "request"
        fields = ", ".join(
            ".".join(str(part) for part in err["loc"]) or "<root>" for err in exc.errors()[:5]
        )
        return ValidationError(
            f"Invalid response format for {operation}: {exc.error_count()} error(s) at {fields}",
            context=context,
        )
    if isinstance(exc, (json.JSONDecodeError, UnicodeDecodeError)):
        return ValidationError("Response body is not valid JSON", context=context)
    return None


def classify_graphql_errors(
    errors: list[Mapping[str, Any]],
    context: RequestContext | None = None,
    secrets: Iterable[str] = (),
) -> GitHubAPIError:
    """
    Classify the `errors` array of a GraphQL response.

    RATE_LIMITED becomes a RateLimitError; auth, lookup and query
    validation problems are client errors; anything else is treated as
    a transient server-side failure.
    """
    messages = "; ".join(scrub_text(str(err.get("message", "")), secrets) for err in errors)
    types = [str(err.get("type", "")) for err in errors]

    if "RATE_LIMITED" in types:
        return RateLimitError(
            f"GitHub GraphQL rate limit exceeded: {messages}",
            None,
            context=context,
        )
    for error_type in types:
        category = GRAPHQL_ERROR_CATEGORY.get(error_type)
        if category is not None:
            return ClientError(
                f"GraphQL query failed ({error_type}): {messages}",
                None,
                category=category,
                context=context,
                retryable=False,
            )
    return ServerError(f"GraphQL query failed: {messages}", None, context=context)
