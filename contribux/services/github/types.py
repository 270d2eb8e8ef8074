"""Data types shared across the GitHub client layer."""

import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from contribux.services.github.constants import REDACTED, SENSITIVE_PARAM_MARKERS


def is_sensitive_key(key: str) -> bool:
    """Check whether a parameter name looks like it carries a credential."""
    normalized = key.lower().replace("-", "_")
    return any(marker in normalized for marker in SENSITIVE_PARAM_MARKERS)


def scrub_text(text: str, secrets: Iterable[str] = ()) -> str:
    """Replace every occurrence of a known secret value in `text`."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text


def redact_params(value: Any, secrets: Iterable[str] = ()) -> Any:
    """
    Return a copy of `value` that is safe to log or serialize.

    Mapping entries whose key looks sensitive are replaced wholesale, and any
    string equal to (or containing) a known secret is masked. Nested mappings
    and sequences are walked recursively.
    """
    secrets = tuple(s for s in secrets if s)
    if isinstance(value, Mapping):
        return {
            str(k): REDACTED if is_sensitive_key(str(k)) else redact_params(v, secrets)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact_params(item, secrets) for item in value]
    if isinstance(value, str):
        return scrub_text(value, secrets)
    return value


@dataclass(frozen=True)
class RequestContext:
    """Diagnostic context for one outbound call.

    Attached to every classified error raised for that call. Params are
    always a redacted copy, never the caller's original mapping.
    """

    method: str
    operation: str
    params: dict[str, Any] = field(default_factory=dict)
    attempt: int = 0
    max_retries: int = 0
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def create(
        cls,
        method: str,
        operation: str,
        params: Mapping[str, Any] | None = None,
        *,
        max_retries: int = 0,
        secrets: Iterable[str] = (),
    ) -> "RequestContext":
        return cls(
            method=method.upper(),
            operation=operation,
            params=redact_params(dict(params or {}), secrets),
            max_retries=max_retries,
        )

    def with_attempt(self, attempt: int) -> "RequestContext":
        return replace(self, attempt=attempt)

    def to_dict(self) -> dict[str, Any]:
        return {
            "method": self.method,
            "operation": self.operation,
            "params": self.params,
            "attempt": self.attempt,
            "max_retries": self.max_retries,
            "timestamp": self.timestamp,
        }


@dataclass
class RateLimitState:
    """Last seen rate limit for one resource (core, search, graphql).

    Read from response headers and kept in memory for the lifetime of the
    client only.
    """

    resource: str
    limit: int
    remaining: int
    reset: int  # Unix timestamp when the window resets
    used: int = 0
    updated_at: float = field(default_factory=time.time)

    @property
    def is_exhausted(self) -> bool:
        return self.remaining == 0

    def seconds_until_reset(self, now: float | None = None) -> float:
        current = time.time() if now is None else now
        return max(0.0, self.reset - current)
