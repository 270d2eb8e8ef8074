"""
GitHub client configuration.

The whole configuration tree is validated in one pass when the client is
built, so a bad value never surfaces later as a confusing runtime failure.
Both snake_case and camelCase keys are accepted (`max_age` / `maxAge`).
"""

from collections.abc import Callable, Mapping
from typing import Annotated, Any, Literal

import httpx
import pydantic
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeInt,
    PositiveFloat,
    PositiveInt,
    SecretStr,
    field_validator,
    model_validator,
)

from contribux.services.github.constants import (
    BASE_URL,
    DEFAULT_BASE_DELAY,
    DEFAULT_CACHE_MAX_AGE,
    DEFAULT_CACHE_MAX_SIZE,
    DEFAULT_CACHE_NAMESPACE,
    DEFAULT_CACHE_STALE_TTL,
    DEFAULT_DO_NOT_RETRY,
    DEFAULT_JITTER,
    DEFAULT_MAX_DELAY,
    DEFAULT_MAX_RATE_LIMIT_RETRIES,
    DEFAULT_MAX_SECONDARY_RATE_LIMIT_RETRIES,
    DEFAULT_RATE_LIMIT_DELAY,
    DEFAULT_SECONDARY_RATE_LIMIT_DELAY,
    DEFAULT_TIMEOUT,
    DEFAULT_USER_AGENT,
    MAX_RETRIES_LIMIT,
)
from contribux.services.github.exceptions import ConfigurationError

_TOKEN_KEYS = frozenset({"token"})
_APP_KEYS = frozenset(
    {"app_id", "appId", "private_key", "privateKey", "installation_id", "installationId"}
)


def _alias(name: str, camel: str) -> AliasChoices:
    return AliasChoices(name, camel)


class _ConfigModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class TokenAuth(_ConfigModel):
    """Personal access token or OAuth token."""

    type: Literal["token"] = "token"
    token: SecretStr

    @field_validator("token")
    @classmethod
    def _token_not_empty(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value().strip():
            raise ValueError("Token cannot be empty")
        return v


class AppAuth(_ConfigModel):
    """GitHub App credentials, optionally scoped to one installation."""

    type: Literal["app"] = "app"
    app_id: PositiveInt = Field(validation_alias=_alias("app_id", "appId"))
    private_key: SecretStr = Field(validation_alias=_alias("private_key", "privateKey"))
    installation_id: PositiveInt | None = Field(
        default=None, validation_alias=_alias("installation_id", "installationId")
    )

    @field_validator("private_key")
    @classmethod
    def _private_key_not_empty(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value().strip():
            raise ValueError("Private key cannot be empty")
        return v


AuthConfig = Annotated[TokenAuth | AppAuth, Field(discriminator="type")]


class CacheConfig(_ConfigModel):
    max_age: PositiveInt = Field(
        default=DEFAULT_CACHE_MAX_AGE, validation_alias=_alias("max_age", "maxAge")
    )  # seconds
    max_size: PositiveInt = Field(
        default=DEFAULT_CACHE_MAX_SIZE, validation_alias=_alias("max_size", "maxSize")
    )
    # Separates entries of differently-authenticated clients sharing one store
    namespace: str = Field(default=DEFAULT_CACHE_NAMESPACE, min_length=1)
    # How long past max_age an entry with an ETag is kept for conditional refetches; 0 disables
    stale_ttl: NonNegativeInt = Field(
        default=DEFAULT_CACHE_STALE_TTL, validation_alias=_alias("stale_ttl", "staleTtl")
    )


class RetryConfig(_ConfigModel):
    """Retry policy for failed requests. `retries` has no default on purpose."""

    retries: int
    do_not_retry: tuple[str, ...] = Field(
        default=DEFAULT_DO_NOT_RETRY, validation_alias=_alias("do_not_retry", "doNotRetry")
    )
    base_delay: PositiveFloat = Field(
        default=DEFAULT_BASE_DELAY, validation_alias=_alias("base_delay", "baseDelay")
    )
    max_delay: PositiveFloat = Field(
        default=DEFAULT_MAX_DELAY, validation_alias=_alias("max_delay", "maxDelay")
    )
    jitter: float = Field(default=DEFAULT_JITTER, ge=0.0, le=1.0)

    @field_validator("retries")
    @classmethod
    def _retries_in_range(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Retries must be a non-negative integer")
        if v > MAX_RETRIES_LIMIT:
            raise ValueError(f"Retries cannot exceed {MAX_RETRIES_LIMIT}")
        return v

    @field_validator("do_not_retry", mode="before")
    @classmethod
    def _statuses_as_strings(cls, v: Any) -> Any:
        if isinstance(v, (str, bytes)) or not isinstance(v, (list, tuple, set, frozenset)):
            raise ValueError("doNotRetry must be a list of status codes")
        return tuple(str(item) for item in v)


class ThrottleConfig(_ConfigModel):
    """
    Rate limit handling.

    The hooks are called as `hook(retry_after, context, retry_count)` before
    each rate-limit retry; a falsy return value vetoes the retry.
    """

    enabled: bool = True
    on_rate_limit: Callable[..., Any] | None = Field(
        default=None, validation_alias=_alias("on_rate_limit", "onRateLimit")
    )
    on_secondary_rate_limit: Callable[..., Any] | None = Field(
        default=None,
        validation_alias=_alias("on_secondary_rate_limit", "onSecondaryRateLimit"),
    )
    rate_limit_delay: PositiveFloat = Field(
        default=DEFAULT_RATE_LIMIT_DELAY,
        validation_alias=_alias("rate_limit_delay", "rateLimitDelay"),
    )
    secondary_rate_limit_delay: PositiveFloat = Field(
        default=DEFAULT_SECONDARY_RATE_LIMIT_DELAY,
        validation_alias=_alias("secondary_rate_limit_delay", "secondaryRateLimitDelay"),
    )
    max_rate_limit_retries: int = Field(
        default=DEFAULT_MAX_RATE_LIMIT_RETRIES,
        ge=0,
        validation_alias=_alias("max_rate_limit_retries", "maxRateLimitRetries"),
    )
    max_secondary_rate_limit_retries: int = Field(
        default=DEFAULT_MAX_SECONDARY_RATE_LIMIT_RETRIES,
        ge=0,
        validation_alias=_alias(
            "max_secondary_rate_limit_retries", "maxSecondaryRateLimitRetries"
        ),
    )


class GitHubClientConfig(_ConfigModel):
    """Root configuration for `GitHubClient`. No auth means anonymous access."""

    auth: AuthConfig | None = None
    base_url: str = Field(default=BASE_URL, validation_alias=_alias("base_url", "baseUrl"))
    user_agent: str = Field(
        default=DEFAULT_USER_AGENT, validation_alias=_alias("user_agent", "userAgent")
    )
    cache: CacheConfig = Field(default_factory=CacheConfig)
    retry: RetryConfig
    throttle: ThrottleConfig = Field(default_factory=ThrottleConfig)
    timeout: PositiveFloat = DEFAULT_TIMEOUT  # seconds, per request

    @model_validator(mode="before")
    @classmethod
    def _reject_mixed_auth(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            auth = data.get("auth")
            if isinstance(auth, Mapping) and _TOKEN_KEYS & auth.keys() and _APP_KEYS & auth.keys():
                raise ValueError("Cannot mix token and app authentication")
        return data

    @field_validator("base_url")
    @classmethod
    def _valid_base_url(cls, v: str) -> str:
        try:
            url = httpx.URL(v)
        except httpx.InvalidURL as e:
            raise ValueError("baseUrl must be a valid URL") from e
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError("baseUrl must be a valid URL")
        return v.rstrip("/")

    @field_validator("user_agent")
    @classmethod
    def _user_agent_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("userAgent cannot be empty")
        return v

    @property
    def graphql_url(self) -> str:
        # GitHub Enterprise Server serves REST at /api/v3 and GraphQL at /api/graphql
        if self.base_url.endswith("/api/v3"):
            return self.base_url.removesuffix("/v3") + "/graphql"
        return f"{self.base_url}/graphql"


def _format_validation_error(exc: pydantic.ValidationError) -> str:
    parts = []
    for err in exc.errors(include_input=False):
        location = ".".join(str(part) for part in err["loc"])
        message = err["msg"].removeprefix("Value error, ")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts)


def load_client_config(data: "GitHubClientConfig | Mapping[str, Any]") -> GitHubClientConfig:
    """
    Validate raw configuration.

    Raises:
        ConfigurationError: Listing every invalid field. Input values are
            never echoed, so credentials cannot leak through the message.
    """
    if isinstance(data, GitHubClientConfig):
        return data
    try:
        return GitHubClientConfig.model_validate(data)
    except pydantic.ValidationError as e:
        # Suppress the chained pydantic error: its text includes raw input values
        message = f"Invalid GitHub client configuration: {_format_validation_error(e)}"
        raise ConfigurationError(message) from None
