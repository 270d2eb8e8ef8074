"""
GitHub client package.

Re-exports the public types and classes.
Usage: `from contribux.services.github import GitHubClient, GitHubAPIError`

Module structure:
- client.py: GitHubClient facade (typed REST and GraphQL operations)
- config.py: Validated client configuration
- auth.py: Token and GitHub App authentication providers
- cache.py: Cache storage adapters (memory, Redis)
- cache_keys.py: Deterministic cache key generation
- retry.py: Retry/throttle policy and circuit breaker
- helpers.py: Rate limit parsing and error classification
- http_client.py: HTTP client construction
- schemas.py: Response models
- types.py: Request context and rate limit state
- exceptions.py: Error taxonomy
- constants.py: API constants and defaults
"""

from contribux.services.github.auth import (
    AnonymousAuthProvider,
    AppAuthProvider,
    AuthProvider,
    TokenAuthProvider,
    create_auth_provider,
)
from contribux.services.github.cache import (
    CacheEntry,
    CacheMetrics,
    CacheStorage,
    MemoryCache,
    RedisCache,
    match_pattern,
)
from contribux.services.github.cache_keys import CacheKeyGenerator, make_cache_key
from contribux.services.github.client import GitHubClient, create_github_client
from contribux.services.github.config import (
    AppAuth,
    CacheConfig,
    GitHubClientConfig,
    RetryConfig,
    ThrottleConfig,
    TokenAuth,
    load_client_config,
)
from contribux.services.github.exceptions import (
    CircuitOpenError,
    ClientError,
    ConfigurationError,
    ErrorCategory,
    GitHubAPIError,
    NetworkError,
    RateLimitError,
    ServerError,
    ValidationError,
)
from contribux.services.github.helpers import RateLimitInfo, classify_response
from contribux.services.github.http_client import create_github_http_client
from contribux.services.github.retry import (
    CircuitBreaker,
    CircuitState,
    RetryDecision,
    RetryOutcome,
    RetryPolicy,
    RetryState,
)
from contribux.services.github.schemas import (
    GitHubIssue,
    GitHubLabel,
    GitHubOrganization,
    GitHubRepository,
    GitHubUser,
    RateLimitResource,
    RateLimitStatus,
    RepositorySearchResult,
)
from contribux.services.github.types import RateLimitState, RequestContext

__all__ = [
    # Client (main entry point)
    "GitHubClient",
    "create_github_client",
    "create_github_http_client",
    # Configuration
    "AppAuth",
    "CacheConfig",
    "GitHubClientConfig",
    "RetryConfig",
    "ThrottleConfig",
    "TokenAuth",
    "load_client_config",
    # Authentication
    "AnonymousAuthProvider",
    "AppAuthProvider",
    "AuthProvider",
    "TokenAuthProvider",
    "create_auth_provider",
    # Caching
    "CacheEntry",
    "CacheKeyGenerator",
    "CacheMetrics",
    "CacheStorage",
    "MemoryCache",
    "RedisCache",
    "make_cache_key",
    "match_pattern",
    # Retry
    "CircuitBreaker",
    "CircuitState",
    "RetryDecision",
    "RetryOutcome",
    "RetryPolicy",
    "RetryState",
    # Utilities
    "RateLimitInfo",
    "RateLimitState",
    "RequestContext",
    "classify_response",
    # Exceptions
    "CircuitOpenError",
    "ClientError",
    "ConfigurationError",
    "ErrorCategory",
    "GitHubAPIError",
    "NetworkError",
    "RateLimitError",
    "ServerError",
    "ValidationError",
    # Schemas
    "GitHubIssue",
    "GitHubLabel",
    "GitHubOrganization",
    "GitHubRepository",
    "GitHubUser",
    "RateLimitResource",
    "RateLimitStatus",
    "RepositorySearchResult",
]
