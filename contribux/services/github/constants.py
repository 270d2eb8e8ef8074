"""Constants for the GitHub client layer."""

BASE_URL = "https://api.github.com"
API_VERSION = "2022-11-28"
DEFAULT_USER_AGENT = "contribux-github-client/1.0.0"

# Cache defaults (seconds / entries)
DEFAULT_CACHE_MAX_AGE = 300
DEFAULT_CACHE_MAX_SIZE = 1000
DEFAULT_CACHE_NAMESPACE = "gh"
DEFAULT_CACHE_STALE_TTL = 3600  # seconds a stale entry with an ETag is kept for revalidation
# Serialized params longer than this are replaced by a digest in cache keys
CACHE_KEY_PARAM_THRESHOLD = 100

# Request defaults
DEFAULT_TIMEOUT = 30.0
CONNECT_TIMEOUT = 5.0
MAX_PER_PAGE = 100

# Retry/throttle defaults
DEFAULT_DO_NOT_RETRY: tuple[str, ...] = ("400", "401", "403", "404", "422")
MAX_RETRIES_LIMIT = 10
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 30.0
DEFAULT_JITTER = 0.25
# GitHub asks clients to wait at least a minute when no reset hint is given
DEFAULT_RATE_LIMIT_DELAY = 60.0
DEFAULT_SECONDARY_RATE_LIMIT_DELAY = 60.0
DEFAULT_MAX_RATE_LIMIT_RETRIES = 2
DEFAULT_MAX_SECONDARY_RATE_LIMIT_RETRIES = 1

# GitHub App auth
APP_JWT_LIFETIME = 600
APP_JWT_CLOCK_SKEW = 60
INSTALLATION_TOKEN_REFRESH_MARGIN = 300

# Only this much of a GraphQL query is kept in request context
GRAPHQL_QUERY_PREVIEW = 100

REDACTED = "[REDACTED]"

# Parameter names containing any of these markers are never kept in error context
SENSITIVE_PARAM_MARKERS: tuple[str, ...] = (
    "token",
    "authorization",
    "secret",
    "password",
    "private_key",
    "privatekey",
    "jwt",
    "credential",
)

SECONDARY_RATE_LIMIT_MARKERS: tuple[str, ...] = (
    "secondary rate limit",
    "abuse detection",
)

RATE_LIMIT_RESOURCES: tuple[str, ...] = ("core", "search", "graphql")
