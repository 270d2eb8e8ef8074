"""
Typed async client for the GitHub REST and GraphQL APIs.

Every read follows the same pipeline:

    cache key -> cache lookup -> in-flight dedupe -> retry policy around
    the HTTP call -> schema validation -> cache store -> typed result

Cached values are the raw JSON payloads; they are validated again on a
hit, so a storage adapter never has to know about pydantic models. A
response that carried an ETag is kept past `cache.max_age` (for
`cache.stale_ttl` seconds) and refetched with If-None-Match; a 304 serves
the stored payload and restarts its freshness window.
GraphQL queries and rate limit lookups bypass the cache.
"""

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar
from urllib.parse import quote

import httpx
import pydantic
from pydantic import TypeAdapter

from contribux.services.github.auth import AuthProvider, create_auth_provider
from contribux.services.github.cache import CacheEntry, CacheStorage, MemoryCache
from contribux.services.github.cache_keys import CacheKeyGenerator
from contribux.services.github.config import GitHubClientConfig, load_client_config
from contribux.services.github.constants import (
    API_VERSION,
    CONNECT_TIMEOUT,
    GRAPHQL_QUERY_PREVIEW,
    MAX_PER_PAGE,
)
from contribux.services.github.exceptions import (
    CircuitOpenError,
    ErrorCategory,
    GitHubAPIError,
    ValidationError,
)
from contribux.services.github.helpers import (
    RateLimitInfo,
    classify_exception,
    classify_graphql_errors,
    classify_response,
)
from contribux.services.github.http_client import create_github_http_client
from contribux.services.github.retry import CircuitBreaker, RetryPolicy, Sleep
from contribux.services.github.schemas import (
    GitHubIssue,
    GitHubOrganization,
    GitHubRepository,
    GitHubUser,
    RateLimitStatus,
    RepositorySearchResult,
)
from contribux.services.github.types import RateLimitState, RequestContext

logger = logging.getLogger(__name__)

T = TypeVar("T")

FailureHook = Callable[[GitHubAPIError], Awaitable[None] | None]
Parser = Callable[[Any, RequestContext], T]

_USER = TypeAdapter(GitHubUser)
_REPOSITORY = TypeAdapter(GitHubRepository)
_SEARCH_RESULT = TypeAdapter(RepositorySearchResult)
_ISSUE = TypeAdapter(GitHubIssue)
_ISSUES = TypeAdapter(list[GitHubIssue])
_ORGANIZATION = TypeAdapter(GitHubOrganization)


def _query_params(params: Mapping[str, Any]) -> dict[str, Any]:
    """Drop unset params and render the rest the way GitHub expects in a query string."""
    query: dict[str, Any] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        elif isinstance(value, Sequence) and not isinstance(value, str):
            value = ",".join(str(item) for item in value)
        query[key] = value
    return query


def _segment(value: str | int) -> str:
    """Percent-encode one URL path segment, slashes included."""
    return quote(str(value), safe="")


@dataclass
class _Fetched:
    """Outcome of one logical request."""

    data: Any  # raw JSON payload
    value: Any  # parsed payload
    etag: str | None = None
    not_modified: bool = False


@dataclass
class _InFlight:
    """A fetch shared by every concurrent caller of the same cache key."""

    task: "asyncio.Task[Any]"
    waiters: int = 0


class GitHubClient:
    """
    GitHub API client with caching, retries and typed responses.

    Usage:
        async with GitHubClient({"auth": {"type": "token", "token": token},
                                 "retry": {"retries": 2}}) as github:
            repo = await github.get_repository("octocat", "hello-world")
    """

    def __init__(
        self,
        config: GitHubClientConfig | Mapping[str, Any],
        *,
        cache: CacheStorage | None = None,
        http_client: httpx.AsyncClient | None = None,
        auth_provider: AuthProvider | None = None,
        sleep: Sleep = asyncio.sleep,
        circuit_breaker: CircuitBreaker | None = None,
        on_failure: FailureHook | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = load_client_config(config)
        self.cache: CacheStorage = (
            cache
            if cache is not None
            else MemoryCache(
                max_size=self.config.cache.max_size,
                default_ttl=self.config.cache.max_age,
            )
        )
        self._owns_http_client = http_client is None
        self._http = http_client or create_github_http_client(self.config)
        self._auth = auth_provider or create_auth_provider(
            self.config.auth,
            base_url=self.config.base_url,
            user_agent=self.config.user_agent,
        )
        self._keys = CacheKeyGenerator(namespace=self.config.cache.namespace)
        self.retry_policy = RetryPolicy.from_config(self.config.retry, self.config.throttle)
        self.circuit_breaker = circuit_breaker
        self.on_failure = on_failure
        self._sleep = sleep
        self._clock = clock

        self.rate_limits: dict[str, RateLimitState] = {}
        self.cache_hits = 0
        self.cache_misses = 0
        self.revalidations = 0
        self.network_requests = 0
        self._in_flight: dict[str, _InFlight] = {}

    # ═══════════════════════════════════════════════════════════════
    # Lifecycle
    # ═══════════════════════════════════════════════════════════════

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Cancel in-flight fetches and close the HTTP client if this instance created it."""
        tasks = [flight.task for flight in self._in_flight.values()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._owns_http_client and not self._http.is_closed:
            await self._http.aclose()
            logger.debug("Closed GitHub HTTP client")

    # ═══════════════════════════════════════════════════════════════
    # Request plumbing
    # ═══════════════════════════════════════════════════════════════

    def _secrets(self) -> tuple[str, ...]:
        return self._auth.secrets()

    def _context(
        self, method: str, operation: str, params: Mapping[str, Any] | None = None
    ) -> RequestContext:
        return RequestContext.create(
            method,
            operation,
            params,
            max_retries=self.config.retry.retries,
            secrets=self._secrets(),
        )

    async def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION,
            "User-Agent": self.config.user_agent,
        }
        headers.update(await self._auth.auth_headers(self._http))
        return headers

    def _record_rate_limit(self, response: httpx.Response) -> None:
        state = RateLimitInfo(response).to_state()
        if state is not None:
            self.rate_limits[state.resource] = state

    def _record_breaker(self, error: GitHubAPIError | None) -> None:
        if self.circuit_breaker is None:
            return
        if error is None:
            self.circuit_breaker.record_success()
        elif error.category in (ErrorCategory.SERVER, ErrorCategory.NETWORK):
            self.circuit_breaker.record_failure()

    async def _send(
        self,
        method: str,
        url: str,
        context: RequestContext,
        *,
        params: Mapping[str, Any] | None = None,
        json_body: Any = None,
        extra_headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        """
        Perform one HTTP attempt. Redirects (renamed or transferred
        repositories answer with a 301) are followed.

        Raises:
            GitHubAPIError: Classified error for a transport failure, a
                timeout, or a non-2xx response (a 304 is returned as is
                when the request was conditional)
        """
        conditional = extra_headers is not None and "If-None-Match" in extra_headers
        if self.circuit_breaker is not None and not self.circuit_breaker.can_execute():
            retry_in = self.circuit_breaker.retry_in()
            raise CircuitOpenError(
                f"GitHub calls suspended by circuit breaker for {retry_in:.0f}s",
                retry_in=retry_in,
                context=context,
            )

        seconds = timeout if timeout is not None else self.config.timeout
        try:
            async with asyncio.timeout(seconds):
                headers = await self._headers()
                headers.update(extra_headers or {})
                self.network_requests += 1
                response = await self._http.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    headers=headers,
                    timeout=httpx.Timeout(seconds, connect=min(CONNECT_TIMEOUT, seconds)),
                    follow_redirects=True,
                )
        except GitHubAPIError as e:
            # Raised while obtaining credentials (installation token exchange)
            self._record_breaker(e)
            raise
        except (httpx.HTTPError, TimeoutError) as e:
            classified = classify_exception(e, context, self._secrets())
            if classified is None:
                raise
            self._record_breaker(classified)
            raise classified from e

        self._record_rate_limit(response)
        if not response.is_success and not (conditional and response.status_code == 304):
            error = classify_response(response, context, self._secrets())
            self._record_breaker(error)
            raise error
        self._record_breaker(None)
        return response

    async def _notify_failure(self, error: GitHubAPIError) -> None:
        if error.category in (ErrorCategory.SERVER, ErrorCategory.NETWORK):
            logger.error(f"GitHub request failed: {error}")
        else:
            logger.warning(f"GitHub request failed: {error}")
        if self.on_failure is None:
            return
        try:
            result = self.on_failure(error)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"on_failure hook raised while handling {error.operation}")

    async def _request(
        self,
        method: str,
        url: str,
        context: RequestContext,
        parse: Parser[T],
        *,
        params: Mapping[str, Any] | None = None,
        json_body: Any = None,
        extra_headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> _Fetched:
        """
        Run one logical call (with retries) and return its raw and parsed payload.

        Raises:
            GitHubAPIError: The terminal classified error once retries are spent
        """

        async def attempt(attempt_context: RequestContext) -> _Fetched:
            response = await self._send(
                method,
                url,
                attempt_context,
                params=params,
                json_body=json_body,
                extra_headers=extra_headers,
                timeout=timeout,
            )
            if response.status_code == 304:
                return _Fetched(None, None, response.headers.get("ETag"), not_modified=True)
            try:
                data = response.json()
                return _Fetched(data, parse(data, attempt_context), response.headers.get("ETag"))
            except (ValueError, pydantic.ValidationError) as e:
                classified = classify_exception(e, attempt_context, self._secrets())
                if classified is None:
                    raise
                raise classified from e

        outcome = await self.retry_policy.run(attempt, context, sleep=self._sleep)
        if outcome.error is not None:
            await self._notify_failure(outcome.error)
        return outcome.unwrap()

    async def _shared(self, key: str, fetch: Callable[[], Awaitable[T]]) -> T:
        """
        Collapse concurrent identical reads into one fetch.

        A cancelled waiter leaves the fetch running for the others; the
        fetch itself is cancelled only when its last waiter goes away.
        """
        flight = self._in_flight.get(key)
        if flight is None:
            flight = _InFlight(asyncio.ensure_future(fetch()))
            self._in_flight[key] = flight

            def _forget(_task: "asyncio.Task[Any]", registered: _InFlight = flight) -> None:
                if self._in_flight.get(key) is registered:
                    del self._in_flight[key]

            flight.task.add_done_callback(_forget)
        else:
            logger.debug(f"Joining in-flight request: {key}")

        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        except asyncio.CancelledError:
            if flight.waiters == 1 and not flight.task.done():
                flight.task.cancel()
            raise
        finally:
            flight.waiters -= 1

    async def _cached_get(
        self,
        path: str,
        operation: str,
        adapter: TypeAdapter[T],
        params: Mapping[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> T:
        query = _query_params(params or {})
        key = self._keys.generate("GET", path, query)

        stale: tuple[CacheEntry, T] | None = None
        entry = await self.cache.get(key)
        if entry is not None:
            try:
                value = adapter.validate_python(entry.value)
            except pydantic.ValidationError:
                logger.warning(f"Dropping cache entry that no longer validates: {key}")
                await self.cache.delete(key)
            else:
                if entry.is_fresh(self._clock()):
                    self.cache_hits += 1
                    logger.debug(f"Cache HIT: {operation}")
                    return value
                if entry.etag:
                    stale = (entry, value)

        if stale is None:
            self.cache_misses += 1
            logger.debug(f"Cache MISS: {operation}")
        else:
            logger.debug(f"Cache STALE: {operation}, revalidating with ETag")

        async def fetch() -> T:
            result = await self._request(
                "GET",
                f"{self.config.base_url}{path}",
                self._context("GET", operation, query),
                lambda payload, _ctx: adapter.validate_python(payload),
                params=query,
                extra_headers={"If-None-Match": stale[0].etag} if stale else None,
                timeout=timeout,
            )
            if stale is not None:
                cached, cached_value = stale
                if result.not_modified:
                    self.cache_hits += 1
                    self.revalidations += 1
                    logger.debug(f"Cache REVALIDATED: {operation}")
                    await self._store(key, cached.value, result.etag or cached.etag)
                    return cached_value
                self.cache_misses += 1
            await self._store(key, result.data, result.etag)
            return result.value

        return await self._shared(key, fetch)

    async def _store(self, key: str, data: Any, etag: str | None) -> None:
        """Cache a payload; one with an ETag is kept past max_age for revalidation."""
        cache = self.config.cache
        if etag and cache.stale_ttl:
            await self.cache.set(
                key, data, cache.max_age + cache.stale_ttl, etag=etag, max_age=cache.max_age
            )
        else:
            await self.cache.set(key, data, cache.max_age)

    # ═══════════════════════════════════════════════════════════════
    # Users and organizations
    # ═══════════════════════════════════════════════════════════════

    async def get_authenticated_user(self, *, timeout: float | None = None) -> GitHubUser:
        """Fetch the user the configured credentials belong to."""
        return await self._cached_get("/user", "getAuthenticatedUser", _USER, timeout=timeout)

    async def get_user(self, username: str, *, timeout: float | None = None) -> GitHubUser:
        return await self._cached_get(
            f"/users/{_segment(username)}", "getUser", _USER, timeout=timeout
        )

    async def get_organization(
        self, org: str, *, timeout: float | None = None
    ) -> GitHubOrganization:
        return await self._cached_get(
            f"/orgs/{_segment(org)}", "getOrganization", _ORGANIZATION, timeout=timeout
        )

    # ═══════════════════════════════════════════════════════════════
    # Repositories
    # ═══════════════════════════════════════════════════════════════

    async def get_repository(
        self, owner: str, repo: str, *, timeout: float | None = None
    ) -> GitHubRepository:
        """
        Fetch repository metadata.

        Args:
            owner: Repository owner (username or org)
            repo: Repository name

        Returns:
            GitHubRepository (served from cache for `cache.max_age` seconds)
        """
        return await self._cached_get(
            f"/repos/{_segment(owner)}/{_segment(repo)}",
            "getRepository",
            _REPOSITORY,
            timeout=timeout,
        )

    async def search_repositories(
        self,
        q: str,
        sort: str | None = None,
        order: str | None = None,
        page: int | None = None,
        per_page: int | None = None,
        *,
        timeout: float | None = None,
    ) -> RepositorySearchResult:
        """
        Search repositories.

        Args:
            q: Search query (e.g. "language:python good-first-issues:>3")
            sort: 'stars', 'forks', 'help-wanted-issues' or 'updated'
            order: 'asc' or 'desc'
            page: Page number (1-indexed)
            per_page: Items per page (max 100)
        """
        params = {
            "q": q,
            "sort": sort,
            "order": order,
            "page": page,
            "per_page": min(per_page, MAX_PER_PAGE) if per_page is not None else None,
        }
        return await self._cached_get(
            "/search/repositories",
            "searchRepositories",
            _SEARCH_RESULT,
            params,
            timeout=timeout,
        )

    # ═══════════════════════════════════════════════════════════════
    # Issues
    # ═══════════════════════════════════════════════════════════════

    async def list_issues(
        self,
        owner: str,
        repo: str,
        state: str | None = None,
        labels: str | Sequence[str] | None = None,
        sort: str | None = None,
        direction: str | None = None,
        page: int | None = None,
        per_page: int | None = None,
        *,
        timeout: float | None = None,
    ) -> list[GitHubIssue]:
        """
        List issues for a repository.

        Args:
            owner: Repository owner
            repo: Repository name
            state: 'open', 'closed' or 'all'
            labels: Label names, as a list or a comma-separated string
            sort: 'created', 'updated' or 'comments'
            direction: 'asc' or 'desc'
            page: Page number (1-indexed)
            per_page: Items per page (max 100)

        Returns:
            Issues (GitHub includes pull requests here; see GitHubIssue.is_pull_request)
        """
        params = {
            "state": state,
            "labels": labels,
            "sort": sort,
            "direction": direction,
            "page": page,
            "per_page": min(per_page, MAX_PER_PAGE) if per_page is not None else None,
        }
        return await self._cached_get(
            f"/repos/{_segment(owner)}/{_segment(repo)}/issues",
            "listIssues",
            _ISSUES,
            params,
            timeout=timeout,
        )

    async def get_issue(
        self, owner: str, repo: str, issue_number: int, *, timeout: float | None = None
    ) -> GitHubIssue:
        return await self._cached_get(
            f"/repos/{_segment(owner)}/{_segment(repo)}/issues/{_segment(issue_number)}",
            "getIssue",
            _ISSUE,
            timeout=timeout,
        )

    # ═══════════════════════════════════════════════════════════════
    # GraphQL and rate limits (never cached)
    # ═══════════════════════════════════════════════════════════════

    async def graphql(
        self,
        query: str,
        variables: Mapping[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """
        Run a GraphQL query and return its `data` object.

        Raises:
            RateLimitError: GraphQL error of type RATE_LIMITED
            ClientError: Query, permission or lookup errors
            GitHubAPIError: Any other failure, classified as for REST calls
        """
        context = self._context(
            "POST",
            "graphql",
            {"query": query[:GRAPHQL_QUERY_PREVIEW], "variables": dict(variables or {})},
        )

        def parse(body: Any, attempt_context: RequestContext) -> dict[str, Any]:
            if not isinstance(body, Mapping):
                raise ValidationError("GraphQL response is not an object", context=attempt_context)
            errors = body.get("errors")
            if errors:
                raise classify_graphql_errors(errors, attempt_context, self._secrets())
            data = body.get("data")
            if not isinstance(data, Mapping):
                raise ValidationError("GraphQL response has no data", context=attempt_context)
            return dict(data)

        result = await self._request(
            "POST",
            self.config.graphql_url,
            context,
            parse,
            json_body={"query": query, "variables": dict(variables or {})},
            timeout=timeout,
        )
        return result.value

    async def get_rate_limit(self, *, timeout: float | None = None) -> RateLimitStatus:
        """Fetch current quotas. This endpoint does not count against the limit."""
        result = await self._request(
            "GET",
            f"{self.config.base_url}/rate_limit",
            self._context("GET", "getRateLimit"),
            lambda payload, _ctx: RateLimitStatus.from_response(payload),
            timeout=timeout,
        )
        return result.value

    # ═══════════════════════════════════════════════════════════════
    # Cache management
    # ═══════════════════════════════════════════════════════════════

    def get_cache_stats(self) -> dict[str, Any]:
        stats = self.cache.stats()
        lookups = self.cache_hits + self.cache_misses
        return {
            "hits": self.cache_hits,
            "misses": self.cache_misses,
            "hit_rate": self.cache_hits / lookups if lookups else 0.0,
            "size": stats.size,
            "max_size": stats.max_size,
            "network_requests": self.network_requests,
            "revalidations": self.revalidations,
        }

    async def clear_cache(self) -> None:
        """Remove all cached responses and reset the counters."""
        await self.cache.clear()
        self.cache_hits = 0
        self.cache_misses = 0
        self.network_requests = 0
        self.revalidations = 0

    async def invalidate(self, pattern: str) -> int:
        """
        Delete cached responses whose key matches `pattern` (`*` is the only wildcard).

        Keys look like `gh:GET:/repos/octocat/hello-world:{}`, so
        `gh:GET:/repos/octocat/*` drops everything cached for one owner.
        """
        removed = await self.cache.invalidate_pattern(pattern)
        logger.info(f"Invalidated {removed} cached GitHub responses matching {pattern!r}")
        return removed


def create_github_client(
    config: GitHubClientConfig | Mapping[str, Any], **kwargs: Any
) -> GitHubClient:
    """Build a client, validating `config` eagerly."""
    return GitHubClient(config, **kwargs)
