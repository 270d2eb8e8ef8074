"""Unit tests for GitHubClient.

Drives the full request pipeline (cache, dedupe, retries, classification,
schema validation) against a scripted fake GitHub served through
httpx.MockTransport. Retry delays are recorded, never slept.
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from contribux.services.github.cache import MemoryCache
from contribux.services.github.cache_keys import CacheKeyGenerator
from contribux.services.github.client import GitHubClient, create_github_client
from contribux.services.github.constants import API_VERSION, DEFAULT_USER_AGENT
from contribux.services.github.exceptions import (
    CircuitOpenError,
    ClientError,
    ConfigurationError,
    NetworkError,
    RateLimitError,
    ServerError,
    ValidationError,
)
from contribux.services.github.retry import CircuitBreaker
from contribux.services.github.schemas import GitHubRepository, GitHubUser
from tests.helpers.github_payloads import (
    issue_json,
    org_json,
    rate_limit_json,
    repo_json,
    user_json,
)
from tests.helpers.github_transport import TOKEN, FakeGitHub, Reply, client_config

NO_RETRY = {"retries": 0, "jitter": 0.0}


# ═══════════════════════════════════════════════════════════════════════════
# Caching
# ═══════════════════════════════════════════════════════════════════════════


class TestCaching:
    """Reads are served from cache after the first fetch."""

    @pytest.mark.anyio
    async def test_second_call_is_a_cache_hit(self, make_client):
        fake = FakeGitHub(Reply(200, repo_json()))
        client = make_client(fake)

        first = await client.get_repository("octocat", "hello-world")
        second = await client.get_repository("octocat", "hello-world")

        assert isinstance(first, GitHubRepository)
        assert first == second
        assert fake.call_count == 1
        assert client.cache_hits == 1
        assert client.cache_misses == 1
        assert len(client.cache) == 1

    @pytest.mark.anyio
    async def test_raw_payload_is_cached_with_max_age(self):
        cache = MemoryCache()
        fake = FakeGitHub(Reply(200, user_json()))
        config = client_config(cache={"max_age": 60})

        async with GitHubClient(config, cache=cache, http_client=fake.http_client()) as client:
            await client.get_user("octocat")
            await client._http.aclose()

        [key] = await cache.keys()
        entry = await cache.get(key)
        assert key == "gh:GET:/users/octocat:{}"
        assert entry.value["login"] == "octocat"
        assert entry.ttl == 60

    @pytest.mark.anyio
    async def test_different_params_are_cached_separately(self, make_client):
        fake = FakeGitHub(Reply(200, {"total_count": 0, "incomplete_results": False, "items": []}))
        client = make_client(fake)

        await client.search_repositories("language:python", page=1)
        await client.search_repositories("language:python", page=2)
        await client.search_repositories("language:python", page=1)

        assert fake.call_count == 2

    @pytest.mark.anyio
    async def test_invalid_cached_entry_is_refetched(self, make_client):
        cache = MemoryCache()
        key = CacheKeyGenerator().generate("GET", "/users/octocat", {})
        await cache.set(key, {"login": "octocat"})
        fake = FakeGitHub(Reply(200, user_json()))
        client = make_client(fake, cache=cache)

        user = await client.get_user("octocat")

        assert user.id == 1
        assert fake.call_count == 1

    @pytest.mark.anyio
    async def test_failures_are_not_cached(self, make_client):
        fake = FakeGitHub(Reply(404, {"message": "Not Found"}), Reply(200, user_json()))
        client = make_client(fake)

        with pytest.raises(ClientError):
            await client.get_user("octocat")
        user = await client.get_user("octocat")

        assert user.login == "octocat"
        assert fake.call_count == 2

    @pytest.mark.anyio
    async def test_clear_cache_resets_counters(self, make_client):
        client = make_client(FakeGitHub(Reply(200, user_json())))
        await client.get_user("octocat")
        await client.get_user("octocat")

        await client.clear_cache()

        stats = client.get_cache_stats()
        assert stats["hits"] == 0
        assert stats["size"] == 0
        assert stats["network_requests"] == 0

    @pytest.mark.anyio
    async def test_invalidate_by_pattern(self, make_client):
        fake = FakeGitHub(handler=lambda request: Reply(200, user_json()).build())
        client = make_client(fake)
        await client.get_user("octocat")
        await client.get_user("hubot")

        removed = await client.invalidate("gh:GET:/users/octo*")

        assert removed == 1
        assert await client.cache.keys() == ["gh:GET:/users/hubot:{}"]

    @pytest.mark.anyio
    async def test_cache_stats(self, make_client):
        client = make_client(FakeGitHub(Reply(200, user_json())))
        await client.get_user("octocat")
        await client.get_user("octocat")
        await client.get_user("octocat")

        stats = client.get_cache_stats()

        assert stats["hits"] == 2
        assert stats["misses"] == 1
        assert stats["hit_rate"] == pytest.approx(2 / 3)
        assert stats["size"] == 1
        assert stats["max_size"] == 1000
        assert stats["network_requests"] == 1


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestConditionalRequests:
    """Stale entries with an ETag are revalidated with If-None-Match."""

    ETAG = '"644b5b0155e6404a9cc4bd9d8b1ae730"'

    def _client(self, make_client, fake):
        clock = FakeClock()
        return make_client(fake, cache=MemoryCache(clock=clock), clock=clock), clock

    @pytest.mark.anyio
    async def test_not_modified_serves_cached_payload(self, make_client):
        fake = FakeGitHub(
            Reply(200, repo_json(), {"ETag": self.ETAG}),
            Reply(304, None, {"ETag": self.ETAG}),
        )
        client, clock = self._client(make_client, fake)

        first = await client.get_repository("octocat", "hello-world")
        clock.now += 301
        second = await client.get_repository("octocat", "hello-world")

        assert second == first
        assert fake.call_count == 2
        assert "If-None-Match" not in fake.requests[0].headers
        assert fake.requests[1].headers["If-None-Match"] == self.ETAG
        assert client.revalidations == 1
        assert client.cache_hits == 1
        assert client.cache_misses == 1

    @pytest.mark.anyio
    async def test_not_modified_restarts_freshness_window(self, make_client):
        fake = FakeGitHub(
            Reply(200, repo_json(), {"ETag": self.ETAG}),
            Reply(304, None, {"ETag": self.ETAG}),
        )
        client, clock = self._client(make_client, fake)

        await client.get_repository("octocat", "hello-world")
        clock.now += 301
        await client.get_repository("octocat", "hello-world")
        clock.now += 299
        await client.get_repository("octocat", "hello-world")

        [key] = await client.cache.keys()
        entry = await client.cache.get(key)
        assert fake.call_count == 2
        assert entry.inserted_at == 1_700_000_000.0 + 301
        assert entry.max_age == 300
        assert entry.ttl == 300 + 3600

    @pytest.mark.anyio
    async def test_changed_resource_replaces_entry(self, make_client):
        fake = FakeGitHub(
            Reply(200, user_json(), {"ETag": '"v1"'}),
            Reply(200, user_json(name="The Octocat"), {"ETag": '"v2"'}),
        )
        client, clock = self._client(make_client, fake)

        await client.get_user("octocat")
        clock.now += 301
        await client.get_user("octocat")

        [key] = await client.cache.keys()
        entry = await client.cache.get(key)
        assert entry.etag == '"v2"'
        assert entry.value["name"] == "The Octocat"
        assert client.revalidations == 0
        assert client.cache_misses == 2

    @pytest.mark.anyio
    async def test_response_without_etag_is_fetched_unconditionally(self, make_client):
        fake = FakeGitHub(Reply(200, user_json()))
        client, clock = self._client(make_client, fake)

        await client.get_user("octocat")
        clock.now += 301
        await client.get_user("octocat")

        assert fake.call_count == 2
        assert all("If-None-Match" not in request.headers for request in fake.requests)

    @pytest.mark.anyio
    async def test_stale_ttl_zero_disables_revalidation(self):
        clock = FakeClock()
        cache = MemoryCache(clock=clock)
        fake = FakeGitHub(Reply(200, user_json(), {"ETag": self.ETAG}))
        config = client_config(cache={"stale_ttl": 0})

        async with GitHubClient(
            config, cache=cache, http_client=fake.http_client(), clock=clock
        ) as client:
            await client.get_user("octocat")
            clock.now += 301
            await client.get_user("octocat")
            await client._http.aclose()

        assert fake.call_count == 2
        assert "If-None-Match" not in fake.requests[1].headers

    @pytest.mark.anyio
    async def test_unconditional_304_is_an_error(self, make_client):
        client = make_client(FakeGitHub(Reply(304, None)), retry=NO_RETRY)

        with pytest.raises(ClientError) as exc_info:
            await client.get_user("octocat")

        assert exc_info.value.status_code == 304


# ═══════════════════════════════════════════════════════════════════════════
# Retries and error classification
# ═══════════════════════════════════════════════════════════════════════════


class TestRetries:
    """Failed calls are retried according to the policy."""

    @pytest.mark.anyio
    async def test_persistent_server_error(self, make_client, recording_sleep):
        fake = FakeGitHub(Reply(503, {"message": "Service Unavailable"}))
        client = make_client(fake)

        with pytest.raises(ServerError) as exc_info:
            await client.get_repository("octocat", "hello-world")

        assert fake.call_count == 3
        assert recording_sleep.delays == [1.0, 2.0]
        assert exc_info.value.context.attempt == 2
        assert exc_info.value.context.max_retries == 2

    @pytest.mark.anyio
    async def test_recovers_after_server_error(self, make_client, recording_sleep):
        fake = FakeGitHub(Reply(502), Reply(200, user_json()))
        client = make_client(fake)

        user = await client.get_user("octocat")

        assert user.login == "octocat"
        assert fake.call_count == 2
        assert recording_sleep.delays == [1.0]

    @pytest.mark.anyio
    async def test_not_found_is_not_retried(self, make_client, recording_sleep):
        fake = FakeGitHub(Reply(404, {"message": "Not Found"}))
        client = make_client(fake)

        with pytest.raises(ClientError) as exc_info:
            await client.get_repository("octocat", "missing")

        assert fake.call_count == 1
        assert recording_sleep.delays == []
        assert exc_info.value.status_code == 404
        assert exc_info.value.operation == "getRepository"

    @pytest.mark.anyio
    async def test_rate_limit_waits_for_retry_after(self, make_client, recording_sleep):
        fake = FakeGitHub(
            Reply(429, {"message": "Too many requests"}, {"Retry-After": "30"}),
            Reply(200, user_json()),
        )
        client = make_client(fake)

        await client.get_user("octocat")

        assert fake.call_count == 2
        assert recording_sleep.delays[0] >= 30

    @pytest.mark.anyio
    async def test_exhausted_rate_limit_with_hook_veto(self, make_client):
        vetoes = []
        fake = FakeGitHub(
            Reply(
                403,
                {"message": "API rate limit exceeded"},
                {"X-RateLimit-Limit": "5000", "X-RateLimit-Remaining": "0"},
            )
        )
        client = make_client(
            fake,
            throttle={"on_rate_limit": lambda delay, ctx, count: vetoes.append(ctx) and False},
        )

        with pytest.raises(RateLimitError):
            await client.get_user("octocat")

        assert fake.call_count == 1
        assert vetoes[0].operation == "getUser"

    @pytest.mark.anyio
    async def test_schema_mismatch_is_not_retried(self, make_client):
        fake = FakeGitHub(Reply(200, {"login": "octocat"}))
        client = make_client(fake)

        with pytest.raises(ValidationError) as exc_info:
            await client.get_user("octocat")

        assert fake.call_count == 1
        assert "getUser" in exc_info.value.message
        assert len(client.cache) == 0

    @pytest.mark.anyio
    async def test_timeout_becomes_network_error(self, make_client):
        async def slow(request):
            await asyncio.sleep(5)
            return Reply(200, user_json()).build()

        client = make_client(FakeGitHub(handler=slow), retry=NO_RETRY, timeout=0.05)

        with pytest.raises(NetworkError) as exc_info:
            await client.get_user("octocat")

        assert exc_info.value.timed_out
        assert exc_info.value.retryable

    @pytest.mark.anyio
    async def test_undecodable_body_is_a_validation_error(self, make_client):
        def handler(request):
            raise httpx.DecodingError("bad gzip", request=request)

        fake = FakeGitHub(handler=handler)
        client = make_client(fake)

        with pytest.raises(ValidationError) as exc_info:
            await client.get_user("octocat")

        assert fake.call_count == 1
        assert not exc_info.value.retryable

    @pytest.mark.anyio
    async def test_rate_limit_body_must_be_an_object(self, make_client):
        fake = FakeGitHub(Reply(200, []))
        client = make_client(fake)

        with pytest.raises(ValidationError) as exc_info:
            await client.get_rate_limit()

        assert fake.call_count == 1
        assert "getRateLimit" in exc_info.value.message

    @pytest.mark.anyio
    async def test_token_never_leaks_into_errors(self, make_client):
        fake = FakeGitHub(Reply(500, {"message": f"backend rejected {TOKEN}"}))
        client = make_client(fake, retry=NO_RETRY)

        with pytest.raises(ServerError) as exc_info:
            await client.get_user("octocat")

        error = exc_info.value
        assert TOKEN not in str(error)
        assert TOKEN not in repr(error)
        assert TOKEN not in json.dumps(error.to_dict())
        assert "[REDACTED]" in error.message


# ═══════════════════════════════════════════════════════════════════════════
# Failure hook and circuit breaker
# ═══════════════════════════════════════════════════════════════════════════


class TestFailureHandling:
    """Terminal failures are reported once; repeated outages open the circuit."""

    @pytest.mark.anyio
    async def test_on_failure_called_once(self, make_client):
        seen = []
        client = make_client(FakeGitHub(Reply(503)), on_failure=seen.append)

        with pytest.raises(ServerError):
            await client.get_user("octocat")

        assert len(seen) == 1
        assert seen[0].status_code == 503

    @pytest.mark.anyio
    async def test_async_on_failure(self, make_client):
        seen = []

        async def on_failure(error):
            seen.append(error)

        client = make_client(FakeGitHub(Reply(404)), on_failure=on_failure)

        with pytest.raises(ClientError):
            await client.get_user("ghost")

        assert [e.status_code for e in seen] == [404]

    @pytest.mark.anyio
    async def test_broken_hook_does_not_mask_error(self, make_client):
        def on_failure(error):
            raise RuntimeError("hook bug")

        client = make_client(FakeGitHub(Reply(404)), on_failure=on_failure)

        with pytest.raises(ClientError):
            await client.get_user("ghost")

    @pytest.mark.anyio
    async def test_circuit_opens_after_repeated_failures(self, make_client):
        fake = FakeGitHub(Reply(503))
        client = make_client(
            fake,
            retry=NO_RETRY,
            circuit_breaker=CircuitBreaker(failure_threshold=2),
        )

        for _ in range(2):
            with pytest.raises(ServerError):
                await client.get_user("octocat")
        with pytest.raises(CircuitOpenError) as exc_info:
            await client.get_user("octocat")

        assert fake.call_count == 2
        assert exc_info.value.retry_in > 0

    @pytest.mark.anyio
    async def test_client_errors_do_not_trip_breaker(self, make_client):
        breaker = CircuitBreaker(failure_threshold=1)
        client = make_client(FakeGitHub(Reply(404)), circuit_breaker=breaker)

        with pytest.raises(ClientError):
            await client.get_user("ghost")

        assert breaker.can_execute()


# ═══════════════════════════════════════════════════════════════════════════
# In-flight deduplication
# ═══════════════════════════════════════════════════════════════════════════


class TestDeduplication:
    """Concurrent identical reads share one request."""

    @pytest.mark.anyio
    async def test_concurrent_calls_share_one_request(self, make_client):
        release = asyncio.Event()

        async def handler(request):
            await release.wait()
            return Reply(200, user_json()).build()

        fake = FakeGitHub(handler=handler)
        client = make_client(fake)

        calls = asyncio.gather(*(client.get_user("octocat") for _ in range(5)))
        while fake.call_count == 0:
            await asyncio.sleep(0)
        release.set()
        users = await calls

        assert fake.call_count == 1
        assert {user.login for user in users} == {"octocat"}

    @pytest.mark.anyio
    async def test_cancelling_sole_waiter_cancels_fetch(self, make_client):
        async def handler(request):
            await asyncio.Event().wait()

        fake = FakeGitHub(handler=handler)
        client = make_client(fake)

        task = asyncio.ensure_future(client.get_user("octocat"))
        while fake.call_count == 0:
            await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        for _ in range(3):
            await asyncio.sleep(0)

        assert len(client.cache) == 0
        assert client._in_flight == {}

    @pytest.mark.anyio
    async def test_cancelled_waiter_does_not_affect_others(self, make_client):
        release = asyncio.Event()

        async def handler(request):
            await release.wait()
            return Reply(200, user_json()).build()

        fake = FakeGitHub(handler=handler)
        client = make_client(fake)

        first = asyncio.ensure_future(client.get_user("octocat"))
        second = asyncio.ensure_future(client.get_user("octocat"))
        while fake.call_count == 0:
            await asyncio.sleep(0)
        first.cancel()
        release.set()

        user = await second

        assert user.login == "octocat"
        assert first.cancelled()
        assert len(client.cache) == 1

    @pytest.mark.anyio
    async def test_aclose_waits_for_cancelled_fetches(self, make_client):
        async def handler(request):
            await asyncio.Event().wait()

        fake = FakeGitHub(handler=handler)
        client = make_client(fake)

        waiter = asyncio.ensure_future(client.get_user("octocat"))
        while fake.call_count == 0:
            await asyncio.sleep(0)
        [flight] = client._in_flight.values()

        await client.aclose()

        assert flight.task.cancelled()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert len(client.cache) == 0


# ═══════════════════════════════════════════════════════════════════════════
# Requests on the wire
# ═══════════════════════════════════════════════════════════════════════════


class TestRequests:
    """Headers, URLs and query parameters sent to GitHub."""

    @pytest.mark.anyio
    async def test_default_headers(self, make_client):
        fake = FakeGitHub(Reply(200, user_json()))
        client = make_client(fake)

        await client.get_authenticated_user()

        request = fake.requests[0]
        assert request.url == "https://api.github.com/user"
        assert request.headers["Authorization"] == f"Bearer {TOKEN}"
        assert request.headers["X-GitHub-Api-Version"] == API_VERSION
        assert request.headers["User-Agent"] == DEFAULT_USER_AGENT
        assert request.headers["Accept"] == "application/vnd.github+json"

    @pytest.mark.anyio
    async def test_anonymous_client_sends_no_authorization(self, make_client):
        fake = FakeGitHub(Reply(200, user_json()))
        client = make_client(fake, auth=None, user_agent="contribux-tests")

        await client.get_user("octocat")

        assert "Authorization" not in fake.requests[0].headers
        assert fake.requests[0].headers["User-Agent"] == "contribux-tests"

    @pytest.mark.anyio
    async def test_search_params(self, make_client):
        fake = FakeGitHub(
            Reply(200, {"total_count": 1, "incomplete_results": False, "items": [repo_json()]})
        )
        client = make_client(fake)

        result = await client.search_repositories("topic:cli", sort="stars", per_page=500)

        params = fake.requests[0].url.params
        assert fake.requests[0].url.path == "/search/repositories"
        assert params["q"] == "topic:cli"
        assert params["sort"] == "stars"
        assert params["per_page"] == "100"
        assert "order" not in params
        assert result.total_count == 1
        assert result.items[0].full_name == "octocat/hello-world"

    @pytest.mark.anyio
    async def test_list_issues_params(self, make_client):
        fake = FakeGitHub(
            Reply(200, [issue_json(1), issue_json(2, pull_request={"url": "https://x"})])
        )
        client = make_client(fake)

        issues = await client.list_issues(
            "octocat", "hello-world", state="open", labels=["bug", "good first issue"]
        )

        request = fake.requests[0]
        assert request.url.path == "/repos/octocat/hello-world/issues"
        assert request.url.params["labels"] == "bug,good first issue"
        assert request.url.params["state"] == "open"
        assert "page" not in request.url.params
        assert [issue.is_pull_request for issue in issues] == [False, True]

    @pytest.mark.anyio
    async def test_get_issue_and_organization(self, make_client):
        def handler(request):
            if request.url.path.startswith("/orgs/"):
                return Reply(200, org_json()).build()
            return Reply(200, issue_json(7, state="closed")).build()

        fake = FakeGitHub(handler=handler)
        client = make_client(fake)

        issue = await client.get_issue("octocat", "hello-world", 7)
        org = await client.get_organization("github")

        assert issue.number == 7
        assert issue.state == "closed"
        assert org.login == "github"
        assert [r.url.path for r in fake.requests] == [
            "/repos/octocat/hello-world/issues/7",
            "/orgs/github",
        ]

    @pytest.mark.anyio
    async def test_rate_limit_headers_are_recorded(self, make_client):
        fake = FakeGitHub(
            Reply(
                200,
                user_json(),
                {
                    "X-RateLimit-Limit": "5000",
                    "X-RateLimit-Remaining": "4998",
                    "X-RateLimit-Reset": "1700000000",
                    "X-RateLimit-Used": "2",
                    "X-RateLimit-Resource": "core",
                },
            )
        )
        client = make_client(fake)

        await client.get_user("octocat")

        state = client.rate_limits["core"]
        assert state.remaining == 4998
        assert state.used == 2
        assert not state.is_exhausted

    @pytest.mark.anyio
    async def test_get_rate_limit(self, make_client):
        fake = FakeGitHub(Reply(200, rate_limit_json()))
        client = make_client(fake)

        status = await client.get_rate_limit()
        await client.get_rate_limit()

        assert status.core.limit == 5000
        assert status.search.remaining == 29
        assert fake.call_count == 2

    @pytest.mark.anyio
    async def test_get_rate_limit_with_only_rate(self, make_client):
        fake = FakeGitHub(Reply(200, {"rate": rate_limit_json()["rate"]}))
        client = make_client(fake)

        status = await client.get_rate_limit()

        assert status.core == status.search == status.graphql
        assert status.core.remaining == 4999

    @pytest.mark.anyio
    async def test_renamed_repository_redirect_is_followed(self, make_client):
        def handler(request):
            if request.url.path == "/repos/octocat/old-name":
                return httpx.Response(
                    301,
                    headers={"Location": "https://api.github.com/repos/octocat/hello-world"},
                    json={"message": "Moved Permanently"},
                )
            return Reply(200, repo_json()).build()

        fake = FakeGitHub(handler=handler)
        client = make_client(fake)

        repo = await client.get_repository("octocat", "old-name")

        assert repo.full_name == "octocat/hello-world"
        assert [request.url.path for request in fake.requests] == [
            "/repos/octocat/old-name",
            "/repos/octocat/hello-world",
        ]
        assert fake.requests[1].headers["Authorization"] == f"Bearer {TOKEN}"

    @pytest.mark.anyio
    async def test_path_segments_are_percent_encoded(self, make_client):
        fake = FakeGitHub(handler=lambda request: Reply(200, repo_json()).build())
        client = make_client(fake)

        await client.get_repository("octo/cat", "hello?world")
        await client.get_user("../orgs/github")

        assert fake.requests[0].url.raw_path == b"/repos/octo%2Fcat/hello%3Fworld"
        assert fake.requests[0].url.params == httpx.QueryParams()
        assert fake.requests[1].url.raw_path == b"/users/..%2Forgs%2Fgithub"


# ═══════════════════════════════════════════════════════════════════════════
# GraphQL
# ═══════════════════════════════════════════════════════════════════════════


class TestGraphQL:
    """GraphQL calls go through the same retry and error pipeline, uncached."""

    QUERY = "query($login: String!) { user(login: $login) { login } }"

    @pytest.mark.anyio
    async def test_returns_data(self, make_client):
        fake = FakeGitHub(Reply(200, {"data": {"user": {"login": "octocat"}}}))
        client = make_client(fake)

        data = await client.graphql(self.QUERY, {"login": "octocat"})
        await client.graphql(self.QUERY, {"login": "octocat"})

        request = fake.requests[0]
        assert data == {"user": {"login": "octocat"}}
        assert request.method == "POST"
        assert request.url == "https://api.github.com/graphql"
        assert json.loads(request.content) == {
            "query": self.QUERY,
            "variables": {"login": "octocat"},
        }
        assert fake.call_count == 2

    @pytest.mark.anyio
    async def test_enterprise_graphql_endpoint(self, make_client):
        fake = FakeGitHub(Reply(200, {"data": {}}))
        client = make_client(fake, base_url="https://ghe.example.com/api/v3/")

        await client.graphql("{ viewer { login } }")

        assert fake.requests[0].url == "https://ghe.example.com/api/graphql"

    @pytest.mark.anyio
    async def test_rate_limited(self, make_client):
        fake = FakeGitHub(
            Reply(200, {"errors": [{"type": "RATE_LIMITED", "message": "API rate limit exceeded"}]})
        )
        client = make_client(fake, throttle={"enabled": False})

        with pytest.raises(RateLimitError):
            await client.graphql(self.QUERY)

        assert fake.call_count == 1

    @pytest.mark.anyio
    async def test_query_error_is_not_retried_and_context_is_truncated(self, make_client):
        long_query = "query { " + "viewer { login } " * 20 + "}"
        fake = FakeGitHub(
            Reply(200, {"errors": [{"type": "NOT_FOUND", "message": "Could not resolve"}]})
        )
        client = make_client(fake)

        with pytest.raises(ClientError) as exc_info:
            await client.graphql(long_query)

        assert fake.call_count == 1
        assert len(exc_info.value.context.params["query"]) == 100

    @pytest.mark.anyio
    async def test_missing_data_is_a_validation_error(self, make_client):
        client = make_client(FakeGitHub(Reply(200, {"data": None})))

        with pytest.raises(ValidationError):
            await client.graphql(self.QUERY)


# ═══════════════════════════════════════════════════════════════════════════
# Construction
# ═══════════════════════════════════════════════════════════════════════════


class TestConstruction:
    """Configuration is validated when the client is built."""

    def test_invalid_config_raises_configuration_error(self):
        with pytest.raises(ConfigurationError, match="Retries cannot exceed 10"):
            GitHubClient(client_config(retry={"retries": 11}))

    def test_retries_are_required(self):
        with pytest.raises(ConfigurationError, match="retry"):
            create_github_client({"auth": {"type": "token", "token": TOKEN}})

    def test_config_error_never_echoes_input(self):
        with pytest.raises(ConfigurationError) as exc_info:
            GitHubClient(client_config(auth={"type": "token", "token": TOKEN, "extra": 1}))

        assert TOKEN not in str(exc_info.value)
        assert exc_info.value.__cause__ is None

    @pytest.mark.anyio
    async def test_owned_http_client_closed_on_exit(self):
        async with GitHubClient(client_config()) as client:
            http = client._http
        assert http.is_closed

    @pytest.mark.anyio
    async def test_injected_http_client_left_open(self):
        fake = FakeGitHub(Reply(200, user_json()))
        http = fake.http_client()

        async with GitHubClient(client_config(), http_client=http) as client:
            assert isinstance(await client.get_user("octocat"), GitHubUser)

        assert not http.is_closed
        await http.aclose()
