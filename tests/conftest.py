"""Root conftest: shared fixtures for the GitHub client tests.

Provides:
- anyio backend selection (asyncio only; the client uses asyncio primitives)
- Recording sleep so retry delays are asserted instead of waited for
- Client factory wired to a scripted fake GitHub transport
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from contribux.services.github.cache import MemoryCache
from contribux.services.github.client import GitHubClient
from tests.helpers.github_transport import FakeGitHub, RecordingSleep, client_config


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
async def make_client(
    recording_sleep: RecordingSleep,
) -> AsyncIterator[Callable[..., GitHubClient]]:
    """Factory: make_client(fake_github, **config_overrides) -> GitHubClient."""
    clients: list[GitHubClient] = []

    def factory(fake: FakeGitHub, cache: MemoryCache | None = None, **kwargs: Any) -> GitHubClient:
        client_kwargs = {
            key: kwargs.pop(key)
            for key in ("circuit_breaker", "on_failure", "auth_provider", "clock")
            if key in kwargs
        }
        client = GitHubClient(
            client_config(**kwargs),
            cache=cache,
            http_client=fake.http_client(),
            sleep=recording_sleep,
            **client_kwargs,
        )
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client._http.aclose()
