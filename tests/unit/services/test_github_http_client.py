"""Unit tests for GitHub HTTP client construction.

Tests timeout derivation from config and that each GitHubClient gets its
own pooled client instead of a shared module-level one.
"""

from __future__ import annotations

import httpx
import pytest

from contribux.services.github.client import GitHubClient
from contribux.services.github.config import load_client_config
from contribux.services.github.http_client import create_github_http_client
from tests.helpers.github_transport import client_config


class TestCreateGitHubHttpClient:
    """Tests for the pooled AsyncClient factory."""

    @pytest.mark.anyio
    async def test_returns_async_client_with_default_timeouts(self):
        client = create_github_http_client(load_client_config(client_config()))
        try:
            assert isinstance(client, httpx.AsyncClient)
            assert client.timeout.connect == 5.0
            assert client.timeout.read == 30.0
            assert client.timeout.pool == 30.0
        finally:
            await client.aclose()

    @pytest.mark.anyio
    async def test_timeout_follows_config(self):
        client = create_github_http_client(load_client_config(client_config(timeout=12)))
        try:
            assert client.timeout.read == 12.0
            assert client.timeout.connect == 5.0
        finally:
            await client.aclose()

    @pytest.mark.anyio
    async def test_connect_timeout_never_exceeds_total(self):
        client = create_github_http_client(load_client_config(client_config(timeout=2)))
        try:
            assert client.timeout.connect == 2.0
        finally:
            await client.aclose()

    @pytest.mark.anyio
    async def test_no_credentials_in_default_headers(self):
        client = create_github_http_client(load_client_config(client_config()))
        try:
            assert "Authorization" not in client.headers
        finally:
            await client.aclose()

    @pytest.mark.anyio
    async def test_each_github_client_owns_its_http_client(self):
        async with GitHubClient(client_config()) as a, GitHubClient(client_config()) as b:
            assert a._http is not b._http

    @pytest.mark.anyio
    async def test_follows_redirects(self):
        client = create_github_http_client(load_client_config(client_config()))
        try:
            assert client.follow_redirects is True
        finally:
            await client.aclose()
