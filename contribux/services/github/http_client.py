"""
HTTP client construction for GitHub API calls.

Each GitHubClient owns one pooled AsyncClient (unless one is injected),
so connections are reused across requests without any module-level state.
Auth headers are passed per-request, not stored on the client, which keeps
credentials out of anything that inspects the client's default headers.
"""

import logging

import httpx

from contribux.services.github.config import GitHubClientConfig
from contribux.services.github.constants import CONNECT_TIMEOUT

logger = logging.getLogger(__name__)


def create_github_http_client(config: GitHubClientConfig) -> httpx.AsyncClient:
    """
    Create an HTTP client configured for the GitHub API.

    Args:
        config: Validated client configuration (timeout is taken from it)

    Returns:
        httpx.AsyncClient with connection pooling, HTTP/2 and redirect following
    """
    client = httpx.AsyncClient(
        timeout=httpx.Timeout(config.timeout, connect=min(CONNECT_TIMEOUT, config.timeout)),
        limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        http2=True,  # Enable HTTP/2 for GitHub API
        follow_redirects=True,  # Renamed and transferred repositories answer with a 301
    )
    logger.debug(f"Created GitHub HTTP client for {config.base_url}")
    return client
