"""Print the current GitHub API rate limit status.

Reads credentials from the environment (GITHUB_TOKEN, or the GITHUB_APP_*
variables) the same way an application embedding the client would.

Usage:
    python -m scripts.check_rate_limit

Exits with status 1 if the lookup fails.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import datetime

from contribux.config.settings import settings
from contribux.core.logging_config import setup_logging
from contribux.services.github import GitHubAPIError, GitHubClient, RateLimitResource

logger = logging.getLogger(__name__)


def format_resource(name: str, resource: RateLimitResource | None) -> str:
    if resource is None:
        return f"{name:<8} n/a"
    reset = datetime.fromtimestamp(resource.reset).strftime("%H:%M:%S")
    return f"{name:<8} {resource.remaining:>6}/{resource.limit:<6} resets {reset}"


async def check_rate_limit() -> int:
    """Fetch and print rate limits. Returns the process exit code."""
    try:
        config = settings.to_client_config()
        async with GitHubClient(config) as github:
            status = await github.get_rate_limit()
    except GitHubAPIError as e:
        logger.error(f"Rate limit check failed: {e}")
        return 1

    for name in ("core", "search", "graphql"):
        print(format_resource(name, getattr(status, name)))
    return 0


if __name__ == "__main__":
    setup_logging(settings.log_level)
    sys.exit(asyncio.run(check_rate_limit()))
