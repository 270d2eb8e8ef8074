"""
Authentication providers for the GitHub client.

A provider turns configured credentials into an Authorization header and
reports every secret value it holds, so the client can scrub them from
error messages and logs.

- TokenAuthProvider: personal access or OAuth token, sent as a Bearer token
- AppAuthProvider: GitHub App. Signs a short-lived RS256 JWT and, when an
  installation id is configured, exchanges it for an installation token
  that is reused until shortly before it expires.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import datetime
from typing import Protocol

import httpx
from jose import jwt

from contribux.services.github.config import AppAuth, AuthConfig, TokenAuth
from contribux.services.github.constants import (
    API_VERSION,
    APP_JWT_CLOCK_SKEW,
    APP_JWT_LIFETIME,
    BASE_URL,
    DEFAULT_USER_AGENT,
    INSTALLATION_TOKEN_REFRESH_MARGIN,
)
from contribux.services.github.exceptions import ValidationError
from contribux.services.github.helpers import classify_exception, raise_for_response
from contribux.services.github.types import RequestContext

logger = logging.getLogger(__name__)


class AuthProvider(Protocol):
    async def auth_headers(self, http: httpx.AsyncClient) -> dict[str, str]: ...

    def secrets(self) -> tuple[str, ...]: ...


class AnonymousAuthProvider:
    """No credentials: 60 requests/hour against the public API."""

    async def auth_headers(self, http: httpx.AsyncClient) -> dict[str, str]:
        return {}

    def secrets(self) -> tuple[str, ...]:
        return ()


class TokenAuthProvider:
    def __init__(self, token: str):
        self._token = token

    async def auth_headers(self, http: httpx.AsyncClient) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"}

    def secrets(self) -> tuple[str, ...]:
        return (self._token,)


class AppAuthProvider:
    """GitHub App authentication (JWT, optionally exchanged for an installation token)."""

    def __init__(
        self,
        app_id: int,
        private_key: str,
        installation_id: int | None = None,
        *,
        base_url: str = BASE_URL,
        user_agent: str = DEFAULT_USER_AGENT,
        clock: Callable[[], float] = time.time,
    ):
        self.app_id = app_id
        self.installation_id = installation_id
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        # Keys loaded from env files often carry literal "\n" sequences
        self._private_key = private_key.replace("\\n", "\n")
        self._clock = clock
        self._jwt: str | None = None
        self._jwt_expires_at = 0.0
        self._installation_token: str | None = None
        self._installation_token_expires_at = 0.0
        self._lock = asyncio.Lock()

    def create_jwt(self) -> str:
        """Return an app JWT, signing a new one when the cached one is about to expire."""
        now = int(self._clock())
        if self._jwt is not None and now < self._jwt_expires_at - APP_JWT_CLOCK_SKEW:
            return self._jwt
        # iat is backdated to tolerate clock drift between us and GitHub
        claims = {
            "iat": now - APP_JWT_CLOCK_SKEW,
            "exp": now + APP_JWT_LIFETIME,
            "iss": str(self.app_id),
        }
        self._jwt = jwt.encode(claims, self._private_key, algorithm="RS256")
        self._jwt_expires_at = claims["exp"]
        return self._jwt

    def _installation_token_valid(self) -> bool:
        return (
            self._installation_token is not None
            and self._clock()
            < self._installation_token_expires_at - INSTALLATION_TOKEN_REFRESH_MARGIN
        )

    async def _exchange_installation_token(self, http: httpx.AsyncClient) -> None:
        context = RequestContext.create(
            "POST",
            "createInstallationAccessToken",
            {"installation_id": self.installation_id},
        )
        app_jwt = self.create_jwt()
        try:
            response = await http.post(
                f"{self.base_url}/app/installations/{self.installation_id}/access_tokens",
                headers={
                    "Authorization": f"Bearer {app_jwt}",
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": API_VERSION,
                    "User-Agent": self.user_agent,
                },
            )
        except httpx.HTTPError as e:
            classified = classify_exception(e, context, self.secrets())
            if classified is None:
                raise
            raise classified from None

        raise_for_response(response, context, self.secrets())
        try:
            data = response.json()
            token = data["token"]
            expires_at = datetime.fromisoformat(data["expires_at"]).timestamp()
        except (ValueError, KeyError, TypeError) as e:
            raise ValidationError(
                f"Invalid installation token response: {type(e).__name__}",
                response.status_code,
                context=context,
            ) from None

        self._installation_token = token
        self._installation_token_expires_at = expires_at
        logger.info(f"Obtained installation token for installation {self.installation_id}")

    async def auth_headers(self, http: httpx.AsyncClient) -> dict[str, str]:
        if self.installation_id is None:
            return {"Authorization": f"Bearer {self.create_jwt()}"}

        if not self._installation_token_valid():
            async with self._lock:
                # Another coroutine may have refreshed while we waited
                if not self._installation_token_valid():
                    await self._exchange_installation_token(http)
        return {"Authorization": f"Bearer {self._installation_token}"}

    def secrets(self) -> tuple[str, ...]:
        values = [self._private_key, self._private_key.strip()]
        if self._jwt:
            values.append(self._jwt)
        if self._installation_token:
            values.append(self._installation_token)
        return tuple(values)


def create_auth_provider(
    auth: AuthConfig | None,
    *,
    base_url: str = BASE_URL,
    user_agent: str = DEFAULT_USER_AGENT,
) -> AuthProvider:
    """Build the provider for a validated auth config."""
    if auth is None:
        return AnonymousAuthProvider()
    if isinstance(auth, TokenAuth):
        return TokenAuthProvider(auth.token.get_secret_value())
    if isinstance(auth, AppAuth):
        return AppAuthProvider(
            auth.app_id,
            auth.private_key.get_secret_value(),
            auth.installation_id,
            base_url=base_url,
            user_agent=user_agent,
        )
    raise TypeError(f"Unsupported auth config: {type(auth).__name__}")
