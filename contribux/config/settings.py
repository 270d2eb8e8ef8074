from typing import Any

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from contribux.services.github.config import GitHubClientConfig, load_client_config
from contribux.services.github.constants import (
    BASE_URL,
    DEFAULT_CACHE_MAX_AGE,
    DEFAULT_CACHE_MAX_SIZE,
    DEFAULT_TIMEOUT,
    DEFAULT_USER_AGENT,
)
from contribux.services.github.exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # .env files are shared with the host application
    )

    # GitHub - token auth (personal access or OAuth token)
    github_token: SecretStr | None = None

    # GitHub - app auth. Takes the place of github_token, never alongside it.
    github_app_id: int | None = None
    github_app_private_key: SecretStr | None = None  # PEM; literal "\n" sequences are accepted
    github_app_installation_id: int | None = None

    # GitHub API
    github_api_url: str = BASE_URL  # e.g. https://ghe.example.com/api/v3 for Enterprise Server
    github_user_agent: str = DEFAULT_USER_AGENT
    github_request_timeout: float = DEFAULT_TIMEOUT  # seconds

    # Response cache
    github_cache_max_age: int = DEFAULT_CACHE_MAX_AGE  # seconds
    github_cache_max_size: int = DEFAULT_CACHE_MAX_SIZE

    # Retries for failed requests (0-10)
    github_max_retries: int = 2

    # Logging
    log_level: str = "INFO"

    @property
    def github_app_configured(self) -> bool:
        """Check if any GitHub App credential is set."""
        return self.github_app_id is not None or self.github_app_private_key is not None

    def _auth_config(self) -> dict[str, Any] | None:
        if self.github_app_configured:
            if self.github_token is not None:
                raise ConfigurationError("Cannot mix token and app authentication")
            if self.github_app_id is None or self.github_app_private_key is None:
                raise ConfigurationError(
                    "GITHUB_APP_ID and GITHUB_APP_PRIVATE_KEY must be set together"
                )
            return {
                "type": "app",
                "app_id": self.github_app_id,
                "private_key": self.github_app_private_key.get_secret_value(),
                "installation_id": self.github_app_installation_id,
            }
        if self.github_token is not None:
            return {"type": "token", "token": self.github_token.get_secret_value()}
        return None

    def to_client_config(self) -> GitHubClientConfig:
        """
        Build the GitHub client configuration from these settings.

        Raises:
            ConfigurationError: If the combined settings are invalid
        """
        return load_client_config(
            {
                "auth": self._auth_config(),
                "base_url": self.github_api_url,
                "user_agent": self.github_user_agent,
                "timeout": self.github_request_timeout,
                "cache": {
                    "max_age": self.github_cache_max_age,
                    "max_size": self.github_cache_max_size,
                },
                "retry": {"retries": self.github_max_retries},
            }
        )


settings = Settings()
