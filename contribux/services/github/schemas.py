"""Pydantic schemas for GitHub API responses.

Unknown fields are ignored so GitHub can add fields without breaking
validation; a missing or mistyped required field fails validation and is
surfaced as a non-retryable ValidationError.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class GitHubModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class GitHubUser(GitHubModel):
    """A user or bot account."""

    login: str
    id: int
    avatar_url: str
    html_url: str
    type: str  # "User", "Bot" or "Organization"
    site_admin: bool


class GitHubLabel(GitHubModel):
    id: int
    name: str
    color: str  # Hex without leading "#"
    description: str | None = None


class GitHubRepository(GitHubModel):
    """Repository metadata as returned by GET /repos/{owner}/{repo}."""

    id: int
    name: str
    full_name: str  # "owner/repo"
    owner: GitHubUser
    private: bool
    html_url: str
    description: str | None = None
    fork: bool
    created_at: datetime
    updated_at: datetime
    stargazers_count: int
    forks_count: int
    language: str | None = None
    topics: list[str] = Field(default_factory=list)
    default_branch: str


class GitHubIssue(GitHubModel):
    """Issue (or pull request) as returned by the issues API."""

    id: int
    number: int
    title: str
    body: str | None = None
    state: Literal["open", "closed"]
    user: GitHubUser | None = None
    labels: list[GitHubLabel] = Field(default_factory=list)
    assignee: GitHubUser | None = None
    assignees: list[GitHubUser] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    html_url: str
    pull_request: dict[str, Any] | None = None  # Present only for pull requests

    @property
    def is_pull_request(self) -> bool:
        return self.pull_request is not None


class GitHubOrganization(GitHubModel):
    login: str
    id: int
    avatar_url: str
    html_url: str
    type: str
    name: str | None = None
    company: str | None = None
    blog: str | None = None
    location: str | None = None
    email: str | None = None
    bio: str | None = None
    public_repos: int
    public_gists: int
    followers: int
    following: int
    created_at: datetime
    updated_at: datetime


class RepositorySearchResult(GitHubModel):
    """Response for GET /search/repositories."""

    total_count: int
    incomplete_results: bool
    items: list[GitHubRepository]


class RateLimitResource(GitHubModel):
    """Quota for one rate limit resource."""

    limit: int
    remaining: int
    reset: int  # Unix timestamp when the window resets
    used: int = 0

    @property
    def reset_at(self) -> datetime:
        return datetime.fromtimestamp(self.reset).astimezone()


_OBJECT = TypeAdapter(dict[str, Any])


class RateLimitStatus(GitHubModel):
    """Response for GET /rate_limit, reduced to the resources the client uses."""

    core: RateLimitResource
    search: RateLimitResource
    graphql: RateLimitResource | None = None

    @classmethod
    def from_response(cls, data: Any) -> "RateLimitStatus":
        """
        Build from a /rate_limit payload.

        GitHub nests quotas under `resources`; the top-level `rate` mirrors
        `core`. Older Enterprise Server versions return only `rate`, in which
        case it stands in for every resource. A body that is not an object
        fails validation.
        """
        data = _OBJECT.validate_python(data)
        resources = data.get("resources")
        if isinstance(resources, dict):
            return cls.model_validate(resources)
        rate = data.get("rate", data)
        return cls.model_validate({"core": rate, "search": rate, "graphql": rate})
