"""contribux: typed, cache-aware async client for the GitHub API."""

__version__ = "0.1.0"
