"""
Deterministic cache keys for GitHub API requests.

Keys have the form `namespace:METHOD:path:params`, where `params` is the
canonical JSON form of the request parameters. Mapping keys are sorted at
every nesting level, so two parameter mappings that differ only in
insertion order produce the same key. Sequence order is preserved.

Mapping entries whose value is None are treated as absent, so passing
`sort=None` and omitting `sort` hit the same cache entry. A None inside a
sequence is kept (as JSON null) because its position is meaningful.

When the canonical params are longer than the threshold they are replaced
by a base-36 SHA-256 digest, keeping the namespace/method/path prefix
readable for debugging while bounding the key length.
"""

import hashlib
import json
import string
from collections.abc import Mapping, Set
from datetime import date, datetime
from enum import Enum
from typing import Any

from contribux.services.github.constants import (
    CACHE_KEY_PARAM_THRESHOLD,
    DEFAULT_CACHE_NAMESPACE,
)

_BASE36_ALPHABET = string.digits + string.ascii_lowercase
# 96 bits of digest keeps keys short while collisions stay negligible
_DIGEST_BYTES = 12


def to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def normalize_params(value: Any) -> Any:
    """Return a canonical, JSON-serializable form of `value`."""
    if isinstance(value, Mapping):
        return {
            str(k): normalize_params(value[k])
            for k in sorted(value, key=str)
            if value[k] is not None
        }
    if isinstance(value, (list, tuple)):
        return [normalize_params(item) for item in value]
    if isinstance(value, Set):
        items = [normalize_params(item) for item in value]
        return sorted(items, key=lambda item: json.dumps(item, sort_keys=True))
    if isinstance(value, Enum):
        return normalize_params(value.value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def serialize_params(params: Mapping[str, Any] | None) -> str:
    return json.dumps(
        normalize_params(params or {}),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def hash_params(serialized: str) -> str:
    digest = hashlib.sha256(serialized.encode("utf-8")).digest()[:_DIGEST_BYTES]
    return to_base36(int.from_bytes(digest, "big"))


class CacheKeyGenerator:
    """Generate deterministic cache keys for (method, path, params) triples."""

    def __init__(
        self,
        namespace: str = DEFAULT_CACHE_NAMESPACE,
        max_param_length: int = CACHE_KEY_PARAM_THRESHOLD,
    ) -> None:
        if max_param_length <= 0:
            raise ValueError("max_param_length must be positive")
        self.namespace = namespace
        self.max_param_length = max_param_length

    def generate(
        self,
        method: str,
        path: str,
        params: Mapping[str, Any] | None = None,
    ) -> str:
        """
        Build the cache key for a request.

        Args:
            method: HTTP method (case-insensitive)
            path: Resource path or operation name
            params: Request parameters, possibly nested

        Returns:
            Key of the form `namespace:METHOD:path:params-or-digest`
        """
        serialized = serialize_params(params)
        if len(serialized) > self.max_param_length:
            serialized = hash_params(serialized)
        return f"{self.namespace}:{method.upper()}:{path}:{serialized}"


_default_generator = CacheKeyGenerator()


def make_cache_key(method: str, path: str, params: Mapping[str, Any] | None = None) -> str:
    """Generate a key with the default namespace and threshold."""
    return _default_generator.generate(method, path, params)
