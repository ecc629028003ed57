"""
Cache key derivation.
"""

import hashlib
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union
from urllib.parse import urlencode

from .directives import RouteDescriptor

DEFAULT_KEY_PREFIX = "access.response-cache."

Params = Union[Mapping[str, Any], Iterable[Tuple[str, Any]], None]


class CacheKeyDeriver:
    """Turn a route plus concrete request parameters into a namespaced key."""

    def __init__(self, prefix: str = DEFAULT_KEY_PREFIX):
        self.prefix = prefix

    def derive_key(
        self,
        route: RouteDescriptor,
        path_params: Params = None,
        query_params: Params = None,
    ) -> str:
        """Derive the cache key for a request target.

        Parameter order does not matter; any difference in a parameter value
        produces a different key.
        """
        canonical = "|".join([
            urlencode([("route", route.identity())]),
            urlencode(self._canonical_pairs(path_params)),
            urlencode(self._canonical_pairs(query_params)),
        ])
        digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
        return f"{self.prefix}{digest}"

    @staticmethod
    def _canonical_pairs(params: Params) -> List[Tuple[str, str]]:
        if not params:
            return []
        if hasattr(params, "multi_items"):
            # starlette QueryParams keep repeated keys
            items = params.multi_items()
        elif isinstance(params, Mapping):
            items = params.items()
        else:
            items = params
        return sorted((str(key), _stringify(value)) for key, value in items)


def _stringify(value: Optional[Any]) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", "replace")
    return str(value)
