"""
Cache eligibility resolution.

Decides whether a request/route pair may consult or populate the response
cache, and for how long. The override chain is:

1. method gate: only GET requests on routes that accept GET
2. master switch: ``config.enabled``
3. route directive: keyed ``cache`` entry, else keyless ``cache``/``no-cache``
4. global default: ``config.cache_all``
"""

from typing import Any

from shared.config import ResponseCacheConfig
from shared.logging import get_logger
from .directives import (
    CACHE_KEY,
    CACHE_TOKEN,
    NO_CACHE_TOKEN,
    CacheDirective,
    RouteDescriptor,
)


class EligibilityResolver:
    """Resolve per-route caching decisions from the layered configuration."""

    def __init__(self, config: ResponseCacheConfig):
        self.config = config
        self.logger = get_logger("response_cache.eligibility")

    def resolve_directive(self, route: RouteDescriptor) -> CacheDirective:
        """Translate the route's directive map into a CacheDirective."""
        directives = route.directives
        keyed = directives.get(CACHE_KEY)

        if keyed is not None:
            directive = self._from_keyed_value(keyed)
            if directive is not None:
                return directive
            self.logger.warning(
                "Ignoring malformed cache directive",
                route=route.identity(),
                value=repr(keyed),
            )

        return self._from_keyless_tokens(
            value for key, value in directives.items() if key.isdigit()
        )

    def _from_keyed_value(self, value: Any):
        # bool is checked first: it is a subclass of int
        if isinstance(value, bool):
            return CacheDirective.enabled() if value else CacheDirective.disabled()
        if isinstance(value, int) and value > 0:
            return CacheDirective.enabled(ttl=value)
        return None

    @staticmethod
    def _from_keyless_tokens(values) -> CacheDirective:
        tokens = [value for value in values if isinstance(value, str)]
        if CACHE_TOKEN in tokens:
            return CacheDirective.enabled()
        if NO_CACHE_TOKEN in tokens:
            return CacheDirective.disabled()
        return CacheDirective.unset()

    def should_cache(self, route: RouteDescriptor, request_method: str) -> bool:
        """Whether the response for this request may be served from or stored in the cache."""
        if request_method.upper() != "GET" or not route.accepts("GET"):
            return False

        if not self.config.enabled:
            return False

        directive = self.resolve_directive(route)
        if directive.is_unset:
            return self.config.cache_all
        return directive.is_enabled

    def resolve_ttl(self, route: RouteDescriptor) -> int:
        """Minutes to keep the route's response; an explicit route TTL wins."""
        directive = self.resolve_directive(route)
        if directive.ttl is not None:
            return directive.ttl
        return self.config.life
