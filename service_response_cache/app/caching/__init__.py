"""
Response caching package.

Decides per route whether responses may be cached, derives stable keys,
talks to the TTL store and produces conditional 200/304 responses. Prefer
explicit route directives over the global default.
"""

from .conditional import ConditionalResponder
from .directives import CacheDirective, DirectiveState, RouteDescriptor, cache_directives
from .eligibility import EligibilityResolver
from .keys import CacheKeyDeriver
from .middleware import CacheContext, ResponseCacheEngine, ResponseCacheMiddleware
from .redis_store import RedisCacheStore
from .store import CacheEntry, CacheStore, InMemoryCacheStore

__all__ = [
    "CacheContext",
    "CacheDirective",
    "CacheEntry",
    "CacheKeyDeriver",
    "CacheStore",
    "ConditionalResponder",
    "DirectiveState",
    "EligibilityResolver",
    "InMemoryCacheStore",
    "RedisCacheStore",
    "ResponseCacheEngine",
    "ResponseCacheMiddleware",
    "RouteDescriptor",
    "cache_directives",
]
