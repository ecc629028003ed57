"""
Response cache middleware.

Wraps the request lifecycle in two phases:

- before dispatch: resolve the matched route, decide eligibility, invalidate
  on ``Cache-Control: no-cache`` and short-circuit when an entry exists;
- after dispatch: store 200 responses (first writer wins) and finalize
  ``Last-Modified``/``Cache-Control`` through the ConditionalResponder.

Store failures never break a request: the affected phase degrades to a cache
miss and the response passes through.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Match

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.config import ResponseCacheConfig
from shared.errors import CacheStoreError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .conditional import ConditionalResponder, fresh_response_requested
from .directives import RouteDescriptor
from .eligibility import EligibilityResolver
from .keys import CacheKeyDeriver
from .store import CacheEntry, CacheStore

_MISSING = object()


@dataclass
class CacheContext:
    """Per-request state handed from the before phase to the after phase."""

    route: RouteDescriptor
    key: str
    ttl: int
    fresh_requested: bool
    store_available: bool = True


def match_route(app: Any, scope: Dict[str, Any]) -> Optional[Tuple[Any, Dict[str, Any]]]:
    """Find the route that fully matches ``scope`` and its path parameters."""
    router = getattr(app, "router", None)
    for route in getattr(router, "routes", []):
        if not hasattr(route, "endpoint"):
            continue
        match, child_scope = route.matches(scope)
        if match == Match.FULL:
            return route, child_scope.get("path_params", {})
    return None


class ResponseCacheEngine:
    """Cache decision engine shared by the middleware and admin tooling."""

    def __init__(
        self,
        config: ResponseCacheConfig,
        store: CacheStore,
        *,
        metrics: Optional[MetricsCollector] = None,
        breaker: Optional[CircuitBreaker] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.config = config
        self.store = store
        self.metrics = metrics
        self.clock = clock
        self.resolver = EligibilityResolver(config)
        self.key_deriver = CacheKeyDeriver(config.key_prefix)
        self.responder = ConditionalResponder()
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=config.store_failure_threshold,
            recovery_timeout=config.store_recovery_timeout,
            expected_exception=CacheStoreError,
            name="response_cache_store",
        )
        self.logger = get_logger("response_cache.middleware")

    def _record(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("response_cache_lookups_total", outcome=outcome)

    async def _store_call(self, operation: str, default: Any, *args) -> Any:
        """Run a store operation through the breaker, failing open to ``default``."""
        try:
            return await self.breaker.call(getattr(self.store, operation), *args)
        except CircuitBreakerOpenException:
            self.logger.debug("Cache store skipped, circuit open", operation=operation)
            return default
        except CacheStoreError as e:
            self.logger.error("Cache store operation failed", operation=operation, error=str(e))
            if self.metrics:
                self.metrics.increment_counter("response_cache_store_errors_total", operation=operation)
            return default

    def describe(self, request: Request) -> Optional[Tuple[RouteDescriptor, Dict[str, Any]]]:
        matched = match_route(request.scope.get("app"), request.scope)
        if matched is None:
            return None
        route, path_params = matched
        return RouteDescriptor.from_route(route), path_params

    def key_for(self, route: RouteDescriptor, path_params: Dict[str, Any], query_params: Any) -> str:
        return self.key_deriver.derive_key(route, path_params, query_params)

    async def before(self, request: Request) -> Tuple[Optional[CacheContext], Optional[CacheEntry]]:
        """Pre-dispatch phase.

        Returns the request's cache context (None when ineligible) and, on a
        hit, the entry to serve without running the handler.
        """
        described = self.describe(request)
        if described is None:
            return None, None
        route, path_params = described

        if not self.resolver.should_cache(route, request.method):
            self._record("ineligible")
            return None, None

        context = CacheContext(
            route=route,
            key=self.key_for(route, path_params, request.query_params),
            ttl=self.resolver.resolve_ttl(route),
            fresh_requested=fresh_response_requested(request),
        )

        cached = await self._store_call("has", _MISSING, context.key)
        if cached is _MISSING:
            context.store_available = False
            self._record("miss")
            return context, None

        if context.fresh_requested:
            if cached:
                forgotten = await self._store_call("forget", _MISSING, context.key)
                if forgotten is _MISSING:
                    context.store_available = False
                self.logger.debug("Cache entry invalidated on request", key=context.key, route=route.identity())
            self._record("bypass")
            return context, None

        if cached:
            entry = await self._store_call("get", None, context.key)
            if entry is not None:
                self.logger.debug("Serving cached response", key=context.key, route=route.identity())
                self._record("hit")
                return context, entry

        self._record("miss")
        return context, None

    async def after(self, request: Request, context: CacheContext, response: Response, body: bytes) -> Response:
        """Post-dispatch phase: read-or-write the entry and finalize headers."""
        if not self.resolver.should_cache(context.route, request.method):
            return _rebuild(response, body)

        if response.status_code != 200:
            self._record("uncacheable_status")
            return _rebuild(response, body)

        if not context.store_available:
            return _rebuild(response, body)

        entry = None
        if await self._store_call("has", False, context.key):
            entry = await self._store_call("get", None, context.key)

        if entry is None:
            entry = CacheEntry.create(body, response.headers.get("content-type"), now=self.clock())
            stored = await self._store_call("put", _MISSING, context.key, entry, context.ttl)
            if stored is _MISSING:
                return _rebuild(response, body)
            if self.metrics:
                self.metrics.increment_counter("response_cache_stores_total")
            self.logger.debug(
                "Stored response",
                key=context.key,
                route=context.route.identity(),
                ttl_minutes=context.ttl,
            )

        return self.finalize(entry, request, response)

    def finalize(self, entry: CacheEntry, request: Request, response: Optional[Response] = None) -> Response:
        final = self.responder.finalize(entry, request, response)
        if final.status_code == 304:
            self._record("not_modified")
        return final


class ResponseCacheMiddleware(BaseHTTPMiddleware):
    """Starlette middleware serving and populating the response cache."""

    def __init__(self, app, engine: ResponseCacheEngine):
        super().__init__(app)
        self.engine = engine

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        context, entry = await self.engine.before(request)
        if context is None:
            return await call_next(request)

        if entry is not None:
            return self.engine.finalize(entry, request)

        start = time.perf_counter()
        response = await call_next(request)
        if self.engine.metrics:
            self.engine.metrics.observe_histogram(
                "response_cache_handler_duration_seconds", time.perf_counter() - start
            )

        body = await _read_body(response)
        return await self.engine.after(request, context, response, body)


async def _read_body(response: Response) -> bytes:
    """Collect the streaming body produced by call_next."""
    chunks = []
    async for chunk in response.body_iterator:
        chunks.append(chunk if isinstance(chunk, bytes) else chunk.encode("utf-8"))
    return b"".join(chunks)


def _rebuild(response: Response, body: bytes) -> Response:
    """Return the handler response with its already-consumed body restored."""
    rebuilt = Response(content=body, status_code=response.status_code)
    rebuilt.raw_headers = [
        (name, value) for name, value in response.raw_headers if name.lower() != b"content-length"
    ]
    rebuilt.raw_headers.append((b"content-length", str(len(body)).encode("latin-1")))
    rebuilt.background = response.background
    return rebuilt
