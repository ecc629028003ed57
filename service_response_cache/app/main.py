"""
Response cache host service for the Access layer.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlsplit

from fastapi import HTTPException, Query
from starlette.datastructures import QueryParams

from shared.base_service import BaseService
from shared.config import ResponseCacheConfig, get_config
from shared.errors import CacheStoreError
from shared.metrics import MetricsCollector, get_metrics_collector
from service_response_cache.app.caching import (
    CacheStore,
    InMemoryCacheStore,
    RedisCacheStore,
    ResponseCacheEngine,
    ResponseCacheMiddleware,
    RouteDescriptor,
    cache_directives,
)
from service_response_cache.app.caching.middleware import match_route

SERVICE_NAME = "response_cache"

# Routes that must always reach their handler
OPERATIONAL_PATHS = ("/health", "/metrics", "/docs", "/redoc", "/openapi.json")


def build_store(config: ResponseCacheConfig) -> CacheStore:
    """Create the cache store selected by configuration."""
    if config.store_backend == "memory":
        return InMemoryCacheStore()
    return RedisCacheStore(config.redis_url)


class ResponseCacheService(BaseService):
    """FastAPI service with the response cache installed."""

    def __init__(
        self,
        config: Optional[ResponseCacheConfig] = None,
        store: Optional[CacheStore] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        config = config or get_config()
        metrics = metrics or get_metrics_collector(SERVICE_NAME)
        self.store = store if store is not None else build_store(config)
        self.engine = ResponseCacheEngine(
            config,
            self.store,
            metrics=metrics,
            clock=clock or (lambda: datetime.now(timezone.utc)),
        )
        super().__init__(SERVICE_NAME, config, metrics)

        @self.app.on_event("startup")
        async def _startup():
            if isinstance(self.store, RedisCacheStore):
                try:
                    await self.store.start()
                except CacheStoreError as e:
                    # Requests still work; the cache fails open until Redis answers
                    self.logger.warning("Cache store unreachable at startup", error=str(e))

        @self.app.on_event("shutdown")
        async def _shutdown():
            if isinstance(self.store, RedisCacheStore):
                await self.store.stop()

        self._setup_admin_routes()
        self._exclude_operational_routes()

    def _setup_middleware(self):
        """Install the cache inside the request timing middleware."""
        self.app.add_middleware(ResponseCacheMiddleware, engine=self.engine)
        super()._setup_middleware()

    def _exclude_operational_routes(self):
        for route in self.app.routes:
            if getattr(route, "path", None) in OPERATIONAL_PATHS:
                cache_directives("no-cache")(route.endpoint)

    def _setup_admin_routes(self):
        """Set up cache administration routes."""

        @self.app.delete("/admin/cache")
        async def forget_cached_response(path: str = Query(..., description="Request target, e.g. /items/1?page=2")):
            """Forget the cached response for a request target."""
            target = urlsplit(path)
            scope = {
                "type": "http",
                "method": "GET",
                "path": target.path,
                "root_path": "",
                "query_string": target.query.encode("latin-1"),
                "headers": [],
            }
            matched = match_route(self.app, scope)
            if matched is None:
                raise HTTPException(status_code=404, detail=f"No route matches {target.path}")

            route, path_params = matched
            descriptor = RouteDescriptor.from_route(route)
            key = self.engine.key_for(descriptor, path_params, QueryParams(target.query))
            await self.store.forget(key)

            self.logger.info("Cached response forgotten", path=path, route=descriptor.identity(), key=key)
            return {"path": path, "route": descriptor.identity(), "key": key, "forgotten": True}

        @self.app.post("/admin/cache/clear")
        async def clear_cache():
            """Remove every cached response in this service's namespace."""
            removed = await self.store.clear_namespace(self.config.key_prefix)
            return {"prefix": self.config.key_prefix, "removed": removed}

        @self.app.get("/admin/cache/status")
        @cache_directives("no-cache")
        async def cache_status():
            """Current cache configuration and store breaker state."""
            return {
                "enabled": self.config.enabled,
                "cache_all": self.config.cache_all,
                "life_minutes": self.config.life,
                "key_prefix": self.config.key_prefix,
                "store_backend": self.config.store_backend,
                "breaker": self.engine.breaker.get_state(),
            }

    async def _check_dependencies(self) -> Dict[str, Any]:
        """Report cache store reachability."""
        ping = getattr(self.store, "ping", None)
        if ping is None:
            return {}
        return {"cache_store": "ok" if await ping() else "unreachable"}


def create_app(
    config: Optional[ResponseCacheConfig] = None,
    store: Optional[CacheStore] = None,
    metrics: Optional[MetricsCollector] = None,
):
    """Create FastAPI application."""
    service = ResponseCacheService(config=config, store=store, metrics=metrics)
    return service.app


if __name__ == "__main__":
    service = ResponseCacheService()
    service.run()
