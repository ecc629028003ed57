"""
Route cache directives and route descriptors.

Routes express caching intent through a directive map attached to their
endpoint. Two forms are recognised:

- keyed: ``cache=True``, ``cache=False`` or ``cache=<minutes>``
- keyless: the bare tokens ``"cache"`` or ``"no-cache"``

Keyless tokens are stored under positional keys ("0", "1", ...) so both forms
can sit in one map.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Optional

CACHE_KEY = "cache"
CACHE_TOKEN = "cache"
NO_CACHE_TOKEN = "no-cache"

DIRECTIVES_ATTRIBUTE = "__response_cache_directives__"


class DirectiveState(Enum):
    """Caching instruction carried by a route."""
    UNSET = "unset"        # Defer to the global default
    DISABLED = "disabled"
    ENABLED = "enabled"


@dataclass(frozen=True)
class CacheDirective:
    """Resolved per-route caching instruction."""

    state: DirectiveState
    ttl: Optional[int] = None

    @classmethod
    def unset(cls) -> "CacheDirective":
        return cls(DirectiveState.UNSET)

    @classmethod
    def disabled(cls) -> "CacheDirective":
        return cls(DirectiveState.DISABLED)

    @classmethod
    def enabled(cls, ttl: Optional[int] = None) -> "CacheDirective":
        return cls(DirectiveState.ENABLED, ttl)

    @property
    def is_unset(self) -> bool:
        return self.state is DirectiveState.UNSET

    @property
    def is_enabled(self) -> bool:
        return self.state is DirectiveState.ENABLED


@dataclass
class RouteDescriptor:
    """Identity and cache metadata of a route.

    ``name`` is only set for explicitly named routes. The cache identity is
    read from the descriptor each time a key is derived, so a named route keeps
    its key when ``uri_template`` changes while an unnamed route follows it.
    """

    uri_template: str
    name: Optional[str] = None
    methods: FrozenSet[str] = frozenset({"GET", "HEAD"})
    directives: Dict[str, Any] = field(default_factory=dict)

    def identity(self) -> str:
        """Name if the route was named, else its URI template."""
        return self.name if self.name else self.uri_template

    def accepts(self, method: str) -> bool:
        return method.upper() in self.methods

    @classmethod
    def from_route(cls, route: Any) -> "RouteDescriptor":
        """Build a descriptor from a Starlette/FastAPI route.

        Starlette names every route after its endpoint function when no name
        is given, so a name equal to the endpoint's ``__name__`` counts as
        unnamed.
        """
        endpoint = getattr(route, "endpoint", None)
        name = getattr(route, "name", None)
        if endpoint is not None and name == getattr(endpoint, "__name__", None):
            name = None

        methods = getattr(route, "methods", None) or {"GET", "HEAD"}
        directives = dict(getattr(endpoint, DIRECTIVES_ATTRIBUTE, {}) or {})

        return cls(
            uri_template=route.path,
            name=name,
            methods=frozenset(method.upper() for method in methods),
            directives=directives,
        )


def build_directives(*tokens: str, **keyed: Any) -> Dict[str, Any]:
    """Build a directive map from keyless tokens and keyed directives."""
    directives: Dict[str, Any] = {str(index): token for index, token in enumerate(tokens)}
    directives.update(keyed)
    return directives


def cache_directives(*tokens: str, **keyed: Any) -> Callable[[Callable], Callable]:
    """Attach cache directives to a route endpoint.

    Usage::

        @app.get("/reports/{report_id}")
        @cache_directives(cache=60)
        async def get_report(report_id: str): ...
    """
    def decorator(endpoint: Callable) -> Callable:
        existing = dict(getattr(endpoint, DIRECTIVES_ATTRIBUTE, {}) or {})
        offset = sum(1 for key in existing if key.isdigit())
        for index, token in enumerate(tokens):
            existing[str(offset + index)] = token
        existing.update(keyed)
        setattr(endpoint, DIRECTIVES_ATTRIBUTE, existing)
        return endpoint

    return decorator
