"""
Cache store interface and the in-process implementation.
"""

import base64
import json
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Protocol, Tuple, Union

from shared.logging import get_logger


@dataclass(frozen=True)
class CacheEntry:
    """A cached response body and the moment it was stored."""

    stored_at: datetime
    body: bytes
    media_type: Optional[str] = None

    @classmethod
    def create(cls, body: Union[bytes, str], media_type: Optional[str] = None,
               now: Optional[datetime] = None) -> "CacheEntry":
        """Create an entry stamped with ``now``, truncated to whole seconds.

        HTTP dates carry second precision; truncating keeps ``Last-Modified``
        identical for every response served from this entry.
        """
        stored_at = (now or datetime.now(timezone.utc)).astimezone(timezone.utc).replace(microsecond=0)
        if isinstance(body, str):
            body = body.encode("utf-8")
        return cls(stored_at=stored_at, body=body, media_type=media_type)

    def to_payload(self) -> str:
        """Serialize for byte-oriented backends."""
        return json.dumps({
            "stored_at": int(self.stored_at.timestamp()),
            "body": base64.b64encode(self.body).decode("ascii"),
            "media_type": self.media_type,
        })

    @classmethod
    def from_payload(cls, payload: Union[str, bytes]) -> "CacheEntry":
        data: Dict[str, Any] = json.loads(payload)
        return cls(
            stored_at=datetime.fromtimestamp(int(data["stored_at"]), tz=timezone.utc),
            body=base64.b64decode(data["body"]),
            media_type=data.get("media_type"),
        )


class CacheStore(Protocol):
    """TTL-based key-value backend consumed by the response cache.

    TTLs are expressed in minutes. Implementations raise
    ``shared.errors.CacheStoreError`` when the backend cannot be reached.
    """

    async def has(self, key: str) -> bool: ...

    async def get(self, key: str) -> Optional[CacheEntry]: ...

    async def put(self, key: str, entry: CacheEntry, ttl_minutes: int) -> None: ...

    async def forget(self, key: str) -> None: ...


class InMemoryCacheStore:
    """Process-local store with lazy TTL expiry.

    Suitable for single-process deployments and tests. Operations are guarded by
    a thread lock so the store can be shared across event loops.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[float, CacheEntry]] = {}
        self._lock = threading.Lock()
        self.logger = get_logger("response_cache.store.memory")

    def _live(self, key: str) -> Optional[CacheEntry]:
        item = self._entries.get(key)
        if item is None:
            return None
        expires_at, entry = item
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    async def has(self, key: str) -> bool:
        with self._lock:
            return self._live(key) is not None

    async def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._live(key)

    async def put(self, key: str, entry: CacheEntry, ttl_minutes: int) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + ttl_minutes * 60, entry)
        self.logger.debug("Stored cache entry", key=key, ttl_minutes=ttl_minutes)

    async def forget(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    async def ping(self) -> bool:
        return True

    async def clear_namespace(self, prefix: str) -> int:
        """Delete every key under ``prefix``; returns the number removed."""
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for key in list(self._entries) if self._live(key) is not None)
