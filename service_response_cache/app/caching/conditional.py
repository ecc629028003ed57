"""
Conditional response generation for cached entries.
"""

from email.utils import format_datetime
from typing import Optional, Set

from starlette.requests import Request
from starlette.responses import Response

from .store import CacheEntry

# Headers owned by the responder; handler values for these are replaced.
_MANAGED_HEADERS = {
    b"content-length",
    b"content-type",
    b"last-modified",
    b"cache-control",
}


def http_date(entry: CacheEntry) -> str:
    """RFC 7231 HTTP-date for the entry's storage time."""
    return format_datetime(entry.stored_at, usegmt=True)


def cache_control_directives(header_value: Optional[str]) -> Set[str]:
    """Lower-cased directive names of a Cache-Control header."""
    if not header_value:
        return set()
    return {
        part.split("=", 1)[0].strip().lower()
        for part in header_value.split(",")
        if part.strip()
    }


def fresh_response_requested(request: Request) -> bool:
    """Whether the client asked to bypass cached content.

    Honours ``Pragma: no-cache`` from HTTP/1.0 clients as well.
    """
    if "no-cache" in cache_control_directives(request.headers.get("cache-control")):
        return True
    return request.headers.get("pragma", "").strip().lower() == "no-cache"


class ConditionalResponder:
    """Turn a cache entry into the outgoing 200 or 304 response."""

    def is_not_modified(self, request: Request, last_modified: str) -> bool:
        # Exact match only: an older validator must still get the full body
        validator = request.headers.get("if-modified-since")
        return validator is not None and validator == last_modified

    def finalize(
        self,
        entry: CacheEntry,
        request: Request,
        response: Optional[Response] = None,
    ) -> Response:
        """Build the final response for ``entry``.

        ``response`` is the handler's response when the handler ran; its status
        and extra headers are kept, its body is replaced by the entry body.
        """
        last_modified = http_date(entry)
        cache_headers = {
            "Last-Modified": last_modified,
            "Cache-Control": "public",
        }

        if self.is_not_modified(request, last_modified):
            return Response(status_code=304, headers=cache_headers)

        content_type = entry.media_type
        if content_type is None and response is not None:
            content_type = response.headers.get("content-type")
        if content_type:
            # Passed verbatim so an existing charset parameter is not duplicated
            cache_headers["Content-Type"] = content_type

        final = Response(
            content=entry.body,
            status_code=response.status_code if response is not None else 200,
            headers=cache_headers,
        )

        if response is not None:
            final.raw_headers.extend(
                (name, value)
                for name, value in response.raw_headers
                if name.lower() not in _MANAGED_HEADERS
            )

        return final
