"""
Request-scoped values passed through the proxy pipeline.

``UpstreamResponse`` is immutable: every ``with_*`` call returns a new value,
so a step that fails half way never leaves a partially rewritten response
behind. Content-Length always follows the body.
"""

from dataclasses import dataclass, field, replace
from typing import Optional

import httpx

from mirror_proxy.utils import strip_hop_by_hop

REDIRECT_STATUS_CODES = frozenset({301, 302, 307, 308})

# Statuses that never carry a body or a Content-Length
BODYLESS_STATUS_CODES = frozenset({204, 304})


@dataclass
class ProxiedRequest:
    """The inbound request as it will be forwarded upstream."""

    method: str
    path: str
    query: str = ""
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    host: Optional[str] = None
    body: bytes = b""

    def target_url(self, upstream_url: str) -> str:
        """Join the upstream base URL with this request's path and query."""
        url = upstream_url.rstrip("/") + "/" + self.path.lstrip("/")
        if self.query:
            url = f"{url}?{self.query}"
        return url


@dataclass(frozen=True)
class RedirectOutcome:
    """Result of following a single redirect hop."""

    body: bytes
    headers: httpx.Headers
    status_code: int = 200
    url: str = ""


@dataclass(frozen=True)
class UpstreamResponse:
    status_code: int
    headers: httpx.Headers
    body: bytes = b""
    reason_phrase: str = ""
    url: str = ""
    request_method: str = "GET"

    @classmethod
    def from_httpx(
        cls, response: httpx.Response, method: str = "GET"
    ) -> "UpstreamResponse":
        """
        Snapshot a fully read httpx response.

        httpx has already decoded any Content-Encoding, so that header is
        dropped together with the hop-by-hop ones and Content-Length is
        recomputed from the decoded bytes. A HEAD response has no body to
        measure, so the upstream's Content-Length is kept as sent.
        """
        headers = strip_hop_by_hop(response.headers)
        if "content-encoding" in headers:
            del headers["content-encoding"]
        snapshot = cls(
            status_code=response.status_code,
            headers=headers,
            reason_phrase=response.reason_phrase,
            url=str(response.url),
            request_method=method.upper(),
        )
        if snapshot.is_head():
            return snapshot
        return snapshot.with_body(response.content)

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")

    @property
    def location(self) -> str:
        return self.headers.get("location", "")

    @property
    def content_length(self) -> int:
        return len(self.body)

    def is_head(self) -> bool:
        return self.request_method == "HEAD"

    def is_redirect(self) -> bool:
        return self.status_code in REDIRECT_STATUS_CODES and bool(self.location)

    def with_status(self, status_code: int, reason_phrase: str) -> "UpstreamResponse":
        return replace(self, status_code=status_code, reason_phrase=reason_phrase)

    def with_headers(self, headers: httpx.Headers) -> "UpstreamResponse":
        """Replace the header mapping wholesale, keeping Content-Length in sync."""
        return replace(self, headers=httpx.Headers(headers)).with_body(self.body)

    def with_header(self, name: str, value: str) -> "UpstreamResponse":
        headers = self.headers.copy()
        headers[name] = value
        return replace(self, headers=headers)

    def without_header(self, name: str) -> "UpstreamResponse":
        headers = self.headers.copy()
        if name in headers:
            del headers[name]
        return replace(self, headers=headers)

    def with_body(self, body: bytes) -> "UpstreamResponse":
        headers = self.headers.copy()
        if self.status_code in BODYLESS_STATUS_CODES:
            if "content-length" in headers:
                del headers["content-length"]
        else:
            headers["content-length"] = str(len(body))
        return replace(self, headers=headers, body=body)
