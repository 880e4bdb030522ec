import logging
from typing import Optional
from urllib.parse import urljoin

import httpx
from opentelemetry import trace

from mirror_proxy.proxy.errors import FetchError
from mirror_proxy.proxy.models import RedirectOutcome

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

REDIRECT_FETCH_HEADERS = {
    "accept-encoding": "identity",
    "accept-charset": "utf-8",
    "accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8",
}


class RedirectResolver:
    """
    Fetch the target of an upstream redirect so it can be served inline.

    Exactly one hop is resolved: the client is configured not to follow
    redirects, so a redirect returned by the secondary fetch is handed back
    as-is.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            follow_redirects=False,
            transport=self.transport,
        )

    async def resolve(self, location: str, base_url: str = "") -> RedirectOutcome:
        """
        GET ``location`` (resolved against ``base_url`` when relative).

        Raises FetchError on a malformed URL, a network failure, a timeout or
        a body read failure. No retry is attempted and the status of the
        secondary response is not checked.
        """
        url = urljoin(base_url, location) if base_url else location
        logger.info(f"[Redirect] Redirected to: {url}")

        with tracer.start_as_current_span("resolve_redirect") as span:
            span.set_attribute("proxy.redirect_location", url)
            try:
                async with self._client() as client:
                    response = await client.get(url, headers=REDIRECT_FETCH_HEADERS)
                    body = response.content
            except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
                span.set_attribute("proxy.error", "invalid_url")
                raise FetchError(f"error creating request: {e}", url=url) from e
            except httpx.TimeoutException as e:
                span.set_attribute("proxy.error", "timeout")
                raise FetchError(f"timed out fetching content: {e}", url=url) from e
            except httpx.TransportError as e:
                span.set_attribute("proxy.error", "transport")
                raise FetchError(f"error fetching content: {e}", url=url) from e
            except httpx.HTTPError as e:
                span.set_attribute("proxy.error", "read")
                raise FetchError(f"error reading response body: {e}", url=url) from e

            span.set_attribute("proxy.status_code", response.status_code)
            if response.is_redirect:
                logger.warning(
                    f"[Redirect] {url} redirected again ({response.status_code}); "
                    "serving the intermediate page"
                )

            # Content-Encoding no longer describes the decoded body
            headers = response.headers.copy()
            if "content-encoding" in headers:
                del headers["content-encoding"]

            return RedirectOutcome(
                body=body,
                headers=headers,
                status_code=response.status_code,
                url=str(response.url),
            )
