import logging
from abc import ABC, abstractmethod

from opentelemetry import trace

from mirror_proxy.proxy.errors import TransformError
from mirror_proxy.proxy.models import UpstreamResponse
from mirror_proxy.proxy.redirect_resolver import RedirectResolver
from mirror_proxy.rewrite import BodyRewriter
from mirror_proxy.rewrite.charset import (
    decode_body,
    encode_body,
    ensure_charset,
    is_html,
    resolve_codec,
)
from mirror_proxy.utils import strip_hop_by_hop

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")


class ResponseTransform(ABC):
    """Strategy interface applied to every upstream response."""

    @abstractmethod
    async def transform(self, response: UpstreamResponse) -> UpstreamResponse:
        """Return the response to serve in place of ``response``."""


class PassthroughTransform(ResponseTransform):
    """Serve upstream responses untouched (mobile mode)."""

    async def transform(self, response: UpstreamResponse) -> UpstreamResponse:
        return response


class MirrorResponseTransform(ResponseTransform):
    """
    Rewrite HTML for the mirror domain and resolve redirects inline.

    Branches, first match wins:

    1. redirect (301/302/307/308 with a Location): fetch the target, rewrite
       it and serve it as 200 with the fetched headers
    2. anything whose Content-Type lacks ``text/html``: untouched
    3. HTML: body rewritten, Content-Length recomputed
    """

    def __init__(self, resolver: RedirectResolver, rewriter: BodyRewriter):
        self.resolver = resolver
        self.rewriter = rewriter

    async def transform(self, response: UpstreamResponse) -> UpstreamResponse:
        with tracer.start_as_current_span("transform_response") as span:
            span.set_attribute("proxy.status_code", response.status_code)

            if response.is_redirect():
                span.set_attribute("proxy.branch", "redirect")
                return await self._resolve_redirect(response)

            if not is_html(response.content_type):
                span.set_attribute("proxy.branch", "passthrough")
                return response

            span.set_attribute("proxy.branch", "html")
            return self._rewrite_html(response)

    async def _resolve_redirect(self, response: UpstreamResponse) -> UpstreamResponse:
        # FetchError propagates; the caller must not serve the original response
        outcome = await self.resolver.resolve(response.location, base_url=response.url)

        resolved = (
            response.with_status(200, "OK")
            .with_headers(strip_hop_by_hop(outcome.headers))
            .without_header("location")
        )
        body = self._rewrite_bytes(outcome.body, resolved.content_type)
        resolved = resolved.with_body(body)
        return resolved.with_header("content-type", ensure_charset(resolved.content_type))

    def _rewrite_html(self, response: UpstreamResponse) -> UpstreamResponse:
        if response.is_head():
            # The rewritten length of a page that was never sent is unknown
            return response.without_header("content-length").with_header(
                "content-type", ensure_charset(response.content_type)
            )
        body = self._rewrite_bytes(response.body, response.content_type)
        rewritten = response.with_body(body)
        return rewritten.with_header(
            "content-type", ensure_charset(rewritten.content_type)
        )

    def _rewrite_bytes(self, body: bytes, content_type: str) -> bytes:
        try:
            codec = resolve_codec(content_type)
            text = decode_body(body, codec)
            return encode_body(self.rewriter.rewrite(text), codec)
        except (LookupError, UnicodeError) as e:
            logger.warning(f"[Transform] Could not rewrite body ({content_type}): {e}")
            raise TransformError(f"error rewriting response body: {e}") from e
