import logging
from typing import Optional, Tuple

import httpx
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from opentelemetry import trace

from mirror_proxy.config import ProxyConfig
from mirror_proxy.proxy.director import MirrorDirector, MobileDirector, RequestDirector
from mirror_proxy.proxy.models import ProxiedRequest, UpstreamResponse
from mirror_proxy.proxy.redirect_resolver import RedirectResolver
from mirror_proxy.proxy.response_transform import (
    MirrorResponseTransform,
    PassthroughTransform,
    ResponseTransform,
)
from mirror_proxy.rewrite import BodyRewriter
from mirror_proxy.utils import HOP_BY_HOP_HEADERS
from mirror_proxy.utils.exception_logging import (
    format_exception_message,
    iter_causes,
    log_exception_with_details,
)
from mirror_proxy.utils.traced_requests import traced_proxy_request

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]


def prepare_headers(request: Request) -> httpx.Headers:
    """
    Prepare headers for forwarding to the upstream.
    Removes hop-by-hop headers and adds X-Forwarded-* headers.
    """
    forwarded = []
    for name, value in request.headers.items():
        name_lower = name.lower()
        # httpx computes Content-Length from the body it sends
        if name_lower in HOP_BY_HOP_HEADERS or name_lower == "content-length":
            continue
        forwarded.append((name, value))
    headers = httpx.Headers(forwarded)

    client_ip = request.client.host if request.client else "unknown"
    existing_xff = headers.get("x-forwarded-for", "")
    headers["x-forwarded-for"] = f"{existing_xff}, {client_ip}".strip(", ")
    headers["x-forwarded-host"] = request.headers.get("host", "")
    headers["x-forwarded-proto"] = request.url.scheme
    return headers


def to_response(upstream: UpstreamResponse) -> Response:
    """Serialize an upstream response for the client, keeping repeated headers."""
    response = Response(content=upstream.body, status_code=upstream.status_code)
    response.raw_headers = [(name.lower(), value) for name, value in upstream.headers.raw]
    return response


def _timed_out(exception: BaseException) -> bool:
    if isinstance(exception, httpx.TimeoutException):
        return True
    return any(isinstance(c, httpx.TimeoutException) for c in iter_causes(exception))


class GatewayErrorHandler:
    """Turn a per-request failure into a gateway error for the client."""

    def __call__(self, target_url: str, exception: Exception) -> Response:
        log_exception_with_details(logger, f"[Proxy] {target_url}", exception)
        if _timed_out(exception):
            return JSONResponse(status_code=504, content={"detail": "Gateway timeout"})
        return JSONResponse(
            status_code=502,
            content={"detail": f"Bad gateway: {format_exception_message(exception)}"},
        )


class ReverseProxy:
    """
    Forward every inbound request to a single upstream.

    The director prepares the outbound request, the transform post-processes
    the buffered upstream response and the error handler answers for any
    failure along the way.
    """

    def __init__(
        self,
        config: ProxyConfig,
        director: RequestDirector,
        transform: ResponseTransform,
        error_handler: Optional[GatewayErrorHandler] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.director = director
        self.transform = transform
        self.error_handler = error_handler or GatewayErrorHandler()
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.proxy_timeout),
            # Redirects are resolved by the transform, not by the transport
            follow_redirects=False,
            transport=self.transport,
        )

    def build_request(self, request: Request) -> ProxiedRequest:
        """Start the outbound request from the inbound method, path and query."""
        return ProxiedRequest(
            method=request.method,
            path=request.url.path,
            query=str(request.url.query),
        )

    async def load_request(self, request: Request, proxied: ProxiedRequest) -> None:
        """Copy forwardable headers and read the inbound body."""
        proxied.headers = prepare_headers(request)
        proxied.host = request.headers.get("host")
        proxied.body = await request.body()

    async def forward(self, proxied: ProxiedRequest, target_url: str) -> UpstreamResponse:
        headers = proxied.headers.copy()
        if proxied.host:
            headers["host"] = proxied.host
        async with self._client() as client:
            response = await client.request(
                method=proxied.method,
                url=target_url,
                headers=headers,
                content=proxied.body,
            )
        return UpstreamResponse.from_httpx(response, method=proxied.method)

    async def handle(self, request: Request) -> Response:
        proxied = self.build_request(request)
        target_url = proxied.target_url(self.config.upstream_url)

        with traced_proxy_request(
            tracer,
            operation="proxy_request",
            method=proxied.method,
            target_url=target_url,
            start_message=f"[Proxy] Proxying request: {self.config.upstream_url}{proxied.path}",
        ) as span:
            try:
                await self.load_request(request, proxied)
                self.director.direct(proxied)
                upstream = await self.forward(proxied, target_url)
                span.set_attribute("proxy.upstream_status_code", upstream.status_code)
                served = await self.transform.transform(upstream)
            except Exception as e:
                # Body read, director, httpx, FetchError and TransformError failures
                span.set_attribute("proxy.error", type(e).__name__)
                return self.error_handler(target_url, e)

            span.set_attribute("proxy.status_code", served.status_code)
            return to_response(served)


def build_strategies(
    config: ProxyConfig, transport: Optional[httpx.AsyncBaseTransport] = None
) -> Tuple[RequestDirector, ResponseTransform]:
    """Pick the director and transform pair for the configured mode."""
    if config.mode == "mobile":
        return (
            MobileDirector(config.upstream_url, config.mobile_user_agent),
            PassthroughTransform(),
        )
    resolver = RedirectResolver(
        timeout=config.redirect_fetch_timeout, transport=transport
    )
    return (
        MirrorDirector(config.upstream_url),
        MirrorResponseTransform(resolver, BodyRewriter(config.ruleset)),
    )


def create_reverse_proxy(
    config: ProxyConfig, transport: Optional[httpx.AsyncBaseTransport] = None
) -> ReverseProxy:
    director, transform = build_strategies(config, transport)
    return ReverseProxy(config, director, transform, transport=transport)


def build_router(proxy: ReverseProxy) -> APIRouter:
    router = APIRouter()

    @router.api_route("/{path:path}", methods=PROXY_METHODS)
    async def proxy_all(request: Request, path: str):
        """Catch-all route that proxies all requests to the upstream."""
        return await proxy.handle(request)

    return router
