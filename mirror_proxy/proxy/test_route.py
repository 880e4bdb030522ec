"""
Tests for the proxy frontend.

Tests cover:
- Header forwarding (X-Forwarded-*, hop-by-hop removal)
- Director and transform wiring around the upstream call
- Inline redirect resolution end to end
- Gateway errors for transport, fetch and transform failures
- Mobile mode
- Concurrent requests
"""

import asyncio
import json
import pytest
from unittest.mock import Mock, patch, AsyncMock
from fastapi import Request
from starlette.requests import ClientDisconnect
import httpx
from httpx import AsyncClient, ConnectError, ReadTimeout

from mirror_proxy.config import load_config
from mirror_proxy.proxy.models import UpstreamResponse
from mirror_proxy.proxy.route import (
    GatewayErrorHandler,
    ReverseProxy,
    build_strategies,
    create_reverse_proxy,
    prepare_headers,
    to_response,
)
from mirror_proxy.proxy.director import MirrorDirector, MobileDirector, RequestDirector
from mirror_proxy.proxy.errors import FetchError, TransformError
from mirror_proxy.proxy.response_transform import (
    MirrorResponseTransform,
    PassthroughTransform,
)
from mirror_proxy.rewrite import HOVER_SCRIPT

UPSTREAM = "https://wikipedia.org"


# Fixtures
@pytest.fixture
def mock_request():
    """Create a mock FastAPI Request object."""
    request = Mock(spec=Request)
    request.method = "GET"
    request.url.path = "/wiki/Go"
    request.url.query = ""
    request.url.scheme = "http"
    request.headers = {"host": "localhost:3430", "user-agent": "test-agent"}
    request.client.host = "192.168.1.100"
    request.body = AsyncMock(return_value=b"")
    return request


@pytest.fixture
def config():
    return load_config(upstream_url=UPSTREAM, mode="rewrite")


@pytest.fixture
def proxy(config):
    return create_reverse_proxy(config)


def upstream_response(status_code=200, headers=None, content=b"", url=f"{UPSTREAM}/wiki/Go"):
    """Create a fully read httpx Response as the client would return it."""
    return httpx.Response(
        status_code,
        headers=headers or {},
        content=content,
        request=httpx.Request("GET", url),
    )


class TestPrepareHeaders:
    """Test header forwarding and manipulation."""

    def test_basic_header_forwarding(self, mock_request):
        mock_request.headers = {
            "user-agent": "test-agent",
            "accept": "text/html",
            "cookie": "session=abc",
        }

        result = prepare_headers(mock_request)

        assert result["user-agent"] == "test-agent"
        assert result["accept"] == "text/html"
        assert result["cookie"] == "session=abc"

    def test_hop_by_hop_and_length_headers_removed(self, mock_request):
        mock_request.headers = {
            "connection": "keep-alive",
            "transfer-encoding": "chunked",
            "content-length": "12",
            "user-agent": "test-agent",
        }

        result = prepare_headers(mock_request)

        assert "connection" not in result
        assert "transfer-encoding" not in result
        assert "content-length" not in result
        assert result["user-agent"] == "test-agent"

    def test_x_forwarded_headers_added(self, mock_request):
        result = prepare_headers(mock_request)

        assert result["x-forwarded-for"] == "192.168.1.100"
        assert result["x-forwarded-host"] == "localhost:3430"
        assert result["x-forwarded-proto"] == "http"

    def test_x_forwarded_for_chain(self, mock_request):
        mock_request.headers = {"x-forwarded-for": "10.0.0.1"}

        result = prepare_headers(mock_request)

        assert result["x-forwarded-for"] == "10.0.0.1, 192.168.1.100"

    def test_client_without_host(self, mock_request):
        mock_request.client = None

        result = prepare_headers(mock_request)

        assert result["x-forwarded-for"] == "unknown"


class TestToResponse:
    def test_repeated_headers_kept(self):
        upstream = UpstreamResponse(
            status_code=200,
            headers=httpx.Headers([("set-cookie", "a=1"), ("set-cookie", "b=2")]),
        ).with_body(b"abc")

        response = to_response(upstream)

        assert response.headers.getlist("set-cookie") == ["a=1", "b=2"]
        assert response.headers["content-length"] == "3"
        assert response.body == b"abc"


class TestBuildStrategies:
    def test_rewrite_mode(self, config):
        director, transform = build_strategies(config)

        assert isinstance(director, MirrorDirector)
        assert not isinstance(director, MobileDirector)
        assert isinstance(transform, MirrorResponseTransform)

    def test_mobile_mode(self):
        director, transform = build_strategies(load_config(mode="mobile"))

        assert isinstance(director, MobileDirector)
        assert isinstance(transform, PassthroughTransform)


class TestHandle:
    """Test the full request pipeline with a mocked upstream client."""

    @pytest.mark.asyncio
    async def test_forwards_to_upstream_with_directed_headers(self, proxy, mock_request):
        mock_request.url.query = "action=render"

        with patch.object(AsyncClient, "request", new_callable=AsyncMock) as mock_client:
            mock_client.return_value = upstream_response(
                headers={"content-type": "text/plain"}, content=b"plain"
            )

            result = await proxy.handle(mock_request)

        call_kwargs = mock_client.call_args[1]
        assert call_kwargs["method"] == "GET"
        assert call_kwargs["url"] == f"{UPSTREAM}/wiki/Go?action=render"
        assert call_kwargs["headers"]["host"] == "wikipedia.org"
        assert call_kwargs["headers"]["accept-encoding"] == "identity"
        assert call_kwargs["headers"]["accept-charset"] == "utf-8"
        assert result.status_code == 200
        assert result.body == b"plain"

    @pytest.mark.asyncio
    async def test_post_body_forwarded(self, proxy, mock_request):
        mock_request.method = "POST"
        mock_request.body = AsyncMock(return_value=b"q=python")

        with patch.object(AsyncClient, "request", new_callable=AsyncMock) as mock_client:
            mock_client.return_value = upstream_response(201)

            result = await proxy.handle(mock_request)

        assert mock_client.call_args[1]["content"] == b"q=python"
        assert result.status_code == 201

    @pytest.mark.asyncio
    async def test_html_is_rewritten(self, proxy, mock_request):
        html = b'<html><body><a href="https://en.wikipedia.org/wiki/C">C</a></body></html>'

        with patch.object(AsyncClient, "request", new_callable=AsyncMock) as mock_client:
            mock_client.return_value = upstream_response(
                headers={"content-type": "text/html"}, content=html
            )

            result = await proxy.handle(mock_request)

        body = result.body.decode("utf-8")
        assert "https://en.m-wikipedia.org/wiki/C" in body
        assert HOVER_SCRIPT in body
        assert result.headers["content-type"] == "text/html; charset=utf-8"
        assert int(result.headers["content-length"]) == len(result.body)

    @pytest.mark.asyncio
    async def test_json_passes_through_unchanged(self, proxy, mock_request):
        payload = json.dumps({"link": "https://wikipedia.org/wiki/Go"}).encode("utf-8")

        with patch.object(AsyncClient, "request", new_callable=AsyncMock) as mock_client:
            mock_client.return_value = upstream_response(
                headers={"content-type": "application/json"}, content=payload
            )

            result = await proxy.handle(mock_request)

        assert result.body == payload
        assert result.headers["content-type"] == "application/json"

    @pytest.mark.asyncio
    async def test_redirect_resolved_with_single_secondary_fetch(self, proxy, mock_request):
        target = b"<html><body>Foo on https://wikipedia.org</body></html>"

        with patch.object(AsyncClient, "request", new_callable=AsyncMock) as mock_client:
            mock_client.side_effect = [
                upstream_response(
                    302,
                    headers={"location": "https://wikipedia.org/Foo"},
                    content=b"Found",
                ),
                upstream_response(
                    200,
                    headers={"content-type": "text/html"},
                    content=target,
                    url="https://wikipedia.org/Foo",
                ),
            ]

            result = await proxy.handle(mock_request)

        assert mock_client.await_count == 2
        second_call = mock_client.call_args_list[1]
        assert second_call[0][0] == "GET"
        assert second_call[0][1] == "https://wikipedia.org/Foo"
        assert result.status_code == 200
        assert "location" not in result.headers
        assert b"https://m-wikipedia.org" in result.body
        assert int(result.headers["content-length"]) == len(result.body)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [200, 204, 304, 400, 404, 500, 503])
    async def test_status_codes_passed_through(self, proxy, mock_request, status_code):
        with patch.object(AsyncClient, "request", new_callable=AsyncMock) as mock_client:
            mock_client.return_value = upstream_response(
                status_code, headers={"content-type": "text/plain"}
            )

            result = await proxy.handle(mock_request)

        assert result.status_code == status_code

    @pytest.mark.asyncio
    async def test_connect_error_is_bad_gateway(self, proxy, mock_request):
        with patch.object(AsyncClient, "request", new_callable=AsyncMock) as mock_client:
            mock_client.side_effect = ConnectError("Connection refused")

            result = await proxy.handle(mock_request)

        assert result.status_code == 502
        assert "Connection refused" in json.loads(result.body)["detail"]

    @pytest.mark.asyncio
    async def test_upstream_timeout_is_gateway_timeout(self, proxy, mock_request):
        with patch.object(AsyncClient, "request", new_callable=AsyncMock) as mock_client:
            mock_client.side_effect = ReadTimeout("Request timeout")

            result = await proxy.handle(mock_request)

        assert result.status_code == 504

    @pytest.mark.asyncio
    async def test_redirect_fetch_failure_is_bad_gateway(self, proxy, mock_request):
        with patch.object(AsyncClient, "request", new_callable=AsyncMock) as mock_client:
            mock_client.side_effect = [
                upstream_response(302, headers={"location": "https://wikipedia.org/Foo"}),
                ConnectError("Connection refused"),
            ]

            result = await proxy.handle(mock_request)

        assert result.status_code == 502
        detail = json.loads(result.body)["detail"]
        assert "error fetching content" in detail
        assert "ConnectError" in detail
        # Nothing of the original redirect leaks into the error response
        assert "location" not in result.headers

    @pytest.mark.asyncio
    async def test_transform_error_is_bad_gateway(self, config, mock_request):
        transform = Mock()
        transform.transform = AsyncMock(side_effect=TransformError("bad body"))
        proxy = ReverseProxy(config, MirrorDirector(config.upstream_url), transform)

        with patch.object(AsyncClient, "request", new_callable=AsyncMock) as mock_client:
            mock_client.return_value = upstream_response(headers={"content-type": "text/html"})

            result = await proxy.handle(mock_request)

        assert result.status_code == 502
        assert "bad body" in json.loads(result.body)["detail"]

    @pytest.mark.asyncio
    async def test_custom_error_handler_is_used(self, config, mock_request):
        handler = Mock(return_value="handled")
        director, transform = build_strategies(config)
        proxy = ReverseProxy(config, director, transform, error_handler=handler)

        with patch.object(AsyncClient, "request", new_callable=AsyncMock) as mock_client:
            mock_client.side_effect = ConnectError("down")

            result = await proxy.handle(mock_request)

        assert result == "handled"
        target_url, exception = handler.call_args[0]
        assert target_url == f"{UPSTREAM}/wiki/Go"
        assert isinstance(exception, ConnectError)

    @pytest.mark.asyncio
    async def test_mobile_mode_sends_mobile_user_agent_without_rewriting(self, mock_request):
        proxy = create_reverse_proxy(load_config(upstream_url=UPSTREAM, mode="mobile"))
        html = b"<body>https://wikipedia.org</body>"

        with patch.object(AsyncClient, "request", new_callable=AsyncMock) as mock_client:
            mock_client.return_value = upstream_response(
                headers={"content-type": "text/html"}, content=html
            )

            result = await proxy.handle(mock_request)

        sent_headers = mock_client.call_args[1]["headers"]
        assert sent_headers["user-agent"] == proxy.config.mobile_user_agent
        assert result.body == html

    @pytest.mark.asyncio
    async def test_concurrent_requests(self, proxy, mock_request):
        with patch.object(AsyncClient, "request", new_callable=AsyncMock) as mock_client:
            mock_client.return_value = upstream_response(
                headers={"content-type": "text/html"}, content=b"<body>x</body>"
            )

            tasks = [proxy.handle(mock_request) for _ in range(10)]
            results = await asyncio.gather(*tasks)

        assert len(results) == 10
        assert all(r.status_code == 200 for r in results)
        assert all(r.body.count(HOVER_SCRIPT.encode("utf-8")) == 1 for r in results)

    @pytest.mark.asyncio
    async def test_head_keeps_upstream_content_length(self, proxy, mock_request):
        mock_request.method = "HEAD"

        with patch.object(AsyncClient, "request", new_callable=AsyncMock) as mock_client:
            mock_client.return_value = upstream_response(
                headers={
                    "content-type": "application/octet-stream",
                    "content-length": "1234",
                }
            )

            result = await proxy.handle(mock_request)

        assert mock_client.call_args[1]["method"] == "HEAD"
        assert result.status_code == 200
        assert result.headers["content-length"] == "1234"
        assert result.body == b""

    @pytest.mark.asyncio
    async def test_head_in_mobile_mode_keeps_upstream_content_length(self, mock_request):
        proxy = create_reverse_proxy(load_config(upstream_url=UPSTREAM, mode="mobile"))
        mock_request.method = "HEAD"

        with patch.object(AsyncClient, "request", new_callable=AsyncMock) as mock_client:
            mock_client.return_value = upstream_response(
                headers={"content-type": "text/html", "content-length": "4096"}
            )

            result = await proxy.handle(mock_request)

        assert result.headers["content-length"] == "4096"

    @pytest.mark.asyncio
    async def test_body_read_failure_is_bad_gateway(self, proxy, mock_request):
        mock_request.method = "POST"
        mock_request.body = AsyncMock(side_effect=ClientDisconnect())

        with patch.object(AsyncClient, "request", new_callable=AsyncMock) as mock_client:
            result = await proxy.handle(mock_request)

        mock_client.assert_not_awaited()
        assert result.status_code == 502

    @pytest.mark.asyncio
    async def test_director_host_sets_upstream_host_header(self, config, mock_request):
        class FixedHostDirector(RequestDirector):
            def direct(self, request):
                request.host = "origin.wikipedia.internal"

        proxy = ReverseProxy(config, FixedHostDirector(), PassthroughTransform())

        with patch.object(AsyncClient, "request", new_callable=AsyncMock) as mock_client:
            mock_client.return_value = upstream_response()

            await proxy.handle(mock_request)

        sent_headers = mock_client.call_args[1]["headers"]
        assert sent_headers.get_list("host") == ["origin.wikipedia.internal"]


class TestGatewayErrorHandler:
    def test_fetch_error_caused_by_timeout_is_504(self):
        try:
            try:
                raise ReadTimeout("slow")
            except ReadTimeout as e:
                raise FetchError("timed out fetching content", url="/x") from e
        except FetchError as e:
            error = e

        response = GatewayErrorHandler()("https://wikipedia.org/x", error)

        assert response.status_code == 504

    def test_other_errors_are_502(self):
        response = GatewayErrorHandler()("https://wikipedia.org/x", RuntimeError("boom"))

        assert response.status_code == 502
        assert json.loads(response.body) == {"detail": "Bad gateway: boom"}
