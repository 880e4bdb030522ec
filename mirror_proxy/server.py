import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import Info
from prometheus_fastapi_instrumentator import Instrumentator

from mirror_proxy.config import ProxyConfig, load_config
from mirror_proxy.proxy.errors import StartupConfigError
from mirror_proxy.proxy.route import build_router, create_reverse_proxy
from mirror_proxy.vars import OTLP_ENDPOINT, OTLP_HEADERS, SERVICE_NAME

logger = logging.getLogger("uvicorn.error")

app_info = Info("fastapi_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME})


def configure_tracing() -> None:
    """Install the tracer provider, exporting over OTLP when an endpoint is set."""
    trace.set_tracer_provider(
        TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
    )
    tracer_provider = trace.get_tracer_provider()
    if OTLP_ENDPOINT:
        otlp_exporter = OTLPSpanExporter(
            endpoint=OTLP_ENDPOINT,
            headers=((OTLP_HEADERS).split(",") if OTLP_HEADERS else None),
        )
        tracer_provider.add_span_processor(BatchSpanProcessor(otlp_exporter))


def create_app(
    config: ProxyConfig, transport: Optional[httpx.AsyncBaseTransport] = None
) -> FastAPI:
    """
    Build the proxy application.

    ``/metrics`` is registered before the catch-all proxy route so it is
    answered locally; every other path goes to the upstream.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"[Startup] Server running on port {config.port}, "
            f"proxying {config.upstream_url} in {config.mode} mode"
        )
        yield

    app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    Instrumentator().instrument(app).expose(app)
    FastAPIInstrumentor.instrument_app(app)

    proxy = create_reverse_proxy(config, transport=transport)
    app.state.proxy = proxy
    app.include_router(build_router(proxy))
    return app


def main() -> None:
    try:
        config = load_config()
    except StartupConfigError as e:
        logger.critical(f"[Startup] {e}")
        sys.exit(1)

    configure_tracing()
    app = create_app(config)
    # uvicorn exits the process itself when the port cannot be bound
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level)


if __name__ == "__main__":
    main()
