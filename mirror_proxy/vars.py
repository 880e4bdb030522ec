import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "mirror-proxy")

UPSTREAM_URL = os.environ.get("UPSTREAM_URL", "https://wikipedia.org")
# Empty means "derive from the upstream host"
MIRROR_SOURCE_DOMAIN = os.environ.get("MIRROR_SOURCE_DOMAIN", "")
MIRROR_TARGET_DOMAIN = os.environ.get("MIRROR_TARGET_DOMAIN", "")

PROXY_MODE = os.environ.get("PROXY_MODE", "rewrite").lower()
MOBILE_USER_AGENT = os.environ.get(
    "MOBILE_USER_AGENT",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) "
    "AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1",
)

HOST = os.environ.get("HOST", "0.0.0.0")
PORT = os.environ.get("PORT", "3430")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "info").lower()

PROXY_TIMEOUT = os.environ.get("PROXY_TIMEOUT", "300")
REDIRECT_FETCH_TIMEOUT = os.environ.get("REDIRECT_FETCH_TIMEOUT", "30")

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
