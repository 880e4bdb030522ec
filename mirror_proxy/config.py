"""
Validated process configuration.

``mirror_proxy.vars`` reads the environment once at import time; this module
turns those raw strings into a frozen ``ProxyConfig`` and refuses to start
on anything unusable.
"""

from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

from mirror_proxy import vars as env
from mirror_proxy.proxy.errors import StartupConfigError
from mirror_proxy.rewrite import RewriteRuleset

PROXY_MODES = ("rewrite", "mobile")
MAX_PORT = 65535


@dataclass(frozen=True)
class ProxyConfig:
    upstream_url: str
    ruleset: RewriteRuleset
    mode: str = "rewrite"
    mobile_user_agent: str = env.MOBILE_USER_AGENT
    host: str = "0.0.0.0"
    port: int = 3430
    proxy_timeout: float = 300.0
    redirect_fetch_timeout: float = 30.0
    log_level: str = "info"

    @property
    def upstream_host(self) -> str:
        return urlparse(self.upstream_url).netloc


def _parse_upstream(upstream_url: str) -> str:
    parsed = urlparse(upstream_url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise StartupConfigError(f"error parsing upstream url: {upstream_url!r}")
    return upstream_url.rstrip("/")


def _parse_number(name: str, raw: str, cast=float, maximum=None):
    try:
        value = cast(raw)
    except (TypeError, ValueError) as e:
        raise StartupConfigError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise StartupConfigError(f"{name} must be positive, got {raw!r}")
    if maximum is not None and value > maximum:
        raise StartupConfigError(f"{name} must be at most {maximum}, got {raw!r}")
    return value


def load_config(
    upstream_url: Optional[str] = None,
    source_domain: Optional[str] = None,
    target_domain: Optional[str] = None,
    mode: Optional[str] = None,
    port: Optional[str] = None,
) -> ProxyConfig:
    """
    Build the configuration from the environment, with optional overrides.

    Raises StartupConfigError for a malformed upstream URL, an unknown mode,
    a port outside 1-65535, a non-positive timeout or a ruleset that would
    not be idempotent.
    """
    upstream = _parse_upstream(upstream_url or env.UPSTREAM_URL)

    mode = (mode or env.PROXY_MODE).lower()
    if mode not in PROXY_MODES:
        raise StartupConfigError(
            f"PROXY_MODE must be one of {', '.join(PROXY_MODES)}, got {mode!r}"
        )

    source = source_domain or env.MIRROR_SOURCE_DOMAIN or urlparse(upstream).hostname
    target = target_domain or env.MIRROR_TARGET_DOMAIN or f"m-{source}"
    ruleset = RewriteRuleset.for_domains(source, target)
    try:
        ruleset.validate()
    except ValueError as e:
        raise StartupConfigError(f"invalid rewrite ruleset: {e}") from e

    return ProxyConfig(
        upstream_url=upstream,
        ruleset=ruleset,
        mode=mode,
        mobile_user_agent=env.MOBILE_USER_AGENT,
        host=env.HOST or "0.0.0.0",
        port=_parse_number("PORT", port or env.PORT, cast=int, maximum=MAX_PORT),
        proxy_timeout=_parse_number("PROXY_TIMEOUT", env.PROXY_TIMEOUT),
        redirect_fetch_timeout=_parse_number(
            "REDIRECT_FETCH_TIMEOUT", env.REDIRECT_FETCH_TIMEOUT
        ),
        log_level=env.LOG_LEVEL,
    )
