from .errors import ProxyError, StartupConfigError, FetchError, TransformError
from .models import ProxiedRequest, UpstreamResponse, RedirectOutcome
from .director import RequestDirector, MirrorDirector, MobileDirector
from .redirect_resolver import RedirectResolver
from .response_transform import (
    ResponseTransform,
    MirrorResponseTransform,
    PassthroughTransform,
)

__all__ = [
    "ProxyError",
    "StartupConfigError",
    "FetchError",
    "TransformError",
    "ProxiedRequest",
    "UpstreamResponse",
    "RedirectOutcome",
    "RequestDirector",
    "MirrorDirector",
    "MobileDirector",
    "RedirectResolver",
    "ResponseTransform",
    "MirrorResponseTransform",
    "PassthroughTransform",
]
