from abc import ABC, abstractmethod
from urllib.parse import urlparse

from mirror_proxy.proxy.models import ProxiedRequest


class RequestDirector(ABC):
    """Strategy interface that prepares a request before it goes upstream."""

    @abstractmethod
    def direct(self, request: ProxiedRequest) -> None:
        """Mutate ``request`` in place."""


class MirrorDirector(RequestDirector):
    """
    Point the request at the upstream host and ask for plain UTF-8 text.

    Compression is disabled so HTML bodies can be rewritten without a
    decompression step.
    """

    def __init__(self, upstream_url: str):
        self.upstream_host = urlparse(upstream_url).netloc

    def direct(self, request: ProxiedRequest) -> None:
        request.host = self.upstream_host
        request.headers["accept-encoding"] = "identity"
        request.headers["accept-charset"] = "utf-8"


class MobileDirector(MirrorDirector):
    """Ask the upstream for its mobile site by presenting a mobile User-Agent."""

    def __init__(self, upstream_url: str, user_agent: str):
        super().__init__(upstream_url)
        self.user_agent = user_agent

    def direct(self, request: ProxiedRequest) -> None:
        super().direct(request)
        request.headers["user-agent"] = self.user_agent
