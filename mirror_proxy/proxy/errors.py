from typing import Optional


class ProxyError(Exception):
    """Base class for all errors raised by the mirror proxy."""


class StartupConfigError(ProxyError):
    """The process configuration is unusable; nothing can be served."""


class FetchError(ProxyError):
    """The secondary fetch used to resolve an upstream redirect failed."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class TransformError(ProxyError):
    """An upstream response body could not be read or rewritten."""
