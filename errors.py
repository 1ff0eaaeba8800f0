"""Error taxonomy shared by the proxy, the OAuth flow and the Shopify clients."""

from typing import Any, Optional


class ProxyError(Exception):
    """Base error. ``status_code`` is what the HTTP layer answers with."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class BadRequest(ProxyError):
    status_code = 400


class Forbidden(ProxyError):
    status_code = 403


class Unconfigured(ProxyError):
    """Required server configuration is missing or invalid."""


class InternalError(ProxyError):
    pass


class ExchangeError(ProxyError):
    """Authorization-code exchange did not yield an access token."""


class UpstreamError(ProxyError):
    """Shopify Admin API answered with a failure status or a GraphQL error array."""

    def __init__(self, message: str, *, upstream_status: Optional[int] = None, errors: Any = None):
        super().__init__(message)
        self.upstream_status = upstream_status
        self.errors = errors
