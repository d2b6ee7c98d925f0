"""Error types raised by dockdiver."""

from typing import Optional


class DockdiverError(Exception):
    """Base error for registry extraction failures."""


class ConfigError(DockdiverError):
    """Invalid or incomplete configuration."""


class ConnectivityError(DockdiverError):
    """The registry endpoint could not be reached."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class ProxyError(ConnectivityError):
    """The proxy could not be dialed."""


class ProxyHandshakeError(ProxyError):
    """SOCKS5 negotiation failed; keeps the raw bytes the proxy sent."""

    def __init__(self, message: str, response: bytes = b"", url: Optional[str] = None):
        super().__init__(f"{message}, response: {response.hex() or '<empty>'}", url)
        self.response = response


class AuthorizationError(DockdiverError):
    """HTTP 401 from the registry."""

    def __init__(self, url: str, challenge: Optional[str] = None):
        if challenge:
            message = f"unauthorized: {challenge} ({url})"
        else:
            message = f"unauthorized: 401 ({url})"
        super().__init__(message)
        self.url = url
        self.challenge = challenge


class RegistryHTTPError(DockdiverError):
    """Any non-200, non-401 response."""

    def __init__(self, url: str, status_code: int, reason: str = ""):
        status = f"{status_code} {reason}" if reason else str(status_code)
        super().__init__(f"unexpected status: {status} ({url})")
        self.url = url
        self.status_code = status_code


class TransientNetworkError(ConnectivityError):
    """A retryable network failure that persisted through every attempt."""


class IntegrityError(DockdiverError):
    """Downloaded bytes do not hash to the expected digest."""

    def __init__(self, expected: str, actual: str, url: Optional[str] = None):
        message = f"integrity check failed: expected {expected}, got {actual}"
        if url:
            message = f"{message} ({url})"
        super().__init__(message)
        self.expected = expected
        self.actual = actual
        self.url = url


class DataError(DockdiverError):
    """The registry returned something unusable."""

    def __init__(self, message: str, url: Optional[str] = None, suggestion: Optional[str] = None):
        super().__init__(message)
        self.url = url
        self.suggestion = suggestion


class EmptyCatalogError(DataError):
    """The catalog listed no repositories."""


class NoTagsError(DataError):
    """A repository has no tags."""


class ManifestError(DataError):
    """A manifest could not be parsed."""
