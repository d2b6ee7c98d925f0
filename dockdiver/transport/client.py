"""Rate-limited, retrying HTTP client for the registry API."""

import base64
import logging
from typing import Iterator, Optional

import requests
from requests.adapters import HTTPAdapter

from ..errors import (
    AuthorizationError,
    ConnectivityError,
    DockdiverError,
    RegistryHTTPError,
    TransientNetworkError,
)
from ..models.registry import AuthConfig, DOCKER_MANIFEST_V2, Endpoint, OCI_MANIFEST_V1
from ..proxy.socks5 import Socks5Tunnel
from ..proxy.tunnel import configure_proxy
from ..utils.progress import DownloadProgress
from .ratelimit import RateLimiter
from .retry import RetryPolicy, exponential_backoff, is_transient_error


logger = logging.getLogger(__name__)

ACCEPT_HEADER = f"{DOCKER_MANIFEST_V2}, {OCI_MANIFEST_V1}"
CHUNK_SIZE = 64 * 1024


class RegistryClient:
    """Single funnel for every outbound registry request.

    Owns the requests session (connection pool), the rate limiter and the
    retry policy; safe to share between worker threads.
    """

    def __init__(self, rate: float = 3, timeout: float = 30.0, user_agent: str = "dockdiver",
                 insecure: bool = False, max_connections: int = 1,
                 retry_policy: Optional[RetryPolicy] = None,
                 limiter: Optional[RateLimiter] = None,
                 session: Optional[requests.Session] = None,
                 progress_interval: float = 1.0):
        self.timeout = timeout
        self.user_agent = user_agent
        self.insecure = insecure
        self.max_connections = max_connections
        self.progress_interval = progress_interval
        self.limiter = limiter or RateLimiter(rate)
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=3,
            backoff=exponential_backoff(1.0),
            retryable=is_transient_error
        )
        self.tunnel: Optional[Socks5Tunnel] = None
        self.session = session or self._create_session()

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        # Explicit proxy flags only; environment proxies are ignored.
        session.trust_env = False
        session.verify = not self.insecure
        adapter = HTTPAdapter(
            pool_connections=self.max_connections,
            pool_maxsize=self.max_connections,
            pool_block=True
        )
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def use_proxy(self, proxy_url: str, endpoint: Endpoint,
                  proxy_username: Optional[str] = None, proxy_password: Optional[str] = None,
                  connect_timeout: float = 10.0):
        """Route all further requests through an HTTP(S) or SOCKS5 proxy."""
        self.tunnel = configure_proxy(
            self.session,
            proxy_url,
            endpoint,
            self.user_agent,
            insecure=self.insecure,
            proxy_username=proxy_username,
            proxy_password=proxy_password,
            connect_timeout=connect_timeout,
            max_connections=self.max_connections
        )

    def build_headers(self, auth: AuthConfig) -> dict:
        """Basic auth first, else bearer; custom headers overlay last and win."""
        headers = {
            "User-Agent": self.user_agent,
            "Accept": ACCEPT_HEADER,
            "Connection": "keep-alive",
        }
        if auth.has_basic:
            token = base64.b64encode(f"{auth.username}:{auth.password}".encode("utf-8")).decode("ascii")
            headers["Authorization"] = f"Basic {token}"
        elif auth.bearer_token:
            headers["Authorization"] = f"Bearer {auth.bearer_token}"
        headers.update(auth.custom_headers)
        return headers

    def _send(self, url: str, headers: dict, stream: bool) -> requests.Response:
        self.limiter.acquire()
        return self.session.get(url, headers=headers, timeout=self.timeout, stream=stream)

    def send_raw(self, url: str, auth: Optional[AuthConfig] = None) -> requests.Response:
        """Issue one rate-limited GET without retries or status checks."""
        response = self._send(url, self.build_headers(auth or AuthConfig()), stream=False)
        response.close()
        return response

    def request(self, url: str, auth: AuthConfig, stream: bool = False) -> requests.Response:
        """GET ``url``; returns the 200 response or raises a DockdiverError."""
        headers = self.build_headers(auth)
        try:
            response = self.retry_policy.call(self._send, url, headers, stream, description=f"Request to {url}")
        except DockdiverError:
            raise
        except requests.RequestException as e:
            if is_transient_error(e):
                raise TransientNetworkError(
                    f"request failed after {self.retry_policy.max_attempts} attempts: {e}", url
                )
            raise ConnectivityError(f"request failed: {e}", url)

        if response.status_code == 200:
            return response

        response.close()
        if response.status_code == 401:
            raise AuthorizationError(url, response.headers.get("WWW-Authenticate"))
        raise RegistryHTTPError(url, response.status_code, response.reason or "")

    def fetch(self, url: str, auth: AuthConfig) -> bytes:
        """GET ``url`` and return the whole body."""
        response = self.request(url, auth)
        try:
            return response.content
        except requests.RequestException as e:
            raise ConnectivityError(f"failed to read response: {e}", url)
        finally:
            response.close()

    def iter_body(self, response: requests.Response, url: str,
                  chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
        """Yield the body in chunks, logging progress as it goes."""
        total = None
        content_length = response.headers.get("Content-Length")
        if content_length and content_length.isdigit():
            total = int(content_length)
        progress = DownloadProgress(url, total, interval=self.progress_interval)

        try:
            for chunk in response.iter_content(chunk_size=chunk_size):
                if chunk:
                    progress.update(len(chunk))
                    yield chunk
        except requests.RequestException as e:
            raise ConnectivityError(f"failed to read blob: {e}", url)

    def close(self):
        self.session.close()
        if self.tunnel is not None:
            self.tunnel.close()
