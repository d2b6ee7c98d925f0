"""Wire HTTP(S) CONNECT proxies and the SOCKS5 tunnel into a requests session."""

import logging
import ssl
from typing import Optional
from urllib.parse import quote, unquote, urlsplit, urlunsplit

import requests
from requests.adapters import HTTPAdapter
from urllib3.connection import HTTPConnection, HTTPSConnection
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool
from urllib3.poolmanager import PoolManager

from ..errors import ConfigError
from ..models.registry import Endpoint
from ..utils.logger import sanitize_url
from .socks5 import Socks5Tunnel


logger = logging.getLogger(__name__)

DEFAULT_SOCKS_PORT = 1080


class TunnelHTTPConnection(HTTPConnection):
    """HTTP connection whose socket comes from the shared tunnel."""
    tunnel: Optional[Socks5Tunnel] = None

    def _new_conn(self):
        return self.tunnel.acquire()


class TunnelHTTPSConnection(HTTPSConnection):
    """HTTPS connection; TLS is layered over the tunnel socket by urllib3."""
    tunnel: Optional[Socks5Tunnel] = None

    def _new_conn(self):
        return self.tunnel.acquire()


class TunnelHTTPConnectionPool(HTTPConnectionPool):
    ConnectionCls = TunnelHTTPConnection
    tunnel: Optional[Socks5Tunnel] = None

    def _new_conn(self):
        conn = super()._new_conn()
        conn.tunnel = self.tunnel
        return conn


class TunnelHTTPSConnectionPool(HTTPSConnectionPool):
    ConnectionCls = TunnelHTTPSConnection
    tunnel: Optional[Socks5Tunnel] = None

    def _new_conn(self):
        conn = super()._new_conn()
        conn.tunnel = self.tunnel
        return conn


class TunnelPoolManager(PoolManager):
    """Pool manager handing every new connection the tunnel socket."""

    def __init__(self, tunnel: Socks5Tunnel, **kwargs):
        super().__init__(**kwargs)
        self.tunnel = tunnel
        self.pool_classes_by_scheme = {
            "http": TunnelHTTPConnectionPool,
            "https": TunnelHTTPSConnectionPool,
        }

    def _new_pool(self, scheme, host, port, request_context=None):
        pool = super()._new_pool(scheme, host, port, request_context)
        pool.tunnel = self.tunnel
        return pool


class TunnelAdapter(HTTPAdapter):
    """requests adapter routing all traffic through a Socks5Tunnel."""

    def __init__(self, tunnel: Socks5Tunnel, **kwargs):
        self.tunnel = tunnel
        super().__init__(**kwargs)

    def init_poolmanager(self, connections, maxsize, block=False, **pool_kwargs):
        self._pool_connections = connections
        self._pool_maxsize = maxsize
        self._pool_block = block
        self.poolmanager = TunnelPoolManager(
            self.tunnel,
            num_pools=connections,
            maxsize=maxsize,
            block=block,
            **pool_kwargs
        )


class ConnectProxyAdapter(HTTPAdapter):
    """requests adapter for HTTP/HTTPS forward proxies (CONNECT for https targets).

    The TLS session to an https proxy is verified according to
    ``proxy_insecure``, independently of the target's ``verify`` setting.
    """

    def __init__(self, user_agent: str, proxy_insecure: bool = False, **kwargs):
        self.user_agent = user_agent
        self.proxy_insecure = proxy_insecure
        super().__init__(**kwargs)

    def proxy_headers(self, proxy):
        headers = super().proxy_headers(proxy)
        headers["User-Agent"] = self.user_agent
        return headers

    def proxy_manager_for(self, proxy, **proxy_kwargs):
        if proxy.lower().startswith("https://"):
            proxy_kwargs.setdefault("proxy_ssl_context", self._proxy_ssl_context())
        return super().proxy_manager_for(proxy, **proxy_kwargs)

    def _proxy_ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        context.minimum_version = ssl.TLSVersion.TLSv1_2
        if self.proxy_insecure:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context


def _with_credentials(proxy_url: str, username: Optional[str], password: Optional[str]) -> str:
    parts = urlsplit(proxy_url)
    if parts.username or not (username and password):
        return proxy_url
    netloc = f"{quote(username, safe='')}:{quote(password, safe='')}@{parts.netloc}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def configure_proxy(session: requests.Session, proxy_url: str, target: Endpoint,
                    user_agent: str, insecure: bool = False,
                    proxy_username: Optional[str] = None, proxy_password: Optional[str] = None,
                    connect_timeout: float = 10.0, max_connections: int = 1) -> Optional[Socks5Tunnel]:
    """Route ``session`` through ``proxy_url``.

    Returns the SOCKS5 tunnel when one was opened so the caller can close it;
    raises ProxyError when the tunnel cannot be established.
    """
    parts = urlsplit(proxy_url)
    scheme = parts.scheme.lower()
    logger.info(f"Connecting to proxy: {sanitize_url(proxy_url)}")

    if scheme in ("http", "https"):
        proxy = _with_credentials(proxy_url, proxy_username, proxy_password)
        adapter = ConnectProxyAdapter(
            user_agent,
            proxy_insecure=insecure,
            pool_connections=max_connections,
            pool_maxsize=max_connections,
            pool_block=True
        )
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        session.proxies = {"http": proxy, "https": proxy}
        logger.info(f"Using HTTP/HTTPS proxy: {sanitize_url(proxy_url)}")
        return None

    if scheme in ("socks5", "socks5h"):
        if not parts.hostname:
            raise ConfigError(f"Invalid proxy URL: {sanitize_url(proxy_url)}")
        tunnel = Socks5Tunnel(
            parts.hostname,
            parts.port or DEFAULT_SOCKS_PORT,
            target.host,
            target.port,
            username=proxy_username or unquote(parts.username or ""),
            password=proxy_password or unquote(parts.password or ""),
            connect_timeout=connect_timeout
        )
        tunnel.open()
        # One pooled connection per host: the tunnel carries a single socket.
        adapter = TunnelAdapter(tunnel, pool_connections=1, pool_maxsize=1, pool_block=True)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return tunnel

    raise ConfigError(f"Unsupported proxy scheme: {parts.scheme or '<none>'}")
