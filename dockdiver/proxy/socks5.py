"""Minimal SOCKS5 client holding one reusable tunnel to the registry."""

import logging
import socket
import struct
import threading
import time
from typing import Callable, Optional

from ..errors import ProxyError, ProxyHandshakeError
from ..transport.retry import RetryPolicy, linear_backoff


logger = logging.getLogger(__name__)

SOCKS_VERSION = 0x05
AUTH_VERSION = 0x01
METHOD_NO_AUTH = 0x00
METHOD_USERNAME_PASSWORD = 0x02
CMD_CONNECT = 0x01
ATYP_IPV4 = 0x01
ATYP_DOMAIN = 0x03
ATYP_IPV6 = 0x04

REPLY_MESSAGES = {
    0x01: "general SOCKS server failure",
    0x02: "connection not allowed by ruleset",
    0x03: "network unreachable",
    0x04: "host unreachable",
    0x05: "connection refused",
    0x06: "TTL expired",
    0x07: "command not supported",
    0x08: "address type not supported",
}


def _recv_exact(sock: socket.socket, size: int, received: bytes = b"") -> bytes:
    """Read exactly ``size`` bytes; ``received`` is prefixed to errors for context."""
    data = b""
    while len(data) < size:
        try:
            chunk = sock.recv(size - len(data))
        except socket.timeout:
            raise ProxyHandshakeError("SOCKS5 proxy timed out during handshake", received + data)
        if not chunk:
            raise ProxyHandshakeError("SOCKS5 proxy closed the connection", received + data)
        data += chunk
    return data


def _is_retryable_dial_error(exc: BaseException) -> bool:
    return isinstance(exc, (OSError, ProxyHandshakeError))


class Socks5Tunnel:
    """A single SOCKS5 connection to the registry, shared behind a lock.

    ``acquire`` hands out the cached socket after a zero-length write probe
    and transparently re-dials once when the probe fails.
    """

    def __init__(self, proxy_host: str, proxy_port: int, target_host: str, target_port: int,
                 username: Optional[str] = None, password: Optional[str] = None,
                 connect_timeout: float = 10.0, attempts: int = 3,
                 socket_factory: Callable[..., socket.socket] = socket.create_connection,
                 sleep: Callable[[float], None] = time.sleep):
        self.proxy_host = proxy_host
        self.proxy_port = proxy_port
        self.target_host = target_host
        self.target_port = target_port
        self.username = username or ""
        self.password = password or ""
        self.connect_timeout = connect_timeout
        self.attempts = attempts
        self._socket_factory = socket_factory
        self._retry = RetryPolicy(
            max_attempts=attempts,
            backoff=linear_backoff(1.0),
            retryable=_is_retryable_dial_error,
            sleep=sleep
        )
        self._lock = threading.Lock()
        self._conn: Optional[socket.socket] = None
        self.handshakes = 0

    @property
    def proxy_address(self) -> str:
        return f"{self.proxy_host}:{self.proxy_port}"

    @property
    def target_address(self) -> str:
        return f"{self.target_host}:{self.target_port}"

    def open(self) -> socket.socket:
        """Establish the tunnel at startup, retrying with the configured attempts."""
        with self._lock:
            if self._conn is None:
                self._conn = self.dial(self.attempts)
                logger.info(f"SOCKS5 connection established to {self.target_address} via {self.proxy_address}")
            return self._conn

    def acquire(self) -> socket.socket:
        """Return a live tunnel, re-dialing once if the cached one is dead."""
        with self._lock:
            if self._conn is not None:
                if self._is_alive(self._conn):
                    return self._conn
                logger.debug(f"SOCKS5 connection to {self.target_address} is dead, re-establishing")
                self._discard()
            self._conn = self.dial(1)
            return self._conn

    def close(self):
        with self._lock:
            self._discard()

    def _discard(self):
        if self._conn is not None:
            try:
                self._conn.close()
            except OSError:
                pass
            self._conn = None

    @staticmethod
    def _is_alive(conn: socket.socket) -> bool:
        try:
            conn.send(b"")
        except OSError:
            return False
        return True

    def dial(self, attempts: int) -> socket.socket:
        """Connect to the proxy and negotiate a tunnel to the target."""
        policy = self._retry.with_attempts(attempts)
        try:
            return policy.call(self._dial_once, description=f"SOCKS5 proxy connection {self.proxy_address}")
        except ProxyHandshakeError:
            raise
        except OSError as e:
            raise ProxyError(f"failed to connect to SOCKS5 proxy {self.proxy_address}: {e}")

    def _dial_once(self) -> socket.socket:
        sock = self._socket_factory((self.proxy_host, self.proxy_port), timeout=self.connect_timeout)
        try:
            sock.settimeout(self.connect_timeout)
            self._negotiate(sock)
            sock.settimeout(None)
        except BaseException:
            sock.close()
            raise
        self.handshakes += 1
        return sock

    def _negotiate(self, sock: socket.socket):
        methods = [METHOD_NO_AUTH]
        if self.username and self.password:
            methods.append(METHOD_USERNAME_PASSWORD)
        sock.sendall(bytes([SOCKS_VERSION, len(methods)] + methods))

        reply = _recv_exact(sock, 2)
        if reply[0] != SOCKS_VERSION:
            raise ProxyHandshakeError("SOCKS5 handshake failed (unexpected version in method reply)", reply)
        if reply[1] == METHOD_USERNAME_PASSWORD:
            self._authenticate(sock, reply)
        elif reply[1] != METHOD_NO_AUTH:
            raise ProxyHandshakeError("SOCKS5 no acceptable auth methods", reply)

        self._connect(sock)

    def _authenticate(self, sock: socket.socket, method_reply: bytes):
        if not (self.username and self.password):
            raise ProxyHandshakeError("SOCKS5 proxy requires username/password authentication", method_reply)
        user = self.username.encode("utf-8")
        password = self.password.encode("utf-8")
        if len(user) > 255 or len(password) > 255:
            raise ProxyError("SOCKS5 credentials longer than 255 bytes")
        sock.sendall(bytes([AUTH_VERSION, len(user)]) + user + bytes([len(password)]) + password)

        reply = _recv_exact(sock, 2)
        if reply[1] != 0x00:
            raise ProxyHandshakeError("SOCKS5 authentication failed", reply)

    def _connect(self, sock: socket.socket):
        host = self.target_host.encode("idna")
        if len(host) > 255:
            raise ProxyError(f"invalid target address {self.target_address}: host name too long")
        request = bytes([SOCKS_VERSION, CMD_CONNECT, 0x00, ATYP_DOMAIN, len(host)]) + host
        request += struct.pack(">H", self.target_port)
        sock.sendall(request)

        header = _recv_exact(sock, 4)
        if header[0] != SOCKS_VERSION or header[1] != 0x00:
            reason = REPLY_MESSAGES.get(header[1], "unknown error")
            raise ProxyHandshakeError(
                f"SOCKS5 connect request for {self.target_address} failed ({reason})", header
            )

        # Consume the bound address so no reply bytes leak into the tunnel.
        atyp = header[3]
        if atyp == ATYP_IPV4:
            _recv_exact(sock, 4 + 2, header)
        elif atyp == ATYP_IPV6:
            _recv_exact(sock, 16 + 2, header)
        elif atyp == ATYP_DOMAIN:
            length = _recv_exact(sock, 1, header)
            _recv_exact(sock, length[0] + 2, header + length)
        else:
            raise ProxyHandshakeError("SOCKS5 connect reply has unknown address type", header)
