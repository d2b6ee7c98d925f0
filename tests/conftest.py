"""Shared fixtures: an in-process registry speaking the v2 API plus SOCKS5 and HTTP proxy relays."""

import hashlib
import http.server
import json
import os
import socket
import ssl
import struct
import threading
from typing import Dict, List, Optional
from urllib.parse import parse_qs, urlencode, urlparse

import pytest

from dockdiver.models.registry import Endpoint
from dockdiver.transport.client import RegistryClient


DOCKER_CONFIG = "application/vnd.docker.container.image.v1+json"
DOCKER_LAYER = "application/vnd.docker.image.rootfs.diff.tar.gzip"

TLS_CERT = os.path.join(os.path.dirname(__file__), "data", "registry.pem")


def sha256_digest(data: bytes) -> str:
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def sha256_file(path, chunk_size: int = 1024 * 1024) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return f"sha256:{digest.hexdigest()}"


class MockRegistryState:
    """In-memory registry contents plus knobs for failure scenarios."""

    def __init__(self):
        self._lock = threading.Lock()
        self.repositories: Dict[str, List[str]] = {}
        self.manifests: Dict[str, bytes] = {}
        self.blobs: Dict[str, bytes] = {}
        self.corrupt: set = set()
        self.required_auth: Optional[str] = None
        self.challenge = 'Basic realm="mock-registry"'
        self.requests: List[Dict] = []

    def add_image(self, name: str, tags=("latest",), layers: int = 2,
                  config_media_type: str = DOCKER_CONFIG,
                  layer_media_type: str = DOCKER_LAYER) -> Dict:
        """Register an image whose config and layers are real, digest-addressed blobs."""
        config = json.dumps({"architecture": "amd64", "os": "linux", "repo": name}).encode()
        layer_blobs = [f"{name}-layer-{i}".encode() * 16384 for i in range(layers)]

        manifest = {
            "schemaVersion": 2,
            "mediaType": "application/vnd.docker.distribution.manifest.v2+json",
            "config": {
                "mediaType": config_media_type,
                "size": len(config),
                "digest": sha256_digest(config),
            },
            "layers": [
                {"mediaType": layer_media_type, "size": len(blob), "digest": sha256_digest(blob)}
                for blob in layer_blobs
            ],
        }
        body = json.dumps(manifest).encode()

        with self._lock:
            self.repositories[name] = list(tags)
            for tag in tags:
                self.manifests[f"{name}:{tag}"] = body
            self.blobs[sha256_digest(config)] = config
            for blob in layer_blobs:
                self.blobs[sha256_digest(blob)] = blob

        return {
            "manifest": body,
            "config": (sha256_digest(config), config),
            "layers": [(sha256_digest(blob), blob) for blob in layer_blobs],
        }

    def add_repository(self, name: str, tags=()):
        with self._lock:
            self.repositories[name] = list(tags)

    def record(self, path: str, headers):
        with self._lock:
            self.requests.append({"path": path, "headers": dict(headers)})

    def paths(self) -> List[str]:
        with self._lock:
            return [entry["path"] for entry in self.requests]


class _MockRegistryRequestHandler(http.server.BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"

    def log_message(self, format, *args):
        pass

    def _state(self) -> MockRegistryState:
        return self.server.state  # type: ignore[attr-defined]

    def _write(self, status: int, data: bytes = b"", headers: Optional[Dict[str, str]] = None,
               content_type: str = "application/json"):
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(data)))
        self.send_header("Docker-Distribution-API-Version", "registry/2.0")
        for key, value in (headers or {}).items():
            self.send_header(key, value)
        self.end_headers()
        self.wfile.write(data)

    def _write_json(self, status: int, payload, headers: Optional[Dict[str, str]] = None):
        self._write(status, json.dumps(payload).encode("utf-8"), headers)

    def do_GET(self):
        state = self._state()
        parsed = urlparse(self.path)
        state.record(self.path, self.headers)

        if state.required_auth and self.headers.get("Authorization") != state.required_auth:
            self._write_json(401, {"errors": [{"code": "UNAUTHORIZED"}]},
                             {"WWW-Authenticate": state.challenge})
            return

        if parsed.path == "/v2/":
            self._write_json(200, {})
            return

        if parsed.path == "/v2/_catalog":
            self._catalog(parse_qs(parsed.query))
            return

        name = parsed.path[len("/v2/"):]
        if name.endswith("/tags/list"):
            repository = name[:-len("/tags/list")]
            if repository not in state.repositories:
                self._write_json(404, {"errors": [{"code": "NAME_UNKNOWN"}]})
                return
            self._write_json(200, {"name": repository, "tags": state.repositories[repository] or None})
            return

        repository, sep, reference = name.rpartition("/manifests/")
        if sep:
            body = state.manifests.get(f"{repository}:{reference}")
            if body is None:
                self._write_json(404, {"errors": [{"code": "MANIFEST_UNKNOWN"}]})
                return
            self._write(200, body, content_type="application/vnd.docker.distribution.manifest.v2+json")
            return

        repository, sep, digest = name.rpartition("/blobs/")
        if sep and digest in state.blobs:
            data = state.blobs[digest]
            if digest in state.corrupt:
                middle = len(data) // 2
                data = data[:middle] + bytes([data[middle] ^ 0xFF]) + data[middle + 1:]
            self._write(200, data, content_type="application/octet-stream")
            return

        self._write_json(404, {"errors": [{"code": "BLOB_UNKNOWN"}]})

    def _catalog(self, query):
        state = self._state()
        names = list(state.repositories)
        page_size = int(query.get("n", [len(names) or 1])[0])
        start = 0
        last = query.get("last", [None])[0]
        if last is not None:
            start = names.index(last) + 1
        page = names[start:start + page_size]

        headers = {}
        if start + page_size < len(names):
            next_query = urlencode({"n": page_size, "last": page[-1]})
            headers["Link"] = f'</v2/_catalog?{next_query}>; rel="next"'
        self._write_json(200, {"repositories": page}, headers)


class MockRegistry:
    def __init__(self, tls: bool = False):
        self.state = MockRegistryState()
        self.server = http.server.ThreadingHTTPServer(("127.0.0.1", 0), _MockRegistryRequestHandler)
        self.server.daemon_threads = True
        self.server.state = self.state  # type: ignore[attr-defined]
        self.port = self.server.server_address[1]
        scheme = "http"
        if tls:
            context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
            context.load_cert_chain(TLS_CERT)
            self.server.socket = context.wrap_socket(self.server.socket, server_side=True)
            scheme = "https"
        self.endpoint = Endpoint(scheme, "127.0.0.1", self.port)
        self._thread = threading.Thread(target=self.server.serve_forever, daemon=True)

    def start(self):
        self._thread.start()

    def stop(self):
        self.server.shutdown()
        self.server.server_close()


def recv_exact(sock: socket.socket, size: int) -> bytes:
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            raise ConnectionError("peer closed")
        data += chunk
    return data


class FakeSocksProxy:
    """SOCKS5 server that records handshakes and relays to the requested target."""

    def __init__(self, username: Optional[str] = None, password: Optional[str] = None,
                 reject_code: Optional[int] = None):
        self.username = username
        self.password = password
        self.reject_code = reject_code
        self.greetings: List[bytes] = []
        self.connects: List[tuple] = []
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.bind(("127.0.0.1", 0))
        self._sock.listen(16)
        self.port = self._sock.getsockname()[1]
        self._thread = threading.Thread(target=self._serve, daemon=True)

    def start(self):
        self._thread.start()

    def stop(self):
        self._sock.close()

    def _serve(self):
        while True:
            try:
                client, _ = self._sock.accept()
            except OSError:
                return
            threading.Thread(target=self._handle, args=(client,), daemon=True).start()

    def _handle(self, client: socket.socket):
        upstream = None
        try:
            header = recv_exact(client, 2)
            methods = recv_exact(client, header[1])
            self.greetings.append(header + methods)

            if self.username is not None:
                if 0x02 not in methods:
                    client.sendall(b"\x05\xff")
                    return
                client.sendall(b"\x05\x02")
                _, ulen = recv_exact(client, 2)
                user = recv_exact(client, ulen).decode()
                plen = recv_exact(client, 1)[0]
                password = recv_exact(client, plen).decode()
                ok = user == self.username and password == self.password
                client.sendall(bytes([0x01, 0x00 if ok else 0x01]))
                if not ok:
                    return
            else:
                client.sendall(b"\x05\x00")

            request = recv_exact(client, 4)
            atyp = request[3]
            if atyp == 0x03:
                host = recv_exact(client, recv_exact(client, 1)[0]).decode()
            elif atyp == 0x01:
                host = socket.inet_ntoa(recv_exact(client, 4))
            else:
                host = socket.inet_ntop(socket.AF_INET6, recv_exact(client, 16))
            port = struct.unpack(">H", recv_exact(client, 2))[0]
            self.connects.append((atyp, host, port))

            if self.reject_code is not None:
                client.sendall(bytes([0x05, self.reject_code, 0x00, 0x01]) + bytes(6))
                return

            upstream = socket.create_connection((host, port))
            client.sendall(b"\x05\x00\x00\x01" + bytes(6))

            relay(client, upstream)
        except OSError:
            pass
        finally:
            client.close()
            if upstream is not None:
                upstream.close()


class FakeHttpProxy:
    """Forward proxy that tunnels CONNECT and relays absolute-form requests.

    The request line and headers of the first request on every client
    connection are kept in ``requests``.
    """

    def __init__(self):
        self.requests: List[Dict] = []
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.bind(("127.0.0.1", 0))
        self._sock.listen(16)
        self.port = self._sock.getsockname()[1]
        self._thread = threading.Thread(target=self._serve, daemon=True)

    @property
    def url(self) -> str:
        return f"http://127.0.0.1:{self.port}"

    def start(self):
        self._thread.start()

    def stop(self):
        self._sock.close()

    def _serve(self):
        while True:
            try:
                client, _ = self._sock.accept()
            except OSError:
                return
            threading.Thread(target=self._handle, args=(client,), daemon=True).start()

    def _handle(self, client: socket.socket):
        upstream = None
        try:
            buffered = b""
            while b"\r\n\r\n" not in buffered:
                chunk = client.recv(65536)
                if not chunk:
                    return
                buffered += chunk
            head = buffered.split(b"\r\n\r\n", 1)[0]
            lines = head.decode("latin-1").split("\r\n")
            headers = dict(line.split(": ", 1) for line in lines[1:] if line)
            self.requests.append({"line": lines[0], "headers": headers})

            method, target, _ = lines[0].split(" ", 2)
            if method == "CONNECT":
                host, _, port = target.rpartition(":")
                upstream = socket.create_connection((host, int(port)))
                client.sendall(b"HTTP/1.1 200 Connection established\r\n\r\n")
            else:
                parsed = urlparse(target)
                upstream = socket.create_connection((parsed.hostname, parsed.port or 80))
                upstream.sendall(buffered)

            relay(client, upstream)
        except OSError:
            pass
        finally:
            client.close()
            if upstream is not None:
                upstream.close()


def _pipe(src: socket.socket, dst: socket.socket):
    try:
        while True:
            data = src.recv(65536)
            if not data:
                break
            dst.sendall(data)
    except OSError:
        pass
    finally:
        try:
            dst.shutdown(socket.SHUT_WR)
        except OSError:
            pass


def relay(client: socket.socket, upstream: socket.socket):
    """Copy bytes both ways until each side has closed."""
    pump = threading.Thread(target=_pipe, args=(upstream, client), daemon=True)
    pump.start()
    _pipe(client, upstream)
    pump.join(timeout=5)


class FakeSocket:
    """Scripted socket: ``recv`` serves ``replies`` and every send is captured."""

    def __init__(self, replies: bytes = b""):
        self.replies = bytearray(replies)
        self.sent = bytearray()
        self.closed = False
        self.timeouts = []

    def settimeout(self, value):
        self.timeouts.append(value)

    def sendall(self, data: bytes):
        if self.closed:
            raise OSError(9, "Bad file descriptor")
        self.sent.extend(data)

    def send(self, data: bytes) -> int:
        self.sendall(data)
        return len(data)

    def recv(self, size: int) -> bytes:
        chunk = bytes(self.replies[:size])
        del self.replies[:size]
        return chunk

    def close(self):
        self.closed = True


@pytest.fixture
def registry():
    server = MockRegistry()
    server.start()
    yield server
    server.stop()


@pytest.fixture
def socks_proxy():
    proxy = FakeSocksProxy()
    proxy.start()
    yield proxy
    proxy.stop()


@pytest.fixture
def client():
    registry_client = RegistryClient(rate=1000, timeout=5, progress_interval=0)
    yield registry_client
    registry_client.close()


@pytest.fixture
def tls_registry():
    server = MockRegistry(tls=True)
    server.start()
    yield server
    server.stop()


@pytest.fixture
def http_proxy():
    proxy = FakeHttpProxy()
    proxy.start()
    yield proxy
    proxy.stop()
