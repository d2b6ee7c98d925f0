"""Registry data models."""

import json
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from urllib.parse import urlparse

from ..errors import ConfigError, ManifestError


DOCKER_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"
OCI_MANIFEST_V1 = "application/vnd.oci.image.manifest.v1+json"

JSON_CONFIG_MEDIA_TYPES = (
    "application/vnd.docker.container.image.v1+json",
    "application/vnd.oci.image.config.v1+json",
)
GZIP_LAYER_MEDIA_TYPES = (
    "application/vnd.docker.image.rootfs.diff.tar.gzip",
    "application/vnd.oci.image.layer.v1.tar+gzip",
)


@dataclass(frozen=True)
class AuthConfig:
    """Credentials and extra headers applied to every registry request."""
    username: str = ""
    password: str = ""
    bearer_token: str = ""
    custom_headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_values(cls, username: Optional[str] = None, password: Optional[str] = None,
                    bearer_token: Optional[str] = None,
                    headers_json: Optional[str] = None) -> 'AuthConfig':
        """Build from raw CLI/env values, decoding the custom headers JSON blob."""
        headers = {}
        if headers_json:
            try:
                decoded = json.loads(headers_json)
            except json.JSONDecodeError as e:
                raise ConfigError(f"invalid headers JSON: {e}")
            if not isinstance(decoded, dict):
                raise ConfigError("invalid headers JSON: expected an object")
            for key, value in decoded.items():
                if not isinstance(value, str):
                    raise ConfigError(f"invalid headers JSON: value for '{key}' is not a string")
                headers[str(key)] = value

        return cls(
            username=username or "",
            password=password or "",
            bearer_token=bearer_token or "",
            custom_headers=headers
        )

    @property
    def has_basic(self) -> bool:
        return bool(self.username and self.password)

    @property
    def has_credentials(self) -> bool:
        return self.has_basic or bool(self.bearer_token)


@dataclass(frozen=True)
class Endpoint:
    """Normalized registry address."""
    scheme: str
    host: str
    port: int

    def __post_init__(self):
        if self.scheme not in ("http", "https"):
            raise ValueError(f"unsupported scheme '{self.scheme}'; use 'http' or 'https'")
        if not self.host:
            raise ValueError("endpoint host is empty")
        if not isinstance(self.port, int) or isinstance(self.port, bool) or self.port <= 0:
            raise ValueError(f"invalid port: {self.port!r}")

    @classmethod
    def parse(cls, url: str, default_port: int = 5000) -> 'Endpoint':
        """Parse ``scheme://host[:port]``; the port falls back to ``default_port``."""
        parsed = urlparse(url.strip().rstrip('/'))
        if not parsed.scheme or not parsed.hostname:
            raise ValueError(f"invalid registry URL: {url!r}")
        try:
            port = parsed.port or default_port
        except ValueError as e:
            raise ValueError(f"invalid port in URL: {e}")
        return cls(parsed.scheme.lower(), parsed.hostname, port)

    @property
    def netloc(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{host}:{self.port}"

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.netloc}"

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def catalog_url(self, page_size: int) -> str:
        return self.url(f"v2/_catalog?n={page_size}")

    def tags_url(self, repository: str) -> str:
        return self.url(f"v2/{repository}/tags/list")

    def manifest_url(self, repository: str, reference: str) -> str:
        return self.url(f"v2/{repository}/manifests/{reference}")

    def blob_url(self, repository: str, digest: str) -> str:
        return self.url(f"v2/{repository}/blobs/{digest}")


@dataclass(frozen=True)
class Digest:
    """Content address in ``algorithm:hex`` form."""
    algorithm: str
    hex: str

    @classmethod
    def parse(cls, value: str) -> 'Digest':
        algorithm, sep, hex_part = value.partition(":")
        if not sep or not algorithm or not hex_part:
            raise ValueError(f"invalid digest: {value!r}")
        return cls(algorithm, hex_part)


@dataclass(frozen=True)
class Descriptor:
    """Reference to a blob from a manifest."""
    digest: str
    media_type: str = ""

    @property
    def safe_digest(self) -> str:
        return self.digest.replace(":", "_")


@dataclass
class Manifest:
    """Image manifest: a config blob plus ordered layer blobs."""
    config: Optional[Descriptor]
    layers: List[Descriptor]
    raw: bytes = b""

    @classmethod
    def from_bytes(cls, body: bytes, url: Optional[str] = None) -> 'Manifest':
        """Parse permissively. Unknown fields are ignored and empty digests skipped."""
        try:
            data = json.loads(body)
        except (ValueError, UnicodeDecodeError) as e:
            raise ManifestError(f"failed to parse manifest: {e}", url=url)
        if not isinstance(data, dict):
            raise ManifestError("failed to parse manifest: not a JSON object", url=url)

        config = None
        config_data = data.get("config")
        if isinstance(config_data, dict) and config_data.get("digest"):
            config = Descriptor(str(config_data["digest"]), str(config_data.get("mediaType") or ""))

        layers = []
        for layer in data.get("layers") or []:
            if not isinstance(layer, dict) or not layer.get("digest"):
                continue
            layers.append(Descriptor(str(layer["digest"]), str(layer.get("mediaType") or "")))

        return cls(config=config, layers=layers, raw=body)
