"""Endpoint normalization and registry API version detection."""

import logging
from typing import Callable, Optional, Tuple
from urllib.parse import urlsplit

import requests

from ..errors import ConfigError, ConnectivityError
from ..models.registry import Endpoint
from ..transport.client import RegistryClient


logger = logging.getLogger(__name__)

REACHABLE_STATUSES = (200, 401)


def _probe(client: RegistryClient, endpoint: Endpoint) -> Optional[str]:
    """Return None when ``/v2/`` answers 200 or 401, else a reason string."""
    url = endpoint.url("v2/")
    logger.info(f"Testing URL: {url}")
    try:
        response = client.send_raw(url)
    except requests.RequestException as e:
        return str(e)
    if response.status_code in REACHABLE_STATUSES:
        return None
    return f"unexpected status code: {response.status_code}"


def target_address(raw_url: str, default_port: int) -> Tuple[str, int]:
    """Host and port of the registry, whether or not ``raw_url`` has a scheme."""
    raw_url = raw_url.strip().rstrip('/')
    parts = urlsplit(raw_url if "://" in raw_url else f"//{raw_url}")
    try:
        port = parts.port or default_port
    except ValueError as e:
        raise ConfigError(f"invalid port in URL: {e}")
    if not parts.hostname:
        raise ConfigError(f"invalid registry URL: {raw_url!r}")
    return parts.hostname, port


def normalize_endpoint(raw_url: str, default_port: int, client: RegistryClient,
                       probe: Callable[[RegistryClient, Endpoint], Optional[str]] = _probe) -> Endpoint:
    """Turn user input into an Endpoint, probing http then https when no scheme is given."""
    raw_url = raw_url.strip().rstrip('/')
    if not raw_url:
        raise ConfigError("registry URL is empty")

    if "://" not in raw_url:
        host, port = target_address(raw_url, default_port)

        failures = []
        for scheme in ("http", "https"):
            endpoint = Endpoint(scheme, host, port)
            reason = probe(client, endpoint)
            if reason is None:
                return endpoint
            logger.warning(f"{scheme.upper()} test failed: {reason}")
            failures.append(f"{scheme}: {reason}")
        raise ConnectivityError(
            f"domain '{host}' is not reachable on HTTP or HTTPS with port {port} "
            f"({'; '.join(failures)})",
            url=raw_url
        )

    scheme = urlsplit(raw_url).scheme.lower()
    if scheme not in ("http", "https"):
        raise ConfigError(f"unsupported scheme '{scheme}'; use 'http' or 'https'")
    try:
        endpoint = Endpoint.parse(raw_url, default_port)
    except ValueError as e:
        raise ConfigError(str(e))

    reason = probe(client, endpoint)
    if reason is not None:
        raise ConnectivityError(
            f"URL '{endpoint.base_url}' is not reachable: {reason}", url=endpoint.url("v2/")
        )
    return endpoint


def detect_registry_version(endpoint: Endpoint, client: RegistryClient) -> str:
    """Read Docker-Distribution-API-Version, else infer v2 from a 200/401 on ``/v2/``."""
    url = endpoint.url("v2/")
    try:
        response = client.send_raw(url)
    except requests.RequestException as e:
        raise ConnectivityError(f"failed to query /v2/: {e}", url=url)

    version = response.headers.get("Docker-Distribution-API-Version")
    if version:
        return version
    if response.status_code in REACHABLE_STATUSES:
        return "v2"
    raise ConnectivityError(f"unknown API version, status: {response.status_code}", url=url)
