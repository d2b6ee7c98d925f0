"""Catalog, tag and manifest lookups against the registry API."""

import json
import logging
from typing import Any, List
from urllib.parse import urljoin

from ..errors import DataError, EmptyCatalogError, NoTagsError
from ..models.registry import AuthConfig, Endpoint
from ..transport.client import RegistryClient


logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100


def _decode_json(body: bytes, what: str, url: str) -> Any:
    try:
        return json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise DataError(f"failed to decode {what}: {e}", url=url)


def _curl_hint(url: str, auth: AuthConfig) -> str:
    if auth.has_basic:
        return f"curl -u {auth.username}:<password> {url}"
    if auth.bearer_token:
        return f"curl -H 'Authorization: Bearer <token>' {url}"
    return f"curl {url}"


def list_repositories(endpoint: Endpoint, auth: AuthConfig, client: RegistryClient,
                      page_size: int = DEFAULT_PAGE_SIZE) -> List[str]:
    """List every repository, following ``Link: <...>; rel="next"`` pagination."""
    first_url = endpoint.catalog_url(page_size)
    url = first_url
    visited = set()
    repositories: List[str] = []

    while url and url not in visited:
        visited.add(url)
        response = client.request(url, auth)
        try:
            body = response.content
            next_link = response.links.get("next", {}).get("url")
        finally:
            response.close()

        catalog = _decode_json(body, "catalog", url)
        if not isinstance(catalog, dict):
            raise DataError("failed to decode catalog: not a JSON object", url=url)
        page = catalog.get("repositories") or []
        logger.debug(f"Catalog page {url} returned {len(page)} repositories")
        repositories.extend(str(name) for name in page)

        url = urljoin(endpoint.base_url + "/", next_link) if next_link else None

    if not repositories:
        raise EmptyCatalogError(
            "No repositories found. The registry may be empty, require authentication, "
            "or the proxy failed to route the request",
            url=first_url,
            suggestion=_curl_hint(first_url, auth)
        )
    return repositories


def list_tags(endpoint: Endpoint, repository: str, auth: AuthConfig,
              client: RegistryClient) -> List[str]:
    url = endpoint.tags_url(repository)
    data = _decode_json(client.fetch(url, auth), "tags", url)
    if not isinstance(data, dict):
        raise DataError("failed to decode tags: not a JSON object", url=url)
    return [str(tag) for tag in data.get("tags") or []]


def select_tag(endpoint: Endpoint, repository: str, tags: List[str], auth: AuthConfig) -> str:
    """The first tag the registry returned; no sorting and no 'latest' preference."""
    if not tags:
        url = endpoint.tags_url(repository)
        raise NoTagsError(f"no tags found for {repository}", url=url, suggestion=_curl_hint(url, auth))
    return tags[0]


def fetch_manifest(endpoint: Endpoint, repository: str, reference: str,
                   auth: AuthConfig, client: RegistryClient) -> bytes:
    return client.fetch(endpoint.manifest_url(repository, reference), auth)
