"""Dump operations for registry repositories."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Union

from ..models.registry import AuthConfig, Endpoint, Manifest
from ..models.results import DumpSummary, RepositoryResult
from ..storage.artifact_store import ArtifactStore
from ..transport.client import RegistryClient
from ..workers.blob_fetcher import BlobFetcher
from ..workers.repo_worker import RepositoryWorkerPool
from . import catalog


logger = logging.getLogger(__name__)


class DumpOperation:
    """Dumps one or every repository of a registry to disk."""

    def __init__(self, client: RegistryClient, endpoint: Endpoint, auth: AuthConfig,
                 output_dir: Union[str, Path], num_workers: int = 5, force_blobs: bool = False,
                 page_size: int = catalog.DEFAULT_PAGE_SIZE, show_progress: bool = True):
        self.client = client
        self.endpoint = endpoint
        self.auth = auth
        self.store = ArtifactStore(output_dir)
        self.fetcher = BlobFetcher(client, self.store, force_blobs=force_blobs)
        self.worker_pool = RepositoryWorkerPool(num_workers, show_progress=show_progress)
        self.page_size = page_size

    def prepare(self):
        """Create the output directory and clear partial files from killed runs."""
        self.store.ensure_output_dir()
        self.store.sweep_partial_files()

    def list_repositories(self):
        return catalog.list_repositories(self.endpoint, self.auth, self.client, self.page_size)

    def dump_repository(self, repository: str) -> RepositoryResult:
        """Dump the first tag of ``repository``: manifest, config blob, then layers in order.

        Tag and manifest failures raise; blob failures are recorded in the result.
        """
        logger.info(f"Processing repository: {repository}")
        result = RepositoryResult(name=repository)

        tags = catalog.list_tags(self.endpoint, repository, self.auth, self.client)
        tag = catalog.select_tag(self.endpoint, repository, tags, self.auth)
        result.tag = tag

        manifest_url = self.endpoint.manifest_url(repository, tag)
        body = catalog.fetch_manifest(self.endpoint, repository, tag, self.auth, self.client)
        self.store.save_manifest(repository, body)
        manifest = Manifest.from_bytes(body, url=manifest_url)

        if manifest.config is not None:
            result.blobs.append(
                self.fetcher.fetch(self.endpoint, repository, self.auth, "config", manifest.config)
            )

        for layer in manifest.layers:
            result.blobs.append(
                self.fetcher.fetch(self.endpoint, repository, self.auth, "layer", layer)
            )

        result.success = True
        logger.info(
            f"Dumped {repository}:{tag} ({len(result.blobs)} blobs, {result.failed_blobs} failed)"
        )
        return result

    def dump_all_repositories(self) -> DumpSummary:
        """List the catalog and dump every repository; only the listing can fail the run."""
        repositories = self.list_repositories()
        logger.info(f"Found {len(repositories)} repositories")

        results = self.worker_pool.dump_repositories(repositories, self.dump_repository)

        return DumpSummary(
            completed=datetime.now().strftime("%A, %b %d, %Y %H:%M"),
            repositories=results
        )


def list_repositories(endpoint: Endpoint, auth: AuthConfig, client: RegistryClient,
                      page_size: int = catalog.DEFAULT_PAGE_SIZE):
    return catalog.list_repositories(endpoint, auth, client, page_size)


def dump_repository(endpoint: Endpoint, repository: str, auth: AuthConfig,
                    output_dir: Union[str, Path], client: RegistryClient,
                    force_blobs: bool = False) -> RepositoryResult:
    operation = DumpOperation(client, endpoint, auth, output_dir, force_blobs=force_blobs)
    operation.store.ensure_output_dir()
    return operation.dump_repository(repository)


def dump_all_repositories(endpoint: Endpoint, auth: AuthConfig, output_dir: Union[str, Path],
                          client: RegistryClient, num_workers: int = 5,
                          force_blobs: bool = False,
                          show_progress: bool = False) -> DumpSummary:
    operation = DumpOperation(
        client, endpoint, auth, output_dir,
        num_workers=num_workers, force_blobs=force_blobs, show_progress=show_progress
    )
    operation.store.ensure_output_dir()
    return operation.dump_all_repositories()
