"""Downloads config and layer blobs into the artifact store."""

import logging
from pathlib import Path

from ..errors import DataError, DockdiverError
from ..models.registry import AuthConfig, Descriptor, Digest, Endpoint
from ..models.results import BlobResult
from ..storage.artifact_store import ArtifactStore
from ..transport.client import RegistryClient


logger = logging.getLogger(__name__)


class BlobFetcher:
    """Fetches one blob at a time and publishes it only after verification."""

    def __init__(self, client: RegistryClient, store: ArtifactStore, force_blobs: bool = False):
        self.client = client
        self.store = store
        self.force_blobs = force_blobs

    def target_path(self, repository: str, kind: str, descriptor: Descriptor) -> Path:
        if kind == "config":
            return self.store.config_path(repository, descriptor)
        return self.store.layer_path(repository, descriptor)

    def fetch(self, endpoint: Endpoint, repository: str, auth: AuthConfig,
              kind: str, descriptor: Descriptor) -> BlobResult:
        """Download a blob; errors are recorded in the result rather than raised."""
        result = BlobResult(kind=kind, digest=descriptor.digest)
        url = endpoint.blob_url(repository, descriptor.digest)

        try:
            Digest.parse(descriptor.digest)
            path = self.target_path(repository, kind, descriptor)
            result.path = str(path)

            if not self.force_blobs and path.exists():
                result.success = True
                result.skipped = True
                logger.info(f"{kind.capitalize()} {descriptor.digest} already present, skipping")
                return result

            response = self.client.request(url, auth, stream=True)
            try:
                result.bytes_written = self.store.save_blob(
                    path, descriptor.digest, self.client.iter_body(response, url)
                )
            finally:
                response.close()

            result.success = True
            logger.info(f"{kind.capitalize()} {descriptor.digest} downloaded and verified")

        except ValueError as e:
            result.error = str(DataError(f"invalid digest in manifest: {e}", url=url))
            logger.error(f"Error downloading {kind} {descriptor.digest}: {result.error}")
        except DockdiverError as e:
            message = str(e)
            if url not in message:
                message = f"{message} ({url})"
            result.error = message
            logger.error(f"Error downloading {kind} {descriptor.digest}: {message}")
        except OSError as e:
            result.error = f"failed to store blob: {e}"
            logger.error(f"Error downloading {kind} {descriptor.digest}: {result.error}")

        return result
