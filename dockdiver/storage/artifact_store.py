"""On-disk layout for dumped registry artifacts."""

import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable, Union

from ..errors import DataError, IntegrityError
from ..models.registry import Descriptor, GZIP_LAYER_MEDIA_TYPES, JSON_CONFIG_MEDIA_TYPES


logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".part"
MANIFEST_FILENAME = "manifest.json"


class ArtifactStore:
    """Writes manifests and blobs under ``output_dir/<repository>/``.

    Every file is written to a uniquely named temporary file in the same
    directory and renamed into place only once complete (and, for blobs,
    verified), so a file under its final name is never partial.
    """

    def __init__(self, output_dir: Union[str, Path]):
        self.output_dir = Path(output_dir)

    def ensure_output_dir(self) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        return self.output_dir

    def repository_dir(self, repository: str) -> Path:
        """Create and return the directory for ``repository``."""
        relative = Path(repository)
        if relative.is_absolute() or ".." in relative.parts or not relative.parts:
            raise DataError(f"refusing to write repository '{repository}' outside {self.output_dir}")
        path = self.output_dir / relative
        path.mkdir(parents=True, exist_ok=True)
        return path

    def manifest_path(self, repository: str) -> Path:
        return self.repository_dir(repository) / MANIFEST_FILENAME

    def config_path(self, repository: str, descriptor: Descriptor) -> Path:
        ext = ".json" if descriptor.media_type in JSON_CONFIG_MEDIA_TYPES else ".bin"
        return self.repository_dir(repository) / f"config_{descriptor.safe_digest}{ext}"

    def layer_path(self, repository: str, descriptor: Descriptor) -> Path:
        ext = ".tar.gz" if descriptor.media_type in GZIP_LAYER_MEDIA_TYPES else ".bin"
        return self.repository_dir(repository) / f"layer_{descriptor.safe_digest}{ext}"

    def _temp_file(self, final_path: Path):
        return tempfile.NamedTemporaryFile(
            mode='wb',
            dir=final_path.parent,
            prefix=f".{final_path.name}.",
            suffix=PARTIAL_SUFFIX,
            delete=False
        )

    def save_manifest(self, repository: str, body: bytes) -> Path:
        """Store the manifest exactly as the registry returned it."""
        final_path = self.manifest_path(repository)
        self._write_atomic(final_path, [body])
        return final_path

    def save_blob(self, final_path: Path, expected_digest: str, chunks: Iterable[bytes]) -> int:
        """Stream ``chunks`` to disk while hashing; publish only on digest match.

        Returns the number of bytes written.
        """
        hasher = hashlib.sha256()

        def hashed():
            for chunk in chunks:
                hasher.update(chunk)
                yield chunk

        def verify():
            actual = f"sha256:{hasher.hexdigest()}"
            if actual != expected_digest:
                raise IntegrityError(expected_digest, actual)

        return self._write_atomic(final_path, hashed(), verify)

    def _write_atomic(self, final_path: Path, chunks: Iterable[bytes], verify=None) -> int:
        written = 0
        tmp = self._temp_file(final_path)
        tmp_path = Path(tmp.name)
        try:
            with tmp:
                for chunk in chunks:
                    tmp.write(chunk)
                    written += len(chunk)
                tmp.flush()
                os.fsync(tmp.fileno())
            if verify is not None:
                verify()
            os.replace(tmp_path, final_path)
        except BaseException:
            try:
                tmp_path.unlink()
            except FileNotFoundError:
                pass
            raise
        return written

    def sweep_partial_files(self) -> int:
        """Delete temporary files left behind by an interrupted run."""
        if not self.output_dir.is_dir():
            return 0
        removed = 0
        for path in self.output_dir.rglob(f".*{PARTIAL_SUFFIX}"):
            if path.is_file():
                path.unlink()
                removed += 1
        if removed:
            logger.info(f"Removed {removed} partial file(s) from a previous run")
        return removed
