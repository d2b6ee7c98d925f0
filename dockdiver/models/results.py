"""Dump result data models."""

from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional


@dataclass
class BlobResult:
    """Outcome of a single config or layer download."""
    kind: str  # "config" or "layer"
    digest: str
    path: Optional[str] = None
    success: bool = False
    skipped: bool = False
    error: Optional[str] = None
    bytes_written: int = 0


@dataclass
class RepositoryResult:
    """Outcome of dumping one repository."""
    name: str
    tag: Optional[str] = None
    success: bool = False
    error: Optional[str] = None
    blobs: List[BlobResult] = field(default_factory=list)

    @property
    def failed_blobs(self) -> int:
        return sum(1 for blob in self.blobs if not blob.success)

    @property
    def bytes_written(self) -> int:
        return sum(blob.bytes_written for blob in self.blobs)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        output = {
            "Name": self.name,
            "Tag": self.tag,
            "Status": "Success" if self.success and not self.failed_blobs else "Failed",
            "Blobs": len(self.blobs),
            "FailedBlobs": self.failed_blobs,
            "BytesWritten": self.bytes_written
        }
        if self.error:
            output["Error"] = self.error
        blob_errors = [
            {"Digest": blob.digest, "Error": blob.error}
            for blob in self.blobs if blob.error
        ]
        if blob_errors:
            output["BlobErrors"] = blob_errors
        return output


@dataclass
class DumpSummary:
    """Summary information for a dump operation."""
    completed: str
    repositories: List[RepositoryResult]

    @property
    def failed_repositories(self) -> List[RepositoryResult]:
        return [r for r in self.repositories if not r.success or r.failed_blobs]

    @property
    def status(self) -> str:
        return "Success" if not self.failed_repositories else "Failed"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "Completed": self.completed,
            "Status": self.status,
            "RepositoriesSeen": str(len(self.repositories)),
            "RepositoriesFailed": str(len(self.failed_repositories)),
            "Data": {
                "Blobs": str(sum(len(r.blobs) for r in self.repositories)),
                "BytesWritten": str(sum(r.bytes_written for r in self.repositories))
            },
            "Repositories": [r.to_dict() for r in self.repositories]
        }
