"""Progress reporting utilities."""

import logging
import sys
import time
from typing import Callable, Optional
from tqdm import tqdm

from ..models.results import RepositoryResult


logger = logging.getLogger(__name__)


class ProgressReporter:
    """Progress bar over repositories being dumped."""

    def __init__(self, total: int, description: str = "Dumping repositories", unit: str = "repo"):
        self.total = total
        self.description = description
        self.unit = unit
        self.progress_bar = None
        self.processed = 0
        self.errors = 0

    def start(self):
        """Start progress reporting."""
        self.progress_bar = tqdm(
            total=self.total,
            desc=self.description,
            unit=self.unit,
            file=sys.stderr
        )

    def update(self, result: RepositoryResult):
        """Update progress with a finished repository."""
        if result.success and not result.failed_blobs:
            self.processed += 1
        else:
            self.errors += 1

        if self.progress_bar:
            self.progress_bar.set_postfix({
                'dumped': self.processed,
                'errors': self.errors
            })
            self.progress_bar.update(1)

    def finish(self):
        """Finish progress reporting."""
        if self.progress_bar:
            self.progress_bar.close()


class DownloadProgress:
    """Logs how far a body download has got, at most once per interval.

    Reports a percentage when the size is known and a byte count otherwise.
    """

    def __init__(self, url: str, total: Optional[int] = None, interval: float = 1.0,
                 clock: Callable[[], float] = time.monotonic):
        self.url = url
        self.total = total if total and total > 0 else None
        self.interval = interval
        self.read = 0
        self.reports = 0
        self._clock = clock
        self._last_report = clock()

    def update(self, size: int):
        self.read += size
        now = self._clock()
        if now - self._last_report < self.interval:
            return
        self._last_report = now
        self.reports += 1
        if self.total:
            percent = self.read / self.total * 100
            logger.info(f"Downloading {self.url}: {percent:.2f}% ({self.read}/{self.total} bytes)")
        else:
            logger.info(f"Downloading {self.url}: {self.read} bytes")
