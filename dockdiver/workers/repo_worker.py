"""Concurrent repository dump workers."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional

from ..errors import DockdiverError
from ..models.results import RepositoryResult
from ..utils.progress import ProgressReporter


logger = logging.getLogger(__name__)


class RepositoryWorkerPool:
    """Pool of workers running one repository pipeline each."""

    def __init__(self, num_workers: int = 5, show_progress: bool = True):
        if num_workers < 1:
            raise ValueError("num_workers must be at least 1")
        self.num_workers = num_workers
        self.show_progress = show_progress

    def _run_one(self, dump_fn: Callable[[str], RepositoryResult], repository: str) -> RepositoryResult:
        try:
            return dump_fn(repository)
        except DockdiverError as e:
            message = str(e)
            suggestion = getattr(e, 'suggestion', None)
            if suggestion:
                message = f"{message}. Verify manually with: {suggestion}"
            logger.error(f"Error dumping {repository}: {message}")
            return RepositoryResult(name=repository, success=False, error=message)
        except Exception as e:
            logger.exception(f"Unexpected error dumping {repository}")
            return RepositoryResult(name=repository, success=False, error=str(e))

    def dump_repositories(self, repositories: List[str],
                          dump_fn: Callable[[str], RepositoryResult],
                          progress_callback: Optional[Callable] = None) -> List[RepositoryResult]:
        """Run ``dump_fn`` for every repository, at most ``num_workers`` at a time.

        Results come back in catalog order regardless of completion order.
        """
        if not repositories:
            return []

        results: List[Optional[RepositoryResult]] = [None] * len(repositories)
        reporter = ProgressReporter(len(repositories)) if self.show_progress else None

        with ThreadPoolExecutor(max_workers=self.num_workers) as executor:
            if reporter:
                reporter.start()
            try:
                future_to_index = {
                    executor.submit(self._run_one, dump_fn, repo): i
                    for i, repo in enumerate(repositories)
                }

                for future in as_completed(future_to_index):
                    result = future.result()
                    results[future_to_index[future]] = result

                    if reporter:
                        reporter.update(result)
                    if progress_callback:
                        progress_callback(result)
            finally:
                if reporter:
                    reporter.finish()

        return [result for result in results if result is not None]
