"""
Upload engine for pushing album audio to R2.
"""

import concurrent.futures
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional

from rich.progress import Progress

from album_core.constants import (
    DEFAULT_UPLOAD_CONCURRENCY, UPLOAD_BACKOFF_SECONDS, UPLOAD_MAX_ATTEMPTS,
)
from album_core.errors import ReleaseKitError
from album_core.models import UploadState, UploadTask

logger = logging.getLogger(__name__)


class UploadEngine:
    """
    Uploads tracks through a bounded worker pool, retrying each PUT.

    Every task runs to a terminal state: one track failing never cancels its
    siblings, and run() only returns once the whole pool has drained.
    """

    def __init__(self, store, bucket: str,
                 concurrency: int = DEFAULT_UPLOAD_CONCURRENCY,
                 max_attempts: int = UPLOAD_MAX_ATTEMPTS,
                 backoff: float = UPLOAD_BACKOFF_SECONDS,
                 sleep: Callable[[float], None] = time.sleep):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.store = store
        self.bucket = bucket
        self.concurrency = concurrency
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.sleep = sleep

    def upload_with_retry(self, task: UploadTask) -> UploadTask:
        """
        PUT one file, retrying with linear backoff (1s, 2s, 3s, 4s).

        Both transport and API errors are retried since the PUT is idempotent.
        """
        while True:
            task.transition(UploadState.IN_FLIGHT)
            task.attempts += 1
            try:
                self.store.upload_object(self.bucket, task.source_path, task.key, task.content_type)
            except (ReleaseKitError, OSError) as e:
                task.last_error = str(e)
                if task.attempts >= self.max_attempts:
                    task.transition(UploadState.FAILED)
                    logger.error("Giving up on %s after %d attempts: %s", task.key, task.attempts, e)
                    return task
                task.transition(UploadState.RETRY_WAIT)
                delay = self.backoff * task.attempts
                logger.warning("Upload of %s failed (attempt %d/%d), retrying in %.0fs: %s",
                               task.key, task.attempts, self.max_attempts, delay, e)
                self.sleep(delay)
                continue

            task.last_error = None
            task.transition(UploadState.SUCCEEDED)
            logger.debug("Uploaded %s in %d attempt(s)", task.key, task.attempts)
            return task

    def run(self, tasks: List[UploadTask], progress: Optional[Progress] = None) -> List[UploadTask]:
        """
        Upload every task and wait for all of them.

        Returns:
            Tasks that ended in FAILED (empty when everything uploaded)
        """
        if not tasks:
            return []

        if progress:
            upload_task = progress.add_task(f"[green]Uploading {len(tasks)} audio files...", total=len(tasks))

        with ThreadPoolExecutor(max_workers=self.concurrency) as executor:
            future_to_task = {executor.submit(self.upload_with_retry, task): task for task in tasks}

            for future in concurrent.futures.as_completed(future_to_task):
                task = future_to_task[future]
                try:
                    future.result()
                except Exception as e:
                    # Unexpected bug inside the worker: record it, keep draining the pool
                    logger.exception("Upload worker crashed for %s", task.key)
                    task.last_error = str(e)
                    task.state = UploadState.FAILED
                if progress:
                    progress.advance(upload_task)

        return [task for task in tasks if task.state is UploadState.FAILED]
