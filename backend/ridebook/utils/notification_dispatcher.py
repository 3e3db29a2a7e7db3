"""Off-request delivery of notification jobs.

Request handlers hand a job to the dispatcher and return immediately. Each
job runs on a worker thread with the retry policy from settings; a job that
still fails is kept in ``dead_letters`` for inspection and never raised.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Deque, Optional

from ..core.config import settings
from ..models.base import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FailedNotification:
    job: str
    args: tuple
    error: Exception
    attempts: int
    failed_at: datetime


class NotificationDispatcher:
    def __init__(
        self,
        max_workers: Optional[int] = None,
        attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.attempts = max(1, attempts if attempts is not None else settings.NOTIFICATION_ATTEMPTS)
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.NOTIFICATION_RETRY_BACKOFF_SECONDS
        )
        self._sleep = sleep
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or settings.NOTIFICATION_WORKERS,
            thread_name_prefix="notify",
        )
        self.dead_letters: Deque[FailedNotification] = deque(maxlen=settings.NOTIFICATION_DEAD_LETTER_SIZE)

    def deliver(self, job: str, send: Callable[..., Any], *args: Any) -> Any:
        """Run ``send`` in the calling thread with linear backoff between attempts."""
        for attempt in range(1, self.attempts + 1):
            try:
                return send(*args)
            except Exception as exc:
                if attempt < self.attempts:
                    logger.warning("Notification %s failed (attempt %s/%s): %s", job, attempt, self.attempts, exc)
                    self._sleep(self.backoff_seconds * attempt)
                    continue
                logger.error("Notification %s gave up after %s attempts: %s", job, attempt, exc)
                self.dead_letters.append(FailedNotification(job, args, exc, attempt, utcnow()))
        return None

    def submit(self, job: str, send: Callable[..., Any], *args: Any) -> Future:
        return self._executor.submit(self.deliver, job, send, *args)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
