"""
PolicyOS Core Resilience — Bounded Task Queue
===============================================
Every model call funnels through one queue that caps in-flight calls.
max_concurrency=1 serializes them.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, TypeVar

from core.resilience.retry import as_positive_int

logger = logging.getLogger("policyos.resilience")

T = TypeVar("T")


class BoundedTaskQueue:
    """
    Usage:
        queue = BoundedTaskQueue(max_concurrency=1)
        result = queue.run(lambda: call_model(messages))
        queue.shutdown()
    """

    def __init__(self, max_concurrency: int = 1, name: str = "policyos-queue"):
        self.max_concurrency = as_positive_int(max_concurrency, 1)
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_concurrency,
            thread_name_prefix=name,
        )

    def submit(self, task: Callable[[], T]) -> "Future[T]":
        return self._executor.submit(task)

    def run(self, task: Callable[[], T]) -> T:
        """Block until the task has run; return its result or re-raise its error."""
        return self.submit(task).result()

    def shutdown(self, wait: bool = True) -> None:
        logger.info("Task queue shutting down.")
        self._executor.shutdown(wait=wait)
