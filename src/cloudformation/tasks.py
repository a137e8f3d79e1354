"""
Background tasks reporting a single result each.

A task runs on a thread pool and writes exactly one value to a
``ResultChannel``: ``None`` on success or the exception it raised. Several
tasks may share one channel so that a caller can fan in on their outcomes.
"""

import logging
import queue
from concurrent.futures import Executor, Future
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class ResultChannel:
    """Unbounded channel of task outcomes; producers never block."""

    def __init__(self) -> None:
        self._queue: "queue.Queue[Optional[BaseException]]" = queue.Queue()

    def send(self, error: Optional[BaseException]) -> None:
        """Deliver one task outcome."""
        self._queue.put(error)

    def receive(self, timeout: Optional[float] = None) -> Optional[BaseException]:
        """
        Wait for the next task outcome.

        Raises:
            TimeoutError: If nothing was delivered within ``timeout`` seconds
        """
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError(f"no task result received within {timeout}s") from None

    def drain(self, count: int, timeout: Optional[float] = None) -> List[BaseException]:
        """Receive ``count`` outcomes and return the errors among them."""
        errors = []
        for _ in range(count):
            error = self.receive(timeout=timeout)
            if error is not None:
                errors.append(error)
        return errors

    def pending(self) -> int:
        """Number of outcomes delivered but not yet received."""
        return self._queue.qsize()


def run_async(task: Callable[[], None], results: ResultChannel, executor: Executor, name: str = "task") -> Future:
    """
    Run ``task`` on ``executor`` and deliver its outcome to ``results``.

    Exactly one value is sent, whether the task returns or raises.
    """

    def _run() -> None:
        error = None
        try:
            task()
        except Exception as e:
            logger.debug(f"{name} failed: {e}")
            error = e
        results.send(error)

    return executor.submit(_run)
