"""
Polling helpers for CloudFormation stacks and change sets.
"""

import logging
import threading
import time
from typing import Any, Callable, Optional

from .errors import WaitCancelledError, WaitTimeoutError

logger = logging.getLogger(__name__)

# Same cadence as the CloudFormation waiters: 30s x 120 attempts
DEFAULT_DELAY = 30
DEFAULT_MAX_ATTEMPTS = 120


def poll_until(
    describe: Callable[[], Any],
    is_terminal: Callable[[Any], bool],
    delay: float = DEFAULT_DELAY,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    cancel: Optional[threading.Event] = None,
    description: str = "resource",
) -> Any:
    """
    Call ``describe`` until ``is_terminal`` accepts its result.

    Args:
        describe: Zero-argument call returning the current state
        is_terminal: Predicate on the value returned by ``describe``
        delay: Seconds to sleep between attempts
        max_attempts: Number of describe calls before giving up
        cancel: Optional event; when set, the wait stops at the next sleep
        description: Name used in log and error messages

    Returns:
        The first terminal value returned by ``describe``

    Raises:
        WaitTimeoutError: If no terminal value was seen within max_attempts
        WaitCancelledError: If ``cancel`` was set while waiting
    """
    for attempt in range(1, max_attempts + 1):
        if cancel is not None and cancel.is_set():
            raise WaitCancelledError(f"waiting for {description} was cancelled")

        result = describe()
        if is_terminal(result):
            return result

        if attempt == max_attempts:
            break

        logger.debug(f"waiting for {description} (attempt {attempt}/{max_attempts})")
        if cancel is not None:
            if cancel.wait(delay):
                raise WaitCancelledError(f"waiting for {description} was cancelled")
        elif delay:
            time.sleep(delay)

    raise WaitTimeoutError(
        f"{description} did not reach a terminal state after {max_attempts} attempts"
    )
