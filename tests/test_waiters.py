"""
Tests for stack status polling.
"""

import threading
from unittest.mock import Mock, patch

import pytest

from cloudformation.errors import WaitCancelledError, WaitTimeoutError
from cloudformation.waiters import poll_until


class TestPollUntil:
    """Test poll_until."""

    def test_returns_first_terminal_value(self):
        describe = Mock(side_effect=["IN_PROGRESS", "IN_PROGRESS", "COMPLETE"])

        result = poll_until(describe, lambda s: s == "COMPLETE", delay=0, max_attempts=5)

        assert result == "COMPLETE"
        assert describe.call_count == 3

    def test_timeout(self):
        """Test giving up after max_attempts describe calls."""
        describe = Mock(return_value="IN_PROGRESS")

        with pytest.raises(WaitTimeoutError, match="stack 'a'"):
            poll_until(describe, lambda s: False, delay=0, max_attempts=3, description="stack 'a'")

        assert describe.call_count == 3

    def test_sleeps_between_attempts(self):
        """Test the delay is applied between attempts but not after the last one."""
        describe = Mock(side_effect=["IN_PROGRESS", "COMPLETE"])

        with patch("cloudformation.waiters.time.sleep") as sleep:
            poll_until(describe, lambda s: s == "COMPLETE", delay=30, max_attempts=3)

        sleep.assert_called_once_with(30)

    def test_cancelled_before_start(self):
        cancel = threading.Event()
        cancel.set()
        describe = Mock()

        with pytest.raises(WaitCancelledError):
            poll_until(describe, lambda s: True, delay=0, cancel=cancel)

        describe.assert_not_called()

    def test_cancelled_while_waiting(self):
        """Test setting the event interrupts the delay."""
        cancel = threading.Event()

        def describe():
            cancel.set()
            return "IN_PROGRESS"

        with pytest.raises(WaitCancelledError):
            poll_until(describe, lambda s: False, delay=60, max_attempts=5, cancel=cancel)
