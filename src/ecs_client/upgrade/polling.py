"""Deadline-bounded, cancellable polling shared by the upgrade gates."""

import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional, Type

from ..exceptions import GateTimeoutError, UpgradeCancelledError
from ..models import PollingPolicy

logger = logging.getLogger(__name__)


class GateState(str, Enum):
    """Where a gate is in its ``POLLING -> PASSED | TIMED_OUT`` lifecycle."""
    PENDING = "PENDING"
    POLLING = "POLLING"
    PASSED = "PASSED"
    TIMED_OUT = "TIMED_OUT"


class Waiter:
    """Runs checks until they succeed or a monotonic deadline passes.

    The deadline is fixed once per wait as ``policy.max_attempts * policy.interval``
    so slow AWS calls eat into the budget instead of extending it, but a wait
    always gets at least ``policy.max_attempts`` checks. Setting
    ``cancel_event`` aborts any wait with ``UpgradeCancelledError``.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.clock = clock
        self._sleep = sleep
        self.cancel_event = cancel_event

    def check_cancelled(self, where: str = "while waiting") -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise UpgradeCancelledError(f"Upgrade cancelled {where}")

    def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            return
        if self.cancel_event is not None:
            if self.cancel_event.wait(seconds):
                raise UpgradeCancelledError("Upgrade cancelled while waiting")
            return
        self._sleep(seconds)

    def wait_until(
        self,
        condition: Callable[[], bool],
        policy: PollingPolicy,
        description: str,
        error: Type[GateTimeoutError] = GateTimeoutError,
    ) -> int:
        """Call ``condition`` until it returns True; return the number of attempts used."""
        deadline = self.clock() + policy.timeout
        attempt = 0
        while True:
            self.check_cancelled()
            attempt += 1
            if condition():
                logger.debug("%s: satisfied after %d attempt(s)", description, attempt)
                return attempt

            remaining = deadline - self.clock()
            if remaining <= 0 and attempt >= policy.max_attempts:
                raise error(
                    f"Timed out waiting for {description} "
                    f"after {attempt} attempt(s) ({policy.timeout:.0f}s)"
                )
            logger.info(
                "Waiting for %s (attempt %d/%d, %.0fs left)",
                description,
                attempt,
                policy.max_attempts,
                max(remaining, 0),
            )
            self.sleep(min(policy.interval, remaining) if remaining > 0 else policy.interval)


class Gate:
    """Base class for the polling gates; tracks the lifecycle state."""

    def __init__(self, waiter: Waiter, policy: PollingPolicy):
        self.waiter = waiter
        self.policy = policy
        self.state = GateState.PENDING

    def _await(
        self, condition: Callable[[], bool], description: str, error: Type[GateTimeoutError]
    ) -> int:
        self.state = GateState.POLLING
        try:
            attempts = self.waiter.wait_until(condition, self.policy, description, error)
        except GateTimeoutError:
            self.state = GateState.TIMED_OUT
            raise
        self.state = GateState.PASSED
        return attempts
