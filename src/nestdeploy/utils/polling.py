"""Bounded exponential-backoff polling for long-running service operations."""

import random
import threading
import time
from typing import Callable, Optional, TypeVar

from nestdeploy.utils.errors import AttemptCancelledError, ProposalTimeoutError
from nestdeploy.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


class BackoffStrategy:
    """Exponential backoff with an attempt ceiling and a wall-clock budget."""

    def __init__(
        self,
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        multiplier: float = 2.0,
        max_attempts: int = 120,
        timeout: Optional[float] = 1800.0,
        jitter: bool = True
    ):
        """Initialize backoff strategy.

        Args:
            initial_delay: Delay in seconds after the first check
            max_delay: Maximum delay in seconds between checks
            multiplier: Base for exponential backoff calculation
            max_attempts: Maximum number of checks before giving up
            timeout: Maximum seconds to keep polling, None for no time limit
            jitter: Whether to add random jitter to delay
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.max_attempts = max_attempts
        self.timeout = timeout
        self.jitter = jitter

    def get_delay(self, attempt: int) -> float:
        """Calculate delay before the next check.

        Args:
            attempt: Current attempt number (0-indexed)

        Returns:
            Delay in seconds, never above max_delay
        """
        delay = min(self.initial_delay * (self.multiplier ** attempt), self.max_delay)

        # Jitter only ever shortens the wait so max_delay stays a hard cap
        if self.jitter and delay > 0:
            delay -= random.uniform(0, delay * 0.1)

        return delay


def poll_until(
    fetch: Callable[[], T],
    is_done: Callable[[T], bool],
    strategy: BackoffStrategy,
    description: str,
    cancel_event: Optional[threading.Event] = None,
    clock: Callable[[], float] = time.monotonic
) -> T:
    """Call fetch until is_done accepts its result.

    Waiting happens on cancel_event, so setting the event interrupts a
    pending wait immediately.

    Args:
        fetch: Reads the current status
        is_done: Returns True once the status is terminal
        strategy: Backoff and bounds
        description: What is being waited for, used in logs and errors
        cancel_event: Optional caller-controlled cancellation signal
        clock: Monotonic clock, injectable for tests

    Returns:
        The first terminal status

    Raises:
        AttemptCancelledError: If cancel_event is set
        ProposalTimeoutError: If the attempt ceiling or timeout is reached
    """
    cancel_event = cancel_event or threading.Event()
    deadline = clock() + strategy.timeout if strategy.timeout is not None else None
    checks = 0

    while True:
        if cancel_event.is_set():
            raise AttemptCancelledError(f"Cancelled while waiting for {description}")

        value = fetch()
        checks += 1
        if is_done(value):
            logger.debug(f"{description} finished after {checks} check(s)")
            return value

        if checks >= strategy.max_attempts:
            break

        delay = strategy.get_delay(checks - 1)
        if deadline is not None:
            remaining = deadline - clock()
            if remaining <= 0:
                break
            delay = min(delay, remaining)

        logger.debug(f"Waiting {delay:.2f}s for {description} (check {checks}/{strategy.max_attempts})")
        if cancel_event.wait(delay):
            raise AttemptCancelledError(f"Cancelled while waiting for {description}")

    raise ProposalTimeoutError(
        f"Timed out waiting for {description} after {checks} check(s)",
        suggestions=[
            'Inspect the stack events in the CloudFormation console',
            'Raise polling.timeout or polling.max_attempts in the configuration',
        ]
    )
