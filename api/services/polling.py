"""
Poll-until-terminal helper shared by verification status checks and
payment receipt lookups.
"""
from dataclasses import dataclass
from typing import Any, Callable, Optional
import logging
import time

logger = logging.getLogger(__name__)

PENDING = "pending"
SUCCESS = "success"
FAILED = "failed"
TERMINAL_STATES = (SUCCESS, FAILED)


@dataclass
class PollOutcome:
    status: str
    value: Any
    attempts: int
    timed_out: bool = False


def poll_until_terminal(
    poll: Callable[[], Any],
    classify: Callable[[Any], str],
    interval: float,
    max_attempts: int,
    wait_first: bool = False,
    retry_on: tuple[type[BaseException], ...] = (),
    sleep: Callable[[float], None] = time.sleep,
    label: Optional[str] = None,
) -> PollOutcome:
    """
    Call poll() until classify() reports success or failed, or until
    max_attempts calls have been made.

    Exceptions listed in retry_on count as a pending attempt. Exhausting the
    attempt budget while still pending yields a failed outcome with
    timed_out=True.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    value = None
    for attempt in range(1, max_attempts + 1):
        if wait_first or attempt > 1:
            sleep(interval)
        try:
            value = poll()
        except retry_on as e:
            logger.warning(f"{label or 'poll'} attempt {attempt}/{max_attempts} errored: {e}")
            value = None
            continue

        status = classify(value)
        if status not in TERMINAL_STATES and status != PENDING:
            raise ValueError(f"Classifier returned unknown state: {status}")
        if status in TERMINAL_STATES:
            logger.info(f"{label or 'poll'} reached {status} after {attempt} attempt(s)")
            return PollOutcome(status=status, value=value, attempts=attempt)

    logger.warning(f"{label or 'poll'} still pending after {max_attempts} attempts, giving up")
    return PollOutcome(status=FAILED, value=value, attempts=max_attempts, timed_out=True)
