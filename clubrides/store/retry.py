"""Bounded retry for operations that lose conditional-write races."""

import logging
from typing import Callable, Optional, TypeVar

from clubrides.errors import ConcurrencyError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def with_conditional_retries(operation: Callable[[], T], attempts: int, description: str) -> T:
    """
    Run ``operation`` until it stops raising ConcurrencyError.

    ``operation`` must re-read the item it guards on every call. Domain errors
    other than ConcurrencyError (Conflict, NotFound, ...) propagate at once.
    """
    last_error: Optional[ConcurrencyError] = None
    for attempt in range(1, max(attempts, 1) + 1):
        try:
            return operation()
        except ConcurrencyError as exc:
            last_error = exc
            logger.debug("%s lost a conditional write race (attempt %d/%d)", description, attempt, attempts)
    logger.warning("%s gave up after %d contended attempts", description, attempts)
    raise ConcurrencyError(f"Could not {description} because of concurrent updates, please retry") from last_error
