"""
Bounded retry with a fixed delay and cooperative cancellation.
Returns a tagged outcome instead of raising so callers branch on one value.
"""

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Generic, List, Optional, Tuple, Type, TypeVar

from src.core.context_aware_logger import get_context_logger, TradingEventType

context_logger = get_context_logger()

T = TypeVar('T')


class RetryStatus(Enum):
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


@dataclass
class RetryOutcome(Generic[T]):
    status: RetryStatus
    value: Optional[T] = None
    attempts: int = 0
    errors: List[BaseException] = field(default_factory=list)
    # Exception raised by the final attempt; None when it returned a value
    final_error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.status is RetryStatus.SUCCEEDED

    @property
    def last_error(self) -> Optional[BaseException]:
        return self.errors[-1] if self.errors else None


def run_with_retry(operation: Callable[[int], T],
                   max_attempts: int = 3,
                   delay_seconds: float = 1.0,
                   retry_on: Tuple[Type[BaseException], ...] = (Exception,),
                   is_success: Optional[Callable[[T], bool]] = None,
                   cancel_event: Optional[threading.Event] = None,
                   sleep: Callable[[float], Any] = time.sleep,
                   description: str = "operation") -> RetryOutcome[T]:
    """
    Call operation(attempt) up to max_attempts times, sleeping delay_seconds between attempts.

    An attempt fails when it raises one of retry_on or when is_success(value) is False.
    Other exceptions propagate. Cancellation is checked before every attempt.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

    errors: List[BaseException] = []
    last_value: Optional[T] = None
    final_error: Optional[BaseException] = None

    for attempt in range(1, max_attempts + 1):
        if cancel_event is not None and cancel_event.is_set():
            context_logger.log_event(
                TradingEventType.EXECUTION_DECISION,
                f"{description} cancelled before attempt {attempt}",
                context_provider={'attempt': attempt, 'max_attempts': max_attempts},
                decision_reason="RETRY_CANCELLED"
            )
            return RetryOutcome(RetryStatus.CANCELLED, last_value, attempt - 1, errors, final_error)

        try:
            value = operation(attempt)
        except retry_on as e:
            errors.append(e)
            final_error = e
            context_logger.log_event(
                TradingEventType.EXECUTION_DECISION,
                f"{description} attempt {attempt}/{max_attempts} failed",
                context_provider={'attempt': attempt, 'error': str(e), 'error_type': type(e).__name__},
                decision_reason="RETRY_ATTEMPT_FAILED"
            )
        else:
            if is_success is None or is_success(value):
                return RetryOutcome(RetryStatus.SUCCEEDED, value, attempt, errors)
            last_value = value
            final_error = None
            context_logger.log_event(
                TradingEventType.EXECUTION_DECISION,
                f"{description} attempt {attempt}/{max_attempts} rejected",
                context_provider={'attempt': attempt},
                decision_reason="RETRY_ATTEMPT_REJECTED"
            )

        if attempt < max_attempts:
            sleep(delay_seconds)

    return RetryOutcome(RetryStatus.EXHAUSTED, last_value, max_attempts, errors, final_error)
