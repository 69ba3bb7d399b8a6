from __future__ import annotations

from collections.abc import Callable
import logging
import time
from typing import Literal, TypeVar

from postflight.observability import log_event, log_warning_event


LOGGER = logging.getLogger("postflight.retry")
T = TypeVar("T")
FailureClass = Literal["transient", "permanent"]
_PERMANENT_STATUSES = frozenset({401, 403, 404, 422})


class RetryAbortedError(RuntimeError):
    """A permanent failure that must not be retried."""

    def __init__(self, operation_name: str, original: BaseException) -> None:
        super().__init__(str(original))
        self.operation_name = operation_name
        self.original = original
        self.status_code = status_code_of(original)


def status_code_of(exc: BaseException) -> int | None:
    status = getattr(exc, "status_code", None)
    if isinstance(status, int) and not isinstance(status, bool):
        return status
    return None


def classify_failure(exc: BaseException) -> FailureClass:
    status = status_code_of(exc)
    if status is None:
        return "transient"
    if status in _PERMANENT_STATUSES:
        return "permanent"
    if status >= 500:
        return "transient"
    return "permanent"


def backoff_delay(
    attempt: int, *, min_timeout: float, max_timeout: float, factor: float
) -> float:
    return min(max_timeout, min_timeout * (factor**attempt))


def execute_with_retry(
    operation: Callable[[], T],
    operation_name: str,
    *,
    retries: int = 3,
    min_timeout: float = 1.0,
    max_timeout: float = 5.0,
    factor: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    if retries < 0:
        raise ValueError("retries must be >= 0")

    attempt = 0
    while True:
        try:
            return operation()
        except Exception as exc:  # noqa: BLE001
            failure = classify_failure(exc)
            status = status_code_of(exc)
            if failure == "permanent":
                log_warning_event(
                    LOGGER,
                    "retry_aborted",
                    operation=operation_name,
                    status=status,
                    error=str(exc),
                )
                raise RetryAbortedError(operation_name, exc) from exc
            if attempt >= retries:
                log_warning_event(
                    LOGGER,
                    "retry_exhausted",
                    operation=operation_name,
                    attempts=attempt + 1,
                    status=status,
                    error=str(exc),
                )
                raise
            delay = backoff_delay(
                attempt, min_timeout=min_timeout, max_timeout=max_timeout, factor=factor
            )
            log_event(
                LOGGER,
                "retry_scheduled",
                operation=operation_name,
                attempt=attempt + 1,
                retries_left=retries - attempt,
                delay_seconds=delay,
                status=status,
            )
            sleep(delay)
            attempt += 1
