"""Retry policies for page navigation and HTTP lookups."""

import httpx
import structlog
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger(__name__)


def log_before_sleep(event: str):
    """tenacity ``before_sleep`` hook that logs through structlog."""

    def _log(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            event,
            attempt=retry_state.attempt_number,
            sleep_seconds=round(retry_state.next_action.sleep, 2) if retry_state.next_action else 0,
            error=str(exc) if exc else None,
        )

    return _log


# Page loads: exactly one retry, and only when the load timed out
navigation_retry = retry(
    stop=stop_after_attempt(2),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    retry=retry_if_exception_type(PlaywrightTimeoutError),
    before_sleep=log_before_sleep("navigation_retry"),
    reraise=True,
)


# Exchange-rate lookups: one retry on transport errors
rate_refresh_retry = retry(
    stop=stop_after_attempt(2),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    retry=retry_if_exception_type((httpx.TransportError,)),
    before_sleep=log_before_sleep("exchange_rate_retry"),
    reraise=True,
)
