"""Service for executing API calls with automatic retries.

Implements exponential backoff for handling transient errors like
rate limits (429), temporary server issues (5xx) and network failures.
Permanent errors are propagated on their first occurrence.
"""

import logging
import time
from typing import Any, Callable, Optional

from cardwire.domain.events.api_events import (
    ApiCallFailed,
    ApiCallInitiated,
    ApiCallSucceeded,
    EventSink,
    RetryScheduled,
    dispatch,
)
from cardwire.domain.models.errors import CardApiError, ConfigurationError, ErrorKind

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_BACKOFF_S = 1.0
DEFAULT_BACKOFF_FACTOR = 2.0


class ApiRetryService:
    """Runs a call, retrying transient ``CardApiError``s with exponential backoff.

    With the defaults a call is attempted at most 4 times, sleeping 1s, 2s
    and 4s between attempts. After the last attempt the last classified
    error is re-raised unchanged.
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_backoff_s: float = DEFAULT_INITIAL_BACKOFF_S,
        backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
        sleep: Optional[Callable[[float], None]] = None,
        event_sink: Optional[EventSink] = None,
    ):
        """Initializes the ApiRetryService.

        Args:
            max_retries: Maximum number of retries after the first attempt.
            initial_backoff_s: Delay in seconds before the first retry.
            backoff_factor: Multiplier applied to the delay after each retry.
            sleep: Blocking sleep function, ``time.sleep`` if omitted.
            event_sink: Optional receiver for call and retry events.
        """
        if max_retries < 0:
            raise ConfigurationError(f"max_retries must be zero or more (got: {max_retries})")
        self.max_retries = max_retries
        self.initial_backoff_s = initial_backoff_s
        self.backoff_factor = backoff_factor
        self._sleep = sleep or time.sleep
        self._event_sink = event_sink

        logger.debug(
            f"ApiRetryService initialized: max_retries={max_retries}, "
            f"initial_backoff={initial_backoff_s}s, factor={backoff_factor}"
        )

    def backoff_schedule(self) -> list:
        """The delays that separate consecutive attempts."""
        return [self.initial_backoff_s * (self.backoff_factor ** n) for n in range(self.max_retries)]

    def execute_with_retry(
        self,
        func: Callable[..., Any],
        *args: Any,
        endpoint_name: Optional[str] = None,
        **kwargs: Any
    ) -> Any:
        """Executes a blocking function with retries on transient failures.

        Args:
            func: The function (one HTTP attempt) to execute.
            *args: Positional arguments for the function.
            endpoint_name: Label for logs and events, e.g. 'GET /cards'.
            **kwargs: Keyword arguments for the function.

        Returns:
            The result of the first successful attempt.

        Raises:
            CardApiError: The permanent error, or the last transient error
                once retries are exhausted.
        """
        endpoint = endpoint_name or getattr(func, "__name__", "call")
        current_backoff = self.initial_backoff_s
        last_error: Optional[CardApiError] = None
        total_attempts = self.max_retries + 1

        for attempt in range(1, total_attempts + 1):
            dispatch(self._event_sink, ApiCallInitiated(endpoint=endpoint, attempt_number=attempt))
            start_time = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except CardApiError as e:
                if not e.is_transient:
                    logger.debug(f"Non-retryable {e.kind.value} error calling {endpoint} on attempt {attempt}: {e}")
                    dispatch(self._event_sink, ApiCallFailed(
                        endpoint=endpoint, error_kind=e.kind.value, error_message=str(e), attempts=attempt))
                    raise

                last_error = e
                if attempt == total_attempts:
                    break

                logger.warning(
                    f"{_describe(e)} calling {endpoint} (attempt {attempt}/{total_attempts}). "
                    f"Retrying request after {current_backoff:g}s"
                )
                dispatch(self._event_sink, RetryScheduled(
                    endpoint=endpoint, attempt_number=attempt,
                    delay_seconds=current_backoff, error_kind=e.kind.value))
                self._sleep(current_backoff)
                current_backoff *= self.backoff_factor
                continue

            latency_ms = (time.perf_counter() - start_time) * 1000
            dispatch(self._event_sink, ApiCallSucceeded(
                endpoint=endpoint, latency_ms=latency_ms, attempt_number=attempt))
            return result

        logger.error(f"Max retries ({self.max_retries}) reached for {endpoint}. Last error: {last_error}")
        dispatch(self._event_sink, ApiCallFailed(
            endpoint=endpoint, error_kind=last_error.kind.value,
            error_message=str(last_error), attempts=total_attempts))
        raise last_error


def _describe(error: CardApiError) -> str:
    if error.kind is ErrorKind.NETWORK:
        return f"Network error ({error})"
    if error.status:
        return f"HTTP {error.status} {error.kind.value} error"
    return f"{error.kind.value} error"
