"""Domain Events related to API calls and resilience.

Examples include events for when calls are retried, fail, or succeed, and
for credential refreshes and bounded pagination walks.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass


EventSink = Callable[[DomainEvent], None]


def log_event_sink(event: DomainEvent) -> None:
    """Default sink: events only show up in debug logs."""
    logger.debug(f"EVENT: {event}")


def dispatch(sink: Optional[EventSink], event: DomainEvent) -> None:
    """Hands an event to the sink. A failing sink never breaks the call."""
    try:
        (sink or log_event_sink)(event)
    except Exception as e:
        logger.error(f"Event sink failed for {type(event).__name__}: {e}", exc_info=True)


# --- Specific API Events ---

@dataclass
class ApiCallInitiated(DomainEvent):
    """Event triggered when an HTTP attempt is about to be made."""
    endpoint: str  # e.g. 'GET /cards'
    attempt_number: int = 1
    timestamp: float = field(default_factory=time.time)


@dataclass
class ApiCallSucceeded(DomainEvent):
    endpoint: str
    latency_ms: float
    attempt_number: int = 1
    timestamp: float = field(default_factory=time.time)


@dataclass
class ApiCallFailed(DomainEvent):
    """Event triggered when a call fails definitively (permanent error or retries exhausted)."""
    endpoint: str
    error_kind: str
    error_message: str
    attempts: int = 1
    timestamp: float = field(default_factory=time.time)


@dataclass
class RetryScheduled(DomainEvent):
    endpoint: str
    attempt_number: int
    delay_seconds: float
    error_kind: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class TokenRefreshed(DomainEvent):
    """A new credential replaced the cached one."""
    role: Optional[str]
    expires_at: float
    timestamp: float = field(default_factory=time.time)


@dataclass
class PaginationCeilingReached(DomainEvent):
    """A walk stopped at the page ceiling while the server still offered more."""
    path: str
    pages: int
    next_offset: Any
    timestamp: float = field(default_factory=time.time)


@dataclass
class BatchSubmitted(DomainEvent):
    mode: str
    operations: int
    succeeded: int
    failed: int
    rolled_back: bool
    timestamp: float = field(default_factory=time.time)
