"""Defines common Value Objects used across the client.

These objects describe credentials, single HTTP calls, page cursors and
batch outcomes. All of them are immutable once built.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, NewType, Optional, Tuple, TypedDict

# === Core Value Objects ===

ApiPath = NewType("ApiPath", str)        # Path relative to the API base URL, e.g. "/cards"
Role = NewType("Role", str)              # 'user', 'gm', 'admin'
BatchMode = NewType("BatchMode", str)    # 'transactional' or 'per_item'

VALID_ROLES: Tuple[str, ...] = ("user", "gm", "admin")

TRANSACTIONAL = BatchMode("transactional")
PER_ITEM = BatchMode("per_item")
VALID_BATCH_MODES: Tuple[str, ...] = (TRANSACTIONAL, PER_ITEM)


# === Authentication Context ===

@dataclass(frozen=True)
class Credential:
    """A bearer token together with its absolute expiry and role.

    Replaced wholesale on refresh, never mutated.
    """
    token: str
    expires_at: float  # Unix timestamp
    role: Optional[Role] = None

    def is_fresh(self, now: float, buffer_seconds: float) -> bool:
        """True while ``now`` is earlier than expiry minus the refresh buffer."""
        return now < self.expires_at - buffer_seconds

    def __repr__(self) -> str:
        # keep the token out of logs and tracebacks
        return f"Credential(role={self.role!r}, expires_at={self.expires_at!r})"


@dataclass(frozen=True)
class KeySet:
    """Published verification keys indexed by key id."""
    keys: Mapping[str, Dict[str, Any]]
    fetched_at: float

    def find(self, kid: str) -> Optional[Dict[str, Any]]:
        return self.keys.get(kid)


# === HTTP Context ===

@dataclass(frozen=True)
class RequestDescriptor:
    """Describes one HTTP call. Every retry attempt re-sends the same descriptor."""
    method: str
    path: ApiPath
    query: Optional[Mapping[str, Any]] = None
    body: Optional[Any] = None

    def clean_query(self) -> Optional[Dict[str, Any]]:
        """Query parameters without the ``None`` entries."""
        if not self.query:
            return None
        return {key: value for key, value in self.query.items() if value is not None}


# === Pagination Context ===

@dataclass(frozen=True)
class PageCursor:
    offset: int
    limit: int
    total: Optional[int] = None
    next_offset: Optional[int] = None

    @property
    def is_last(self) -> bool:
        return self.next_offset is None


@dataclass(frozen=True)
class Page:
    items: List[Any]
    cursor: PageCursor


# === Batch Context ===

class BatchOperation(TypedDict, total=False):
    """One entry of a batch request."""
    action: str       # 'create' or 'update'
    name: str
    content: str
    type: str


@dataclass(frozen=True)
class BatchOutcome:
    """Result for the operation at the same index of the request.

    ``succeeded`` is True only when the operation's effect can be relied
    upon, so a rolled back transactional entry is never ``succeeded``.
    """
    index: int
    name: Optional[str]
    succeeded: bool
    message: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    reported_status: Optional[str] = None


@dataclass(frozen=True)
class BatchResult:
    mode: BatchMode
    outcomes: Tuple[BatchOutcome, ...]
    rolled_back: bool = False
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.succeeded)

    @property
    def failed(self) -> int:
        return len(self.outcomes) - self.succeeded

    @property
    def all_applied(self) -> bool:
        return not self.rolled_back and self.failed == 0

    def failures(self) -> List[BatchOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.succeeded]
