"""Batch submission of card mutations.

A batch bundles create/update operations into one ``POST /cards/batch``
call under one of two modes:

- ``per_item``: every operation succeeds or fails on its own.
- ``transactional``: any failure rolls the whole batch back server side.

The engine turns the raw response into a ``BatchResult`` whose outcomes
line up index by index with the submitted operations.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from cardwire.domain.events.api_events import BatchSubmitted, EventSink, dispatch
from cardwire.domain.models.common import (
    PER_ITEM,
    TRANSACTIONAL,
    VALID_BATCH_MODES,
    BatchMode,
    BatchOperation,
    BatchOutcome,
    BatchResult,
)
from cardwire.domain.models.errors import ConfigurationError, ResponseParseError
from cardwire.infrastructure.http.request_executor import RequestExecutor

logger = logging.getLogger(__name__)

BATCH_PATH = "/cards/batch"

_OK_STATUSES = frozenset({"ok", "success", "created", "updated"})
_FAILED_BATCH_STATUSES = frozenset({"failed", "error", "rolled_back"})
ROLLED_BACK_MESSAGE = "Not applied: transactional batch was rolled back"


def validate_mode(mode: str) -> BatchMode:
    if mode not in VALID_BATCH_MODES:
        raise ConfigurationError(
            f"Mode must be 'per_item' or 'transactional' (got: {mode!r})"
        )
    return BatchMode(mode)


def build_child_op(
    parent_name: str,
    child_name: str,
    content: Optional[str] = None,
    type: Optional[str] = None,
) -> BatchOperation:
    """Operation creating ``Parent+Child``. Pure data, no I/O."""
    op = BatchOperation(action="create", name=f"{parent_name}+{child_name}")
    if content is not None:
        op["content"] = content
    if type is not None:
        op["type"] = type
    return op


def _entry_succeeded(entry: Dict[str, Any]) -> bool:
    if entry.get("success") is True:
        return True
    return str(entry.get("status", "")).lower() in _OK_STATUSES


def _batch_reported_failed(response: Dict[str, Any]) -> bool:
    if response.get("success") is False or response.get("rolled_back") is True:
        return True
    return str(response.get("status", "")).lower() in _FAILED_BATCH_STATUSES


class BatchEngine:
    """Submits operation lists and interprets the per-operation results."""

    def __init__(self, executor: RequestExecutor, event_sink: Optional[EventSink] = None):
        self.executor = executor
        self._event_sink = event_sink

    def submit(self, operations: Sequence[BatchOperation], mode: str = PER_ITEM) -> BatchResult:
        """Sends all operations in one request.

        Args:
            operations: Ordered operations, e.g. built with ``build_child_op``.
            mode: 'per_item' or 'transactional'.

        Raises:
            ConfigurationError: For an unknown mode, before any network call.
            CardApiError: If the request itself fails.
        """
        batch_mode = validate_mode(mode)
        ops: List[BatchOperation] = list(operations)

        response = self.executor.request("POST", BATCH_PATH, body={"ops": ops, "mode": batch_mode})
        result = self.interpret(ops, batch_mode, response)

        logger.info(
            f"Batch ({batch_mode}) of {len(ops)} operation(s): {result.succeeded} applied, "
            f"{result.failed} not applied{' (rolled back)' if result.rolled_back else ''}"
        )
        dispatch(self._event_sink, BatchSubmitted(
            mode=batch_mode, operations=len(ops), succeeded=result.succeeded,
            failed=result.failed, rolled_back=result.rolled_back))
        return result

    def interpret(self, operations: Sequence[BatchOperation], mode: BatchMode, response: Any) -> BatchResult:
        """Maps a raw batch response onto one outcome per submitted operation."""
        raw: Dict[str, Any] = response if isinstance(response, dict) else {"results": response or []}
        entries = raw.get("results")
        if entries is None:
            entries = []
        elif not isinstance(entries, list):
            raise ResponseParseError(
                f"Batch response parse failed: 'results' must be a list (got: {type(entries).__name__})"
            )
        if len(entries) != len(operations):
            logger.warning(
                f"Batch response reported {len(entries)} result(s) for {len(operations)} operation(s)"
            )

        outcomes: List[BatchOutcome] = []
        for index, op in enumerate(operations):
            entry = entries[index] if index < len(entries) and isinstance(entries[index], dict) else None
            name = op.get("name")
            if entry is None:
                outcomes.append(BatchOutcome(index=index, name=name, succeeded=False,
                                             message="No result reported for this operation"))
                continue
            outcomes.append(BatchOutcome(
                index=index,
                name=entry.get("name") or name,
                succeeded=_entry_succeeded(entry),
                message=entry.get("message") or entry.get("error"),
                payload=entry,
                reported_status=entry.get("status"),
            ))

        rolled_back = False
        if mode == TRANSACTIONAL:
            rolled_back = _batch_reported_failed(raw) or any(not o.succeeded for o in outcomes)
            if rolled_back:
                # nothing took effect, whatever individual entries claim
                outcomes = [
                    BatchOutcome(
                        index=o.index,
                        name=o.name,
                        succeeded=False,
                        message=o.message if not o.succeeded and o.message else ROLLED_BACK_MESSAGE,
                        payload=o.payload,
                        reported_status=o.reported_status,
                    )
                    for o in outcomes
                ]

        return BatchResult(mode=mode, outcomes=tuple(outcomes), rolled_back=rolled_back, raw=raw)
