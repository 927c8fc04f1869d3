"""Card operations exposed to the tool registry.

Thin pass-through methods over ``CardClient``: they build paths and query
parameters for the card API and return the parsed responses. Retries,
pagination safety and batch interpretation all live in the client.
"""

import logging
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence
from urllib.parse import quote

from cardwire.domain.models.common import PER_ITEM, BatchOperation, BatchResult
from cardwire.domain.models.errors import ConfigurationError
from cardwire.infrastructure.http.card_client import CardClient

logger = logging.getLogger(__name__)

MAX_BATCH_OPERATIONS = 100
DEFAULT_SNIPPET_LENGTH = 100

# '+' separates hierarchy levels in card names ('Parent+Child') and must
# stay literal in paths.
_NAME_SAFE_CHARS = "+"


def encode_card_name(name: str) -> str:
    """Percent-encodes a card name for use in a URL path.

    Everything except ``A-Z a-z 0-9 - _ . ~ +`` is encoded, non-ASCII
    characters as their UTF-8 bytes.
    """
    return quote(name, safe=_NAME_SAFE_CHARS)


def render_snippet(content: Optional[str], length: int = DEFAULT_SNIPPET_LENGTH) -> str:
    if not content:
        return ""
    if len(content) <= length:
        return content
    return content[:length] + "..."


class CardTools:
    """High-level card operations."""

    def __init__(self, client: CardClient):
        self.client = client

    # --- Single cards ---

    def get_card(self, name: str, with_children: bool = False) -> Any:
        params: Dict[str, Any] = {}
        if with_children:
            params["with_children"] = "true"
        return self.client.get(f"/cards/{encode_card_name(name)}", **params)

    def search_cards(
        self,
        q: Optional[str] = None,
        type: Optional[str] = None,
        search_in: Optional[str] = None,
        updated_since: Optional[str] = None,
        updated_before: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Any:
        """One page of search results.

        Args:
            q: Case-insensitive substring to look for.
            type: Restrict to one card type, e.g. 'User'.
            search_in: 'name' (server default), 'content' or 'both'.
            updated_since: ISO timestamp lower bound on the last update.
            updated_before: ISO timestamp upper bound on the last update.
            limit: Page size, clamped to the maximum page size.
            offset: Starting offset.

        Returns:
            The raw response: ``cards``, ``total``, ``limit``, ``offset``
            and ``next_offset``.
        """
        return self.client.get(
            "/cards",
            limit=self.client.paginator.clamp_limit(limit),
            offset=offset,
            q=q,
            type=type,
            search_in=search_in,
            updated_since=updated_since,
            updated_before=updated_before,
        )

    def list_children(self, parent_name: str, limit: int = 50, offset: int = 0) -> Any:
        return self.client.get(
            f"/cards/{encode_card_name(parent_name)}/children",
            limit=self.client.paginator.clamp_limit(limit),
            offset=offset,
        )

    def create_card(self, name: str, content: Optional[str] = None, type: Optional[str] = None, **metadata: Any) -> Any:
        payload: Dict[str, Any] = {"name": name}
        if content is not None:
            payload["content"] = content
        if type is not None:
            payload["type"] = type
        payload.update(metadata)
        return self.client.post("/cards", **payload)

    def update_card(self, name: str, content: Optional[str] = None, type: Optional[str] = None, **metadata: Any) -> Any:
        """Changes only the given fields of an existing card.

        Raises:
            ConfigurationError: If no field to update was given.
        """
        payload: Dict[str, Any] = {}
        if content is not None:
            payload["content"] = content
        if type is not None:
            payload["type"] = type
        payload.update(metadata)
        if not payload:
            raise ConfigurationError("No update parameters provided")
        return self.client.patch(f"/cards/{encode_card_name(name)}", **payload)

    def delete_card(self, name: str, force: bool = False) -> Any:
        params = {"force": "true"} if force else {}
        return self.client.delete(f"/cards/{encode_card_name(name)}", **params)

    # --- Collections ---

    def each_card_page(
        self,
        q: Optional[str] = None,
        type: Optional[str] = None,
        limit: int = 50,
        max_pages: Optional[int] = None,
        callback: Optional[Callable[[List[Any]], None]] = None,
    ) -> Optional[Iterator[List[Any]]]:
        """Pages of cards matching the filters, lazily or through ``callback``."""
        return self.client.each_page("/cards", limit=limit, callback=callback, max_pages=max_pages, q=q, type=type)

    def fetch_all_cards(self, q: Optional[str] = None, type: Optional[str] = None, limit: int = 50) -> List[Any]:
        return self.client.fetch_all("/cards", limit=limit, q=q, type=type)

    def list_types(self, limit: int = 50, offset: int = 0) -> Any:
        return self.client.get("/types", limit=self.client.paginator.clamp_limit(limit), offset=offset)

    def fetch_all_types(self, limit: int = 100) -> List[Any]:
        return self.client.fetch_all("/types", limit=limit)

    # --- Batches ---

    def batch_operations(self, operations: Sequence[BatchOperation], mode: str = PER_ITEM) -> BatchResult:
        """Submits create/update operations in a single request.

        Raises:
            ConfigurationError: For an empty list, more than 100 operations
                or an unknown mode. Nothing is sent in that case.
        """
        if not operations:
            raise ConfigurationError("Batch requires at least one operation")
        if len(operations) > MAX_BATCH_OPERATIONS:
            raise ConfigurationError(
                f"Batch accepts at most {MAX_BATCH_OPERATIONS} operations (got: {len(operations)})"
            )
        return self.client.submit_batch(operations, mode)

    def build_child_op(self, parent_name: str, child_name: str, content: Optional[str] = None,
                       type: Optional[str] = None) -> BatchOperation:
        return self.client.build_child_op(parent_name, child_name, content=content, type=type)

    # --- Relationships ---

    def get_referers(self, card_name: str) -> List[Any]:
        """Cards that reference this card."""
        return self._relationship(card_name, "referers")

    def get_nested_in(self, card_name: str) -> List[Any]:
        """Cards that include this card with nest syntax ``{{CardName}}``."""
        return self._relationship(card_name, "nested_in")

    def get_nests(self, card_name: str) -> List[Any]:
        return self._relationship(card_name, "nests")

    def get_links(self, card_name: str) -> List[Any]:
        return self._relationship(card_name, "links")

    def get_linked_by(self, card_name: str) -> List[Any]:
        return self._relationship(card_name, "linked_by")

    def _relationship(self, card_name: str, kind: str) -> List[Any]:
        response = self.client.get(f"/cards/{encode_card_name(card_name)}/{kind}")
        if not isinstance(response, dict):
            return []
        return response.get(kind) or []

    # --- Health ---

    def health_check(self) -> Any:
        return self.client.health_check()

    def ping(self) -> Any:
        return self.client.ping()

    # --- Helpers ---

    encode_card_name = staticmethod(encode_card_name)
    render_snippet = staticmethod(render_snippet)
