"""Command Handler: Orchestrates CLI command execution.

Receives commands from the main entry point (main.py), delegates the work
to ``CardTools`` and renders the results through the ``UserInterface``.
Every handler returns a process exit code; typed API failures are shown
as one readable message instead of a traceback.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional

from cardwire.core.card_tools import CardTools, render_snippet
from cardwire.domain.interfaces.user_interface import UserInterface
from cardwire.domain.models.common import PER_ITEM, BatchResult
from cardwire.domain.models.errors import CardApiError, ConfigurationError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_API_ERROR = 1
EXIT_BAD_INPUT = 2


def _format_timestamp(unix_seconds: float) -> str:
    return datetime.fromtimestamp(unix_seconds, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def load_operations(file_path: Path) -> List[Any]:
    """Reads batch operations from a JSON file.

    The file holds either a list of operations or an object with an
    ``ops`` (or ``operations``) list.

    Raises:
        ConfigurationError: If the file is unreadable or has the wrong shape.
    """
    try:
        data = json.loads(file_path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigurationError(f"Cannot read batch file {file_path}: {e}") from e
    except ValueError as e:
        raise ConfigurationError(f"Batch file {file_path} is not valid JSON: {e}") from e

    if isinstance(data, dict):
        data = data.get("ops", data.get("operations"))
    if not isinstance(data, list) or not all(isinstance(op, dict) for op in data):
        raise ConfigurationError(f"Batch file {file_path} must contain a list of operation objects")
    return data


class CommandHandler:
    """Handles incoming commands and delegates to the card tools."""

    def __init__(self, tools: CardTools, ui: UserInterface):
        self.tools = tools
        self.ui = ui

    def _fail(self, error: CardApiError) -> int:
        logger.debug(f"Command failed: {error!r}")
        self.ui.display_error(f"{error.kind.value}: {error.message}", details=error.details)
        return EXIT_BAD_INPUT if isinstance(error, ConfigurationError) else EXIT_API_ERROR

    def handle_token(self, refresh: bool = False, verify: bool = False) -> int:
        """Shows role and expiry of the current credential, never the token itself."""
        logger.info(f"Handling 'token' command (refresh={refresh}, verify={verify})")
        credentials = self.tools.client.credentials
        try:
            token = credentials.refresh() if refresh else credentials.get_token()
            credential = credentials.credential
            rows = [
                ("Role", credential.role if credential else "-"),
                ("Expires", _format_timestamp(credential.expires_at) if credential else "-"),
                ("Auth method", self.tools.client.settings.auth_method),
            ]
            if verify:
                claims = credentials.verify_token(token)
                rows.append(("Verified", "yes"))
                rows.extend((f"Claim {name}", str(value)) for name, value in sorted(claims.items())
                            if name in ("sub", "iss", "role", "iat", "exp"))
            self.ui.display_table("Credential", ["Field", "Value"], rows)
        except CardApiError as e:
            return self._fail(e)
        return EXIT_OK

    def handle_get(self, name: str, with_children: bool = False) -> int:
        logger.info(f"Handling 'get' command for card: {name}")
        try:
            card = self.tools.get_card(name, with_children=with_children)
        except CardApiError as e:
            return self._fail(e)
        self.ui.display_json(card)
        return EXIT_OK

    def handle_search(
        self,
        query: Optional[str] = None,
        card_type: Optional[str] = None,
        limit: int = 50,
        fetch_all: bool = False,
    ) -> int:
        logger.info(f"Handling 'search' command (q={query!r}, type={card_type!r}, all={fetch_all})")
        try:
            if fetch_all:
                cards = self.tools.fetch_all_cards(q=query, type=card_type, limit=limit)
                total = len(cards)
            else:
                response = self.tools.search_cards(q=query, type=card_type, limit=limit)
                cards = response.get("cards", []) if isinstance(response, dict) else []
                total = response.get("total", len(cards)) if isinstance(response, dict) else len(cards)
        except CardApiError as e:
            return self._fail(e)

        self._display_cards(f"Cards ({len(cards)} of {total})", cards)
        return EXIT_OK

    def handle_children(self, parent: str, limit: int = 50) -> int:
        logger.info(f"Handling 'children' command for parent: {parent}")
        try:
            response = self.tools.list_children(parent, limit=limit)
        except CardApiError as e:
            return self._fail(e)
        children = response.get("children", []) if isinstance(response, dict) else []
        self._display_cards(f"Children of {parent}", children)
        return EXIT_OK

    def handle_types(self, fetch_all: bool = False, limit: int = 50) -> int:
        logger.info(f"Handling 'types' command (all={fetch_all})")
        try:
            if fetch_all:
                types = self.tools.fetch_all_types(limit=limit)
            else:
                response = self.tools.list_types(limit=limit)
                types = response.get("types", []) if isinstance(response, dict) else []
        except CardApiError as e:
            return self._fail(e)
        rows = [(t.get("name", ""), t.get("id", "")) if isinstance(t, dict) else (str(t), "") for t in types]
        self.ui.display_table(f"Card types ({len(rows)})", ["Name", "Id"], rows)
        return EXIT_OK

    def handle_batch(self, file_path: Path, mode: str = PER_ITEM) -> int:
        logger.info(f"Handling 'batch' command: {file_path} (mode={mode})")
        try:
            operations = load_operations(file_path)
            result = self.tools.batch_operations(operations, mode=mode)
        except CardApiError as e:
            return self._fail(e)

        self._display_batch(result)
        return EXIT_OK if result.all_applied else EXIT_API_ERROR

    def handle_health(self, ping: bool = False) -> int:
        logger.info(f"Handling 'health' command (ping={ping})")
        try:
            info = self.tools.ping() if ping else self.tools.health_check()
        except CardApiError as e:
            return self._fail(e)

        status = info.get("status", "unknown") if isinstance(info, dict) else "unknown"
        if status in ("healthy", "ok"):
            self.ui.display_info(f"Service is {status}")
        else:
            self.ui.display_warning(f"Service reported status: {status}")
        if not ping:
            self.ui.display_json(info)
        return EXIT_OK

    # --- Rendering helpers ---

    def _display_cards(self, title: str, cards: List[Any]) -> None:
        rows = []
        for card in cards:
            if not isinstance(card, dict):
                rows.append((str(card), "", ""))
                continue
            rows.append((
                card.get("name", ""),
                card.get("type", ""),
                render_snippet(card.get("content"), length=60),
            ))
        self.ui.display_table(title, ["Name", "Type", "Content"], rows)

    def _display_batch(self, result: BatchResult) -> None:
        rows = [
            (str(o.index), o.name or "", "applied" if o.succeeded else "not applied", o.message or "")
            for o in result.outcomes
        ]
        self.ui.display_table(f"Batch ({result.mode})", ["#", "Name", "Outcome", "Message"], rows)
        if result.rolled_back:
            self.ui.display_warning("Transactional batch was rolled back; no operation took effect.")
        elif result.failed:
            self.ui.display_warning(f"{result.succeeded} operation(s) applied, {result.failed} failed.")
        else:
            self.ui.display_info(f"All {result.succeeded} operation(s) applied.")
