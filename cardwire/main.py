"""Main entry point for the cardwire application.

Sets up the Typer CLI application, performs dependency injection (Composition Root),
defines CLI commands, and delegates execution to the CommandHandler.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import httpx
import typer
from typing_extensions import Annotated

# --- Core Layer ---
from cardwire.core.card_tools import CardTools
from cardwire.core.command_handler import CommandHandler

# --- Domain Layer ---
from cardwire.domain.models.common import PER_ITEM
from cardwire.domain.models.errors import CardApiError

# --- Infrastructure Layer ---
from cardwire.infrastructure.cli.display import ConsoleDisplay
from cardwire.infrastructure.config.settings import ClientSettings, get_config, load_client_settings
from cardwire.infrastructure.http.card_client import CardClient
from cardwire.infrastructure.monitoring.logger_setup import DEFAULT_LOG_FORMAT, setup_logging

logger = logging.getLogger(__name__)

# --- Dependency Injection Container (Manual) ---

def create_dependencies(
    settings: Optional[ClientSettings] = None,
    transport: Optional[httpx.BaseTransport] = None,
    require_credentials: bool = True,
) -> Dict[str, Any]:
    """Creates and wires up all dependencies for the application.

    This acts as the Composition Root.

    Args:
        settings: Explicit settings; loaded from the environment when omitted.
        transport: Optional httpx transport, used by tests to stub the server.
        require_credentials: False for commands that never authenticate.
    """
    logger.debug("Initializing application dependencies...")
    dependencies: Dict[str, Any] = {'ui': ConsoleDisplay()}
    try:
        dependencies['settings'] = settings or load_client_settings(require_credentials=require_credentials)
    except CardApiError as e:
        logger.error(f"Fatal Error during application initialization: {e}")
        dependencies['ui'].display_error(f"Configuration invalid: {e.message}")
        raise typer.Exit(code=2)

    dependencies['client'] = CardClient.from_settings(dependencies['settings'], transport=transport)
    dependencies['tools'] = CardTools(dependencies['client'])
    dependencies['command_handler'] = CommandHandler(
        tools=dependencies['tools'],
        ui=dependencies['ui'],
    )
    logger.debug("All dependencies initialized successfully.")
    return dependencies


# Built on first command so '--help' works without credentials.
_dependencies: Dict[str, Any] = {}


def get_handler(require_credentials: bool = True) -> CommandHandler:
    if not _dependencies:
        _dependencies.update(create_dependencies(require_credentials=require_credentials))
    return _dependencies['command_handler']


def reset_dependencies() -> None:
    """Closes the shared HTTP client and forgets all wired instances."""
    client = _dependencies.get('client')
    if client is not None:
        client.close()
    _dependencies.clear()


# --- Typer App Definition ---
app = typer.Typer(
    name="cardwire",
    help="cardwire: resilient authenticated client for the card API.",
    add_completion=False,
)

# --- CLI Commands ---

LimitOption = Annotated[
    int,
    typer.Option("--limit", "-l", min=1, help="Page size (clamped to the server maximum of 100).")
]

AllOption = Annotated[
    bool,
    typer.Option("--all", "-a", help="Walk every page instead of showing only the first one.")
]


def _finish(exit_code: int) -> None:
    if exit_code:
        raise typer.Exit(code=exit_code)


@app.command()
def token(
    refresh: Annotated[bool, typer.Option("--refresh", help="Discard the cached token and fetch a new one.")] = False,
    verify: Annotated[bool, typer.Option("--verify", help="Verify the token signature against the published key set.")] = False,
):
    """Shows the role and expiry of the current access token."""
    _finish(get_handler().handle_token(refresh=refresh, verify=verify))


@app.command()
def get(
    name: Annotated[str, typer.Argument(help="Full card name, e.g. 'Business Plan+Overview'.")],
    children: Annotated[bool, typer.Option("--children", "-c", help="Include child cards.")] = False,
):
    """Fetches a single card."""
    _finish(get_handler().handle_get(name, with_children=children))


@app.command()
def search(
    query: Annotated[Optional[str], typer.Option("--query", "-q", help="Substring to search for.")] = None,
    card_type: Annotated[Optional[str], typer.Option("--type", "-t", help="Restrict to one card type.")] = None,
    limit: LimitOption = 50,
    fetch_all: AllOption = False,
):
    """Searches cards by name and type."""
    _finish(get_handler().handle_search(query=query, card_type=card_type, limit=limit, fetch_all=fetch_all))


@app.command()
def children(
    parent: Annotated[str, typer.Argument(help="Parent card name.")],
    limit: LimitOption = 50,
):
    """Lists the child cards of a parent card."""
    _finish(get_handler().handle_children(parent, limit=limit))


@app.command()
def types(
    fetch_all: AllOption = False,
    limit: LimitOption = 50,
):
    """Lists card types."""
    _finish(get_handler().handle_types(fetch_all=fetch_all, limit=limit))


@app.command()
def batch(
    file: Annotated[Path, typer.Argument(exists=True, file_okay=True, dir_okay=False, readable=True,
                                         help="JSON file with the operations to submit.")],
    mode: Annotated[str, typer.Option("--mode", "-m", help="'per_item' or 'transactional'.")] = PER_ITEM,
):
    """Submits card operations from a JSON file as one batch."""
    _finish(get_handler().handle_batch(file, mode=mode))


@app.command()
def health(
    ping: Annotated[bool, typer.Option("--ping", help="Only check that the server responds.")] = False,
):
    """Checks whether the card service is up. Needs no credentials."""
    _finish(get_handler(require_credentials=False).handle_health(ping=ping))


@app.callback()
def main_callback(
    log_level: Annotated[
        Optional[str],
        typer.Option("--log-level", help="Logging level (DEBUG, INFO, WARNING, ERROR).")
    ] = None,
):
    """Resilient authenticated client for the card API."""
    setup_logging(
        log_level=log_level or get_config('logging.level', 'WARNING'),
        log_format=get_config('logging.format', DEFAULT_LOG_FORMAT),
        log_file=get_config('logging.file'),
    )


# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    try:
        app()
    finally:
        reset_dependencies()


if __name__ == "__main__":
    cli_entry_point()
