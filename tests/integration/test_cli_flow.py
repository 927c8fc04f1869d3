"""End-to-end CLI flows against a stubbed card API.

The real composition root is used; only the HTTP transport is replaced
with an ``httpx.MockTransport`` and retry sleeps are skipped.
"""

import json

import httpx
import pytest

from cardwire import main
from cardwire.main import app
from tests.conftest import FakeCardServer, reply

REAL_CREATE = main.create_dependencies


@pytest.fixture
def cli_server():
    return FakeCardServer().with_auth(role="gm")


@pytest.fixture(autouse=True)
def wired_app(mocker, cli_server, settings):
    """Builds dependencies with the stub transport instead of a real network."""
    def create_with_stub(require_credentials=True):
        return REAL_CREATE(settings=settings, transport=cli_server.transport,
                           require_credentials=require_credentials)

    mocker.patch("cardwire.main.create_dependencies", side_effect=create_with_stub)
    mocker.patch("time.sleep")
    mocker.patch("cardwire.main.setup_logging")
    main.reset_dependencies()
    yield
    main.reset_dependencies()


def test_get_prints_card_json(runner, cli_server):
    cli_server.add("GET", "/cards/Home", reply(200, json={"name": "Home", "content": "Welcome"}))

    result = runner.invoke(app, ["get", "Home"])

    assert result.exit_code == 0, result.output
    assert '"Welcome"' in result.output


def test_missing_card_exits_with_readable_error(runner, cli_server):
    cli_server.add("GET", "/cards/Nope", reply(404, json={"error": "not_found", "message": "Card not found"}))

    result = runner.invoke(app, ["get", "Nope"])

    assert result.exit_code == 1
    assert "Card not found" in result.output
    assert "Traceback" not in result.output


def test_search_all_walks_pages(runner, cli_server):
    def pages(request):
        offset = int(request.url.params["offset"])
        next_offset = offset + 1 if offset < 2 else None
        return httpx.Response(200, json={"cards": [{"name": f"Card{offset}"}], "next_offset": next_offset})

    cli_server.add("GET", "/cards", pages)

    result = runner.invoke(app, ["search", "--query", "Card", "--all", "--limit", "1"])

    assert result.exit_code == 0, result.output
    for name in ("Card0", "Card1", "Card2"):
        assert name in result.output
    assert len(cli_server.calls("GET", "/cards")) == 3


def test_server_errors_are_retried_before_failing(runner, cli_server):
    cli_server.add("GET", "/types", reply(500, json={"error": "internal", "message": "Upstream exploded"}))

    result = runner.invoke(app, ["types"])

    assert result.exit_code == 1
    assert "Upstream exploded" in result.output
    assert len(cli_server.calls("GET", "/types")) == 4


def test_batch_command_reports_outcomes(runner, cli_server, tmp_path):
    ops_file = tmp_path / "ops.json"
    ops_file.write_text(json.dumps([
        {"action": "create", "name": "Plan+Overview"},
        {"action": "create", "name": "Plan+Goals"},
    ]))
    cli_server.add("POST", "/cards/batch", reply(207, json={"results": [
        {"status": "ok", "name": "Plan+Overview"},
        {"status": "error", "name": "Plan+Goals", "message": "Taken"},
    ]}))

    result = runner.invoke(app, ["batch", str(ops_file)])

    assert result.exit_code == 1
    assert "Plan+Overview" in result.output
    assert "1 operation(s) applied, 1 failed" in result.output
    assert json.loads(cli_server.calls("POST", "/cards/batch")[0].content)["mode"] == "per_item"


def test_batch_rejects_unknown_mode_without_request(runner, cli_server, tmp_path):
    ops_file = tmp_path / "ops.json"
    ops_file.write_text(json.dumps([{"action": "create", "name": "A"}]))

    result = runner.invoke(app, ["batch", str(ops_file), "--mode", "best_effort"])

    assert result.exit_code == 2
    assert cli_server.calls("POST", "/cards/batch") == []


def test_token_shows_role_but_not_token(runner, cli_server):
    result = runner.invoke(app, ["token"])

    assert result.exit_code == 0, result.output
    assert "gm" in result.output
    assert "tok-1" not in result.output


def test_health_ping(runner, cli_server):
    cli_server.add("GET", "/health/ping", reply(200, json={"status": "ok"}))

    result = runner.invoke(app, ["health", "--ping"])

    assert result.exit_code == 0, result.output
    assert "Service is ok" in result.output
    assert cli_server.calls("POST", "/auth") == []


def test_log_level_option_configures_logging(runner, cli_server):
    cli_server.add("GET", "/health", reply(200, json={"status": "healthy"}))

    result = runner.invoke(app, ["--log-level", "DEBUG", "health"])

    assert result.exit_code == 0, result.output
    main.setup_logging.assert_called_once()
    assert main.setup_logging.call_args.kwargs["log_level"] == "DEBUG"


def test_missing_credentials_are_reported(runner, mocker):
    mocker.patch("cardwire.main.create_dependencies",
                 side_effect=lambda require_credentials=True: REAL_CREATE(require_credentials=require_credentials))

    result = runner.invoke(app, ["get", "Home"])

    assert result.exit_code == 2
    assert "Must provide either" in result.output
