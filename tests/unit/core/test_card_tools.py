import json

import httpx
import pytest

from cardwire.core.card_tools import CardTools, encode_card_name, render_snippet
from cardwire.domain.models.errors import ConfigurationError, ServerError
from tests.conftest import reply


@pytest.fixture
def tools(client):
    return CardTools(client)


@pytest.mark.parametrize("name, encoded", [
    ("Home", "Home"),
    ("Business Plan", "Business%20Plan"),
    ("Business Plan+Overview", "Business%20Plan+Overview"),
    ("a-b_c.d~e", "a-b_c.d~e"),
    ("What?/Why#", "What%3F%2FWhy%23"),
    ("Café", "Caf%C3%A9"),
])
def test_encode_card_name(name, encoded):
    assert encode_card_name(name) == encoded


def test_render_snippet():
    assert render_snippet(None) == ""
    assert render_snippet("Short", length=50) == "Short"
    assert render_snippet("A" * 150) == "A" * 100 + "..."
    assert render_snippet("<p>HTML content</p>", length=10) == "<p>HTML co..."


def test_get_card_encodes_name_in_path(tools, server):
    server.add("GET", "/cards/Business Plan+Overview", reply(200, json={"name": "Business Plan+Overview"}))

    card = tools.get_card("Business Plan+Overview", with_children=True)

    assert card["name"] == "Business Plan+Overview"
    request = server.requests[-1]
    assert request.url.raw_path.startswith(b"/api/mcp/cards/Business%20Plan+Overview")
    assert request.url.params["with_children"] == "true"


def test_search_cards_sends_only_given_filters(tools, server):
    server.add("GET", "/cards", reply(200, json={"cards": [], "total": 0}))

    tools.search_cards(q="neural lace", search_in="content", limit=500)

    params = server.calls("GET", "/cards")[0].url.params
    assert params["q"] == "neural lace"
    assert params["search_in"] == "content"
    assert params["limit"] == "100"
    assert params["offset"] == "0"
    assert "type" not in params
    assert "updated_since" not in params


def test_list_children(tools, server):
    server.add("GET", "/cards/Game Master/children", reply(200, json={"parent": "Game Master", "children": []}))

    result = tools.list_children("Game Master", limit=20)

    assert result["parent"] == "Game Master"
    assert server.requests[-1].url.params["limit"] == "20"


def test_create_card_merges_metadata(tools, server):
    server.add("POST", "/cards", reply(201, json={"name": "john_doe"}))

    tools.create_card("john_doe", type="User", content="Profile", visibility="public")

    assert json.loads(server.requests[-1].content) == {
        "name": "john_doe", "type": "User", "content": "Profile", "visibility": "public",
    }


def test_update_card_sends_only_changed_fields(tools, server):
    server.add("PATCH", "/cards/My Note", reply(200, json={"name": "My Note"}))

    tools.update_card("My Note", content="Updated")

    assert json.loads(server.requests[-1].content) == {"content": "Updated"}


def test_update_card_without_changes_is_rejected(tools, server):
    with pytest.raises(ConfigurationError, match="No update parameters"):
        tools.update_card("My Note")
    assert server.requests == []


def test_delete_card_with_force(tools, server):
    server.add("DELETE", "/cards/Parent Card", reply(200, json={"success": True}))

    tools.delete_card("Parent Card", force=True)

    assert server.requests[-1].url.params["force"] == "true"


def test_fetch_all_cards_walks_pages(tools, server):
    def pages(request):
        offset = int(request.url.params["offset"])
        if offset == 0:
            return httpx.Response(200, json={"cards": [{"name": "u1"}], "next_offset": 1})
        return httpx.Response(200, json={"cards": [{"name": "u2"}], "next_offset": None})

    server.add("GET", "/cards", pages)

    users = tools.fetch_all_cards(type="User", limit=1)

    assert [u["name"] for u in users] == ["u1", "u2"]


def test_each_card_page_with_callback(tools, server):
    server.add("GET", "/cards", reply(200, json={"cards": [{"name": "only"}], "next_offset": None}))
    seen = []

    tools.each_card_page(q="only", callback=seen.append)

    assert seen == [[{"name": "only"}]]


def test_types(tools, server):
    server.add("GET", "/types", reply(200, json={"types": [{"name": "Basic"}], "next_offset": None}))

    assert tools.list_types()["types"] == [{"name": "Basic"}]
    assert tools.fetch_all_types() == [{"name": "Basic"}]


def test_batch_operations_limits(tools, server):
    with pytest.raises(ConfigurationError, match="at least one"):
        tools.batch_operations([])
    with pytest.raises(ConfigurationError, match="at most 100"):
        tools.batch_operations([{"action": "create", "name": f"c{i}"} for i in range(101)])
    assert server.requests == []


def test_batch_operations_with_child_ops(tools, server):
    server.add("POST", "/cards/batch", reply(207, json={"results": [{"status": "ok"}, {"status": "ok"}]}))
    ops = [
        tools.build_child_op("Business Plan", "Overview", content="Summary"),
        tools.build_child_op("Business Plan", "Goals", content="Objectives"),
    ]

    result = tools.batch_operations(ops, mode="transactional")

    assert result.all_applied
    body = json.loads(server.requests[-1].content)
    assert [op["name"] for op in body["ops"]] == ["Business Plan+Overview", "Business Plan+Goals"]
    assert body["mode"] == "transactional"


@pytest.mark.parametrize("method, field", [
    ("get_referers", "referers"),
    ("get_nested_in", "nested_in"),
    ("get_nests", "nests"),
    ("get_links", "links"),
    ("get_linked_by", "linked_by"),
])
def test_relationship_lookups(tools, server, method, field):
    server.add("GET", f"/cards/Main Page/{field}", reply(200, json={field: [{"name": "Other"}]}))

    assert getattr(tools, method)("Main Page") == [{"name": "Other"}]


def test_relationship_lookup_defaults_to_empty_list(tools, server):
    server.add("GET", "/cards/Lonely/referers", reply(200, json={"card": "Lonely"}))

    assert tools.get_referers("Lonely") == []


def test_health_check_needs_no_token(tools, server):
    server.add("GET", "/health", reply(200, json={"status": "healthy", "checks": {"database": "ok"}}))
    server.add("GET", "/health/ping", reply(200, json={"status": "ok"}))

    assert tools.health_check()["status"] == "healthy"
    assert tools.ping() == {"status": "ok"}
    assert server.calls("POST", "/auth") == []
    assert "Authorization" not in server.requests[-1].headers


def test_health_check_failure_is_not_retried(tools, server, sleeps):
    server.add("GET", "/health", reply(503, json={"status": "unhealthy", "message": "Database down"}))

    with pytest.raises(ServerError, match="Database down"):
        tools.health_check()
    assert sleeps == []
    assert len(server.calls("GET", "/health")) == 1
