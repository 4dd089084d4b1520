"""Tests for the basecamp-to-llm command line."""

import argparse
import json

import httpx
import pytest

import action_registry
import basecamp_cli
from basecamp_errors import NotFoundError
from conftest import recording_transport


def test_parser_routes_subcommands():
    parser = basecamp_cli.build_parser()

    ns = parser.parse_args(["call", "projects.get", "--args", '{"projectId": 1}', "--format", "text"])
    assert ns.func is basecamp_cli.cmd_call
    assert (ns.action, ns.args, ns.format) == ("projects.get", {"projectId": 1}, "text")

    assert parser.parse_args(["auth", "--open"]).open is True
    assert parser.parse_args(["actions"]).curated is False

    ns = parser.parse_args(["fetch", "Website", "-t", "Launch", "-c", "Todo", "-o", "plan.json", "--open"])
    assert ns.func is basecamp_cli.cmd_fetch
    assert (ns.project, ns.table, ns.column, ns.out, ns.open) == ("Website", "Launch", "Todo", "plan.json", True)


def test_parser_requires_subcommand():
    with pytest.raises(SystemExit):
        basecamp_cli.build_parser().parse_args([])


@pytest.mark.parametrize("value", ["{broken", "[1, 2]", '"text"'])
def test_json_object_rejects_non_objects(value):
    with pytest.raises(argparse.ArgumentTypeError):
        basecamp_cli._json_object(value)


@pytest.mark.anyio
async def test_projects_lists_active_then_archived(api_config, capsys):
    def handler(request):
        if request.url.path.endswith("/projects/archived.json"):
            return httpx.Response(200, json=[{"id": 3, "name": "Old site"}])
        return httpx.Response(200, json=[{"id": 1, "name": "Website"}, {"id": 2, "name": "App"}])

    transport, _ = recording_transport(handler)
    ns = basecamp_cli.build_parser().parse_args(["projects"])

    await basecamp_cli.cmd_projects(ns, api_config, transport)

    assert capsys.readouterr().out == (
        "Available projects:\n"
        "  1: Website\n"
        "  2: App\n"
        "  3: Old site (archived)\n"
    )


@pytest.mark.anyio
async def test_call_prints_json(api_config, capsys):
    transport, requests = recording_transport(lambda r: httpx.Response(200, json={"id": 5, "name": "Ana"}))
    ns = basecamp_cli.build_parser().parse_args(["call", "people.get", "--args", '{"personId": 5}'])

    await basecamp_cli.cmd_call(ns, api_config, transport)

    assert json.loads(capsys.readouterr().out) == {"id": 5, "name": "Ana"}
    assert requests[0].url.path == "/999/people/5.json"


@pytest.mark.anyio
async def test_call_text_format_renders_enriched_card(api_config, capsys):
    card = {"id": 2, "title": "Card", "status": "active", "creator": {"name": "Ana"},
            "bucket": {"id": 1, "name": "Web"}, "parent": {"id": 3, "title": "Doing"}}

    def handler(request):
        if request.url.path.endswith("/comments.json"):
            return httpx.Response(200, json=[])
        return httpx.Response(200, json=card)

    transport, _ = recording_transport(handler)
    ns = basecamp_cli.build_parser().parse_args([
        "call", "card_tables.get_enriched", "--args", '{"projectId": 1, "cardId": 2}', "--format", "text",
    ])

    await basecamp_cli.cmd_call(ns, api_config, transport)

    assert capsys.readouterr().out.startswith("# Card: Card\n\n**Project:** Web\n")


@pytest.fixture
def patched_main(monkeypatch, api_config):
    monkeypatch.setattr(basecamp_cli, "configure_logging", lambda name: None)
    monkeypatch.setattr(basecamp_cli, "load_config", lambda: api_config)


def test_main_lists_curated_actions(patched_main, capsys):
    basecamp_cli.main(["actions", "--curated"])

    lines = capsys.readouterr().out.splitlines()
    assert [line.split()[0] for line in lines] == [a.name for a in action_registry.get_actions(True)]


def test_main_reports_errors_and_exits_nonzero(patched_main, capsys):
    with pytest.raises(SystemExit) as excinfo:
        basecamp_cli.main(["call", "nope.nothing"])

    assert excinfo.value.code == 1
    assert capsys.readouterr().err == "Error: Unknown action: nope.nothing\n"


def test_main_reports_invalid_arguments(patched_main, capsys):
    with pytest.raises(SystemExit) as excinfo:
        basecamp_cli.main(["call", "projects.get", "--args", "{}"])

    assert excinfo.value.code == 1
    assert capsys.readouterr().err.startswith("Error: Invalid arguments for projects.get: projectId")


# --- fetch ---

CARDS_URL = "https://3.basecampapi.com/999/buckets/2/card_tables/lists/{}/cards.json"

FETCH_ROUTES = {
    "/999/projects.json": [{"id": 1, "name": "Other", "dock": []}],
    "/999/projects/archived.json": [{
        "id": 2,
        "name": "Website",
        "dock": [
            {"name": "message_board", "enabled": True, "id": 40, "title": "Messages"},
            {"name": "kanban_board", "enabled": False, "id": 49, "title": "Retired"},
            {"name": "kanban_board", "enabled": True, "id": 50, "title": "Launch"},
        ],
    }],
    "/999/buckets/2/card_tables/50.json": {"lists": [
        {"title": "Todo", "cards_url": CARDS_URL.format(60)},
        {"title": "Done", "cards_url": CARDS_URL.format(61)},
    ]},
    "/999/buckets/2/card_tables/lists/60/cards.json": [
        {"id": 1, "title": " Write copy "},
        {"id": 2, "title": "Old idea", "status": "archived"},
        {"id": 3, "title": "Stale", "archived": True},
        {"id": 4, "title": "", "name": "Fix header"},
    ],
    "/999/buckets/2/card_tables/lists/61/cards.json": [{"id": 5, "title": "Ship v1"}],
}


def fetch_handler(request):
    return httpx.Response(200, json=FETCH_ROUTES[request.url.path])


def fetch_args(*argv):
    return basecamp_cli.build_parser().parse_args(["fetch", *argv])


@pytest.mark.anyio
async def test_fetch_writes_plan_from_archived_project(api_config, tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    transport, _ = recording_transport(fetch_handler)

    await basecamp_cli.cmd_fetch(fetch_args("WEBSITE"), api_config, transport)

    with open(tmp_path / ".codex" / "tasks.json", encoding="utf-8") as f:
        assert json.load(f) == {"plan": [
            {"step": "Write copy", "status": "pending"},
            {"step": "Fix header", "status": "pending"},
            {"step": "Ship v1", "status": "pending"},
        ]}
    assert (tmp_path / ".codex" / "tasks.md").read_text(encoding="utf-8") == (
        "# Codex Tasks from Basecamp: Website\n"
        "\n"
        "- [ ] Write copy\n"
        "- [ ] Fix header\n"
        "- [ ] Ship v1\n"
    )
    out = capsys.readouterr().out
    assert "Found project #2 (Website)" in out
    assert "Collected 3 open item(s)" in out


@pytest.mark.anyio
async def test_fetch_filters_column_and_honours_out(api_config, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    transport, requests = recording_transport(fetch_handler)
    out = tmp_path / "plans" / "website.json"

    await basecamp_cli.cmd_fetch(fetch_args("Website", "-t", "launch", "-c", "DONE", "-o", str(out)),
                                 api_config, transport)

    with open(out, encoding="utf-8") as f:
        assert json.load(f) == {"plan": [{"step": "Ship v1", "status": "pending"}]}
    assert not (tmp_path / ".codex" / "tasks.json").exists()
    assert (tmp_path / ".codex" / "tasks.md").exists()
    assert "/999/buckets/2/card_tables/lists/60/cards.json" not in [r.url.path for r in requests]


@pytest.mark.anyio
async def test_fetch_project_without_board_writes_empty_plan(api_config, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    transport, _ = recording_transport(fetch_handler)

    await basecamp_cli.cmd_fetch(fetch_args("other"), api_config, transport)

    with open(tmp_path / ".codex" / "tasks.json", encoding="utf-8") as f:
        assert json.load(f) == {"plan": []}


@pytest.mark.anyio
@pytest.mark.parametrize("argv, message", [
    (["Nowhere"], "Project not found: Nowhere"),
    (["Website", "-t", "Retired"], "Kanban board not found: Retired"),
    (["Website", "-c", "Blocked"], "Column not found: Blocked"),
])
async def test_fetch_reports_missing_names(api_config, tmp_path, monkeypatch, argv, message):
    monkeypatch.chdir(tmp_path)
    transport, _ = recording_transport(fetch_handler)

    with pytest.raises(NotFoundError, match=message):
        await basecamp_cli.cmd_fetch(fetch_args(*argv), api_config, transport)
    assert not (tmp_path / ".codex").exists()
