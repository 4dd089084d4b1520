#!/usr/bin/env python3
"""
Command-line interface for Basecamp.

Usage:
    basecamp-to-llm auth [--open]
    basecamp-to-llm fetch <project-name> [-t TABLE] [-c COLUMN] [-o OUT] [--open]
    basecamp-to-llm projects
    basecamp-to-llm actions [--curated]
    basecamp-to-llm call <action> [--args JSON] [--format json|text]
    basecamp-to-llm mcp
"""

import argparse
import json
import os
import sys

import anyio
import httpx

import action_registry
from auth_manager import OAuthFlow
from basecamp_client import BasecampClient
from basecamp_config import configure_logging, load_config
from basecamp_errors import BasecampError, NotFoundError
from basecamp_resources import CardTables

KANBAN_DOCK_NAME = "kanban_board"


def _json_object(value):
    try:
        parsed = json.loads(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise argparse.ArgumentTypeError("must be a JSON object")
    return parsed


def _print_result(result):
    if isinstance(result, str):
        print(result)
    else:
        print(json.dumps(result, indent=2, ensure_ascii=False))


async def cmd_auth(ns, config, transport=None):
    await OAuthFlow(config, interactive=True, transport=transport).authenticate(ns.open)
    print("✓ Authentication successful!")


async def cmd_projects(ns, config, transport=None):
    client = BasecampClient(config, transport=transport)
    active = await client.list_projects()
    archived = await client.list_archived_projects()
    print("Available projects:")
    for project in active:
        print(f"  {project['id']}: {project['name']}")
    for project in archived:
        print(f"  {project['id']}: {project['name']} (archived)")


async def find_project(client, name):
    """Case-insensitive name match over active projects, then archived ones."""
    wanted = name.lower()
    for list_projects in (client.list_projects, client.list_archived_projects):
        for project in await list_projects():
            if (project.get("name") or "").lower() == wanted:
                return project
    return None


async def collect_plan(client, project, table_name=None, column_name=None):
    """
    Gather open card titles from a project's kanban board.

    Args:
        client: BasecampClient
        project: project payload including its `dock`
        table_name: board title; defaults to the first enabled board
        column_name: only cards in the column with this title

    Returns:
        list: [{"step": <card title>, "status": "pending"}, ...]

    Raises:
        NotFoundError: if a named board or column does not exist
    """
    boards = [tool for tool in project.get("dock") or []
              if tool.get("name") == KANBAN_DOCK_NAME and tool.get("enabled")]
    if table_name:
        board = next((b for b in boards if (b.get("title") or "").lower() == table_name.lower()), None)
        if board is None:
            raise NotFoundError(f"Kanban board not found: {table_name}")
    else:
        board = boards[0] if boards else None
    if board is None:
        return []

    tables = CardTables(client)
    table = await tables.get(project["id"], board["id"])
    columns = table.get("lists") or []
    if column_name:
        columns = [c for c in columns if (c.get("title") or "").lower() == column_name.lower()]
        if not columns:
            raise NotFoundError(f"Column not found: {column_name}")

    plan = []
    for column in columns:
        for card in await tables.list_cards_by_column_url(column["cards_url"]):
            if card.get("archived") or card.get("status") == "archived":
                continue
            title = (card.get("title") or card.get("name") or "").strip()
            if title:
                plan.append({"step": title, "status": "pending"})
    return plan


async def cmd_fetch(ns, config, transport=None):
    client = BasecampClient(config, transport=transport)
    await client.auth.get_access_token(ns.open)

    print(f"Looking up project: {ns.project}")
    project = await find_project(client, ns.project)
    if project is None:
        raise NotFoundError(f"Project not found: {ns.project}")
    print(f"Found project #{project['id']} ({project['name']})")

    plan = await collect_plan(client, project, ns.table, ns.column)
    print(f"Collected {len(plan)} open item(s)")

    codex_dir = anyio.Path(os.getcwd()) / ".codex"
    await codex_dir.mkdir(parents=True, exist_ok=True)
    json_path = anyio.Path(os.path.abspath(ns.out)) if ns.out else codex_dir / "tasks.json"
    md_path = codex_dir / "tasks.md"

    await json_path.parent.mkdir(parents=True, exist_ok=True)
    await json_path.write_text(json.dumps({"plan": plan}, indent=2), encoding="utf-8")
    markdown = [f"# Codex Tasks from Basecamp: {project['name']}", ""]
    markdown += [f"- [ ] {item['step']}" for item in plan]
    await md_path.write_text("\n".join(markdown + [""]), encoding="utf-8")

    print(f"Wrote {len(plan)} task(s) to:")
    print(f"- {json_path}")
    print(f"- {md_path}")


async def cmd_actions(ns, config, transport=None):
    curated = ns.curated or config.action_set == "curated"
    actions = action_registry.get_actions(curated)
    width = max(len(action.name) for action in actions)
    for action in actions:
        print(f"{action.name.ljust(width)}  {action.description}")


async def cmd_call(ns, config, transport=None):
    """Invoke one registry action. With --format text, actions that accept a
    `format` argument are asked for their text rendering."""
    action = action_registry.get_action(ns.action)
    args = dict(ns.args or {})
    if ns.format == "text" and "format" in action.input_model.model_fields:
        args.setdefault("format", "text")
    client = BasecampClient(config, transport=transport)
    _print_result(await action_registry.invoke(client, action.name, args))


async def cmd_mcp(ns, config, transport=None):
    from basecamp_mcp import BasecampMCPServer
    await BasecampMCPServer(config, transport=transport).run()


def build_parser():
    parser = argparse.ArgumentParser(
        prog="basecamp-to-llm",
        description="Basecamp SDK, action runner and MCP server for LLM agents",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("auth", help="Authenticate with Basecamp")
    p.add_argument("--open", action="store_true", help="Open browser for OAuth authorization")
    p.set_defaults(func=cmd_auth)

    p = sub.add_parser("fetch", help="Write a project's open kanban cards as a task plan")
    p.add_argument("project", help="Project name (case-insensitive)")
    p.add_argument("-t", "--table", help="Kanban board title (default: first board)")
    p.add_argument("-c", "--column", help="Only cards in this column")
    p.add_argument("-o", "--out", help="Output JSON path (default: .codex/tasks.json)")
    p.add_argument("--open", action="store_true", help="Open browser for OAuth authorization")
    p.set_defaults(func=cmd_fetch)

    p = sub.add_parser("projects", help="List active and archived projects")
    p.set_defaults(func=cmd_projects)

    p = sub.add_parser("actions", help="List registry actions")
    p.add_argument("--curated", action="store_true", help="Only the curated subset")
    p.set_defaults(func=cmd_actions)

    p = sub.add_parser("call", help="Invoke a registry action")
    p.add_argument("action", help="Action name, e.g. card_tables.get_enriched")
    p.add_argument("--args", type=_json_object, default=None, help="Arguments as a JSON object")
    p.add_argument("--format", choices=["json", "text"], default="json")
    p.set_defaults(func=cmd_call)

    p = sub.add_parser("mcp", help="Start the MCP stdio server")
    p.set_defaults(func=cmd_mcp)

    return parser


def main(argv=None):
    ns = build_parser().parse_args(argv)
    configure_logging("basecamp_mcp" if ns.command == "mcp" else "basecamp_cli")
    try:
        config = load_config()
        anyio.run(ns.func, ns, config)
    except (BasecampError, httpx.HTTPError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
