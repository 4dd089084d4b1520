"""
Thin resource wrappers over BasecampClient, one class per Basecamp noun.

Each method maps to exactly one endpoint, except
CardTables.create_card_with_steps which chains several.
"""

from typing import Any, Dict, List, Optional

from basecamp_client import BasecampClient


def _compact(**fields) -> Dict[str, Any]:
    """Drop fields left as None so they are not sent."""
    return {key: value for key, value in fields.items() if value is not None}


class _Resource:
    def __init__(self, client: BasecampClient):
        self.client = client


class Projects(_Resource):
    async def list(self, status=None, page=None):
        """List projects. status may be 'archived' or 'trashed'."""
        return await self.client.get("/projects.json", query={"status": status, "page": page})

    async def get(self, project_id):
        return await self.client.get(f"/projects/{project_id}.json")

    async def create(self, name, description=None):
        return await self.client.post("/projects.json", _compact(name=name, description=description))

    async def update(self, project_id, name=None, description=None):
        return await self.client.put(
            f"/projects/{project_id}.json", _compact(name=name, description=description)
        )

    async def trash(self, project_id):
        return await self.client.delete(f"/projects/{project_id}.json")


class Todos(_Resource):
    async def list(self, project_id, todolist_id, status=None, completed=None, page=None):
        return await self.client.get(
            f"/buckets/{project_id}/todolists/{todolist_id}/todos.json",
            query={"status": status, "completed": completed, "page": page},
        )

    async def get(self, project_id, todo_id):
        return await self.client.get(f"/buckets/{project_id}/todos/{todo_id}.json")

    async def create(self, project_id, todolist_id, content, description=None, due_on=None,
                     starts_on=None, assignee_ids=None, completion_subscriber_ids=None, notify=None):
        """
        Create a new todo item in a todo list.

        Args:
            project_id (int): Project ID
            todolist_id (int): Todo list ID
            content (str): The todo item's text (required)
            description (str, optional): HTML description of the todo
            due_on (str, optional): Due date in YYYY-MM-DD format
            starts_on (str, optional): Start date in YYYY-MM-DD format
            assignee_ids (list, optional): List of person IDs to assign
            completion_subscriber_ids (list, optional): Person IDs notified on completion
            notify (bool, optional): Whether to notify assignees

        Returns:
            dict: The created todo
        """
        data = _compact(
            content=content, description=description, due_on=due_on, starts_on=starts_on,
            assignee_ids=assignee_ids, completion_subscriber_ids=completion_subscriber_ids,
            notify=notify,
        )
        return await self.client.post(f"/buckets/{project_id}/todolists/{todolist_id}/todos.json", data)

    async def update(self, project_id, todo_id, content=None, description=None, due_on=None,
                     starts_on=None, assignee_ids=None, completion_subscriber_ids=None, notify=None):
        data = _compact(
            content=content, description=description, due_on=due_on, starts_on=starts_on,
            assignee_ids=assignee_ids, completion_subscriber_ids=completion_subscriber_ids,
            notify=notify,
        )
        return await self.client.put(f"/buckets/{project_id}/todos/{todo_id}.json", data)

    async def complete(self, project_id, todo_id):
        return await self.client.post(f"/buckets/{project_id}/todos/{todo_id}/completion.json", {})

    async def uncomplete(self, project_id, todo_id):
        return await self.client.delete(f"/buckets/{project_id}/todos/{todo_id}/completion.json")

    async def reposition(self, project_id, todo_id, position):
        return await self.client.put(
            f"/buckets/{project_id}/todos/{todo_id}/position.json", {"position": position}
        )

    async def trash(self, project_id, todo_id):
        return await self.client.put(f"/buckets/{project_id}/recordings/{todo_id}/status/trashed.json", {})

    async def archive(self, project_id, todo_id):
        return await self.client.put(f"/buckets/{project_id}/recordings/{todo_id}/status/archived.json", {})

    async def unarchive(self, project_id, todo_id):
        return await self.client.put(f"/buckets/{project_id}/recordings/{todo_id}/status/active.json", {})


class Steps(_Resource):
    async def list_for_card(self, project_id, card_id):
        """Steps come embedded in the card payload."""
        card = await self.client.get(f"/buckets/{project_id}/card_tables/cards/{card_id}.json")
        return card.get("steps") or []

    async def create(self, project_id, card_id, title, due_on=None, assignees=None):
        """
        Create a step on a card.

        Args:
            assignees (str, optional): comma-separated person IDs
        """
        return await self.client.post(
            f"/buckets/{project_id}/card_tables/cards/{card_id}/steps.json",
            _compact(title=title, due_on=due_on, assignees=assignees),
        )

    async def update(self, project_id, step_id, title=None, due_on=None, assignees=None):
        return await self.client.put(
            f"/buckets/{project_id}/card_tables/steps/{step_id}.json",
            _compact(title=title, due_on=due_on, assignees=assignees),
        )

    async def complete(self, project_id, step_id, completion="on"):
        """Mark a step completed ("on") or not completed ("off")."""
        return await self.client.put(
            f"/buckets/{project_id}/card_tables/steps/{step_id}/completions.json",
            {"completion": completion},
        )

    async def reposition(self, project_id, card_id, source_id, position):
        return await self.client.post(
            f"/buckets/{project_id}/card_tables/cards/{card_id}/positions.json",
            {"source_id": source_id, "position": position},
        )


class CardTables(_Resource):
    async def get(self, project_id, table_id):
        """Get a card table with its columns (lists)."""
        return await self.client.get(f"/buckets/{project_id}/card_tables/{table_id}.json")

    async def get_column(self, project_id, column_id):
        return await self.client.get(f"/buckets/{project_id}/card_tables/columns/{column_id}.json")

    async def list_cards(self, project_id, column_id):
        return await self.client.get_all_pages(
            f"/buckets/{project_id}/card_tables/lists/{column_id}/cards.json"
        )

    async def list_cards_by_column_url(self, cards_url):
        """Follow a column's `cards_url` as returned by the API."""
        return await self.client.get_all_pages(cards_url, absolute=True)

    async def get_card(self, project_id, card_id):
        return await self.client.get(f"/buckets/{project_id}/card_tables/cards/{card_id}.json")

    async def create_card(self, project_id, column_id, title, content=None, due_on=None, notify=None):
        return await self.client.post(
            f"/buckets/{project_id}/card_tables/lists/{column_id}/cards.json",
            _compact(title=title, content=content, due_on=due_on, notify=notify),
        )

    async def update_card(self, project_id, card_id, title=None, content=None, due_on=None,
                          assignee_ids=None):
        return await self.client.put(
            f"/buckets/{project_id}/card_tables/cards/{card_id}.json",
            _compact(title=title, content=content, due_on=due_on, assignee_ids=assignee_ids),
        )

    async def move_card(self, project_id, card_id, column_id):
        """Move a card to a new column."""
        return await self.client.post(
            f"/buckets/{project_id}/card_tables/cards/{card_id}/moves.json", {"column_id": column_id}
        )

    async def archive_card(self, project_id, card_id):
        return await self.client.put(f"/buckets/{project_id}/recordings/{card_id}/status/archived.json", {})

    async def unarchive_card(self, project_id, card_id):
        return await self.client.put(f"/buckets/{project_id}/recordings/{card_id}/status/active.json", {})

    async def trash_card(self, project_id, card_id):
        return await self.client.put(f"/buckets/{project_id}/recordings/{card_id}/status/trashed.json", {})

    async def create_card_with_steps(self, project_id, column_id, title, content, due_on=None,
                                     assignee_ids: Optional[List[int]] = None, notify=None,
                                     steps: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        """
        Create a card, assign it, then add its steps in order.

        Card creation does not accept assignees, so they are set with a
        follow-up update. Each step is a dict with `title` and optional
        `due_on` and `assignees` (comma-separated person IDs).

        Returns:
            dict: {"card": <card>, "steps": [<step>, ...]}
        """
        card = await self.create_card(project_id, column_id, title, content=content,
                                      due_on=due_on, notify=notify)
        if assignee_ids:
            updated = await self.client.put(
                f"/buckets/{project_id}/card_tables/cards/{card['id']}.json",
                {"assignee_ids": assignee_ids},
            )
            if isinstance(updated, dict):
                card = updated

        step_api = Steps(self.client)
        created = []
        for step in steps or []:
            created.append(await step_api.create(
                project_id, card["id"], step["title"],
                due_on=step.get("due_on"), assignees=step.get("assignees"),
            ))
        return {"card": card, "steps": created}


class People(_Resource):
    async def list(self):
        return await self.client.get("/people.json")

    async def get(self, person_id):
        return await self.client.get(f"/people/{person_id}.json")


class Messages(_Resource):
    async def list(self, project_id, board_id, page=None):
        return await self.client.get(
            f"/buckets/{project_id}/message_boards/{board_id}/messages.json", query={"page": page}
        )

    async def get(self, project_id, message_id):
        return await self.client.get(f"/buckets/{project_id}/messages/{message_id}.json")

    async def create(self, project_id, board_id, subject, content):
        return await self.client.post(
            f"/buckets/{project_id}/message_boards/{board_id}/messages.json",
            {"subject": subject, "content": content},
        )


class Comments(_Resource):
    async def list_for_recording(self, project_id, recording_id):
        """First page of comments only."""
        return await self.client.get(f"/buckets/{project_id}/recordings/{recording_id}/comments.json")

    async def list_all_for_recording(self, project_id, recording_id):
        return await self.client.get_all_pages(f"/buckets/{project_id}/recordings/{recording_id}/comments.json")

    async def get(self, project_id, comment_id):
        return await self.client.get(f"/buckets/{project_id}/comments/{comment_id}.json")

    async def create(self, project_id, recording_id, content):
        return await self.client.post(
            f"/buckets/{project_id}/recordings/{recording_id}/comments.json", {"content": content}
        )

    async def update(self, project_id, comment_id, content):
        return await self.client.put(f"/buckets/{project_id}/comments/{comment_id}.json", {"content": content})
