"""
Action registry shared by the CLI and the MCP server.

Each action pairs a dotted name with a pydantic input model and an async
handler taking (client, validated_args). The model validates arguments
before the handler runs and provides the JSON schema advertised to tools.
"""

import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Literal, Optional, Type

from pydantic import BaseModel, Field, ValidationError

from basecamp_client import BasecampClient
from basecamp_errors import ActionValidationError, UnknownActionError
from basecamp_resources import CardTables, Comments, Messages, People, Projects, Steps, Todos
from enriched_cards import download_attachment, format_enriched_card_as_text, get_enriched_card

SAFE_NAME_PREFIX = "sdk_"
_UNSAFE_CHARS_RE = re.compile(r'[^A-Za-z0-9_-]')

ImageQuality = Literal["full", "preview", "thumbnail"]
RecordingStatus = Literal["archived", "trashed"]


@dataclass(frozen=True)
class ActionDef:
    name: str
    description: str
    input_model: Type[BaseModel]
    handler: Callable[[BasecampClient, Any], Awaitable[Any]]

    @property
    def input_schema(self) -> Dict[str, Any]:
        return self.input_model.model_json_schema()

    def validate(self, args: Optional[Dict[str, Any]]) -> BaseModel:
        """Narrow an untyped argument map to the action's input model."""
        return validate_args(self.name, self.input_model, args)


def validate_args(name: str, model: Type[BaseModel], args: Optional[Dict[str, Any]]) -> BaseModel:
    try:
        return model.model_validate(args or {})
    except ValidationError as e:
        errors = [
            (".".join(str(part) for part in err["loc"]) or "arguments", err["msg"])
            for err in e.errors()
        ]
        raise ActionValidationError(name, errors) from e


# Input models

class NoArgs(BaseModel):
    pass


class ProjectArgs(BaseModel):
    projectId: int = Field(description="Project (bucket) ID")


class ProjectListArgs(BaseModel):
    status: Optional[RecordingStatus] = Field(None, description="archived or trashed; omit for active")
    page: Optional[int] = None


class ProjectCreateArgs(BaseModel):
    name: str
    description: Optional[str] = None


class ProjectUpdateArgs(ProjectArgs):
    name: Optional[str] = None
    description: Optional[str] = None


class TodoListArgs(ProjectArgs):
    todolistId: int
    status: Optional[RecordingStatus] = None
    completed: Optional[bool] = None
    page: Optional[int] = None


class TodoArgs(ProjectArgs):
    todoId: int


class TodoFields(BaseModel):
    description: Optional[str] = Field(None, description="HTML description")
    due_on: Optional[str] = Field(None, description="YYYY-MM-DD")
    starts_on: Optional[str] = Field(None, description="YYYY-MM-DD")
    assignee_ids: Optional[List[int]] = None
    completion_subscriber_ids: Optional[List[int]] = None
    notify: Optional[bool] = None


class TodoCreateArgs(TodoFields, ProjectArgs):
    todolistId: int
    content: str


class TodoUpdateArgs(TodoFields, TodoArgs):
    content: Optional[str] = None


class TodoRepositionArgs(TodoArgs):
    position: int = Field(ge=1)


class CardTableArgs(ProjectArgs):
    tableId: int


class ColumnArgs(ProjectArgs):
    columnId: int


class ColumnUrlArgs(BaseModel):
    cardsUrl: str = Field(description="A column's cards_url as returned by the API")


class CardArgs(ProjectArgs):
    cardId: int


class EnrichedCardArgs(CardArgs):
    format: Literal["json", "text"] = Field("json", description="Output format")
    downloadImages: bool = Field(False, description="Embed image attachments as base64")
    imageQuality: ImageQuality = Field("preview", description="full, preview or thumbnail")


class CardCreateArgs(ColumnArgs):
    title: str
    content: Optional[str] = None
    due_on: Optional[str] = None
    notify: Optional[bool] = None


class StepInput(BaseModel):
    title: str
    due_on: Optional[str] = None
    assignees: Optional[str] = Field(None, description="Comma-separated person IDs")


class TaskCreateArgs(ColumnArgs):
    title: str
    content: str
    due_on: Optional[str] = None
    assignee_ids: Optional[List[int]] = None
    notify: Optional[bool] = None
    steps: Optional[List[StepInput]] = None


class CardUpdateArgs(CardArgs):
    title: Optional[str] = None
    content: Optional[str] = None
    due_on: Optional[str] = None
    assignee_ids: Optional[List[int]] = None


class CardMoveArgs(CardArgs):
    columnId: int


class StepCreateArgs(CardArgs):
    title: str
    due_on: Optional[str] = None
    assignees: Optional[str] = Field(None, description="Comma-separated person IDs")


class StepArgs(ProjectArgs):
    stepId: int


class StepUpdateArgs(StepArgs):
    title: Optional[str] = None
    due_on: Optional[str] = None
    assignees: Optional[str] = None


class StepCompleteArgs(StepArgs):
    completion: Literal["on", "off"]


class StepRepositionArgs(CardArgs):
    sourceId: int = Field(description="ID of the step to move")
    position: int = Field(ge=0)


class PersonArgs(BaseModel):
    personId: int


class MessageListArgs(ProjectArgs):
    boardId: int
    page: Optional[int] = None


class MessageArgs(ProjectArgs):
    messageId: int


class MessageCreateArgs(ProjectArgs):
    boardId: int
    subject: str
    content: str


class RecordingArgs(ProjectArgs):
    recordingId: int = Field(description="Card, todo, message or other recording ID")


class CommentListArgs(RecordingArgs):
    all: bool = Field(False, description="Follow pagination and return every comment")


class CommentArgs(ProjectArgs):
    commentId: int


class CommentCreateArgs(RecordingArgs):
    content: str


class CommentUpdateArgs(CommentArgs):
    content: str


class AttachmentDownloadArgs(BaseModel):
    url: str = Field(description="Download URL, e.g. an enriched card image's downloadUrl")
    filename: Optional[str] = None
    mimeType: Optional[str] = Field(None, description="MIME type such as image/png")
    imageQuality: Optional[ImageQuality] = None


# Handlers that do more than forward one call

async def _get_enriched(client, a: EnrichedCardArgs):
    context = await get_enriched_card(client, a.projectId, a.cardId,
                                      download_images=a.downloadImages,
                                      image_quality=a.imageQuality)
    if a.format == "text":
        return format_enriched_card_as_text(context)
    return context


async def _create_task(client, a: TaskCreateArgs):
    steps = [step.model_dump(exclude_none=True) for step in a.steps or []]
    return await CardTables(client).create_card_with_steps(
        a.projectId, a.columnId, a.title, a.content, due_on=a.due_on,
        assignee_ids=a.assignee_ids, notify=a.notify, steps=steps,
    )


async def _list_comments(client, a: CommentListArgs):
    comments = Comments(client)
    if a.all:
        return await comments.list_all_for_recording(a.projectId, a.recordingId)
    return await comments.list_for_recording(a.projectId, a.recordingId)


def _todo_fields(a: TodoFields) -> Dict[str, Any]:
    return a.model_dump(include=set(TodoFields.model_fields))


ACTIONS: List[ActionDef] = [
    # Projects
    ActionDef("projects.list", "List projects (optional status=archived|trashed, page)", ProjectListArgs,
              lambda c, a: Projects(c).list(status=a.status, page=a.page)),
    ActionDef("projects.get", "Get a project by ID, including its dock of tools", ProjectArgs,
              lambda c, a: Projects(c).get(a.projectId)),
    ActionDef("projects.create", "Create a project", ProjectCreateArgs,
              lambda c, a: Projects(c).create(a.name, description=a.description)),
    ActionDef("projects.update", "Update a project's name or description", ProjectUpdateArgs,
              lambda c, a: Projects(c).update(a.projectId, name=a.name, description=a.description)),
    ActionDef("projects.trash", "Move a project to the trash", ProjectArgs,
              lambda c, a: Projects(c).trash(a.projectId)),

    # Todos
    ActionDef("todos.list", "List todos in a todo list (optional status, completed, page)", TodoListArgs,
              lambda c, a: Todos(c).list(a.projectId, a.todolistId, status=a.status,
                                         completed=a.completed, page=a.page)),
    ActionDef("todos.get", "Get a todo by ID", TodoArgs,
              lambda c, a: Todos(c).get(a.projectId, a.todoId)),
    ActionDef("todos.create", "Create a todo in a todo list", TodoCreateArgs,
              lambda c, a: Todos(c).create(a.projectId, a.todolistId, a.content, **_todo_fields(a))),
    ActionDef("todos.update", "Update a todo", TodoUpdateArgs,
              lambda c, a: Todos(c).update(a.projectId, a.todoId, content=a.content, **_todo_fields(a))),
    ActionDef("todos.complete", "Mark a todo as completed", TodoArgs,
              lambda c, a: Todos(c).complete(a.projectId, a.todoId)),
    ActionDef("todos.uncomplete", "Mark a todo as not completed", TodoArgs,
              lambda c, a: Todos(c).uncomplete(a.projectId, a.todoId)),
    ActionDef("todos.reposition", "Move a todo to a new position in its list (1-based)", TodoRepositionArgs,
              lambda c, a: Todos(c).reposition(a.projectId, a.todoId, a.position)),
    ActionDef("todos.trash", "Move a todo to the trash", TodoArgs,
              lambda c, a: Todos(c).trash(a.projectId, a.todoId)),
    ActionDef("todos.archive", "Archive a todo", TodoArgs,
              lambda c, a: Todos(c).archive(a.projectId, a.todoId)),
    ActionDef("todos.unarchive", "Restore an archived todo", TodoArgs,
              lambda c, a: Todos(c).unarchive(a.projectId, a.todoId)),

    # Card tables
    ActionDef("card_tables.get", "Get a card table (kanban board) by ID with all columns and cards", CardTableArgs,
              lambda c, a: CardTables(c).get(a.projectId, a.tableId)),
    ActionDef("card_tables.get_column", "Get a card table column by ID", ColumnArgs,
              lambda c, a: CardTables(c).get_column(a.projectId, a.columnId)),
    ActionDef("card_tables.list_cards", "List every card in a column", ColumnArgs,
              lambda c, a: CardTables(c).list_cards(a.projectId, a.columnId)),
    ActionDef("card_tables.list_cards_by_url", "List every card behind a column's cards_url", ColumnUrlArgs,
              lambda c, a: CardTables(c).list_cards_by_column_url(a.cardsUrl)),
    ActionDef("card_tables.get_card", "Get a card by ID with basic info", CardArgs,
              lambda c, a: CardTables(c).get_card(a.projectId, a.cardId)),
    ActionDef("card_tables.get_enriched",
              "Get an enriched card with comments, creator info, and visual attachments. "
              "Best for understanding full context of a task.", EnrichedCardArgs, _get_enriched),
    ActionDef("card_tables.create_card", "Create a card in a column", CardCreateArgs,
              lambda c, a: CardTables(c).create_card(a.projectId, a.columnId, a.title, content=a.content,
                                                     due_on=a.due_on, notify=a.notify)),
    ActionDef("card_tables.create_task",
              "Create a complete task (card with description and steps) in one operation. "
              "Recommended way to create tasks.", TaskCreateArgs, _create_task),
    ActionDef("card_tables.update_card", "Update a card (title, content, due_on, assignees)", CardUpdateArgs,
              lambda c, a: CardTables(c).update_card(a.projectId, a.cardId, title=a.title, content=a.content,
                                                     due_on=a.due_on, assignee_ids=a.assignee_ids)),
    ActionDef("card_tables.move_card", 'Move a card to another column (e.g., from "To Do" to "Done")', CardMoveArgs,
              lambda c, a: CardTables(c).move_card(a.projectId, a.cardId, a.columnId)),
    ActionDef("card_tables.archive_card", "Archive a card", CardArgs,
              lambda c, a: CardTables(c).archive_card(a.projectId, a.cardId)),
    ActionDef("card_tables.unarchive_card", "Restore an archived card", CardArgs,
              lambda c, a: CardTables(c).unarchive_card(a.projectId, a.cardId)),
    ActionDef("card_tables.trash_card", "Move a card to the trash", CardArgs,
              lambda c, a: CardTables(c).trash_card(a.projectId, a.cardId)),

    # Steps
    ActionDef("steps.list", "List the steps of a card", CardArgs,
              lambda c, a: Steps(c).list_for_card(a.projectId, a.cardId)),
    ActionDef("steps.create", "Add a step to a card", StepCreateArgs,
              lambda c, a: Steps(c).create(a.projectId, a.cardId, a.title, due_on=a.due_on, assignees=a.assignees)),
    ActionDef("steps.update", "Update a step", StepUpdateArgs,
              lambda c, a: Steps(c).update(a.projectId, a.stepId, title=a.title, due_on=a.due_on,
                                           assignees=a.assignees)),
    ActionDef("steps.complete", "Mark a step as completed or uncompleted", StepCompleteArgs,
              lambda c, a: Steps(c).complete(a.projectId, a.stepId, a.completion)),
    ActionDef("steps.reposition", "Move a step to a new position within its card (0-based)", StepRepositionArgs,
              lambda c, a: Steps(c).reposition(a.projectId, a.cardId, a.sourceId, a.position)),

    # People
    ActionDef("people.list", "List all people in the Basecamp account (for assigning tasks)", NoArgs,
              lambda c, a: People(c).list()),
    ActionDef("people.get", "Get a person by ID", PersonArgs,
              lambda c, a: People(c).get(a.personId)),

    # Messages
    ActionDef("messages.list", "List messages on a message board", MessageListArgs,
              lambda c, a: Messages(c).list(a.projectId, a.boardId, page=a.page)),
    ActionDef("messages.get", "Get a message by ID", MessageArgs,
              lambda c, a: Messages(c).get(a.projectId, a.messageId)),
    ActionDef("messages.create", "Post a message to a message board", MessageCreateArgs,
              lambda c, a: Messages(c).create(a.projectId, a.boardId, a.subject, a.content)),

    # Comments
    ActionDef("comments.list", "List comments on a recording (first page, or all with all=true)", CommentListArgs,
              _list_comments),
    ActionDef("comments.get", "Get a comment by ID", CommentArgs,
              lambda c, a: Comments(c).get(a.projectId, a.commentId)),
    ActionDef("comments.create", "Add a comment to a card or other recording", CommentCreateArgs,
              lambda c, a: Comments(c).create(a.projectId, a.recordingId, a.content)),
    ActionDef("comments.update", "Edit a comment", CommentUpdateArgs,
              lambda c, a: Comments(c).update(a.projectId, a.commentId, a.content)),

    # Attachments
    ActionDef("attachments.download",
              "Download an attachment/image from Basecamp. Returns base64 data and saves to "
              ".basecamp/images/. Use downloadUrl from enriched card images.", AttachmentDownloadArgs,
              lambda c, a: download_attachment(c, a.url, filename=a.filename, mime_type=a.mimeType)),
]

CURATED_ACTION_NAMES = (
    "projects.list",
    "card_tables.get",
    "card_tables.get_card",
    "card_tables.get_enriched",
    "card_tables.create_task",
    "card_tables.update_card",
    "card_tables.move_card",
    "people.list",
    "comments.create",
    "steps.complete",
)

_BY_NAME = {action.name: action for action in ACTIONS}


def get_actions(curated: bool = False) -> List[ActionDef]:
    """Registry actions in registry order, optionally limited to the curated view."""
    if not curated:
        return list(ACTIONS)
    return [action for action in ACTIONS if action.name in CURATED_ACTION_NAMES]


def get_action(name: str) -> ActionDef:
    try:
        return _BY_NAME[name]
    except KeyError:
        raise UnknownActionError(name) from None


def list_actions(curated: bool = False) -> List[Dict[str, Any]]:
    return [
        {"name": action.name, "description": action.description, "inputSchema": action.input_schema}
        for action in get_actions(curated)
    ]


async def invoke(client: BasecampClient, name: str, args: Optional[Dict[str, Any]] = None) -> Any:
    """Look up an action, validate its arguments and run it."""
    action = get_action(name)
    return await action.handler(client, action.validate(args))


class SafeNames:
    """Bidirectional map between protocol-safe tool names and action names."""

    def __init__(self, to_original: Dict[str, str]):
        self.to_original = to_original
        self.to_safe = {original: safe for safe, original in to_original.items()}

    def original(self, safe_name: str) -> Optional[str]:
        return self.to_original.get(safe_name)

    def safe(self, name: str) -> str:
        return self.to_safe[name]

    def __len__(self):
        return len(self.to_original)


def build_safe_names(names: Iterable[str], prefix: str = SAFE_NAME_PREFIX) -> SafeNames:
    """
    Project action names onto [A-Za-z0-9_-] identifiers.

    Names that collide after substitution get `_2`, `_3`, ... suffixes in
    input order, so the result is deterministic for a given name list.
    """
    to_original: Dict[str, str] = {}
    for name in names:
        base = prefix + _UNSAFE_CHARS_RE.sub("_", name)
        candidate = base
        suffix = 2
        while candidate in to_original:
            candidate = f"{base}_{suffix}"
            suffix += 1
        to_original[candidate] = name
    return SafeNames(to_original)
