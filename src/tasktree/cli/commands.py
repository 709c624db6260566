# src/tasktree/cli/commands.py

from __future__ import annotations

import logging
from collections.abc import Callable

from ..core.results import BatchResult, Error, NoChange, NotFound, Success, TaskResult
from ..core.state import AppState
from ..parsing.dates import resolve_date
from ..parsing.metadata import display_description
from ..tasks import task_api
from ..tasks.task_models import Priority, TaskStatus

CommandHandler = Callable[[AppState, list[str], str], str]

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry (/add, /parent, /undo, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(self, state: AppState, line: str) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        head, _, rest = line[1:].partition(" ")
        if not head:
            return "Empty command. Use /help to list available commands."

        name = head.lower()
        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        state.refresh_if_stale()
        return handler(state, rest.split(), rest.strip())

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- presentation ----


def format_result(result: TaskResult | BatchResult) -> str:
    if isinstance(result, BatchResult):
        lines = [format_result(r) for r in result.results]
        lines.append(f"{result.success_count} succeeded, {result.failure_count} failed")
        return "\n".join(lines)
    if isinstance(result, Success):
        lines = [result.message]
        lines.extend(f"  warning: {w}" for w in result.warnings)
        return "\n".join(lines)
    if isinstance(result, NotFound):
        return f"Task not found: {result.task_id}"
    if isinstance(result, NoChange):
        return f"Nothing to do: {result.message}"
    if isinstance(result, Error):
        return f"Error: {result.message}"
    return str(result)


def _text_arg(raw: str) -> str:
    # The console is line based; a literal "\n" starts a new description line.
    return raw.replace("\\n", "\n")


_STATUS_WORDS = {
    "pending": TaskStatus.PENDING,
    "todo": TaskStatus.PENDING,
    "wip": TaskStatus.IN_PROGRESS,
    "in_progress": TaskStatus.IN_PROGRESS,
    "progress": TaskStatus.IN_PROGRESS,
    "done": TaskStatus.DONE,
}

_PRIORITY_WORDS = {
    "p1": Priority.HIGH,
    "high": Priority.HIGH,
    "p2": Priority.MEDIUM,
    "medium": Priority.MEDIUM,
    "p3": Priority.LOW,
    "low": Priority.LOW,
}


# ---- handlers ----


def cmd_help(state: AppState, args: list[str], raw: str) -> str:
    return registry.build_help()


def cmd_add(state: AppState, args: list[str], raw: str) -> str:
    """
    /add <text>              -> add to the default list
    /add -l <list> <text>    -> add to a specific list
    """
    list_name = None
    text = raw
    if len(args) >= 2 and args[0] in ("-l", "--list"):
        list_name = args[1]
        text = raw.split(None, 2)[2] if len(args) > 2 else ""
    if not text.strip():
        return "Usage: /add [-l LIST] <description>"
    return format_result(task_api.add_task(state, _text_arg(text), list_name=list_name))


def cmd_rename(state: AppState, args: list[str], raw: str) -> str:
    if len(args) < 2:
        return "Usage: /rename <id> <new description>"
    text = raw.split(None, 1)[1]
    return format_result(task_api.rename_task(state, args[0], _text_arg(text)))


def cmd_parent(state: AppState, args: list[str], raw: str) -> str:
    if len(args) != 2:
        return "Usage: /parent <id> <parent-id>"
    return format_result(task_api.set_parent(state, args[0], args[1]))


def cmd_unparent(state: AppState, args: list[str], raw: str) -> str:
    if len(args) != 1:
        return "Usage: /unparent <id>"
    return format_result(task_api.unset_parent(state, args[0]))


def cmd_block(state: AppState, args: list[str], raw: str) -> str:
    if len(args) != 2:
        return "Usage: /block <blocker-id> <blocked-id>"
    return format_result(task_api.add_blocker(state, args[0], args[1]))


def cmd_unblock(state: AppState, args: list[str], raw: str) -> str:
    if len(args) != 2:
        return "Usage: /unblock <blocker-id> <blocked-id>"
    return format_result(task_api.remove_blocker(state, args[0], args[1]))


def cmd_relate(state: AppState, args: list[str], raw: str) -> str:
    if len(args) != 2:
        return "Usage: /relate <id> <id>"
    return format_result(task_api.add_related(state, args[0], args[1]))


def cmd_unrelate(state: AppState, args: list[str], raw: str) -> str:
    if len(args) != 2:
        return "Usage: /unrelate <id> <id>"
    return format_result(task_api.remove_related(state, args[0], args[1]))


def cmd_status(state: AppState, args: list[str], raw: str) -> str:
    """
    /status done abc          -> one task (Done cascades to subtasks)
    /status wip abc def ghi   -> several tasks as one undo step
    """
    if len(args) < 2:
        return "Usage: /status <pending|wip|done> <id> [id ...]"
    status = _STATUS_WORDS.get(args[0].lower())
    if status is None:
        return f"Unknown status: {args[0]}. Use pending, wip or done."
    ids = args[1:]
    if len(ids) == 1:
        return format_result(task_api.set_status(state, ids[0], status))
    return format_result(task_api.set_statuses(state, ids, status))


def cmd_move(state: AppState, args: list[str], raw: str) -> str:
    if len(args) != 2:
        return "Usage: /move <id> <list>"
    return format_result(task_api.move_task(state, args[0], args[1]))


def cmd_delete(state: AppState, args: list[str], raw: str) -> str:
    if not args:
        return "Usage: /delete <id> [id ...]"
    if len(args) == 1:
        return format_result(task_api.delete_task(state, args[0]))
    return format_result(task_api.delete_tasks(state, args))


def cmd_restore(state: AppState, args: list[str], raw: str) -> str:
    if len(args) != 1:
        return "Usage: /restore <id>"
    return format_result(task_api.restore_task(state, args[0]))


def cmd_purge(state: AppState, args: list[str], raw: str) -> str:
    """
    /purge        -> empty the whole trash
    /purge <id>   -> permanently delete one trashed task
    """
    if not args:
        return format_result(task_api.clear_trash(state))
    return format_result(task_api.hard_delete(state, args[0]))


def cmd_due(state: AppState, args: list[str], raw: str) -> str:
    if len(args) != 2:
        return "Usage: /due <id> <date|clear>"
    if args[1].lower() in ("clear", "none", "-"):
        return format_result(task_api.set_due_date(state, args[0], None))
    due = resolve_date(args[1])
    if due is None:
        return f"Could not understand date: {args[1]}"
    return format_result(task_api.set_due_date(state, args[0], due))


def cmd_priority(state: AppState, args: list[str], raw: str) -> str:
    if len(args) != 2:
        return "Usage: /priority <id> <p1|p2|p3|clear>"
    if args[1].lower() in ("clear", "none", "-"):
        return format_result(task_api.set_priority(state, args[0], None))
    prio = _PRIORITY_WORDS.get(args[1].lower())
    if prio is None:
        return f"Unknown priority: {args[1]}"
    return format_result(task_api.set_priority(state, args[0], prio))


def cmd_show(state: AppState, args: list[str], raw: str) -> str:
    if len(args) != 1:
        return "Usage: /show <id>"
    task = task_api.get_task(state, args[0], include_trashed=True)
    if task is None:
        return format_result(NotFound(args[0]))

    rel = state.graph.relations(task.id)
    lines = [
        f"({task.id}) {display_description(task.description)}",
        f"  list: {task.list_name}  status: {task.status.value}"
        + ("  [trashed]" if task.is_trashed else ""),
    ]
    if task.priority:
        lines.append(f"  priority: {task.priority.value}")
    if task.due_date:
        lines.append(f"  due: {task.due_date.isoformat()}")
    if task.tags:
        lines.append(f"  tags: {', '.join(task.tags)}")
    if rel.parent_id:
        lines.append(f"  parent: {rel.parent_id}")
    for label, ids in (
        ("subtasks", rel.subtask_ids),
        ("blocks", rel.blocks_ids),
        ("blocked by", rel.blocked_by_ids),
        ("related", rel.related_ids),
    ):
        if ids:
            lines.append(f"  {label}: {', '.join(ids)}")
    return "\n".join(lines)


def cmd_list(state: AppState, args: list[str], raw: str) -> str:
    """
    /list            -> every active task
    /list <name>     -> one list
    /list trash      -> trashed tasks
    """
    trashed = bool(args) and args[0].lower() == "trash"
    list_name = None if trashed or not args else args[0]
    tasks = task_api.list_tasks(state, list_name, trashed=trashed)
    if not tasks:
        return "No tasks."
    lines = []
    for t in tasks:
        first = display_description(t.description).split("\n", 1)[0]
        mark = "x" if t.status == TaskStatus.DONE else ("~" if t.status == TaskStatus.IN_PROGRESS else " ")
        indent = "  " if t.parent_id else ""
        lines.append(f"{indent}[{mark}] ({t.id}) {first}  <{t.list_name}>")
    return "\n".join(lines)


def cmd_undo(state: AppState, args: list[str], raw: str) -> str:
    return format_result(task_api.undo(state))


def cmd_redo(state: AppState, args: list[str], raw: str) -> str:
    return format_result(task_api.redo(state))


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("add", cmd_add, help_text="Add a task: /add [-l LIST] <text> (\\n = new line).")
registry.register("rename", cmd_rename, help_text="Replace a description: /rename <id> <text>.")
registry.register("parent", cmd_parent, help_text="Make a subtask: /parent <id> <parent-id>.")
registry.register("unparent", cmd_unparent, help_text="Detach from parent: /unparent <id>.")
registry.register("block", cmd_block, help_text="Add blocker: /block <blocker> <blocked>.")
registry.register("unblock", cmd_unblock, help_text="Remove blocker: /unblock <blocker> <blocked>.")
registry.register("relate", cmd_relate, help_text="Link two tasks: /relate <id> <id>.")
registry.register("unrelate", cmd_unrelate, help_text="Unlink two tasks: /unrelate <id> <id>.")
registry.register("status", cmd_status, help_text="Set status: /status <pending|wip|done> <id...>.")
registry.register("move", cmd_move, help_text="Move a task tree: /move <id> <list>.")
registry.register("delete", cmd_delete, help_text="Trash tasks: /delete <id...>.", aliases=["rm"])
registry.register("restore", cmd_restore, help_text="Restore from trash: /restore <id>.")
registry.register("purge", cmd_purge, help_text="Delete forever: /purge [id] (no id = whole trash).")
registry.register("due", cmd_due, help_text="Set due date: /due <id> <date|clear>.")
registry.register("priority", cmd_priority, help_text="Set priority: /priority <id> <p1|p2|p3|clear>.")
registry.register("show", cmd_show, help_text="Show one task and its relationships: /show <id>.")
registry.register("list", cmd_list, help_text="List tasks: /list [list|trash].", aliases=["ls"])
registry.register("undo", cmd_undo, help_text="Undo the last change.")
registry.register("redo", cmd_redo, help_text="Redo the last undone change.")
