"""CLI entrypoint for agentdesk."""

from collections.abc import Callable
from pathlib import Path

import rich_click as click

from agentdesk import __version__
from agentdesk.controllers import (
    AgentAddCommand,
    AgentDeskCliController,
    AgentRefCommand,
    ChatCreateCommand,
    ChatRefCommand,
    ChatSendCommand,
    DatabaseCommand,
    ServeCommand,
    SetCliPathCommand,
    TaskCommentCommand,
    TaskCreateCommand,
    TaskListCommand,
    TaskRefCommand,
    TaskStatusCommand,
    WorkspaceCreateCommand,
    WorkspaceRefCommand,
    WorkspaceUpdateCommand,
)
from agentdesk.models import CliType, TaskStatus, WorkingDirectoryMode
from agentdesk.storage.common import NotFoundError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = AgentDeskCliController()

CLI_TYPE_CHOICE = click.Choice([cli_type.value for cli_type in CliType], case_sensitive=False)
TASK_STATUS_CHOICE = click.Choice([status.value for status in TaskStatus])
MODE_CHOICE = click.Choice([mode.value for mode in WorkingDirectoryMode])

db_path_option = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path. Defaults to AGENTDESK_DB_PATH or .agentdesk.db.",
)


@click.group()
@click.version_option(version=__version__, prog_name="agentdesk")
def agentdesk() -> None:
    """Local multi-agent task board that drives coding-agent CLIs."""


# -- runner -------------------------------------------------------------------


@agentdesk.command("serve")
@db_path_option
@click.option("--log-level", default=None, help="Logging level. Defaults to AGENTDESK_LOG_LEVEL.")
@click.option(
    "--once",
    is_flag=True,
    default=False,
    help="Process the task and chat queues once, without health probes, and exit.",
)
def serve(db_path: Path | None, log_level: str | None, once: bool) -> None:
    """Run queue processors, health checks and cleanup until interrupted.

    In-progress queue items left by a previous run are requeued first.
    """

    _emit_lines(
        lambda: CONTROLLER.serve(ServeCommand(db_path=db_path, log_level=log_level, once=once)),
    )


@agentdesk.command("recover")
@db_path_option
def recover(db_path: Path | None) -> None:
    """Requeue task and chat items stuck `in_progress` after a crash."""

    _emit_lines(lambda: CONTROLLER.recover(DatabaseCommand(db_path=db_path)))


@agentdesk.command("cleanup")
@db_path_option
def cleanup(db_path: Path | None) -> None:
    """Delete old finished queue items and expired done tasks."""

    _emit_lines(lambda: CONTROLLER.cleanup(DatabaseCommand(db_path=db_path)))


@agentdesk.command("health")
@db_path_option
def health(db_path: Path | None) -> None:
    """Probe every supported agent CLI."""

    _emit_lines(lambda: CONTROLLER.health(DatabaseCommand(db_path=db_path)))


# -- workspaces ---------------------------------------------------------------


@agentdesk.group()
def workspace() -> None:
    """Workspace commands."""


@workspace.command("create")
@db_path_option
@click.option("--title", required=True, help="Workspace title.")
@click.option("--description", default="", help="Workspace-level instruction for every agent.")
@click.option(
    "--mode",
    "working_directory_mode",
    type=MODE_CHOICE,
    default=WorkingDirectoryMode.TEMP.value,
    show_default=True,
    help="`static` uses --working-directory, `temp` creates one directory per task.",
)
@click.option("--working-directory", default=None, help="Directory agents run in (static mode).")
@click.option(
    "--auto-delete-done/--keep-done",
    default=False,
    show_default=True,
    help="Delete done tasks once they are older than --retention-days.",
)
@click.option(
    "--retention-days",
    type=click.IntRange(min=0),
    default=7,
    show_default=True,
    help="Age in days after which done tasks are deleted.",
)
def workspace_create(  # noqa: PLR0913
    db_path: Path | None,
    title: str,
    description: str,
    working_directory_mode: str,
    working_directory: str | None,
    auto_delete_done: bool,
    retention_days: int,
) -> None:
    """Create a workspace."""

    _emit_lines(
        lambda: CONTROLLER.workspace_create(
            WorkspaceCreateCommand(
                db_path=db_path,
                title=title,
                description=description,
                working_directory_mode=WorkingDirectoryMode(working_directory_mode),
                working_directory_path=working_directory,
                auto_delete_done_tasks=auto_delete_done,
                retention_days=retention_days,
            ),
        ),
    )


@workspace.command("list")
@db_path_option
def workspace_list(db_path: Path | None) -> None:
    """List workspaces."""

    _emit_lines(lambda: CONTROLLER.workspace_list(DatabaseCommand(db_path=db_path)))


@workspace.command("update")
@db_path_option
@click.argument("workspace_id")
@click.option("--title", default=None, help="New title.")
@click.option("--description", default=None, help="New workspace-level instruction.")
@click.option("--mode", "working_directory_mode", type=MODE_CHOICE, default=None, help="New mode.")
@click.option("--working-directory", default=None, help="New working directory path.")
def workspace_update(  # noqa: PLR0913
    db_path: Path | None,
    workspace_id: str,
    title: str | None,
    description: str | None,
    working_directory_mode: str | None,
    working_directory: str | None,
) -> None:
    """Update workspace fields; omitted options are left unchanged."""

    _emit_lines(
        lambda: CONTROLLER.workspace_update(
            WorkspaceUpdateCommand(
                db_path=db_path,
                workspace_id=workspace_id,
                title=title,
                description=description,
                working_directory_mode=(
                    WorkingDirectoryMode(working_directory_mode) if working_directory_mode else None
                ),
                working_directory_path=working_directory,
            ),
        ),
    )


# -- agents -------------------------------------------------------------------


@agentdesk.group()
def agent() -> None:
    """Agent commands."""


@agent.command("add")
@db_path_option
@click.argument("workspace_id")
@click.option("--name", required=True, help="Agent name, unique in the workspace.")
@click.option("--instruction", required=True, help="Role instruction for the agent.")
@click.option(
    "--cli",
    "cli_type",
    type=CLI_TYPE_CHOICE,
    default=CliType.CLAUDE.value,
    show_default=True,
    help="Agent CLI to run.",
)
@click.option(
    "--order",
    type=click.IntRange(min=0),
    default=None,
    help="Position in the pass; defaults to after the last agent.",
)
def agent_add(  # noqa: PLR0913
    db_path: Path | None,
    workspace_id: str,
    name: str,
    instruction: str,
    cli_type: str,
    order: int | None,
) -> None:
    """Add an agent to a workspace."""

    _emit_lines(
        lambda: CONTROLLER.agent_add(
            AgentAddCommand(
                db_path=db_path,
                workspace_id=workspace_id,
                name=name,
                instruction=instruction,
                cli_type=CliType(cli_type.lower()),
                order=order,
            ),
        ),
    )


@agent.command("list")
@db_path_option
@click.argument("workspace_id")
def agent_list(db_path: Path | None, workspace_id: str) -> None:
    """List a workspace's agents in pass order."""

    _emit_lines(
        lambda: CONTROLLER.agent_list(
            WorkspaceRefCommand(db_path=db_path, workspace_id=workspace_id),
        ),
    )


@agent.command("remove")
@db_path_option
@click.argument("agent_id")
def agent_remove(db_path: Path | None, agent_id: str) -> None:
    """Remove an agent."""

    _emit_lines(
        lambda: CONTROLLER.agent_remove(AgentRefCommand(db_path=db_path, agent_id=agent_id)),
    )


# -- tasks --------------------------------------------------------------------


@agentdesk.group()
def task() -> None:
    """Task commands."""


@task.command("create")
@db_path_option
@click.argument("workspace_id")
@click.option("--summary", required=True, help="One-line task summary.")
@click.option("--description", default="", help="Task details (markdown).")
def task_create(db_path: Path | None, workspace_id: str, summary: str, description: str) -> None:
    """Create a task and queue it for the workspace's agents."""

    _emit_lines(
        lambda: CONTROLLER.task_create(
            TaskCreateCommand(
                db_path=db_path,
                workspace_id=workspace_id,
                summary=summary,
                description=description,
            ),
        ),
    )


@task.command("list")
@db_path_option
@click.argument("workspace_id")
@click.option("--status", type=TASK_STATUS_CHOICE, default=None, help="Optional status filter.")
def task_list(db_path: Path | None, workspace_id: str, status: str | None) -> None:
    """List tasks of a workspace."""

    _emit_lines(
        lambda: CONTROLLER.task_list(
            TaskListCommand(
                db_path=db_path,
                workspace_id=workspace_id,
                status=TaskStatus(status) if status else None,
            ),
        ),
    )


@task.command("show")
@db_path_option
@click.argument("task_id")
def task_show(db_path: Path | None, task_id: str) -> None:
    """Show a task with its queue items, comments and activity."""

    _emit_lines(lambda: CONTROLLER.task_show(TaskRefCommand(db_path=db_path, task_id=task_id)))


@task.command("comment")
@db_path_option
@click.argument("task_id")
@click.argument("content")
def task_comment(db_path: Path | None, task_id: str, content: str) -> None:
    """Comment on a task; agents pick it up again unless the task is done."""

    _emit_lines(
        lambda: CONTROLLER.task_comment(
            TaskCommentCommand(db_path=db_path, task_id=task_id, content=content),
        ),
    )


@task.command("status")
@db_path_option
@click.argument("task_id")
@click.argument("status", type=TASK_STATUS_CHOICE)
def task_status(db_path: Path | None, task_id: str, status: str) -> None:
    """Move a task to another status."""

    _emit_lines(
        lambda: CONTROLLER.task_status(
            TaskStatusCommand(db_path=db_path, task_id=task_id, status=TaskStatus(status)),
        ),
    )


@task.command("cancel")
@db_path_option
@click.argument("task_id")
def task_cancel(db_path: Path | None, task_id: str) -> None:
    """Stop processing a task and move it to review."""

    _emit_lines(lambda: CONTROLLER.task_cancel(TaskRefCommand(db_path=db_path, task_id=task_id)))


@task.command("prioritize")
@db_path_option
@click.argument("task_id")
def task_prioritize(db_path: Path | None, task_id: str) -> None:
    """Process the task's queued item before non-priority work."""

    _emit_lines(
        lambda: CONTROLLER.task_prioritize(TaskRefCommand(db_path=db_path, task_id=task_id)),
    )


@task.command("deprioritize")
@db_path_option
@click.argument("task_id")
def task_deprioritize(db_path: Path | None, task_id: str) -> None:
    """Drop the priority flag from the task's queued item."""

    _emit_lines(
        lambda: CONTROLLER.task_deprioritize(TaskRefCommand(db_path=db_path, task_id=task_id)),
    )


# -- chats --------------------------------------------------------------------


@agentdesk.group()
def chat() -> None:
    """Chat commands."""


@chat.command("create")
@db_path_option
@click.argument("workspace_id")
@click.option("--agent-id", default=None, help="Chat with this agent instead of the assistant.")
@click.option("--cli", "cli_type", type=CLI_TYPE_CHOICE, default=None, help="Force a CLI type.")
@click.option("--title", default=None, help="Chat title.")
def chat_create(
    db_path: Path | None,
    workspace_id: str,
    agent_id: str | None,
    cli_type: str | None,
    title: str | None,
) -> None:
    """Open a chat in a workspace."""

    _emit_lines(
        lambda: CONTROLLER.chat_create(
            ChatCreateCommand(
                db_path=db_path,
                workspace_id=workspace_id,
                agent_id=agent_id,
                cli_type=CliType(cli_type.lower()) if cli_type else None,
                title=title,
            ),
        ),
    )


@chat.command("send")
@db_path_option
@click.argument("chat_id")
@click.argument("message")
def chat_send(db_path: Path | None, chat_id: str, message: str) -> None:
    """Send a message; the reply is produced by the runner."""

    _emit_lines(
        lambda: CONTROLLER.chat_send(
            ChatSendCommand(db_path=db_path, chat_id=chat_id, message=message),
        ),
    )


@chat.command("show")
@db_path_option
@click.argument("chat_id")
def chat_show(db_path: Path | None, chat_id: str) -> None:
    """Show a chat transcript."""

    _emit_lines(lambda: CONTROLLER.chat_show(ChatRefCommand(db_path=db_path, chat_id=chat_id)))


# -- config -------------------------------------------------------------------


@agentdesk.group()
def config() -> None:
    """CLI binary configuration."""


@config.command("set-cli-path")
@db_path_option
@click.argument("cli_type", type=CLI_TYPE_CHOICE)
@click.argument("binary_path", required=False)
def config_set_cli_path(db_path: Path | None, cli_type: str, binary_path: str | None) -> None:
    """Persist a binary path for a CLI type; omit the path to clear it."""

    _emit_lines(
        lambda: CONTROLLER.set_cli_path(
            SetCliPathCommand(
                db_path=db_path,
                cli_type=CliType(cli_type.lower()),
                binary_path=binary_path,
            ),
        ),
    )


@config.command("show")
@db_path_option
def config_show(db_path: Path | None) -> None:
    """Show effective settings and how each CLI binary resolves."""

    _emit_lines(lambda: CONTROLLER.config_show(DatabaseCommand(db_path=db_path)))


def _emit_lines(produce: Callable[[], list[str]]) -> None:
    try:
        lines = produce()
    except (NotFoundError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agentdesk()
