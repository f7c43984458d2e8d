"""Shared test fixtures."""

from __future__ import annotations

import sys
import textwrap
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

import agentdesk
from agentdesk.chats.repository import ChatRepository
from agentdesk.models import (
    AgentCreate,
    AgentView,
    CliType,
    WorkingDirectoryMode,
    WorkspaceCreate,
    WorkspaceView,
)
from agentdesk.storage.database import Database
from agentdesk.tasks.repository import TaskRepository
from agentdesk.tasks.service import TaskService
from agentdesk.workspaces.repository import WorkspaceRepository

FakeCliFactory = Callable[[str], Path]

_PACKAGE_ROOT = Path(agentdesk.__file__).resolve().parents[1]


@pytest.fixture()
def database(tmp_path: Path) -> Iterator[Database]:
    db = Database(tmp_path / "agentdesk.db")
    db.init_schema()
    yield db
    db.close()


@pytest.fixture()
def workspaces(database: Database) -> WorkspaceRepository:
    return WorkspaceRepository(database)


@pytest.fixture()
def tasks(database: Database) -> TaskRepository:
    return TaskRepository(database)


@pytest.fixture()
def chats(database: Database) -> ChatRepository:
    return ChatRepository(database)


@pytest.fixture()
def task_service(tasks: TaskRepository, workspaces: WorkspaceRepository) -> TaskService:
    return TaskService(tasks=tasks, workspaces=workspaces)


@pytest.fixture()
def workspace(workspaces: WorkspaceRepository, tmp_path: Path) -> WorkspaceView:
    workdir = tmp_path / "project"
    workdir.mkdir()
    return workspaces.create_workspace(
        WorkspaceCreate(
            title="Demo",
            description="Keep changes small.",
            working_directory_mode=WorkingDirectoryMode.STATIC,
            working_directory_path=str(workdir),
        ),
    )


@pytest.fixture()
def add_agent(workspaces: WorkspaceRepository) -> Callable[..., AgentView]:
    def _add(workspace_id: str, name: str, cli_type: CliType = CliType.CLAUDE) -> AgentView:
        return workspaces.create_agent(
            AgentCreate(
                workspace_id=workspace_id,
                name=name,
                instruction=f"You are the {name}.",
                cli_type=cli_type,
            ),
        )

    return _add


@pytest.fixture()
def fake_cli(tmp_path: Path) -> FakeCliFactory:
    """Write an executable Python script standing in for an agent CLI."""

    counter = {"value": 0}

    def _write(body: str) -> Path:
        counter["value"] += 1
        path = tmp_path / "bin" / f"fake_cli_{counter['value']}"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            f"#!{sys.executable}\nimport json, sys, time\n" + textwrap.dedent(body),
            "utf-8",
        )
        path.chmod(0o755)
        return path

    return _write


@pytest.fixture()
def echo_cli(tmp_path: Path) -> Path:
    """Executable wrapper around the packaged deterministic echo agent."""

    path = tmp_path / "bin" / "echo_cli"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        f"#!{sys.executable}\n"
        "import sys\n"
        f"sys.path.insert(0, {str(_PACKAGE_ROOT)!r})\n"
        "from agentdesk.runner.echo_agent import main\n"
        "sys.exit(main())\n",
        "utf-8",
    )
    path.chmod(0o755)
    return path
