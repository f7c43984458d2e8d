from __future__ import annotations

import json
from datetime import datetime, timezone

import allure

from agentdesk.models import (
    ActorType,
    AgentView,
    ChatMessageView,
    ChatRole,
    CliType,
    TaskCommentView,
    TaskLogView,
    TaskStatus,
    TaskView,
    WorkingDirectoryMode,
    WorkspaceView,
)
from agentdesk.runner.input_builder import build_chat_input, build_task_input
from agentdesk.runner.prompts import (
    NO_ACTIVITY,
    NO_COMMENTS,
    NO_DESCRIPTION,
    NO_OTHER_AGENTS,
    NO_WORKSPACE_INSTRUCTION,
)

pytestmark = [
    allure.epic("Agent Runtime"),
    allure.feature("Input Files"),
]

NOW = datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc)


def _workspace(description: str = "Ship small PRs.") -> WorkspaceView:
    return WorkspaceView(
        id="ws-1",
        title="Backend",
        description=description,
        working_directory_mode=WorkingDirectoryMode.STATIC,
        working_directory_path="/srv/backend",
        auto_delete_done_tasks=False,
        retention_days=7,
        created_at=NOW,
        updated_at=NOW,
    )


def _agent(agent_id: str, name: str, order: int = 0) -> AgentView:
    return AgentView(
        id=agent_id,
        workspace_id="ws-1",
        name=name,
        instruction=f"  You are the {name}.  ",
        cli_type=CliType.CLAUDE,
        order=order,
        created_at=NOW,
        updated_at=NOW,
    )


def _task(description: str = "") -> TaskView:
    return TaskView(
        id="task-1",
        workspace_id="ws-1",
        summary="Fix login",
        description=description,
        status=TaskStatus.TODO,
        created_at=NOW,
        updated_at=NOW,
    )


def _comment(content: str, *, user_id: str | None = None, agent_id: str | None = None):
    return TaskCommentView(
        id=f"c-{content}",
        task_id="task-1",
        workspace_id="ws-1",
        user_id=user_id,
        agent_id=agent_id,
        content=content,
        created_at=NOW,
        updated_at=NOW,
    )


def _section(text: str, heading: str) -> str:
    body = text.split(f"{heading}\n\n", 1)[1]
    return body.split("\n\n## ", 1)[0]


def _jsonl(section: str) -> list[dict]:
    lines = section.strip().splitlines()
    assert lines[0] == "```jsonl"
    assert lines[-1] == "```"
    return [json.loads(line) for line in lines[1:-1]]


def test_task_input_with_empty_history_uses_placeholders() -> None:
    text = build_task_input(
        workspace=_workspace(description="   "),
        agent=_agent("a-1", "coder"),
        other_agent_names=[],
        task=_task(),
        comments=[],
        logs=[],
        agent_names={},
    )

    assert text.startswith("# Task Context\n\n## Workspace Instruction\n\n")
    assert _section(text, "## Workspace Instruction") == NO_WORKSPACE_INSTRUCTION
    assert _section(text, "## Your Role") == "You are **coder**.\n\nYou are the coder."
    assert _section(text, "## Other Agents") == NO_OTHER_AGENTS
    assert f"### Description\n\n{NO_DESCRIPTION}" in text
    assert _section(text, "## Comments") == NO_COMMENTS
    assert _section(text, "## Activity Log") == NO_ACTIVITY
    assert "## Output Instructions" in text


def test_task_input_renders_comments_and_activity() -> None:
    logs = [
        TaskLogView(
            id="log-1",
            task_id="task-1",
            workspace_id="ws-1",
            event_type="status_changed",
            actor_type=ActorType.USER,
            actor_id="local_user",
            metadata={"old_status": "in_review", "new_status": "todo"},
            created_at=NOW,
        ),
    ]
    comments = [
        _comment("Please also cover logout", user_id="local_user"),
        _comment("Patched the handler", agent_id="a-2"),
        _comment("Processing failed: boom"),
        _comment("From a removed agent", agent_id="gone"),
    ]

    text = build_task_input(
        workspace=_workspace(),
        agent=_agent("a-1", "coder"),
        other_agent_names=["reviewer", "tester"],
        task=_task(description="Users get a 500."),
        comments=comments,
        logs=logs,
        agent_names={"a-2": "reviewer"},
    )

    assert _section(text, "## Other Agents") == "- reviewer\n- tester"
    assert "### Description\n\nUsers get a 500." in text
    records = _jsonl(_section(text, "## Comments"))
    authors = [record["author"] for record in records]
    assert authors == ["User", "reviewer", "System", "Unknown agent"]
    assert records[0]["user_id"] == "local_user"
    assert records[1]["agent_id"] == "a-2"
    assert "user_id" not in records[2] and "agent_id" not in records[2]
    assert records[0]["created_at"] == NOW.isoformat()
    (activity,) = _jsonl(_section(text, "## Activity Log"))
    assert activity == {
        "event_type": "status_changed",
        "actor_type": "user",
        "created_at": NOW.isoformat(),
        "actor_id": "local_user",
        "metadata": {"old_status": "in_review", "new_status": "todo"},
    }


def test_chat_input_lists_agents_and_conversation() -> None:
    messages = [
        ChatMessageView(
            id="m-1",
            chat_id="chat-1",
            role=ChatRole.USER,
            message="Add a tester",
            actions=None,
            created_at=NOW,
        ),
        ChatMessageView(
            id="m-2",
            chat_id="chat-1",
            role=ChatRole.AGENT,
            message="Done",
            actions=[{"type": "create_agent", "name": "tester"}],
            created_at=NOW,
        ),
    ]

    text = build_chat_input(
        workspace=_workspace(),
        agents=[_agent("a-1", "coder"), _agent("a-2", "tester", order=1)],
        role_instruction="You are the workspace assistant.",
        messages=messages,
    )

    assert text.startswith("# Chat Context\n\n## Workspace\n\nTitle: Backend\n")
    assert "Working directory mode: static" in text
    assert "Working directory path: /srv/backend" in text
    agents = _jsonl(_section(text, "## Agents"))
    assert [(agent["id"], agent["order"]) for agent in agents] == [("a-1", 0), ("a-2", 1)]
    conversation = _jsonl(_section(text, "## Conversation"))
    assert conversation[0] == {
        "role": "user",
        "message": "Add a tester",
        "created_at": NOW.isoformat(),
    }
    assert conversation[1]["actions"] == [{"type": "create_agent", "name": "tester"}]
