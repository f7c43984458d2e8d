"""Render the Markdown scratch file an agent CLI reads as its input."""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any

from agentdesk.models import (
    ActorType,
    AgentView,
    ChatMessageView,
    TaskCommentView,
    TaskLogView,
    TaskView,
    WorkspaceView,
)
from agentdesk.runner.prompts import (
    CHAT_CONTEXT_HEADING,
    CHAT_OUTPUT_INSTRUCTIONS,
    NO_ACTIVITY,
    NO_COMMENTS,
    NO_DESCRIPTION,
    NO_MESSAGES,
    NO_OTHER_AGENTS,
    NO_WORKSPACE_INSTRUCTION,
    TASK_CONTEXT_HEADING,
    TASK_OUTPUT_INSTRUCTIONS,
)


def build_task_input(  # noqa: PLR0913
    *,
    workspace: WorkspaceView,
    agent: AgentView,
    other_agent_names: Sequence[str],
    task: TaskView,
    comments: Sequence[TaskCommentView],
    logs: Sequence[TaskLogView],
    agent_names: Mapping[str, str],
) -> str:
    """Task context for one agent; ``agent_names`` maps agent ids to display names."""

    other_agents = NO_OTHER_AGENTS
    if other_agent_names:
        other_agents = "\n".join(f"- {name}" for name in other_agent_names)
    sections = [
        TASK_CONTEXT_HEADING,
        "## Workspace Instruction",
        workspace.description.strip() or NO_WORKSPACE_INSTRUCTION,
        "## Your Role",
        f"You are **{agent.name}**.\n\n{agent.instruction.strip()}",
        "## Other Agents",
        other_agents,
        "## Task",
        f"### Summary\n\n{task.summary}",
        f"### Description\n\n{task.description.strip() or NO_DESCRIPTION}",
        "## Comments",
        _jsonl_block([_comment_record(comment, agent_names) for comment in comments], NO_COMMENTS),
        "## Activity Log",
        _jsonl_block([_log_record(entry) for entry in logs], NO_ACTIVITY),
        "## Output Instructions",
        TASK_OUTPUT_INSTRUCTIONS,
    ]
    return "\n\n".join(sections) + "\n"


def build_chat_input(
    *,
    workspace: WorkspaceView,
    agents: Sequence[AgentView],
    role_instruction: str,
    messages: Sequence[ChatMessageView],
) -> str:
    workspace_lines = [
        f"Title: {workspace.title}",
        f"Description: {workspace.description.strip() or NO_DESCRIPTION}",
        f"Working directory mode: {workspace.working_directory_mode.value}",
    ]
    if workspace.working_directory_path:
        workspace_lines.append(f"Working directory path: {workspace.working_directory_path}")
    agent_records = [
        {
            "id": agent.id,
            "name": agent.name,
            "cli_type": agent.cli_type.value,
            "order": agent.order,
            "instruction": agent.instruction,
        }
        for agent in agents
    ]
    sections = [
        CHAT_CONTEXT_HEADING,
        "## Workspace",
        "\n".join(workspace_lines),
        "## Agents",
        _jsonl_block(agent_records, NO_OTHER_AGENTS),
        "## Your Role",
        role_instruction.strip(),
        "## Conversation",
        _jsonl_block([_message_record(message) for message in messages], NO_MESSAGES),
        "## Output Instructions",
        CHAT_OUTPUT_INSTRUCTIONS,
    ]
    return "\n\n".join(sections) + "\n"


def _jsonl_block(records: Sequence[Mapping[str, Any]], empty_text: str) -> str:
    if not records:
        return empty_text
    lines = [json.dumps(record, ensure_ascii=False) for record in records]
    return "```jsonl\n" + "\n".join(lines) + "\n```"


def _comment_record(comment: TaskCommentView, agent_names: Mapping[str, str]) -> dict[str, Any]:
    author_type = comment.author_type
    record: dict[str, Any] = {}
    if author_type == ActorType.USER:
        record["author"] = "User"
    elif author_type == ActorType.AGENT:
        record["author"] = agent_names.get(comment.agent_id or "", "Unknown agent")
    else:
        record["author"] = "System"
    record["content"] = comment.content
    record["created_at"] = comment.created_at.isoformat()
    if comment.user_id is not None:
        record["user_id"] = comment.user_id
    if comment.agent_id is not None:
        record["agent_id"] = comment.agent_id
    return record


def _log_record(entry: TaskLogView) -> dict[str, Any]:
    record: dict[str, Any] = {
        "event_type": entry.event_type,
        "actor_type": entry.actor_type.value,
        "created_at": entry.created_at.isoformat(),
    }
    if entry.actor_id is not None:
        record["actor_id"] = entry.actor_id
    if entry.metadata:
        record["metadata"] = entry.metadata
    return record


def _message_record(message: ChatMessageView) -> dict[str, Any]:
    record: dict[str, Any] = {
        "role": message.role.value,
        "message": message.message,
        "created_at": message.created_at.isoformat(),
    }
    if message.actions:
        record["actions"] = message.actions
    return record
