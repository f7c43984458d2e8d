"""Structured output contracts returned by agent CLIs."""

from __future__ import annotations

import json
import re
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from agentdesk.models import CliType, WorkingDirectoryMode
from agentdesk.runner.base import InvocationKind

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)


class _Action(BaseModel):
    model_config = ConfigDict(extra="forbid")


# -- task actions ---------------------------------------------------------------


class SkipAction(_Action):
    type: Literal["skip"]


class CommentAction(_Action):
    type: Literal["comment"]
    content: str = Field(min_length=1)


class ChangeStatusAction(_Action):
    type: Literal["change_status"]
    status: Literal["in_review"]


TaskAction = Annotated[
    SkipAction | CommentAction | ChangeStatusAction,
    Field(discriminator="type"),
]


class TaskOutput(BaseModel):
    """What an agent decided to do on a task."""

    model_config = ConfigDict(extra="forbid")

    actions: list[TaskAction] = Field(min_length=1)


# -- chat actions ---------------------------------------------------------------


class CreateAgentAction(_Action):
    type: Literal["create_agent"]
    name: str = Field(min_length=1)
    instruction: str = Field(min_length=1)
    cli_type: CliType
    order: int | None = None


class UpdateAgentAction(_Action):
    type: Literal["update_agent"]
    agent_id: str
    name: str | None = None
    instruction: str | None = None
    cli_type: CliType | None = None


class DeleteAgentAction(_Action):
    type: Literal["delete_agent"]
    agent_id: str


class ReorderAgentsAction(_Action):
    type: Literal["reorder_agents"]
    agent_ids: list[str] = Field(min_length=1)


class UpdateWorkspaceAction(_Action):
    type: Literal["update_workspace"]
    title: str | None = None
    description: str | None = None
    working_directory_mode: WorkingDirectoryMode | None = None
    working_directory_path: str | None = None


class RenameChatAction(_Action):
    type: Literal["rename_chat"]
    title: str = Field(min_length=1)


ChatAction = Annotated[
    CreateAgentAction
    | UpdateAgentAction
    | DeleteAgentAction
    | ReorderAgentsAction
    | UpdateWorkspaceAction
    | RenameChatAction,
    Field(discriminator="type"),
]


class ChatOutput(BaseModel):
    """Chat reply plus optional workspace changes."""

    model_config = ConfigDict(extra="forbid")

    message: str | None = None
    actions: list[ChatAction] | None = None


OUTPUT_MODELS: dict[InvocationKind, type[BaseModel]] = {
    InvocationKind.TASK: TaskOutput,
    InvocationKind.CHAT: ChatOutput,
}


def output_schema(kind: InvocationKind) -> dict[str, Any]:
    """JSON schema handed to CLIs that support schema-constrained output."""

    return OUTPUT_MODELS[kind].model_json_schema()


def output_schema_json(kind: InvocationKind) -> str:
    return json.dumps(output_schema(kind), separators=(",", ":"))


def unwrap_payload(payload: Any) -> Any:
    """Strip the result envelope some CLIs put around validated output.

    ``{"structured_output": {...}}`` wins; otherwise a ``result`` string holding
    JSON (bare or in a fenced block) is decoded. Anything else is returned as is.
    """

    if not isinstance(payload, dict):
        return payload
    structured = payload.get("structured_output")
    if isinstance(structured, dict):
        return structured
    result = payload.get("result")
    if isinstance(result, str) and payload.get("type") == "result":
        decoded = _load_json_object(result.strip())
        if decoded is not None:
            return decoded
    return payload


def _load_json_object(text: str) -> dict[str, Any] | None:
    for candidate in (text, *(match.group(1) for match in _FENCED_JSON.finditer(text))):
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None
