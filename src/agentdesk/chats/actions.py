"""Apply workspace changes requested by a chat agent."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from agentdesk.chats.repository import ChatRepository
from agentdesk.models import AgentCreate, AgentUpdate, ChatView, WorkspaceUpdate
from agentdesk.runner.schemas import (
    ChatAction,
    CreateAgentAction,
    DeleteAgentAction,
    RenameChatAction,
    ReorderAgentsAction,
    UpdateAgentAction,
    UpdateWorkspaceAction,
)
from agentdesk.storage.common import NotFoundError
from agentdesk.workspaces.repository import WorkspaceRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ActionFailure:
    action_type: str
    error: str


class ChatActionExecutor:
    """Execute chat actions one by one, collecting failures instead of stopping."""

    def __init__(self, *, workspaces: WorkspaceRepository, chats: ChatRepository) -> None:
        self.workspaces = workspaces
        self.chats = chats

    def execute(
        self,
        *,
        chat: ChatView,
        actions: Sequence[ChatAction],
        is_first_response: bool,
    ) -> list[ActionFailure]:
        failures: list[ActionFailure] = []
        for action in actions:
            try:
                self._execute_one(chat=chat, action=action, is_first_response=is_first_response)
            except (NotFoundError, ValueError) as error:
                failures.append(ActionFailure(action_type=action.type, error=str(error)))
            except IntegrityError as error:
                failures.append(ActionFailure(action_type=action.type, error=str(error.orig)))
        return failures

    def _execute_one(self, *, chat: ChatView, action: ChatAction, is_first_response: bool) -> None:
        if isinstance(action, CreateAgentAction):
            self.workspaces.create_agent(
                AgentCreate(
                    workspace_id=chat.workspace_id,
                    name=action.name,
                    instruction=action.instruction,
                    cli_type=action.cli_type,
                    order=action.order,
                ),
            )
        elif isinstance(action, UpdateAgentAction):
            self._require_workspace_agent(chat, action.agent_id)
            self.workspaces.update_agent(
                agent_id=action.agent_id,
                update=AgentUpdate(
                    name=action.name,
                    instruction=action.instruction,
                    cli_type=action.cli_type,
                ),
            )
        elif isinstance(action, DeleteAgentAction):
            self._require_workspace_agent(chat, action.agent_id)
            self.workspaces.delete_agent(agent_id=action.agent_id)
        elif isinstance(action, ReorderAgentsAction):
            self.workspaces.reorder_agents(
                workspace_id=chat.workspace_id,
                agent_ids=action.agent_ids,
            )
        elif isinstance(action, UpdateWorkspaceAction):
            self.workspaces.update_workspace(
                workspace_id=chat.workspace_id,
                update=WorkspaceUpdate(
                    title=action.title,
                    description=action.description,
                    working_directory_mode=action.working_directory_mode,
                    working_directory_path=action.working_directory_path,
                ),
            )
        elif isinstance(action, RenameChatAction):
            if not is_first_response:
                logger.debug("Ignoring rename_chat on chat %s after first response", chat.id)
                return
            self.chats.rename_chat(chat_id=chat.id, title=action.title)

    def _require_workspace_agent(self, chat: ChatView, agent_id: str) -> None:
        agent = self.workspaces.get_agent(agent_id=agent_id)
        if agent is None or agent.workspace_id != chat.workspace_id:
            raise NotFoundError(f"Agent not found: {agent_id}")


def format_failures(failures: Sequence[ActionFailure]) -> str:
    lines = ["Some actions failed:"]
    lines.extend(f"- {failure.action_type}: {failure.error}" for failure in failures)
    return "\n".join(lines)
