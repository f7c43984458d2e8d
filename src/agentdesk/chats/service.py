"""Chat operations that enqueue agent turns."""

from __future__ import annotations

from agentdesk.chats.repository import DEFAULT_CHAT_TITLE, ChatRepository
from agentdesk.models import ChatMessageView, ChatRole, ChatView, CliType
from agentdesk.storage.common import NotFoundError
from agentdesk.workspaces.repository import WorkspaceRepository


class ChatService:
    """User-facing chat writes."""

    def __init__(self, *, chats: ChatRepository, workspaces: WorkspaceRepository) -> None:
        self.chats = chats
        self.workspaces = workspaces

    def create_chat(
        self,
        *,
        workspace_id: str,
        agent_id: str | None = None,
        cli_type: CliType | None = None,
        title: str = DEFAULT_CHAT_TITLE,
    ) -> ChatView:
        self.workspaces.require_workspace(workspace_id=workspace_id)
        if agent_id is not None:
            agent = self.workspaces.get_agent(agent_id=agent_id)
            if agent is None or agent.workspace_id != workspace_id:
                raise NotFoundError(f"Agent not found: {agent_id}")
        return self.chats.create_chat(
            workspace_id=workspace_id,
            agent_id=agent_id,
            cli_type=cli_type,
            title=title,
        )

    def send_message(self, *, chat_id: str, message: str) -> ChatMessageView:
        """Store a user message and queue an agent turn for the chat."""

        chat = self.chats.require_chat(chat_id=chat_id)
        stored = self.chats.add_message(chat_id=chat.id, role=ChatRole.USER, message=message)
        self.chats.ensure_queue_item(chat_id=chat.id, workspace_id=chat.workspace_id)
        return stored
