"""Persistent chat, message and chat queue repository."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from agentdesk.models import (
    TERMINAL_QUEUE_STATUSES,
    ChatMessageView,
    ChatQueueItemView,
    ChatRole,
    ChatView,
    CliType,
    QueueStatus,
)
from agentdesk.storage.common import NotFoundError, to_db_datetime, to_utc_aware, utc_now
from agentdesk.storage.database import Database
from agentdesk.storage.tables import Chat, ChatMessage, ChatQueueItem

DEFAULT_CHAT_TITLE = "Untitled chat"

_TERMINAL = [status.value for status in TERMINAL_QUEUE_STATUSES]


class ChatRepository:
    """Chat persistence facade backed by SQLModel + SQLite."""

    def __init__(self, database: Database) -> None:
        self.database = database
        self.engine = database.engine

    def create_chat(
        self,
        *,
        workspace_id: str,
        agent_id: str | None = None,
        cli_type: CliType | None = None,
        title: str = DEFAULT_CHAT_TITLE,
    ) -> ChatView:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = Chat(
                id=str(uuid4()),
                workspace_id=workspace_id,
                agent_id=agent_id,
                cli_type=cli_type.value if cli_type is not None else None,
                title=title,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_chat_view(row)

    def get_chat(self, *, chat_id: str) -> ChatView | None:
        with Session(self.engine) as session:
            row = session.get(Chat, chat_id)
            return _to_chat_view(row) if row is not None else None

    def require_chat(self, *, chat_id: str) -> ChatView:
        chat = self.get_chat(chat_id=chat_id)
        if chat is None:
            raise NotFoundError(f"Chat not found: {chat_id}")
        return chat

    def list_chats(self, *, workspace_id: str) -> list[ChatView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(Chat)
                .where(Chat.workspace_id == workspace_id)
                .order_by(col(Chat.updated_at).desc()),
            ).all()
            return [_to_chat_view(row) for row in rows]

    def rename_chat(self, *, chat_id: str, title: str) -> ChatView:
        with Session(self.engine) as session:
            row = session.get(Chat, chat_id)
            if row is None:
                raise NotFoundError(f"Chat not found: {chat_id}")
            row.title = title
            row.updated_at = to_db_datetime(utc_now())
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_chat_view(row)

    # -- messages --------------------------------------------------------------

    def add_message(
        self,
        *,
        chat_id: str,
        role: ChatRole,
        message: str,
        actions: list[dict[str, Any]] | None = None,
    ) -> ChatMessageView:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = ChatMessage(
                id=str(uuid4()),
                chat_id=chat_id,
                role=role.value,
                message=message,
                actions_json=json.dumps(actions, ensure_ascii=True) if actions else None,
                created_at=now,
            )
            session.add(row)
            chat = session.get(Chat, chat_id)
            if chat is not None:
                chat.updated_at = now
                session.add(chat)
            session.commit()
            session.refresh(row)
            return _to_message_view(row)

    def list_messages(self, *, chat_id: str) -> list[ChatMessageView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(ChatMessage)
                .where(ChatMessage.chat_id == chat_id)
                .order_by(col(ChatMessage.created_at).asc()),
            ).all()
            return [_to_message_view(row) for row in rows]

    def count_messages(self, *, chat_id: str, role: ChatRole) -> int:
        with Session(self.engine) as session:
            count = session.exec(
                select(func.count())
                .select_from(ChatMessage)
                .where(ChatMessage.chat_id == chat_id, ChatMessage.role == role.value),
            ).one()
            return int(count)

    # -- queue -----------------------------------------------------------------

    def ensure_queue_item(self, *, chat_id: str, workspace_id: str) -> ChatQueueItemView | None:
        """Create a queued item unless one is already waiting.

        An in-progress turn does not count: it may have read the conversation
        before the newest message arrived.
        """

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            waiting = session.exec(
                select(ChatQueueItem)
                .where(
                    ChatQueueItem.chat_id == chat_id,
                    ChatQueueItem.status == QueueStatus.QUEUED.value,
                )
                .limit(1),
            ).first()
            if waiting is not None:
                return None
            row = ChatQueueItem(
                id=str(uuid4()),
                chat_id=chat_id,
                workspace_id=workspace_id,
                status=QueueStatus.QUEUED.value,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_queue_view(row)

    def get_queue_item(self, *, item_id: str) -> ChatQueueItemView | None:
        with Session(self.engine) as session:
            row = session.get(ChatQueueItem, item_id)
            return _to_queue_view(row) if row is not None else None

    def list_queued_items(self) -> list[ChatQueueItemView]:
        """Queued items, oldest first."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(ChatQueueItem)
                .where(ChatQueueItem.status == QueueStatus.QUEUED.value)
                .order_by(col(ChatQueueItem.updated_at).asc()),
            ).all()
            return [_to_queue_view(row) for row in rows]

    def claim_queue_item(self, *, item_id: str) -> ChatQueueItemView | None:
        """Atomically move a queued item to in_progress; None when another worker won."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(ChatQueueItem)
                .where(
                    col(ChatQueueItem.id) == item_id,
                    col(ChatQueueItem.status) == QueueStatus.QUEUED.value,
                )
                .values(
                    status=QueueStatus.IN_PROGRESS.value,
                    updated_at=to_db_datetime(utc_now()),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            claimed = session.exec(
                select(ChatQueueItem).where(ChatQueueItem.id == item_id),
            ).one()
            session.commit()
            return _to_queue_view(claimed)

    def update_queue_status(self, *, item_id: str, status: QueueStatus) -> None:
        with Session(self.engine) as session:
            session.exec(
                sa_update(ChatQueueItem)
                .where(col(ChatQueueItem.id) == item_id)
                .values(status=status.value, updated_at=to_db_datetime(utc_now())),
            )
            session.commit()

    def reset_in_progress_queue_items(self) -> int:
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(ChatQueueItem)
                .where(col(ChatQueueItem.status) == QueueStatus.IN_PROGRESS.value)
                .values(status=QueueStatus.QUEUED.value, updated_at=to_db_datetime(utc_now())),
            )
            session.commit()
            return int(result.rowcount or 0)

    def delete_finished_queue_items_before(self, *, cutoff: datetime) -> int:
        with Session(self.engine) as session:
            result = session.exec(
                sa_delete(ChatQueueItem).where(
                    col(ChatQueueItem.status).in_(_TERMINAL),
                    col(ChatQueueItem.updated_at) < to_db_datetime(cutoff),
                ),
            )
            session.commit()
            return int(result.rowcount or 0)


def _to_chat_view(row: Chat) -> ChatView:
    return ChatView(
        id=row.id,
        workspace_id=row.workspace_id,
        agent_id=row.agent_id,
        cli_type=CliType(row.cli_type) if row.cli_type else None,
        title=row.title,
        created_at=to_utc_aware(row.created_at),
        updated_at=to_utc_aware(row.updated_at),
    )


def _to_message_view(row: ChatMessage) -> ChatMessageView:
    return ChatMessageView(
        id=row.id,
        chat_id=row.chat_id,
        role=ChatRole(row.role),
        message=row.message,
        actions=json.loads(row.actions_json) if row.actions_json else None,
        created_at=to_utc_aware(row.created_at),
    )


def _to_queue_view(row: ChatQueueItem) -> ChatQueueItemView:
    return ChatQueueItemView(
        id=row.id,
        chat_id=row.chat_id,
        workspace_id=row.workspace_id,
        status=QueueStatus(row.status),
        created_at=to_utc_aware(row.created_at),
        updated_at=to_utc_aware(row.updated_at),
    )
