"""Persistent task, comment, log and queue repository."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import delete as sa_delete
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from agentdesk.models import (
    ACTIONABLE_TASK_STATUSES,
    ACTIVE_QUEUE_STATUSES,
    TERMINAL_QUEUE_STATUSES,
    ActorType,
    QueueStatus,
    TaskCommentView,
    TaskCreate,
    TaskLogView,
    TaskQueueItemView,
    TaskStatus,
    TaskView,
)
from agentdesk.storage.common import NotFoundError, to_db_datetime, to_utc_aware, utc_now
from agentdesk.storage.database import Database
from agentdesk.storage.tables import Task, TaskComment, TaskLog, TaskQueueItem

_ACTIONABLE = [status.value for status in ACTIONABLE_TASK_STATUSES]
_ACTIVE = [status.value for status in ACTIVE_QUEUE_STATUSES]
_TERMINAL = [status.value for status in TERMINAL_QUEUE_STATUSES]


class TaskRepository:
    """Task persistence facade backed by SQLModel + SQLite."""

    def __init__(self, database: Database) -> None:
        self.database = database
        self.engine = database.engine

    # -- tasks -----------------------------------------------------------------

    def create_task(self, payload: TaskCreate) -> TaskView:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = Task(
                id=str(uuid4()),
                workspace_id=payload.workspace_id,
                summary=payload.summary,
                description=payload.description,
                status=TaskStatus.TODO.value,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_task_view(row)

    def get_task(self, *, task_id: str) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.get(Task, task_id)
            return _to_task_view(row) if row is not None else None

    def require_task(self, *, task_id: str) -> TaskView:
        task = self.get_task(task_id=task_id)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}")
        return task

    def list_tasks(self, *, workspace_id: str, status: TaskStatus | None = None) -> list[TaskView]:
        with Session(self.engine) as session:
            statement = select(Task).where(Task.workspace_id == workspace_id)
            if status is not None:
                statement = statement.where(Task.status == status.value)
            rows = session.exec(statement.order_by(col(Task.updated_at).desc())).all()
            return [_to_task_view(row) for row in rows]

    def update_task_status(self, *, task_id: str, status: TaskStatus) -> TaskView:
        with Session(self.engine) as session:
            row = session.get(Task, task_id)
            if row is None:
                raise NotFoundError(f"Task not found: {task_id}")
            row.status = status.value
            row.updated_at = to_db_datetime(utc_now())
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_task_view(row)

    def demote_other_in_progress_tasks(self, *, workspace_id: str, except_task_id: str) -> int:
        """Move every other in-progress task of the workspace back to todo."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Task)
                .where(
                    col(Task.workspace_id) == workspace_id,
                    col(Task.status) == TaskStatus.IN_PROGRESS.value,
                    col(Task.id) != except_task_id,
                )
                .values(status=TaskStatus.TODO.value, updated_at=to_db_datetime(utc_now())),
            )
            session.commit()
            return int(result.rowcount or 0)

    def delete_done_tasks_before(self, *, workspace_id: str, cutoff: datetime) -> int:
        with Session(self.engine) as session:
            result = session.exec(
                sa_delete(Task).where(
                    col(Task.workspace_id) == workspace_id,
                    col(Task.status) == TaskStatus.DONE.value,
                    col(Task.updated_at) < to_db_datetime(cutoff),
                ),
            )
            session.commit()
            return int(result.rowcount or 0)

    # -- comments and logs -----------------------------------------------------

    def create_comment(
        self,
        *,
        task_id: str,
        workspace_id: str,
        content: str,
        user_id: str | None = None,
        agent_id: str | None = None,
    ) -> TaskCommentView:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = TaskComment(
                id=str(uuid4()),
                task_id=task_id,
                workspace_id=workspace_id,
                user_id=user_id,
                agent_id=agent_id,
                content=content,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_comment_view(row)

    def list_comments(self, *, task_id: str) -> list[TaskCommentView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskComment)
                .where(TaskComment.task_id == task_id)
                .order_by(col(TaskComment.created_at).asc()),
            ).all()
            return [_to_comment_view(row) for row in rows]

    def add_log(  # noqa: PLR0913
        self,
        *,
        task_id: str,
        workspace_id: str,
        event_type: str,
        actor_type: ActorType,
        actor_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TaskLogView:
        with Session(self.engine) as session:
            row = TaskLog(
                id=str(uuid4()),
                task_id=task_id,
                workspace_id=workspace_id,
                event_type=event_type,
                actor_type=actor_type.value,
                actor_id=actor_id,
                metadata_json=(
                    json.dumps(metadata, ensure_ascii=True, sort_keys=True)
                    if metadata is not None
                    else None
                ),
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_log_view(row)

    def list_logs(self, *, task_id: str) -> list[TaskLogView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskLog)
                .where(TaskLog.task_id == task_id)
                .order_by(col(TaskLog.created_at).asc()),
            ).all()
            return [_to_log_view(row) for row in rows]

    # -- queue -----------------------------------------------------------------

    def create_queue_item(
        self,
        *,
        task_id: str,
        workspace_id: str,
        is_priority: bool = False,
    ) -> TaskQueueItemView:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = TaskQueueItem(
                id=str(uuid4()),
                task_id=task_id,
                workspace_id=workspace_id,
                status=QueueStatus.QUEUED.value,
                is_priority=is_priority,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_queue_view(row)

    def get_queue_item(self, *, item_id: str) -> TaskQueueItemView | None:
        with Session(self.engine) as session:
            row = session.get(TaskQueueItem, item_id)
            return _to_queue_view(row) if row is not None else None

    def list_queue_items(self, *, task_id: str) -> list[TaskQueueItemView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskQueueItem)
                .where(TaskQueueItem.task_id == task_id)
                .order_by(col(TaskQueueItem.created_at).asc()),
            ).all()
            return [_to_queue_view(row) for row in rows]

    def find_active_queue_item(self, *, task_id: str) -> TaskQueueItemView | None:
        """Queued or in-progress item of the task, if any."""

        with Session(self.engine) as session:
            row = session.exec(
                select(TaskQueueItem)
                .where(
                    TaskQueueItem.task_id == task_id,
                    col(TaskQueueItem.status).in_(_ACTIVE),
                )
                .order_by(col(TaskQueueItem.updated_at).desc())
                .limit(1),
            ).first()
            return _to_queue_view(row) if row is not None else None

    def ensure_queue_item(self, *, task_id: str, workspace_id: str) -> TaskQueueItemView | None:
        """Refresh the queued item or create one when the task has no active item.

        Returns the created item, or None when an active item already existed
        or was created concurrently; the partial unique index on ``task_queue``
        keeps a single active item per task.
        """

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            active = session.exec(
                select(TaskQueueItem)
                .where(
                    TaskQueueItem.task_id == task_id,
                    col(TaskQueueItem.status).in_(_ACTIVE),
                )
                .order_by(col(TaskQueueItem.updated_at).desc())
                .limit(1),
            ).first()
            if active is not None:
                if active.status == QueueStatus.QUEUED.value:
                    active.updated_at = now
                    session.add(active)
                    session.commit()
                return None
            row = TaskQueueItem(
                id=str(uuid4()),
                task_id=task_id,
                workspace_id=workspace_id,
                status=QueueStatus.QUEUED.value,
                is_priority=False,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError:
                # Another writer queued the task first.
                session.rollback()
                return None
            session.refresh(row)
            return _to_queue_view(row)

    def set_queue_priority(self, *, task_id: str, is_priority: bool) -> int:
        """Flag the queued item of the task; returns number of rows changed."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(TaskQueueItem)
                .where(
                    col(TaskQueueItem.task_id) == task_id,
                    col(TaskQueueItem.status) == QueueStatus.QUEUED.value,
                )
                .values(is_priority=is_priority, updated_at=to_db_datetime(utc_now())),
            )
            session.commit()
            return int(result.rowcount or 0)

    def update_queue_status(self, *, item_id: str, status: QueueStatus) -> None:
        with Session(self.engine) as session:
            session.exec(
                sa_update(TaskQueueItem)
                .where(col(TaskQueueItem.id) == item_id)
                .values(status=status.value, updated_at=to_db_datetime(utc_now())),
            )
            session.commit()

    def fail_active_queue_items(self, *, task_id: str) -> int:
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(TaskQueueItem)
                .where(
                    col(TaskQueueItem.task_id) == task_id,
                    col(TaskQueueItem.status).in_(_ACTIVE),
                )
                .values(status=QueueStatus.FAILED.value, updated_at=to_db_datetime(utc_now())),
            )
            session.commit()
            return int(result.rowcount or 0)

    def find_workspaces_with_queued_items(self) -> list[str]:
        """Workspaces having a queued item whose task is still actionable."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskQueueItem.workspace_id)
                .join(Task, col(Task.id) == col(TaskQueueItem.task_id))
                .where(
                    TaskQueueItem.status == QueueStatus.QUEUED.value,
                    col(Task.status).in_(_ACTIONABLE),
                )
                .distinct(),
            ).all()
            return sorted(str(workspace_id) for workspace_id in rows)

    def pick_next_queue_item(self, *, workspace_id: str) -> TaskQueueItemView | None:
        """Choose the next queued item: priority, then same task as last run, then newest."""

        with Session(self.engine) as session:
            candidates = (
                select(TaskQueueItem)
                .join(Task, col(Task.id) == col(TaskQueueItem.task_id))
                .where(
                    TaskQueueItem.workspace_id == workspace_id,
                    TaskQueueItem.status == QueueStatus.QUEUED.value,
                    col(Task.status).in_(_ACTIONABLE),
                )
            )
            newest_first = (
                col(TaskQueueItem.updated_at).desc(),
                col(TaskQueueItem.created_at).desc(),
            )

            priority = session.exec(
                candidates.where(col(TaskQueueItem.is_priority).is_(True))
                .order_by(*newest_first)
                .limit(1),
            ).first()
            if priority is not None:
                return _to_queue_view(priority)

            last_finished = session.exec(
                select(TaskQueueItem)
                .where(
                    TaskQueueItem.workspace_id == workspace_id,
                    col(TaskQueueItem.status).in_(_TERMINAL),
                )
                .order_by(*newest_first)
                .limit(1),
            ).first()
            if last_finished is not None:
                sticky = session.exec(
                    candidates.where(TaskQueueItem.task_id == last_finished.task_id)
                    .order_by(*newest_first)
                    .limit(1),
                ).first()
                if sticky is not None:
                    return _to_queue_view(sticky)

            newest = session.exec(candidates.order_by(*newest_first).limit(1)).first()
            return _to_queue_view(newest) if newest is not None else None

    def claim_queue_item(self, *, item_id: str) -> TaskQueueItemView | None:
        """Atomically move a queued item to in_progress; None when another worker won."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(TaskQueueItem)
                .where(
                    col(TaskQueueItem.id) == item_id,
                    col(TaskQueueItem.status) == QueueStatus.QUEUED.value,
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
                select(TaskQueueItem).where(TaskQueueItem.id == item_id),
            ).one()
            session.commit()
            return _to_queue_view(claimed)

    def reset_in_progress_queue_items(self) -> int:
        """Return items orphaned by an unclean shutdown to the queue."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(TaskQueueItem)
                .where(col(TaskQueueItem.status) == QueueStatus.IN_PROGRESS.value)
                .values(status=QueueStatus.QUEUED.value, updated_at=to_db_datetime(utc_now())),
            )
            session.commit()
            return int(result.rowcount or 0)

    def delete_finished_queue_items_before(self, *, cutoff: datetime) -> int:
        with Session(self.engine) as session:
            result = session.exec(
                sa_delete(TaskQueueItem).where(
                    col(TaskQueueItem.status).in_(_TERMINAL),
                    col(TaskQueueItem.updated_at) < to_db_datetime(cutoff),
                ),
            )
            session.commit()
            return int(result.rowcount or 0)


def _to_task_view(row: Task) -> TaskView:
    return TaskView(
        id=row.id,
        workspace_id=row.workspace_id,
        summary=row.summary,
        description=row.description,
        status=TaskStatus(row.status),
        created_at=to_utc_aware(row.created_at),
        updated_at=to_utc_aware(row.updated_at),
    )


def _to_comment_view(row: TaskComment) -> TaskCommentView:
    return TaskCommentView(
        id=row.id,
        task_id=row.task_id,
        workspace_id=row.workspace_id,
        user_id=row.user_id,
        agent_id=row.agent_id,
        content=row.content,
        created_at=to_utc_aware(row.created_at),
        updated_at=to_utc_aware(row.updated_at),
    )


def _to_log_view(row: TaskLog) -> TaskLogView:
    return TaskLogView(
        id=row.id,
        task_id=row.task_id,
        workspace_id=row.workspace_id,
        event_type=row.event_type,
        actor_type=ActorType(row.actor_type),
        actor_id=row.actor_id,
        metadata=json.loads(row.metadata_json) if row.metadata_json else None,
        created_at=to_utc_aware(row.created_at),
    )


def _to_queue_view(row: TaskQueueItem) -> TaskQueueItemView:
    return TaskQueueItemView(
        id=row.id,
        task_id=row.task_id,
        workspace_id=row.workspace_id,
        status=QueueStatus(row.status),
        is_priority=bool(row.is_priority),
        created_at=to_utc_aware(row.created_at),
        updated_at=to_utc_aware(row.updated_at),
    )
