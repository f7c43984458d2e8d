"""Workspace and agent persistence."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import func
from sqlmodel import Session, col, select

from agentdesk.models import (
    AgentCreate,
    AgentUpdate,
    AgentView,
    CliType,
    WorkingDirectoryMode,
    WorkspaceCreate,
    WorkspaceUpdate,
    WorkspaceView,
)
from agentdesk.storage.common import NotFoundError, to_db_datetime, to_utc_aware, utc_now
from agentdesk.storage.database import Database
from agentdesk.storage.tables import Agent, Workspace


class WorkspaceRepository:
    """Workspace and ordered agent list storage."""

    def __init__(self, database: Database) -> None:
        self.database = database
        self.engine = database.engine

    def create_workspace(self, payload: WorkspaceCreate) -> WorkspaceView:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = Workspace(
                id=str(uuid4()),
                title=payload.title,
                description=payload.description,
                working_directory_mode=payload.working_directory_mode.value,
                working_directory_path=payload.working_directory_path,
                auto_delete_done_tasks=payload.auto_delete_done_tasks,
                retention_days=payload.retention_days,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_workspace_view(row)

    def get_workspace(self, *, workspace_id: str) -> WorkspaceView | None:
        with Session(self.engine) as session:
            row = session.get(Workspace, workspace_id)
            return _to_workspace_view(row) if row is not None else None

    def require_workspace(self, *, workspace_id: str) -> WorkspaceView:
        workspace = self.get_workspace(workspace_id=workspace_id)
        if workspace is None:
            raise NotFoundError(f"Workspace not found: {workspace_id}")
        return workspace

    def list_workspaces(self) -> list[WorkspaceView]:
        with Session(self.engine) as session:
            rows = session.exec(select(Workspace).order_by(col(Workspace.created_at).asc())).all()
            return [_to_workspace_view(row) for row in rows]

    def update_workspace(self, *, workspace_id: str, update: WorkspaceUpdate) -> WorkspaceView:
        with Session(self.engine) as session:
            row = session.get(Workspace, workspace_id)
            if row is None:
                raise NotFoundError(f"Workspace not found: {workspace_id}")
            if update.title is not None:
                row.title = update.title
            if update.description is not None:
                row.description = update.description
            if update.working_directory_mode is not None:
                row.working_directory_mode = update.working_directory_mode.value
            if update.working_directory_path is not None:
                row.working_directory_path = update.working_directory_path
            row.updated_at = to_db_datetime(utc_now())
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_workspace_view(row)

    # -- agents ----------------------------------------------------------------

    def create_agent(self, payload: AgentCreate) -> AgentView:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            if session.get(Workspace, payload.workspace_id) is None:
                raise NotFoundError(f"Workspace not found: {payload.workspace_id}")
            order = payload.order
            if order is None:
                current_max = session.exec(
                    select(func.max(Agent.order)).where(Agent.workspace_id == payload.workspace_id),
                ).one()
                order = 0 if current_max is None else int(current_max) + 1
            row = Agent(
                id=str(uuid4()),
                workspace_id=payload.workspace_id,
                name=payload.name,
                instruction=payload.instruction,
                cli_type=payload.cli_type.value,
                order=order,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_agent_view(row)

    def get_agent(self, *, agent_id: str) -> AgentView | None:
        with Session(self.engine) as session:
            row = session.get(Agent, agent_id)
            return _to_agent_view(row) if row is not None else None

    def list_agents(self, *, workspace_id: str) -> list[AgentView]:
        """Agents of the workspace in execution order."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(Agent)
                .where(Agent.workspace_id == workspace_id)
                .order_by(col(Agent.order).asc(), col(Agent.created_at).asc()),
            ).all()
            return [_to_agent_view(row) for row in rows]

    def update_agent(self, *, agent_id: str, update: AgentUpdate) -> AgentView:
        with Session(self.engine) as session:
            row = session.get(Agent, agent_id)
            if row is None:
                raise NotFoundError(f"Agent not found: {agent_id}")
            if update.name is not None:
                row.name = update.name
            if update.instruction is not None:
                row.instruction = update.instruction
            if update.cli_type is not None:
                row.cli_type = update.cli_type.value
            row.updated_at = to_db_datetime(utc_now())
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_agent_view(row)

    def delete_agent(self, *, agent_id: str) -> bool:
        with Session(self.engine) as session:
            row = session.get(Agent, agent_id)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True

    def reorder_agents(self, *, workspace_id: str, agent_ids: list[str]) -> list[AgentView]:
        """Assign execution order from the position of each id in ``agent_ids``."""

        with Session(self.engine) as session:
            rows = session.exec(select(Agent).where(Agent.workspace_id == workspace_id)).all()
            by_id = {row.id: row for row in rows}
            if sorted(agent_ids) != sorted(by_id):
                raise ValueError("Agent ids must list every agent of the workspace exactly once.")
            now = to_db_datetime(utc_now())
            for position, agent_id in enumerate(agent_ids):
                row = by_id[agent_id]
                row.order = position
                row.updated_at = now
                session.add(row)
            session.commit()
        return self.list_agents(workspace_id=workspace_id)


def _to_workspace_view(row: Workspace) -> WorkspaceView:
    return WorkspaceView(
        id=row.id,
        title=row.title,
        description=row.description,
        working_directory_mode=WorkingDirectoryMode(row.working_directory_mode),
        working_directory_path=row.working_directory_path,
        auto_delete_done_tasks=bool(row.auto_delete_done_tasks),
        retention_days=row.retention_days,
        created_at=to_utc_aware(row.created_at),
        updated_at=to_utc_aware(row.updated_at),
    )


def _to_agent_view(row: Agent) -> AgentView:
    return AgentView(
        id=row.id,
        workspace_id=row.workspace_id,
        name=row.name,
        instruction=row.instruction,
        cli_type=CliType(row.cli_type),
        order=row.order,
        created_at=to_utc_aware(row.created_at),
        updated_at=to_utc_aware(row.updated_at),
    )
