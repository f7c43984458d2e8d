"""Enforce a single queued or in-progress queue item per task."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0002"
down_revision = "20261019_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Keep the newest active row per task, fail older duplicates.
    op.execute(
        sa.text(
            """
            WITH ranked AS (
                SELECT
                    id,
                    ROW_NUMBER() OVER (
                        PARTITION BY task_id
                        ORDER BY updated_at DESC, id DESC
                    ) AS rn
                FROM task_queue
                WHERE status IN ('queued', 'in_progress')
            )
            UPDATE task_queue
            SET status = 'failed'
            WHERE id IN (SELECT id FROM ranked WHERE rn > 1)
            """,
        ),
    )
    op.execute(
        sa.text(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS uq_task_queue_task_active
            ON task_queue (task_id)
            WHERE status IN ('queued', 'in_progress')
            """,
        ),
    )


def downgrade() -> None:
    op.execute(sa.text("DROP INDEX IF EXISTS uq_task_queue_task_active"))
