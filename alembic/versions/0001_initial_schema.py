"""Initial ProgressGate schema."""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

# Channel must match PROGRESSGATE_FEED_CHANNEL
NOTIFY_CHANNEL = "progressgate_changes"

# NOTIFY payloads must stay under 8000 bytes. Result content is always
# stripped; oversized rows also lose sources and label and are flagged
# truncated so listeners refetch them.
MAX_NOTIFY_BYTES = 7900

NOTIFY_FUNCTION = f"""
CREATE OR REPLACE FUNCTION progressgate_notify_change() RETURNS trigger AS $$
DECLARE
    new_row jsonb;
    old_row jsonb;
    payload text;
BEGIN
    IF TG_OP <> 'DELETE' THEN
        new_row := to_jsonb(NEW) - 'content';
    END IF;
    IF TG_OP <> 'INSERT' THEN
        old_row := to_jsonb(OLD) - 'content';
    END IF;

    payload := json_build_object(
        'table', TG_TABLE_NAME,
        'event_type', TG_OP,
        'new', new_row,
        'old', old_row,
        'truncated', false
    )::text;

    IF octet_length(payload) > {MAX_NOTIFY_BYTES} THEN
        payload := json_build_object(
            'table', TG_TABLE_NAME,
            'event_type', TG_OP,
            'new', new_row - 'sources' - 'label',
            'old', old_row - 'sources' - 'label',
            'truncated', true
        )::text;
    END IF;

    PERFORM pg_notify('{NOTIFY_CHANNEL}', payload);
    RETURN NULL;
END;
$$ LANGUAGE plpgsql;
"""

NOTIFIED_TABLES = ("research_progress", "research_results")


def upgrade() -> None:
    """Create tables, indexes and the change notification trigger."""
    op.create_table(
        "research_progress",
        sa.Column("id", sa.String(length=255), primary_key=True),
        sa.Column("task_id", sa.String(length=255), nullable=False),
        sa.Column("owner_id", sa.String(length=255), nullable=True),
        sa.Column("label", sa.Text(), nullable=False, server_default=""),
        sa.Column("sources", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "idx_progress_task_created",
        "research_progress",
        ["task_id", "created_at"],
    )

    op.create_table(
        "research_results",
        sa.Column("result_id", sa.String(length=255), primary_key=True),
        sa.Column("task_id", sa.String(length=255), nullable=False),
        sa.Column("owner_id", sa.String(length=255), nullable=True),
        sa.Column("content", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_results_task", "research_results", ["task_id"])
    op.create_index("idx_results_owner", "research_results", ["owner_id"])

    op.create_table(
        "research_feedback",
        sa.Column("feedback_id", sa.String(length=255), primary_key=True),
        sa.Column("task_id", sa.String(length=255), nullable=False),
        sa.Column("owner_id", sa.String(length=255), nullable=True),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("rating BETWEEN 1 AND 5", name="ck_feedback_rating"),
    )
    op.create_index("idx_feedback_task", "research_feedback", ["task_id"])

    op.execute(NOTIFY_FUNCTION)
    for table in NOTIFIED_TABLES:
        op.execute(
            f"CREATE TRIGGER {table}_notify "
            f"AFTER INSERT OR UPDATE OR DELETE ON {table} "
            f"FOR EACH ROW EXECUTE FUNCTION progressgate_notify_change()"
        )


def downgrade() -> None:
    """Drop trigger, tables and indexes."""
    for table in NOTIFIED_TABLES:
        op.execute(f"DROP TRIGGER IF EXISTS {table}_notify ON {table}")
    op.execute("DROP FUNCTION IF EXISTS progressgate_notify_change()")

    op.drop_index("idx_feedback_task", table_name="research_feedback")
    op.drop_table("research_feedback")

    op.drop_index("idx_results_owner", table_name="research_results")
    op.drop_index("idx_results_task", table_name="research_results")
    op.drop_table("research_results")

    op.drop_index("idx_progress_task_created", table_name="research_progress")
    op.drop_table("research_progress")
