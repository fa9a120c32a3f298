"""Initial schema: documents, approval tokens, audit log

Revision ID: 0001
Revises:
Create Date: 2026-10-17

This migration:
1. Creates documents, approval_tokens and audit_logs
2. Adds a partial unique index allowing one pending token per document/approver
3. Creates PostgreSQL triggers to enforce audit log immutability
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the approval workflow tables."""

    op.create_table(
        "documents",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("status", sa.String(50), nullable=False, server_default="draft"),
        sa.Column("author_id", sa.String(64), nullable=True),
        sa.Column("author_email", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("modified_date", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_documents_status", "documents", ["status"])
    op.create_index("ix_documents_author_id", "documents", ["author_id"])
    op.create_index("ix_documents_modified_date", "documents", ["modified_date"])

    op.create_table(
        "approval_tokens",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column(
            "document_id",
            sa.Uuid(),
            sa.ForeignKey("documents.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("approver_email", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("outcome", sa.String(20), nullable=True),
        sa.Column("issued_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("consumed_at", sa.DateTime(), nullable=True),
        sa.Column("source_message_id", sa.String(998), nullable=True),
    )
    op.create_index("ix_approval_tokens_document_id", "approval_tokens", ["document_id"])
    op.create_index("ix_approval_tokens_status", "approval_tokens", ["status"])
    op.create_index("ix_approval_tokens_expires_at", "approval_tokens", ["expires_at"])

    # At most one pending token per document/approver pair
    op.create_index(
        "uq_approval_tokens_pending_pair",
        "approval_tokens",
        ["document_id", "approver_email"],
        unique=True,
        sqlite_where=sa.text("status = 'pending'"),
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("document_id", sa.Uuid(), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("actor", sa.String(255), nullable=False, server_default="system"),
        sa.Column("old_values", sa.JSON(), nullable=True),
        sa.Column("new_values", sa.JSON(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("severity", sa.String(20), nullable=False, server_default="info"),
        sa.Column("timestamp", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_audit_logs_document_id", "audit_logs", ["document_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_severity", "audit_logs", ["severity"])
    op.create_index("ix_audit_logs_timestamp", "audit_logs", ["timestamp"])

    if op.get_bind().dialect.name != "postgresql":
        return

    # Create trigger function to reject updates and deletes
    op.execute("""
        CREATE OR REPLACE FUNCTION prevent_audit_log_change()
        RETURNS TRIGGER AS $trigger$
        BEGIN
            RAISE EXCEPTION 'Audit logs are append-only. Record ID: %', OLD.id;
        END;
        $trigger$ LANGUAGE plpgsql;
    """)

    op.execute("""
        CREATE TRIGGER audit_logs_prevent_update
        BEFORE UPDATE ON audit_logs
        FOR EACH ROW
        EXECUTE FUNCTION prevent_audit_log_change();
    """)

    op.execute("""
        CREATE TRIGGER audit_logs_prevent_delete
        BEFORE DELETE ON audit_logs
        FOR EACH ROW
        EXECUTE FUNCTION prevent_audit_log_change();
    """)


def downgrade() -> None:
    """Drop the approval workflow tables."""

    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP TRIGGER IF EXISTS audit_logs_prevent_update ON audit_logs;")
        op.execute("DROP TRIGGER IF EXISTS audit_logs_prevent_delete ON audit_logs;")
        op.execute("DROP FUNCTION IF EXISTS prevent_audit_log_change();")

    op.drop_index("ix_audit_logs_timestamp", table_name="audit_logs")
    op.drop_index("ix_audit_logs_severity", table_name="audit_logs")
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_index("ix_audit_logs_document_id", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("uq_approval_tokens_pending_pair", table_name="approval_tokens")
    op.drop_index("ix_approval_tokens_expires_at", table_name="approval_tokens")
    op.drop_index("ix_approval_tokens_status", table_name="approval_tokens")
    op.drop_index("ix_approval_tokens_document_id", table_name="approval_tokens")
    op.drop_table("approval_tokens")

    op.drop_index("ix_documents_modified_date", table_name="documents")
    op.drop_index("ix_documents_author_id", table_name="documents")
    op.drop_index("ix_documents_status", table_name="documents")
    op.drop_table("documents")
