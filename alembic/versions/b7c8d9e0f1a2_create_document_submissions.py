"""create document_submissions and orphaned_documents tables

Revision ID: b7c8d9e0f1a2
Revises:
Create Date: 2026-10-18 12:00:00.000000

The partial unique index on telegram_user_id is the authoritative guard for
the one-submission-per-identity rule. The service performs a lookup before
inserting, but two concurrent submissions can both pass that check; the index
makes the second insert fail, which the service reports as a duplicate.
Anonymous submissions (telegram_user_id IS NULL) are not constrained.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "b7c8d9e0f1a2"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


academic_program = postgresql.ENUM("bachelors", "masters", "phd", name="academic_program")


def upgrade() -> None:
    """Create submission tables, enum and indexes."""
    academic_program.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "document_submissions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("telegram_user_id", sa.BigInteger(), nullable=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("university", sa.String(200), nullable=False),
        sa.Column(
            "program",
            postgresql.ENUM(name="academic_program", create_type=False),
            nullable=False,
        ),
        sa.Column("doc_path", sa.String(500), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )

    op.create_index(
        "ix_document_submissions_telegram_user_id",
        "document_submissions",
        ["telegram_user_id"],
        unique=True,
        postgresql_where=sa.text("telegram_user_id IS NOT NULL"),
    )

    op.create_table(
        "orphaned_documents",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("doc_path", sa.String(500), nullable=False),
        sa.Column("reason", sa.String(100), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )

    op.create_index(
        "ix_orphaned_documents_created_at",
        "orphaned_documents",
        ["created_at"],
        unique=False,
    )


def downgrade() -> None:
    """Drop submission tables and the program enum."""
    op.drop_index("ix_orphaned_documents_created_at", table_name="orphaned_documents")
    op.drop_table("orphaned_documents")
    op.drop_index("ix_document_submissions_telegram_user_id", table_name="document_submissions")
    op.drop_table("document_submissions")
    academic_program.drop(op.get_bind(), checkfirst=True)
