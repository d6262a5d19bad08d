"""
Document Submissions Models

Database models for application packages submitted from the Telegram Mini App
and for uploaded documents left without a row (orphans).
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Enum, Index, String, func, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base

# Column sizes, shared with the validation schemas
NAME_MAX_LENGTH = 100
UNIVERSITY_MAX_LENGTH = 200
DOC_PATH_MAX_LENGTH = 500


class AcademicProgram(str, enum.Enum):
    """Degree program the applicant is enrolled in."""

    BACHELORS = "bachelors"
    MASTERS = "masters"
    PHD = "phd"


class DocumentSubmission(Base):
    """
    A single application package: personal fields plus one archive.

    telegram_user_id is the identity key. It is NULL for anonymous submissions
    and unique otherwise (partial unique index below).
    """

    __tablename__ = "document_submissions"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Identity key from verified initData
    telegram_user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    # Applicant
    first_name: Mapped[str] = mapped_column(String(NAME_MAX_LENGTH), nullable=False)
    last_name: Mapped[str] = mapped_column(String(NAME_MAX_LENGTH), nullable=False)
    university: Mapped[str] = mapped_column(String(UNIVERSITY_MAX_LENGTH), nullable=False)
    program: Mapped[AcademicProgram] = mapped_column(
        Enum(
            AcademicProgram,
            name="academic_program",
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
    )

    # Blob path in the documents bucket
    doc_path: Mapped[str | None] = mapped_column(String(DOC_PATH_MAX_LENGTH), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        # Authoritative backstop for the one-submission-per-identity rule
        Index(
            "ix_document_submissions_telegram_user_id",
            "telegram_user_id",
            unique=True,
            postgresql_where=text("telegram_user_id IS NOT NULL"),
        ),
    )


class OrphanedDocument(Base):
    """
    An uploaded blob that no submission row references.

    Recorded when the row insert/update fails after a successful upload, or
    when an update replaces the document; removed by the cleanup job once the
    blob is deleted.
    """

    __tablename__ = "orphaned_documents"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    doc_path: Mapped[str] = mapped_column(String(DOC_PATH_MAX_LENGTH), nullable=False)
    reason: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (Index("ix_orphaned_documents_created_at", "created_at"),)
