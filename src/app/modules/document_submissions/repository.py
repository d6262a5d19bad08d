"""
Document Submissions Repository

Database operations for submissions and orphaned documents.
Only data access lives here; create-vs-update decisions belong to the service.

- Lookups and updates are keyed by the Telegram identity key
- A uniqueness violation on insert is raised as DuplicateIdentityError so
  the service can treat it exactly like its own duplicate pre-check
- Failed writes roll the session back before re-raising
"""

from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .models import DocumentSubmission, OrphanedDocument
from .schemas import ValidatedFields

IDENTITY_UNIQUE_INDEX = "ix_document_submissions_telegram_user_id"
UNIQUE_VIOLATION_SQLSTATE = "23505"


class DuplicateIdentityError(Exception):
    """Raised when an insert collides with an existing row for the same identity."""

    def __init__(self, telegram_user_id: int | None):
        self.telegram_user_id = telegram_user_id
        super().__init__(f"Submission already exists for telegram_user_id={telegram_user_id}")


def is_unique_violation(error: IntegrityError) -> bool:
    """Check whether an IntegrityError is a unique-key violation on the identity key."""
    orig = error.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate == UNIQUE_VIOLATION_SQLSTATE:
        return True
    message = str(orig) if orig is not None else str(error)
    return IDENTITY_UNIQUE_INDEX in message or "UNIQUE constraint failed" in message


async def get_by_telegram_user_id(
    db: AsyncSession, telegram_user_id: int
) -> DocumentSubmission | None:
    """Get the submission owned by a Telegram user, if any."""
    result = await db.execute(
        select(DocumentSubmission).where(DocumentSubmission.telegram_user_id == telegram_user_id)
    )
    return result.scalar_one_or_none()


async def create(
    db: AsyncSession,
    fields: ValidatedFields,
    doc_path: str,
    telegram_user_id: int | None,
) -> DocumentSubmission:
    """
    Insert a new submission.

    Raises:
        DuplicateIdentityError: If a row for telegram_user_id already exists
        SQLAlchemyError: On any other database failure
    """
    submission = DocumentSubmission(
        telegram_user_id=telegram_user_id,
        first_name=fields.first_name,
        last_name=fields.last_name,
        university=fields.university,
        program=fields.program,
        doc_path=doc_path,
    )

    db.add(submission)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        if telegram_user_id is not None and is_unique_violation(e):
            raise DuplicateIdentityError(telegram_user_id) from e
        raise
    except Exception:
        await db.rollback()
        raise

    await db.refresh(submission)
    return submission


async def update_by_telegram_user_id(
    db: AsyncSession,
    telegram_user_id: int,
    fields: ValidatedFields,
    doc_path: str | None,
) -> DocumentSubmission | None:
    """
    Update every mutable field of a user's submission in place.

    Returns:
        The updated submission, or None if the user has no submission
    """
    submission = await get_by_telegram_user_id(db, telegram_user_id)
    if submission is None:
        return None

    submission.first_name = fields.first_name
    submission.last_name = fields.last_name
    submission.university = fields.university
    submission.program = fields.program
    submission.doc_path = doc_path

    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(submission)
    return submission


# ============================================
# OrphanedDocument Repository
# ============================================


async def record_orphaned_document(db: AsyncSession, doc_path: str, reason: str) -> OrphanedDocument:
    """Record an uploaded blob that has no submission row."""
    orphan = OrphanedDocument(doc_path=doc_path, reason=reason)
    db.add(orphan)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(orphan)
    return orphan


async def list_orphaned_documents(db: AsyncSession, limit: int = 100) -> list[OrphanedDocument]:
    """Oldest orphaned documents first."""
    result = await db.execute(
        select(OrphanedDocument).order_by(OrphanedDocument.created_at).limit(limit)
    )
    return list(result.scalars().all())


async def delete_orphaned_document(db: AsyncSession, orphan_id: UUID) -> None:
    await db.execute(delete(OrphanedDocument).where(OrphanedDocument.id == orphan_id))
    await db.commit()
