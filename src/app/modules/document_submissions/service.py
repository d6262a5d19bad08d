"""
Document Submissions Service Layer

Business logic for the one-submission-per-identity workflow.
Orchestrates initData verification, the blob store and the repository.

This module implements:
1. Lookup:
   - Verified identity -> existence + redacted projection
   - Anything unverifiable -> {exists: false}, never an error

2. Create:
   - Validate fields and document
   - Verify initData when supplied (anonymous submissions otherwise)
   - Duplicate pre-check by identity, then upload, then insert
   - A uniqueness violation on insert is reported as a duplicate

3. Update:
   - Requires verified initData with an identity
   - Replaces the document only when a new one is supplied; the replaced
     blob is recorded for the cleanup job

Consistency:
- The duplicate pre-check is check-then-act and only best-effort; the
  partial unique index on telegram_user_id is the authoritative guard
- Upload and insert are not transactional. A blob whose row write fails is
  logged and recorded in orphaned_documents for the cleanup job; nothing
  is rolled back and nothing is retried
- Storage and database error details are logged, never returned to callers
"""

import logging
from dataclasses import dataclass

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.core.storage import DEFAULT_CONTENT_TYPE, BlobStore, BlobStoreError
from app.core.webapp_auth import VerificationStatus, VerifiedIdentity, verify_init_data
from app.modules.document_submissions import repository
from app.modules.document_submissions.helpers import build_document_path
from app.modules.document_submissions.models import AcademicProgram, DocumentSubmission
from app.modules.document_submissions.repository import DuplicateIdentityError
from app.modules.document_submissions.schemas import (
    SubmissionFields,
    SubmissionLookupResponse,
    SubmissionView,
    SubmissionWriteResponse,
    UploadedDocument,
    ValidatedFields,
)

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("first_name", "last_name", "university", "program")

# Errors raised while talking to the database
DATABASE_ERRORS = (SQLAlchemyError, OSError)


@dataclass(frozen=True)
class SubmissionPolicy:
    """
    Explicit configuration for the workflow, built once at startup.

    Attributes:
        bot_token: Telegram bot token; None disables initData verification
        storage_prefix: Folder inside the bucket for uploaded documents
        max_document_bytes: Upper bound on a single archive
        allow_anonymous_unresolved_identity: Accept a valid initData without a
            usable user claim as an anonymous create instead of rejecting it
    """

    bot_token: str | None = None
    storage_prefix: str = "documents"
    max_document_bytes: int = 20 * 1024 * 1024
    allow_anonymous_unresolved_identity: bool = False

    @classmethod
    def from_settings(cls, config: Settings) -> "SubmissionPolicy":
        return cls(
            bot_token=config.telegram_bot_token,
            storage_prefix=config.storage_prefix,
            max_document_bytes=config.max_document_bytes,
            allow_anonymous_unresolved_identity=config.allow_anonymous_unresolved_identity,
        )

    @property
    def auth_enabled(self) -> bool:
        return bool(self.bot_token)


class SubmissionServiceError(Exception):
    """Base exception for submission service errors."""

    def __init__(self, message: str, error_code: str, status_code: int = 400):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(message)


class InvalidSessionError(SubmissionServiceError):
    """Raised when initData fails verification (for any reason)."""

    def __init__(self):
        super().__init__(
            message="Telegram session could not be verified. Please reopen the app.",
            error_code="INVALID_SESSION",
            status_code=401,
        )


class UnresolvedIdentityError(SubmissionServiceError):
    """Raised when initData is valid but carries no usable user ID."""

    def __init__(self):
        super().__init__(
            message="Telegram user could not be identified. Please reopen the app.",
            error_code="UNRESOLVED_IDENTITY",
            status_code=401,
        )


class SessionRequiredError(SubmissionServiceError):
    """Raised when an operation needs a Telegram session and none is available."""

    def __init__(self):
        super().__init__(
            message="A Telegram session is required to edit a submission.",
            error_code="SESSION_REQUIRED",
            status_code=401,
        )


class MissingFieldsError(SubmissionServiceError):
    """Raised when required form fields or the document are absent."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(
            message="Missing required fields",
            error_code="MISSING_FIELDS",
            status_code=400,
        )


class InvalidProgramError(SubmissionServiceError):
    """Raised when program is not one of the supported degree programs."""

    def __init__(self):
        allowed = ", ".join(p.value for p in AcademicProgram)
        super().__init__(
            message=f"Program must be one of: {allowed}",
            error_code="INVALID_PROGRAM",
            status_code=400,
        )


class FieldTooLongError(SubmissionServiceError):
    """Raised when a form field exceeds its stored length."""

    def __init__(self, fields: list[str]):
        self.fields = fields
        super().__init__(
            message=f"Field is too long: {', '.join(fields)}",
            error_code="FIELD_TOO_LONG",
            status_code=400,
        )


class DocumentTooLargeError(SubmissionServiceError):
    """Raised when the uploaded archive exceeds the configured limit."""

    def __init__(self, max_bytes: int):
        super().__init__(
            message=f"Document is too large. Maximum size is {max_bytes // (1024 * 1024)} MB.",
            error_code="DOCUMENT_TOO_LARGE",
            status_code=413,
        )


class DuplicateSubmissionError(SubmissionServiceError):
    """Raised when the identity already has a submission."""

    def __init__(self):
        super().__init__(
            message="You have already submitted your documents.",
            error_code="DUPLICATE_SUBMISSION",
            status_code=409,
        )


class SubmissionNotFoundError(SubmissionServiceError):
    """Raised when updating an identity that never submitted."""

    def __init__(self):
        super().__init__(
            message="Submission not found",
            error_code="SUBMISSION_NOT_FOUND",
            status_code=404,
        )


class StorageUnavailableError(SubmissionServiceError):
    """Raised when the blob store fails to store the document."""

    def __init__(self):
        super().__init__(
            message="Failed to upload document",
            error_code="STORAGE_UNAVAILABLE",
            status_code=503,
        )


class PersistenceFailureError(SubmissionServiceError):
    """Raised when the submission row cannot be read or written."""

    def __init__(self):
        super().__init__(
            message="Failed to save submission",
            error_code="PERSISTENCE_FAILURE",
            status_code=503,
        )


def validate_fields(fields: SubmissionFields) -> ValidatedFields:
    """
    Check that every required field is present and the program is supported.

    Raises:
        MissingFieldsError: If any field is absent or blank
        InvalidProgramError: If program is not a known AcademicProgram
        FieldTooLongError: If a value does not fit its column
    """
    values = {name: (getattr(fields, name) or "").strip() for name in REQUIRED_FIELDS}
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise MissingFieldsError(missing)

    try:
        program = AcademicProgram(values["program"])
    except ValueError as e:
        raise InvalidProgramError() from e

    try:
        return ValidatedFields(
            first_name=values["first_name"],
            last_name=values["last_name"],
            university=values["university"],
            program=program,
        )
    except ValidationError as e:
        too_long = [
            str(error["loc"][0]) for error in e.errors() if error["type"] == "string_too_long"
        ]
        if not too_long:
            raise
        raise FieldTooLongError(too_long) from e


def _check_document_size(document: UploadedDocument, policy: SubmissionPolicy) -> None:
    if len(document.data) > policy.max_document_bytes:
        raise DocumentTooLargeError(policy.max_document_bytes)


def _has_init_data(init_data: str | None) -> bool:
    return bool(init_data and init_data.strip())


def _to_view(submission: DocumentSubmission) -> SubmissionView:
    return SubmissionView(
        first_name=submission.first_name,
        last_name=submission.last_name,
        university=submission.university,
        program=submission.program,
        doc_path=submission.doc_path,
    )


def _require_identity(init_data: str, policy: SubmissionPolicy) -> VerifiedIdentity | None:
    """
    Verify initData for a mutating request.

    Returns:
        The identity, or None when the payload is valid without one and the
        policy accepts that as anonymous

    Raises:
        InvalidSessionError: If verification fails
        UnresolvedIdentityError: If the payload has no usable user ID and
            anonymous fallback is not allowed
    """
    result = verify_init_data(init_data, policy.bot_token or "")

    if result.status == VerificationStatus.INVALID:
        logger.warning("Rejected request with invalid initData")
        raise InvalidSessionError()

    if result.identity is None:
        if policy.allow_anonymous_unresolved_identity:
            logger.info("initData valid without user claim; continuing anonymously")
            return None
        logger.warning("Rejected request: initData valid but user claim unusable")
        raise UnresolvedIdentityError()

    return result.identity


async def _upload_document(
    storage: BlobStore,
    document: UploadedDocument,
    policy: SubmissionPolicy,
) -> str:
    path = build_document_path(document.filename, policy.storage_prefix)
    try:
        return await storage.upload(path, document.data, document.content_type or DEFAULT_CONTENT_TYPE)
    except BlobStoreError as e:
        logger.error(f"Document upload failed for path={path}: {e}")
        raise StorageUnavailableError() from e


async def _record_orphan(
    db: AsyncSession, doc_path: str, reason: str, level: int = logging.ERROR
) -> None:
    """Log an orphaned blob and record it for cleanup. Never raises."""
    logger.log(level, f"Orphaned document left in storage: path={doc_path}, reason={reason}")
    try:
        await repository.record_orphaned_document(db, doc_path, reason)
    except Exception as e:
        logger.error(f"Could not record orphaned document path={doc_path}: {e}")


async def lookup_submission(
    db: AsyncSession,
    policy: SubmissionPolicy,
    init_data: str | None,
) -> SubmissionLookupResponse:
    """
    Look up the caller's existing submission.

    Returns {exists: false} whenever the caller cannot be identified
    (no initData, auth not configured, invalid payload, no user claim) and
    when the lookup itself fails; this operation never raises.
    """
    if not policy.auth_enabled or not _has_init_data(init_data):
        return SubmissionLookupResponse(exists=False)

    result = verify_init_data(init_data, policy.bot_token)
    if result.identity is None:
        if result.status == VerificationStatus.INVALID:
            logger.info("Lookup with invalid initData; reporting no submission")
        return SubmissionLookupResponse(exists=False)

    try:
        submission = await repository.get_by_telegram_user_id(db, result.identity.user_id)
    except DATABASE_ERRORS as e:
        logger.error(f"Submission lookup failed for telegram_user_id={result.identity.user_id}: {e}")
        return SubmissionLookupResponse(exists=False)

    if submission is None:
        return SubmissionLookupResponse(exists=False)

    return SubmissionLookupResponse(exists=True, submission=_to_view(submission))


async def create_submission(
    db: AsyncSession,
    storage: BlobStore,
    policy: SubmissionPolicy,
    fields: SubmissionFields,
    document: UploadedDocument | None,
    init_data: str | None,
) -> SubmissionWriteResponse:
    """
    Create the caller's submission.

    Args:
        db: Database session
        storage: Blob store for the archive
        policy: Workflow configuration
        fields: Raw form fields
        document: Uploaded archive (required, non-empty)
        init_data: Raw initData, or None/"" for an anonymous submission

    Returns:
        SubmissionWriteResponse with the stored document path

    Raises:
        MissingFieldsError, InvalidProgramError, FieldTooLongError,
        DocumentTooLargeError: Invalid input
        InvalidSessionError, UnresolvedIdentityError: initData rejected
        DuplicateSubmissionError: The identity already has a submission
        StorageUnavailableError: Upload failed
        PersistenceFailureError: Row could not be read or written
    """
    validated = validate_fields(fields)
    if document is None or document.is_empty:
        raise MissingFieldsError(["document"])
    _check_document_size(document, policy)

    identity: VerifiedIdentity | None = None
    if _has_init_data(init_data):
        if policy.auth_enabled:
            identity = _require_identity(init_data, policy)
        else:
            logger.warning("initData supplied but Telegram auth is not configured; submitting anonymously")

    telegram_user_id = identity.user_id if identity else None

    if telegram_user_id is not None:
        try:
            existing = await repository.get_by_telegram_user_id(db, telegram_user_id)
        except DATABASE_ERRORS as e:
            logger.error(f"Duplicate check failed for telegram_user_id={telegram_user_id}: {e}")
            raise PersistenceFailureError() from e

        if existing is not None:
            logger.warning(f"Duplicate submission attempt: telegram_user_id={telegram_user_id}")
            raise DuplicateSubmissionError()

    doc_path = await _upload_document(storage, document, policy)

    try:
        submission = await repository.create(db, validated, doc_path, telegram_user_id)
    except DuplicateIdentityError as e:
        logger.warning(
            f"Duplicate submission caught by unique index: telegram_user_id={telegram_user_id}"
        )
        await _record_orphan(db, doc_path, "duplicate_on_insert")
        raise DuplicateSubmissionError() from e
    except DATABASE_ERRORS as e:
        logger.error(f"Submission insert failed: {e}")
        await _record_orphan(db, doc_path, "insert_failed")
        raise PersistenceFailureError() from e

    logger.info(
        f"Created submission {submission.id} "
        f"({'anonymous' if telegram_user_id is None else f'telegram_user_id={telegram_user_id}'})"
    )

    return SubmissionWriteResponse(
        doc_path=submission.doc_path,
        message="Submission received.",
        submission=_to_view(submission),
    )


async def update_submission(
    db: AsyncSession,
    storage: BlobStore,
    policy: SubmissionPolicy,
    fields: SubmissionFields,
    document: UploadedDocument | None,
    init_data: str | None,
) -> SubmissionWriteResponse:
    """
    Update the caller's existing submission.

    The stored document is replaced only when a non-empty document is
    supplied; otherwise the previous path is kept.

    Raises:
        SessionRequiredError: No initData or Telegram auth not configured
        InvalidSessionError, UnresolvedIdentityError: initData rejected
        MissingFieldsError, InvalidProgramError, FieldTooLongError,
        DocumentTooLargeError: Invalid input
        SubmissionNotFoundError: The identity has no submission
        StorageUnavailableError: Upload of the new document failed
        PersistenceFailureError: Row could not be read or written
    """
    if not policy.auth_enabled or not _has_init_data(init_data):
        raise SessionRequiredError()

    result = verify_init_data(init_data, policy.bot_token)
    if result.status == VerificationStatus.INVALID:
        logger.warning("Rejected update with invalid initData")
        raise InvalidSessionError()
    if result.identity is None:
        logger.warning("Rejected update: initData valid but user claim unusable")
        raise UnresolvedIdentityError()

    telegram_user_id = result.identity.user_id
    validated = validate_fields(fields)

    has_new_document = document is not None and not document.is_empty
    if has_new_document:
        _check_document_size(document, policy)

    try:
        existing = await repository.get_by_telegram_user_id(db, telegram_user_id)
    except DATABASE_ERRORS as e:
        logger.error(f"Submission lookup failed for telegram_user_id={telegram_user_id}: {e}")
        raise PersistenceFailureError() from e

    if existing is None:
        raise SubmissionNotFoundError()

    # Captured before the update; the ORM row is modified in place
    previous_path = existing.doc_path
    doc_path = previous_path
    if has_new_document:
        doc_path = await _upload_document(storage, document, policy)

    try:
        updated = await repository.update_by_telegram_user_id(
            db, telegram_user_id, validated, doc_path
        )
    except DATABASE_ERRORS as e:
        logger.error(f"Submission update failed for telegram_user_id={telegram_user_id}: {e}")
        if has_new_document:
            await _record_orphan(db, doc_path, "update_failed")
        raise PersistenceFailureError() from e

    if updated is None:
        # Row vanished between lookup and update
        if has_new_document:
            await _record_orphan(db, doc_path, "update_target_missing")
        raise SubmissionNotFoundError()

    if has_new_document and previous_path and previous_path != doc_path:
        await _record_orphan(db, previous_path, "replaced", level=logging.INFO)

    logger.info(
        f"Updated submission {updated.id} for telegram_user_id={telegram_user_id} "
        f"(document {'replaced' if has_new_document else 'kept'})"
    )

    return SubmissionWriteResponse(
        doc_path=updated.doc_path,
        message="Submission updated.",
        submission=_to_view(updated),
    )
