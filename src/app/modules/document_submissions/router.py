"""
Document Submissions Router

API endpoints used by the Telegram Mini App submission form.

Endpoints:
- GET /document-submissions?initData=... - Does the caller already have a submission?
- POST /document-submissions - Submit the application package (multipart)
- PUT /document-submissions - Revise the caller's submission (multipart)

Form fields (POST/PUT): firstName, lastName, university, program,
document (archive file), initData (raw Telegram WebApp initData).

Security:
- initData is verified with the bot token before any storage is touched
- POST is rate limited per client IP (Redis, memory fallback)
- Error responses carry a code and a user-facing message only
"""

import logging
from functools import lru_cache

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.core.rate_limit import rate_limit
from app.core.storage import BlobStore, get_blob_store
from app.modules.document_submissions import service
from app.modules.document_submissions.schemas import (
    SubmissionFields,
    SubmissionLookupResponse,
    SubmissionWriteResponse,
    UploadedDocument,
)
from app.modules.document_submissions.service import SubmissionPolicy, SubmissionServiceError

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_RESPONSES = {
    400: {"description": "Missing or invalid form fields"},
    401: {"description": "Telegram session missing, invalid or without a user"},
    413: {"description": "Document exceeds the size limit"},
    503: {"description": "Storage or database temporarily unavailable"},
}


@lru_cache
def get_submission_policy() -> SubmissionPolicy:
    """Workflow configuration built from settings (dependency)."""
    return SubmissionPolicy.from_settings(settings)


async def _read_document(
    document: UploadFile | None, policy: SubmissionPolicy
) -> UploadedDocument | None:
    """Read an upload into memory, at most one byte past the size limit."""
    if document is None:
        return None
    data = await document.read(policy.max_document_bytes + 1)
    return UploadedDocument(
        filename=document.filename or "",
        content_type=document.content_type,
        data=data,
    )


def _to_http_exception(e: SubmissionServiceError) -> HTTPException:
    if e.status_code >= 500:
        logger.error(f"Submission service error: {e.error_code}")
    else:
        logger.warning(f"Submission request rejected: {e.error_code}")
    return HTTPException(
        status_code=e.status_code,
        detail={
            "error": e.error_code,
            "message": e.message,
        },
    )


def _internal_error(e: Exception, action: str) -> HTTPException:
    logger.exception(f"Unexpected error while {action}: {e}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


@router.get(
    "",
    response_model=SubmissionLookupResponse,
    summary="Check for an Existing Submission",
    description="""
Report whether the Telegram user behind `initData` has already submitted.

Always answers 200. When the caller cannot be identified (no initData,
Telegram auth not configured, invalid signature, no user claim) the
response is `{"exists": false}`. The identity key is never returned.
""",
)
async def get_submission(
    init_data: str | None = Query(None, alias="initData"),
    db: AsyncSession = Depends(get_db),
    policy: SubmissionPolicy = Depends(get_submission_policy),
) -> SubmissionLookupResponse:
    try:
        return await service.lookup_submission(db, policy, init_data)
    except Exception as e:
        raise _internal_error(e, "looking up submission") from e


@router.post(
    "",
    response_model=SubmissionWriteResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit Application Package",
    description="""
Submit personal fields plus one archive.

With `initData`, the submission is tied to the verified Telegram user and
only one is allowed per user (409 on a second attempt). Without it the
submission is anonymous and unlimited.
""",
    responses={
        **ERROR_RESPONSES,
        409: {"description": "This Telegram user already has a submission"},
        429: {"description": "Too many submissions from this client"},
    },
)
@rate_limit(
    limit=lambda: settings.create_rate_limit,
    window_seconds=lambda: settings.create_rate_limit_window_seconds,
)
async def create_submission(
    request: Request,
    first_name: str | None = Form(None, alias="firstName"),
    last_name: str | None = Form(None, alias="lastName"),
    university: str | None = Form(None),
    program: str | None = Form(None),
    init_data: str | None = Form(None, alias="initData"),
    document: UploadFile | None = File(None),
    db: AsyncSession = Depends(get_db),
    storage: BlobStore = Depends(get_blob_store),
    policy: SubmissionPolicy = Depends(get_submission_policy),
) -> SubmissionWriteResponse:
    fields = SubmissionFields(
        first_name=first_name,
        last_name=last_name,
        university=university,
        program=program,
    )

    try:
        uploaded = await _read_document(document, policy)
        return await service.create_submission(db, storage, policy, fields, uploaded, init_data)
    except SubmissionServiceError as e:
        raise _to_http_exception(e) from e
    except HTTPException:
        raise
    except Exception as e:
        raise _internal_error(e, "creating submission") from e


@router.put(
    "",
    response_model=SubmissionWriteResponse,
    summary="Update Existing Submission",
    description="""
Revise the verified Telegram user's submission.

`initData` is mandatory. All personal fields are replaced; the document is
replaced only when a new file is attached, otherwise the stored one is kept.
""",
    responses={
        **ERROR_RESPONSES,
        404: {"description": "This Telegram user has no submission"},
    },
)
async def update_submission(
    first_name: str | None = Form(None, alias="firstName"),
    last_name: str | None = Form(None, alias="lastName"),
    university: str | None = Form(None),
    program: str | None = Form(None),
    init_data: str | None = Form(None, alias="initData"),
    document: UploadFile | None = File(None),
    db: AsyncSession = Depends(get_db),
    storage: BlobStore = Depends(get_blob_store),
    policy: SubmissionPolicy = Depends(get_submission_policy),
) -> SubmissionWriteResponse:
    fields = SubmissionFields(
        first_name=first_name,
        last_name=last_name,
        university=university,
        program=program,
    )

    try:
        uploaded = await _read_document(document, policy)
        return await service.update_submission(db, storage, policy, fields, uploaded, init_data)
    except SubmissionServiceError as e:
        raise _to_http_exception(e) from e
    except HTTPException:
        raise
    except Exception as e:
        raise _internal_error(e, "updating submission") from e
