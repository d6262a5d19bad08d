"""
Fixtures for document submissions tests.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from app.modules.document_submissions.models import AcademicProgram, DocumentSubmission
from app.modules.document_submissions.schemas import SubmissionFields, UploadedDocument
from app.modules.document_submissions.service import SubmissionPolicy

TELEGRAM_USER_ID = 424242


@pytest.fixture
def mock_db():
    """Create a mock database session."""
    db = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.refresh = AsyncMock()
    db.execute = AsyncMock()
    db.add = MagicMock()
    return db


@pytest.fixture
def mock_storage():
    """Blob store that echoes back the path it was asked to write."""
    storage = AsyncMock()
    storage.upload = AsyncMock(side_effect=lambda path, data, content_type: path)
    storage.delete = AsyncMock()
    return storage


@pytest.fixture
def policy(bot_token):
    """Workflow policy with Telegram auth enabled."""
    return SubmissionPolicy(bot_token=bot_token, storage_prefix="documents", max_document_bytes=1024)


@pytest.fixture
def anonymous_policy():
    """Workflow policy with Telegram auth disabled."""
    return SubmissionPolicy(bot_token=None, storage_prefix="documents", max_document_bytes=1024)


@pytest.fixture
def sample_fields():
    """Complete, valid form fields."""
    return SubmissionFields(
        first_name="Aziz",
        last_name="Karimov",
        university="Tashkent State University",
        program="masters",
    )


@pytest.fixture
def sample_document():
    """A small zip upload."""
    return UploadedDocument(
        filename="My Report (v2)!.zip",
        content_type="application/zip",
        data=b"PK\x03\x04archive-bytes",
    )


@pytest.fixture
def signed_init_data(make_init_data):
    """initData signed for TELEGRAM_USER_ID."""
    return make_init_data(user_id=TELEGRAM_USER_ID)


def _make_submission(
    telegram_user_id: int | None = TELEGRAM_USER_ID,
    doc_path: str | None = "documents/1760000000000-abc123-old.zip",
    program: AcademicProgram = AcademicProgram.MASTERS,
) -> MagicMock:
    """Build a mock DocumentSubmission row."""
    submission = MagicMock(spec=DocumentSubmission)
    submission.id = uuid4()
    submission.telegram_user_id = telegram_user_id
    submission.first_name = "Aziz"
    submission.last_name = "Karimov"
    submission.university = "Tashkent State University"
    submission.program = program
    submission.doc_path = doc_path
    submission.created_at = datetime.now(UTC)
    submission.updated_at = datetime.now(UTC)
    return submission


@pytest.fixture
def make_submission():
    """Factory for mock DocumentSubmission rows."""
    return _make_submission


@pytest.fixture
def existing_submission():
    """A stored submission for TELEGRAM_USER_ID."""
    return _make_submission()
