"""
Tests for document submission service functions.

These tests verify the workflow logic including:
- Lookup by verified identity (and the {exists: false} fallbacks)
- Create: validation, identity resolution, one-per-identity, anonymous submissions
- Update: session requirements, document keep/replace
- Storage and database failure mapping, orphan recording
"""

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from app.core.storage import BlobStoreError
from app.modules.document_submissions.models import AcademicProgram
from app.modules.document_submissions.repository import DuplicateIdentityError
from app.modules.document_submissions.schemas import SubmissionFields, UploadedDocument
from app.modules.document_submissions.service import (
    DocumentTooLargeError,
    DuplicateSubmissionError,
    FieldTooLongError,
    InvalidProgramError,
    InvalidSessionError,
    MissingFieldsError,
    PersistenceFailureError,
    SessionRequiredError,
    StorageUnavailableError,
    SubmissionNotFoundError,
    SubmissionPolicy,
    UnresolvedIdentityError,
    create_submission,
    lookup_submission,
    update_submission,
    validate_fields,
)

TELEGRAM_USER_ID = 424242

DB_DOWN = OperationalError("SELECT", {}, ConnectionRefusedError("connection refused"))


@pytest.fixture
def mock_repo(make_submission):
    """Patch the repository used by the service with async mocks."""
    with patch("app.modules.document_submissions.service.repository") as repo:
        repo.get_by_telegram_user_id = AsyncMock(return_value=None)
        repo.create = AsyncMock(
            side_effect=lambda db, fields, doc_path, telegram_user_id: make_submission(
                telegram_user_id=telegram_user_id,
                doc_path=doc_path,
                program=fields.program,
            )
        )
        repo.update_by_telegram_user_id = AsyncMock(
            side_effect=lambda db, telegram_user_id, fields, doc_path: make_submission(
                telegram_user_id=telegram_user_id,
                doc_path=doc_path,
                program=fields.program,
            )
        )
        repo.record_orphaned_document = AsyncMock()
        yield repo


class TestValidateFields:
    """Tests for validate_fields."""

    def test_valid_fields_are_trimmed(self):
        fields = SubmissionFields(
            first_name="  Aziz ",
            last_name="Karimov",
            university=" TSU",
            program="phd",
        )

        validated = validate_fields(fields)

        assert validated.first_name == "Aziz"
        assert validated.university == "TSU"
        assert validated.program == AcademicProgram.PHD

    def test_all_missing_fields_are_reported(self):
        with pytest.raises(MissingFieldsError) as exc_info:
            validate_fields(SubmissionFields(first_name="Aziz"))

        assert exc_info.value.missing == ["last_name", "university", "program"]
        assert exc_info.value.message == "Missing required fields"
        assert exc_info.value.status_code == 400

    def test_blank_field_counts_as_missing(self, sample_fields):
        fields = sample_fields.model_copy(update={"last_name": "   "})

        with pytest.raises(MissingFieldsError) as exc_info:
            validate_fields(fields)

        assert exc_info.value.missing == ["last_name"]

    def test_unknown_program_is_rejected(self, sample_fields):
        fields = sample_fields.model_copy(update={"program": "postdoc"})

        with pytest.raises(InvalidProgramError):
            validate_fields(fields)

    def test_over_long_fields_are_rejected(self, sample_fields):
        fields = sample_fields.model_copy(
            update={"first_name": "x" * 101, "university": "u" * 201}
        )

        with pytest.raises(FieldTooLongError) as exc_info:
            validate_fields(fields)

        assert exc_info.value.fields == ["first_name", "university"]
        assert exc_info.value.status_code == 400
        assert exc_info.value.error_code == "FIELD_TOO_LONG"

    def test_fields_at_column_size_pass(self, sample_fields):
        fields = sample_fields.model_copy(
            update={"first_name": "x" * 100, "last_name": "y" * 100, "university": "u" * 200}
        )

        validated = validate_fields(fields)

        assert len(validated.first_name) == 100
        assert len(validated.university) == 200


class TestLookupSubmission:
    """Tests for lookup_submission."""

    @pytest.mark.asyncio
    async def test_without_init_data_returns_not_exists(self, mock_db, policy, mock_repo):
        result = await lookup_submission(mock_db, policy, None)

        assert result.exists is False
        assert result.submission is None
        mock_repo.get_by_telegram_user_id.assert_not_called()

    @pytest.mark.asyncio
    async def test_auth_disabled_returns_not_exists(
        self, mock_db, anonymous_policy, signed_init_data, mock_repo
    ):
        result = await lookup_submission(mock_db, anonymous_policy, signed_init_data)

        assert result.exists is False
        mock_repo.get_by_telegram_user_id.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_init_data_returns_not_exists(self, mock_db, policy, mock_repo):
        result = await lookup_submission(mock_db, policy, "user=%7B%22id%22%3A1%7D&hash=00")

        assert result.exists is False
        mock_repo.get_by_telegram_user_id.assert_not_called()

    @pytest.mark.asyncio
    async def test_valid_without_user_returns_not_exists(
        self, mock_db, policy, make_init_data, mock_repo
    ):
        result = await lookup_submission(mock_db, policy, make_init_data(user_id=None))

        assert result.exists is False
        mock_repo.get_by_telegram_user_id.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_stored_submission(self, mock_db, policy, signed_init_data, mock_repo):
        result = await lookup_submission(mock_db, policy, signed_init_data)

        assert result.exists is False
        mock_repo.get_by_telegram_user_id.assert_called_once_with(mock_db, TELEGRAM_USER_ID)

    @pytest.mark.asyncio
    async def test_existing_submission_is_projected(
        self, mock_db, policy, signed_init_data, existing_submission, mock_repo
    ):
        mock_repo.get_by_telegram_user_id.return_value = existing_submission

        result = await lookup_submission(mock_db, policy, signed_init_data)

        assert result.exists is True
        assert result.submission.first_name == "Aziz"
        assert result.submission.program == AcademicProgram.MASTERS
        assert result.submission.doc_path == existing_submission.doc_path

    @pytest.mark.asyncio
    async def test_projection_never_contains_identity_key(
        self, mock_db, policy, signed_init_data, existing_submission, mock_repo
    ):
        mock_repo.get_by_telegram_user_id.return_value = existing_submission

        result = await lookup_submission(mock_db, policy, signed_init_data)
        payload = result.model_dump(by_alias=True)

        assert set(payload["submission"]) == {
            "firstName",
            "lastName",
            "university",
            "program",
            "docPath",
        }
        assert str(TELEGRAM_USER_ID) not in str(payload)

    @pytest.mark.asyncio
    async def test_database_failure_returns_not_exists(
        self, mock_db, policy, signed_init_data, mock_repo
    ):
        mock_repo.get_by_telegram_user_id.side_effect = DB_DOWN

        result = await lookup_submission(mock_db, policy, signed_init_data)

        assert result.exists is False


class TestCreateSubmission:
    """Tests for create_submission."""

    @pytest.mark.asyncio
    async def test_create_with_identity(
        self, mock_db, mock_storage, policy, sample_fields, sample_document, signed_init_data, mock_repo
    ):
        result = await create_submission(
            mock_db, mock_storage, policy, sample_fields, sample_document, signed_init_data
        )

        assert result.ok is True
        assert result.doc_path.startswith("documents/")
        assert result.doc_path.endswith("-My_Report__v2__.zip")
        mock_repo.get_by_telegram_user_id.assert_called_once_with(mock_db, TELEGRAM_USER_ID)
        args = mock_repo.create.call_args.args
        assert args[2] == result.doc_path
        assert args[3] == TELEGRAM_USER_ID

    @pytest.mark.asyncio
    async def test_upload_uses_document_content_type(
        self, mock_db, mock_storage, policy, sample_fields, sample_document, mock_repo
    ):
        await create_submission(mock_db, mock_storage, policy, sample_fields, sample_document, None)

        path, data, content_type = mock_storage.upload.call_args.args
        assert data == sample_document.data
        assert content_type == "application/zip"

    @pytest.mark.asyncio
    async def test_missing_content_type_defaults_to_zip(
        self, mock_db, mock_storage, policy, sample_fields, mock_repo
    ):
        document = UploadedDocument(filename="a.zip", content_type=None, data=b"x")

        await create_submission(mock_db, mock_storage, policy, sample_fields, document, None)

        assert mock_storage.upload.call_args.args[2] == "application/zip"

    @pytest.mark.asyncio
    async def test_anonymous_create(
        self, mock_db, mock_storage, policy, sample_fields, sample_document, mock_repo
    ):
        result = await create_submission(
            mock_db, mock_storage, policy, sample_fields, sample_document, None
        )

        assert result.ok is True
        mock_repo.get_by_telegram_user_id.assert_not_called()
        assert mock_repo.create.call_args.args[3] is None

    @pytest.mark.asyncio
    async def test_anonymous_creates_are_unlimited(
        self, mock_db, mock_storage, policy, sample_fields, sample_document, mock_repo
    ):
        first = await create_submission(
            mock_db, mock_storage, policy, sample_fields, sample_document, ""
        )
        second = await create_submission(
            mock_db, mock_storage, policy, sample_fields, sample_document, ""
        )

        assert first.ok and second.ok
        assert mock_repo.create.call_count == 2

    @pytest.mark.asyncio
    async def test_init_data_ignored_when_auth_disabled(
        self,
        mock_db,
        mock_storage,
        anonymous_policy,
        sample_fields,
        sample_document,
        signed_init_data,
        mock_repo,
    ):
        await create_submission(
            mock_db, mock_storage, anonymous_policy, sample_fields, sample_document, signed_init_data
        )

        mock_repo.get_by_telegram_user_id.assert_not_called()
        assert mock_repo.create.call_args.args[3] is None

    @pytest.mark.asyncio
    async def test_second_create_for_same_identity_is_duplicate(
        self,
        mock_db,
        mock_storage,
        policy,
        sample_fields,
        sample_document,
        signed_init_data,
        existing_submission,
        mock_repo,
    ):
        mock_repo.get_by_telegram_user_id.side_effect = [None, existing_submission]

        await create_submission(
            mock_db, mock_storage, policy, sample_fields, sample_document, signed_init_data
        )
        with pytest.raises(DuplicateSubmissionError) as exc_info:
            await create_submission(
                mock_db, mock_storage, policy, sample_fields, sample_document, signed_init_data
            )

        assert exc_info.value.status_code == 409
        assert mock_storage.upload.call_count == 1
        assert mock_repo.create.call_count == 1

    @pytest.mark.asyncio
    async def test_unique_violation_on_insert_is_duplicate(
        self, mock_db, mock_storage, policy, sample_fields, sample_document, signed_init_data, mock_repo
    ):
        mock_repo.create.side_effect = DuplicateIdentityError(TELEGRAM_USER_ID)

        with pytest.raises(DuplicateSubmissionError):
            await create_submission(
                mock_db, mock_storage, policy, sample_fields, sample_document, signed_init_data
            )

        uploaded_path = mock_storage.upload.call_args.args[0]
        mock_repo.record_orphaned_document.assert_called_once_with(
            mock_db, uploaded_path, "duplicate_on_insert"
        )

    @pytest.mark.asyncio
    async def test_missing_fields_checked_before_anything_else(
        self, mock_db, mock_storage, policy, sample_document, mock_repo
    ):
        with pytest.raises(MissingFieldsError):
            await create_submission(
                mock_db, mock_storage, policy, SubmissionFields(), sample_document, "garbage"
            )

        mock_storage.upload.assert_not_called()
        mock_repo.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_over_long_name_rejected_before_upload(
        self, mock_db, mock_storage, policy, sample_fields, sample_document, mock_repo
    ):
        fields = sample_fields.model_copy(update={"first_name": "x" * 500})

        with pytest.raises(FieldTooLongError):
            await create_submission(mock_db, mock_storage, policy, fields, sample_document, None)

        mock_storage.upload.assert_not_called()
        mock_repo.create.assert_not_called()
        mock_repo.record_orphaned_document.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_document(self, mock_db, mock_storage, policy, sample_fields, mock_repo):
        with pytest.raises(MissingFieldsError) as exc_info:
            await create_submission(mock_db, mock_storage, policy, sample_fields, None, None)

        assert exc_info.value.missing == ["document"]

    @pytest.mark.asyncio
    async def test_empty_document_counts_as_missing(
        self, mock_db, mock_storage, policy, sample_fields, mock_repo
    ):
        empty = UploadedDocument(filename="a.zip", data=b"")

        with pytest.raises(MissingFieldsError):
            await create_submission(mock_db, mock_storage, policy, sample_fields, empty, None)

        mock_storage.upload.assert_not_called()

    @pytest.mark.asyncio
    async def test_document_too_large(self, mock_db, mock_storage, policy, sample_fields, mock_repo):
        big = UploadedDocument(filename="a.zip", data=b"x" * (policy.max_document_bytes + 1))

        with pytest.raises(DocumentTooLargeError) as exc_info:
            await create_submission(mock_db, mock_storage, policy, sample_fields, big, None)

        assert exc_info.value.status_code == 413
        mock_storage.upload.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_init_data_rejected_before_storage(
        self, mock_db, mock_storage, policy, sample_fields, sample_document, mock_repo
    ):
        with pytest.raises(InvalidSessionError):
            await create_submission(
                mock_db, mock_storage, policy, sample_fields, sample_document, "a=1&hash=deadbeef"
            )

        mock_storage.upload.assert_not_called()
        mock_repo.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_init_data_signed_with_other_token_rejected(
        self, mock_db, mock_storage, policy, sample_fields, sample_document, make_init_data, mock_repo
    ):
        forged = make_init_data(user_id=TELEGRAM_USER_ID, bot_token="999:other-bot")

        with pytest.raises(InvalidSessionError):
            await create_submission(
                mock_db, mock_storage, policy, sample_fields, sample_document, forged
            )

    @pytest.mark.asyncio
    async def test_valid_init_data_without_user_is_unresolved(
        self, mock_db, mock_storage, policy, sample_fields, sample_document, make_init_data, mock_repo
    ):
        with pytest.raises(UnresolvedIdentityError):
            await create_submission(
                mock_db,
                mock_storage,
                policy,
                sample_fields,
                sample_document,
                make_init_data(raw_user="not json"),
            )

        mock_storage.upload.assert_not_called()

    @pytest.mark.asyncio
    async def test_unresolved_identity_can_fall_back_to_anonymous(
        self, mock_db, mock_storage, bot_token, sample_fields, sample_document, make_init_data, mock_repo
    ):
        lenient = SubmissionPolicy(bot_token=bot_token, allow_anonymous_unresolved_identity=True)

        result = await create_submission(
            mock_db,
            mock_storage,
            lenient,
            sample_fields,
            sample_document,
            make_init_data(user_id=None),
        )

        assert result.ok is True
        assert mock_repo.create.call_args.args[3] is None

    @pytest.mark.asyncio
    async def test_storage_failure(
        self, mock_db, mock_storage, policy, sample_fields, sample_document, mock_repo
    ):
        mock_storage.upload.side_effect = BlobStoreError("bucket not found")

        with pytest.raises(StorageUnavailableError) as exc_info:
            await create_submission(
                mock_db, mock_storage, policy, sample_fields, sample_document, None
            )

        assert exc_info.value.message == "Failed to upload document"
        assert "bucket" not in exc_info.value.message
        mock_repo.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_duplicate_check_failure(
        self, mock_db, mock_storage, policy, sample_fields, sample_document, signed_init_data, mock_repo
    ):
        mock_repo.get_by_telegram_user_id.side_effect = DB_DOWN

        with pytest.raises(PersistenceFailureError):
            await create_submission(
                mock_db, mock_storage, policy, sample_fields, sample_document, signed_init_data
            )

        mock_storage.upload.assert_not_called()

    @pytest.mark.asyncio
    async def test_insert_failure_records_orphan(
        self, mock_db, mock_storage, policy, sample_fields, sample_document, mock_repo
    ):
        mock_repo.create.side_effect = DB_DOWN

        with pytest.raises(PersistenceFailureError) as exc_info:
            await create_submission(
                mock_db, mock_storage, policy, sample_fields, sample_document, None
            )

        assert exc_info.value.message == "Failed to save submission"
        uploaded_path = mock_storage.upload.call_args.args[0]
        mock_repo.record_orphaned_document.assert_called_once_with(
            mock_db, uploaded_path, "insert_failed"
        )

    @pytest.mark.asyncio
    async def test_orphan_recording_failure_does_not_mask_error(
        self, mock_db, mock_storage, policy, sample_fields, sample_document, mock_repo
    ):
        mock_repo.create.side_effect = DB_DOWN
        mock_repo.record_orphaned_document.side_effect = DB_DOWN

        with pytest.raises(PersistenceFailureError):
            await create_submission(
                mock_db, mock_storage, policy, sample_fields, sample_document, None
            )


class TestUpdateSubmission:
    """Tests for update_submission."""

    @pytest.mark.asyncio
    async def test_requires_init_data(self, mock_db, mock_storage, policy, sample_fields, mock_repo):
        with pytest.raises(SessionRequiredError) as exc_info:
            await update_submission(mock_db, mock_storage, policy, sample_fields, None, None)

        assert exc_info.value.status_code == 401
        mock_repo.get_by_telegram_user_id.assert_not_called()

    @pytest.mark.asyncio
    async def test_requires_auth_configured(
        self, mock_db, mock_storage, anonymous_policy, sample_fields, signed_init_data, mock_repo
    ):
        with pytest.raises(SessionRequiredError):
            await update_submission(
                mock_db, mock_storage, anonymous_policy, sample_fields, None, signed_init_data
            )

    @pytest.mark.asyncio
    async def test_invalid_init_data(self, mock_db, mock_storage, policy, sample_fields, mock_repo):
        with pytest.raises(InvalidSessionError):
            await update_submission(
                mock_db, mock_storage, policy, sample_fields, None, "user=1&hash=abc"
            )

    @pytest.mark.asyncio
    async def test_valid_without_user_is_unresolved(
        self, mock_db, mock_storage, bot_token, sample_fields, make_init_data, mock_repo
    ):
        lenient = SubmissionPolicy(bot_token=bot_token, allow_anonymous_unresolved_identity=True)

        with pytest.raises(UnresolvedIdentityError):
            await update_submission(
                mock_db, mock_storage, lenient, sample_fields, None, make_init_data(user_id=None)
            )

    @pytest.mark.asyncio
    async def test_update_without_prior_submission(
        self, mock_db, mock_storage, policy, sample_fields, signed_init_data, mock_repo
    ):
        with pytest.raises(SubmissionNotFoundError) as exc_info:
            await update_submission(
                mock_db, mock_storage, policy, sample_fields, None, signed_init_data
            )

        assert exc_info.value.status_code == 404
        mock_repo.update_by_telegram_user_id.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_without_document_keeps_path(
        self, mock_db, mock_storage, policy, signed_init_data, existing_submission, mock_repo
    ):
        mock_repo.get_by_telegram_user_id.return_value = existing_submission
        fields = SubmissionFields(
            first_name="Aziza",
            last_name="Karimova",
            university="Westminster International University",
            program="phd",
        )

        result = await update_submission(mock_db, mock_storage, policy, fields, None, signed_init_data)

        assert result.doc_path == existing_submission.doc_path
        assert result.submission.program == AcademicProgram.PHD
        mock_storage.upload.assert_not_called()
        db, user_id, validated, doc_path = mock_repo.update_by_telegram_user_id.call_args.args
        assert user_id == TELEGRAM_USER_ID
        assert validated.first_name == "Aziza"
        assert doc_path == existing_submission.doc_path

    @pytest.mark.asyncio
    async def test_empty_document_keeps_path(
        self, mock_db, mock_storage, policy, sample_fields, signed_init_data, existing_submission, mock_repo
    ):
        mock_repo.get_by_telegram_user_id.return_value = existing_submission
        empty = UploadedDocument(filename="", data=b"")

        result = await update_submission(
            mock_db, mock_storage, policy, sample_fields, empty, signed_init_data
        )

        assert result.doc_path == existing_submission.doc_path
        mock_storage.upload.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_with_document_replaces_path(
        self,
        mock_db,
        mock_storage,
        policy,
        sample_fields,
        sample_document,
        signed_init_data,
        existing_submission,
        mock_repo,
    ):
        mock_repo.get_by_telegram_user_id.return_value = existing_submission

        result = await update_submission(
            mock_db, mock_storage, policy, sample_fields, sample_document, signed_init_data
        )

        assert result.doc_path != existing_submission.doc_path
        assert result.doc_path == mock_storage.upload.call_args.args[0]
        assert result.message == "Submission updated."

    @pytest.mark.asyncio
    async def test_replaced_document_is_recorded_for_cleanup(
        self,
        mock_db,
        mock_storage,
        policy,
        sample_fields,
        sample_document,
        signed_init_data,
        existing_submission,
        mock_repo,
    ):
        old_path = existing_submission.doc_path
        mock_repo.get_by_telegram_user_id.return_value = existing_submission

        await update_submission(
            mock_db, mock_storage, policy, sample_fields, sample_document, signed_init_data
        )

        mock_repo.record_orphaned_document.assert_called_once_with(mock_db, old_path, "replaced")

    @pytest.mark.asyncio
    async def test_first_document_on_update_records_nothing(
        self,
        mock_db,
        mock_storage,
        policy,
        sample_fields,
        sample_document,
        signed_init_data,
        make_submission,
        mock_repo,
    ):
        mock_repo.get_by_telegram_user_id.return_value = make_submission(doc_path=None)

        await update_submission(
            mock_db, mock_storage, policy, sample_fields, sample_document, signed_init_data
        )

        mock_repo.record_orphaned_document.assert_not_called()

    @pytest.mark.asyncio
    async def test_storage_failure_leaves_row_untouched(
        self,
        mock_db,
        mock_storage,
        policy,
        sample_fields,
        sample_document,
        signed_init_data,
        existing_submission,
        mock_repo,
    ):
        mock_repo.get_by_telegram_user_id.return_value = existing_submission
        mock_storage.upload.side_effect = BlobStoreError("timeout")

        with pytest.raises(StorageUnavailableError):
            await update_submission(
                mock_db, mock_storage, policy, sample_fields, sample_document, signed_init_data
            )

        mock_repo.update_by_telegram_user_id.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_failure_with_new_document_records_orphan(
        self,
        mock_db,
        mock_storage,
        policy,
        sample_fields,
        sample_document,
        signed_init_data,
        existing_submission,
        mock_repo,
    ):
        mock_repo.get_by_telegram_user_id.return_value = existing_submission
        mock_repo.update_by_telegram_user_id.side_effect = DB_DOWN

        with pytest.raises(PersistenceFailureError):
            await update_submission(
                mock_db, mock_storage, policy, sample_fields, sample_document, signed_init_data
            )

        uploaded_path = mock_storage.upload.call_args.args[0]
        mock_repo.record_orphaned_document.assert_called_once_with(
            mock_db, uploaded_path, "update_failed"
        )

    @pytest.mark.asyncio
    async def test_update_failure_without_document_records_nothing(
        self, mock_db, mock_storage, policy, sample_fields, signed_init_data, existing_submission, mock_repo
    ):
        mock_repo.get_by_telegram_user_id.return_value = existing_submission
        mock_repo.update_by_telegram_user_id.side_effect = DB_DOWN

        with pytest.raises(PersistenceFailureError):
            await update_submission(
                mock_db, mock_storage, policy, sample_fields, None, signed_init_data
            )

        mock_repo.record_orphaned_document.assert_not_called()

    @pytest.mark.asyncio
    async def test_row_vanishing_before_update(
        self,
        mock_db,
        mock_storage,
        policy,
        sample_fields,
        sample_document,
        signed_init_data,
        existing_submission,
        mock_repo,
    ):
        mock_repo.get_by_telegram_user_id.return_value = existing_submission
        mock_repo.update_by_telegram_user_id.side_effect = None
        mock_repo.update_by_telegram_user_id.return_value = None

        with pytest.raises(SubmissionNotFoundError):
            await update_submission(
                mock_db, mock_storage, policy, sample_fields, sample_document, signed_init_data
            )

        mock_repo.record_orphaned_document.assert_called_once()
        assert mock_repo.record_orphaned_document.call_args.args[2] == "update_target_missing"
