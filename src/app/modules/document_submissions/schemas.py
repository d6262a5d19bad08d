"""
Document Submissions Schemas

Pydantic schemas for workflow input and response serialization.
Responses use camelCase aliases to match the Mini App's form contract.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.modules.document_submissions.models import (
    NAME_MAX_LENGTH,
    UNIVERSITY_MAX_LENGTH,
    AcademicProgram,
)


class SubmissionFields(BaseModel):
    """
    Raw personal fields from the submission form.

    Values are kept as received; presence and the program enum are checked
    by the service so that failures map to MissingFields / InvalidProgram.
    """

    first_name: str | None = None
    last_name: str | None = None
    university: str | None = None
    program: str | None = None


class ValidatedFields(BaseModel):
    """Personal fields after service-level validation (trimmed, program parsed)."""

    first_name: str = Field(..., min_length=1, max_length=NAME_MAX_LENGTH)
    last_name: str = Field(..., min_length=1, max_length=NAME_MAX_LENGTH)
    university: str = Field(..., min_length=1, max_length=UNIVERSITY_MAX_LENGTH)
    program: AcademicProgram


class UploadedDocument(BaseModel):
    """An uploaded archive read fully into memory."""

    filename: str = ""
    content_type: str | None = None
    data: bytes = b""

    @property
    def is_empty(self) -> bool:
        return len(self.data) == 0


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class SubmissionView(CamelModel):
    """Redacted projection of a submission. Never includes the identity key."""

    first_name: str
    last_name: str
    university: str
    program: AcademicProgram
    doc_path: str | None = None


class SubmissionLookupResponse(CamelModel):
    """Response for GET /document-submissions."""

    exists: bool
    submission: SubmissionView | None = None


class SubmissionWriteResponse(CamelModel):
    """Response for POST and PUT /document-submissions."""

    ok: bool = True
    doc_path: str | None = None
    message: str = Field(default="Submission saved.")
    submission: SubmissionView
