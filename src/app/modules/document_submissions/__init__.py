"""
Document Submissions Module

One application package (personal fields + one archive) per Telegram user,
submitted from a Telegram Mini App and revisable afterwards.

API Endpoints:
- GET /document-submissions - Check for an existing submission
- POST /document-submissions - Submit
- PUT /document-submissions - Revise

Security Features:
- Telegram initData HMAC verification (constant-time, opaque failures)
- Single submission per identity: service pre-check + partial unique index
- Sanitized, collision-resistant storage paths
- Rate limiting on submission (Redis, memory fallback)

Background Jobs (via APScheduler):
- purge_orphaned_documents: deletes blobs left behind by failed row writes
"""

from .jobs import register_document_submission_jobs
from .router import router

__all__ = ["router", "register_document_submission_jobs"]
