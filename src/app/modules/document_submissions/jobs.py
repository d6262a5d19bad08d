"""
Document Submissions Background Jobs

Orphaned-document cleanup: deletes blobs no submission references (failed
row writes and replaced documents, see service._record_orphan), then drops
the orphan record.

- Idempotent: a record is dropped only after its blob deletion succeeds,
  so failed deletions are retried on the next run
- One failing orphan never stops the batch
- Runs on a fixed interval and can be triggered manually via debug endpoints
"""

import logging
from typing import Any

from apscheduler.triggers.interval import IntervalTrigger

from app.core import storage as storage_module
from app.core.config import settings
from app.core.database import async_session_maker
from app.core.scheduler import register_job
from app.core.storage import BlobStore
from app.modules.document_submissions import repository

logger = logging.getLogger(__name__)

JOB_ID_PURGE_ORPHANS = "document_submissions_purge_orphaned_documents"

PURGE_BATCH_SIZE = 100


async def purge_orphaned_documents(
    blob_store: BlobStore | None = None,
    batch_size: int = PURGE_BATCH_SIZE,
) -> dict[str, Any]:
    """
    Delete recorded orphaned blobs and their records.

    Args:
        blob_store: Store to delete from (defaults to the wired store)
        batch_size: Maximum orphans handled per run

    Returns:
        Dict with counts and per-orphan errors
    """
    store = blob_store or storage_module.blob_store
    results: dict[str, Any] = {"total_deleted": 0, "total_errors": 0, "errors": []}

    async with async_session_maker() as db:
        orphans = await repository.list_orphaned_documents(db, limit=batch_size)
        logger.info(f"Found {len(orphans)} orphaned documents to purge")

        for orphan in orphans:
            try:
                await store.delete(orphan.doc_path)
                await repository.delete_orphaned_document(db, orphan.id)
                results["total_deleted"] += 1
            except Exception as e:
                logger.error(f"Error purging orphaned document {orphan.doc_path}: {e}")
                results["errors"].append({"doc_path": orphan.doc_path, "error": str(e)})
                results["total_errors"] += 1

    logger.info(
        f"Orphan purge completed. Deleted: {results['total_deleted']}, "
        f"Errors: {results['total_errors']}"
    )
    return results


def register_document_submission_jobs() -> None:
    """Register submission background jobs. Call before start_scheduler()."""
    register_job(
        job_id=JOB_ID_PURGE_ORPHANS,
        func=purge_orphaned_documents,
        trigger=IntervalTrigger(minutes=settings.orphan_cleanup_interval_minutes),
    )
    logger.info(
        f"Registered job: {JOB_ID_PURGE_ORPHANS} "
        f"(interval: {settings.orphan_cleanup_interval_minutes} minutes)"
    )
