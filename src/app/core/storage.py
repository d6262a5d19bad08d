"""
Document Blob Storage

Blob store interface for uploaded submission archives plus the Supabase
Storage adapter used in deployment.

The adapter wraps the synchronous supabase client and runs its calls in the
threadpool so uploads never block the event loop. Uploads never overwrite
(upsert disabled); callers always write to a freshly generated path.

Security:
- The Supabase client must be created with the service role key
- The bucket should be private; stored paths are never turned into public URLs here
"""

import logging
from typing import Any, Protocol

from fastapi.concurrency import run_in_threadpool

from app.core.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/zip"


class BlobStoreError(Exception):
    """Raised when the blob backend rejects or fails an operation."""


class BlobStore(Protocol):
    """Path-addressed blob storage used by the submission workflow."""

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        """Store data at path and return the stored path."""
        ...

    async def delete(self, path: str) -> None:
        """Remove the blob at path."""
        ...


class NullBlobStore:
    """Fallback store that signals the storage backend is not configured."""

    async def upload(self, path: str, data: bytes, content_type: str) -> str:  # noqa: D401
        raise BlobStoreError("storage_not_configured")

    async def delete(self, path: str) -> None:  # noqa: D401
        raise BlobStoreError("storage_not_configured")


class SupabaseBlobStore:
    """Blob store backed by a Supabase Storage bucket."""

    def __init__(self, client: Any, bucket: str):
        # supabase.create_client(...) result; exposes .storage.from_(bucket)
        self._client = client
        self._bucket_name = bucket

    def _bucket(self) -> Any:
        return self._client.storage.from_(self._bucket_name)

    @staticmethod
    def _stored_path(response: Any) -> str | None:
        """Read the stored path across supabase client versions."""
        path = getattr(response, "path", None)
        if path:
            return str(path)
        if isinstance(response, dict):
            for key in ("path", "Key", "key"):
                if response.get(key):
                    return str(response[key])
        return None

    def _upload_sync(self, path: str, data: bytes, content_type: str) -> str:
        response = self._bucket().upload(
            path=path,
            file=data,
            file_options={
                "content-type": content_type or DEFAULT_CONTENT_TYPE,
                "upsert": "false",
            },
        )
        stored = self._stored_path(response)
        if not stored:
            raise BlobStoreError("upload_returned_no_path")
        return stored

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        try:
            return await run_in_threadpool(self._upload_sync, path, data, content_type)
        except BlobStoreError:
            raise
        except Exception as e:
            raise BlobStoreError(f"{e.__class__.__name__}: {e}") from e

    async def delete(self, path: str) -> None:
        try:
            await run_in_threadpool(self._bucket().remove, [path])
        except Exception as e:
            raise BlobStoreError(f"{e.__class__.__name__}: {e}") from e


# Blob store instance, wired on startup
blob_store: BlobStore = NullBlobStore()


def build_blob_store(config: Settings) -> BlobStore:
    """
    Create the blob store for the given settings.

    Returns a NullBlobStore when Supabase is not configured or the client
    cannot be created, so the API still starts and reports uploads as
    storage failures.
    """
    if not config.storage_configured:
        logger.warning("Supabase storage not configured; document uploads will fail")
        return NullBlobStore()

    try:
        from supabase import create_client

        client = create_client(config.supabase_url, config.supabase_service_role_key)
    except Exception as e:
        logger.warning(f"Supabase client unavailable: {e.__class__.__name__}: {e}")
        return NullBlobStore()

    return SupabaseBlobStore(client, config.storage_bucket)


def init_blob_store(config: Settings) -> BlobStore:
    """Wire the module-level blob store. Call on application startup."""
    global blob_store
    blob_store = build_blob_store(config)
    return blob_store


def get_blob_store() -> BlobStore:
    """
    FastAPI dependency returning the wired blob store.

    Usage:
        @router.post("")
        async def create(storage: BlobStore = Depends(get_blob_store)):
            ...
    """
    return blob_store


__all__ = [
    "BlobStore",
    "BlobStoreError",
    "NullBlobStore",
    "SupabaseBlobStore",
    "build_blob_store",
    "get_blob_store",
    "init_blob_store",
]
