"""
Core module - Configuration, database, storage, Telegram auth and utilities.
"""

from app.core.config import get_settings, settings
from app.core.database import Base, close_db, get_db, init_db
from app.core.redis import close_redis, get_redis, init_redis
from app.core.storage import BlobStore, BlobStoreError, get_blob_store, init_blob_store
from app.core.webapp_auth import (
    VerificationResult,
    VerificationStatus,
    VerifiedIdentity,
    verify_init_data,
)

__all__ = [
    # Config
    "settings",
    "get_settings",
    # Database
    "Base",
    "get_db",
    "init_db",
    "close_db",
    # Redis
    "get_redis",
    "init_redis",
    "close_redis",
    # Storage
    "BlobStore",
    "BlobStoreError",
    "get_blob_store",
    "init_blob_store",
    # Telegram Mini App auth
    "VerificationResult",
    "VerificationStatus",
    "VerifiedIdentity",
    "verify_init_data",
]
