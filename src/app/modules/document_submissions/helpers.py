"""
Document Submissions Shared Helpers

Document path generation for uploads. Every upload goes to a fresh,
collision-resistant path; the blob store is never asked to overwrite.
"""

import re
import secrets
import string
import time

from app.modules.document_submissions.models import DOC_PATH_MAX_LENGTH

# Anything outside [A-Za-z0-9.-] becomes '_' (no '/' survives, so no path traversal)
_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9.-]")

_SUFFIX_ALPHABET = string.digits + string.ascii_lowercase
RANDOM_SUFFIX_LENGTH = 6
DEFAULT_FILENAME = "document.zip"


def sanitize_filename(filename: str | None) -> str:
    """
    Make an uploaded filename safe to embed in a storage key.

    Example: "My Report (v2)!.zip" -> "My_Report__v2__.zip"

    Args:
        filename: Original client-supplied filename

    Returns:
        Sanitized filename, or "document.zip" when nothing usable was supplied
    """
    if not filename:
        return DEFAULT_FILENAME
    return _UNSAFE_FILENAME_CHARS.sub("_", filename)


def _random_suffix(length: int = RANDOM_SUFFIX_LENGTH) -> str:
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(length))


def build_document_path(
    filename: str | None,
    prefix: str = "documents",
    max_length: int = DOC_PATH_MAX_LENGTH,
) -> str:
    """
    Build a fresh storage path for an uploaded document.

    Format: {prefix}/{epoch_millis}-{6 base36 chars}-{sanitized filename}

    The filename is cut from the front so the whole path fits in max_length
    and the extension survives.
    """
    timestamp_ms = time.time_ns() // 1_000_000
    head = f"{prefix.strip('/')}/{timestamp_ms}-{_random_suffix()}-"
    safe_name = sanitize_filename(filename)

    budget = max(max_length - len(head), 0)
    if len(safe_name) > budget:
        safe_name = safe_name[len(safe_name) - budget :]

    return head + safe_name
