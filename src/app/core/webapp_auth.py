"""
Telegram Mini App Authentication

Validates the `initData` string a Telegram Mini App hands to its backend.
The payload is a query string signed by Telegram with a key derived from the
bot token, so only Telegram (and this backend) can produce a matching `hash`.

Validation steps:
1. Parse the payload as ordered key/value pairs (duplicates retained)
2. Pull out `hash`; every other pair becomes `key=value`
3. Sort those strings byte-wise and join them with newlines (check-string)
4. secret_key = HMAC-SHA256(key="WebAppData", msg=bot_token)
5. signature = hex(HMAC-SHA256(key=secret_key, msg=check-string))
6. Compare signature and `hash` in constant time
7. Read the numeric `id` out of the `user` JSON claim, if any

SECURITY NOTE:
- verify_init_data never raises; every failure collapses into a single
  INVALID result so callers cannot tell which step rejected the payload
- The bot token is passed in explicitly; nothing here reads settings
- initData and hashes are never logged
"""

import enum
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from urllib.parse import parse_qsl

logger = logging.getLogger(__name__)

# Key for deriving the secret from the bot token, fixed by the Mini App protocol
WEBAPP_DATA_KEY = b"WebAppData"

HASH_FIELD = "hash"
USER_FIELD = "user"


class VerificationStatus(str, enum.Enum):
    """Outcome of validating an initData payload."""

    INVALID = "invalid"
    VALID_NO_IDENTITY = "valid_no_identity"
    VALID_WITH_IDENTITY = "valid_with_identity"


@dataclass(frozen=True)
class VerifiedIdentity:
    """
    The only durable fact extracted from a verified initData payload.

    Attributes:
        user_id: Telegram user ID from the signed `user` claim
    """

    user_id: int


@dataclass(frozen=True)
class VerificationResult:
    """Tri-state verification result."""

    status: VerificationStatus
    identity: VerifiedIdentity | None = None

    @property
    def is_valid(self) -> bool:
        return self.status != VerificationStatus.INVALID

    @property
    def user_id(self) -> int | None:
        return self.identity.user_id if self.identity else None


INVALID_RESULT = VerificationResult(status=VerificationStatus.INVALID)


def parse_init_data(init_data: str) -> list[tuple[str, str]]:
    """
    Parse initData into ordered key/value pairs.

    Pairs without '=' are kept with an empty value and '+' decodes to a space,
    matching how browsers serialize URLSearchParams.
    """
    return parse_qsl(init_data, keep_blank_values=True)


def build_check_string(pairs: list[tuple[str, str]]) -> str:
    """
    Build the canonical data-check-string from every non-hash pair.

    Sorting (not insertion order) defines the canonical form, so two payloads
    with the same pairs in different order produce the same check-string.
    """
    lines = [f"{key}={value}" for key, value in pairs if key != HASH_FIELD]
    lines.sort(key=lambda line: line.encode("utf-8"))
    return "\n".join(lines)


def derive_secret_key(bot_token: str) -> bytes:
    """Derive the 256-bit signing key from the bot token."""
    return hmac.new(WEBAPP_DATA_KEY, bot_token.encode("utf-8"), hashlib.sha256).digest()


def compute_signature(check_string: str, bot_token: str) -> str:
    """Compute the lowercase hex signature Telegram would attach to check_string."""
    return hmac.new(
        derive_secret_key(bot_token),
        check_string.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def extract_identity(pairs: list[tuple[str, str]]) -> VerifiedIdentity | None:
    """
    Extract the user identity from parsed initData pairs.

    Returns None when there is no `user` claim, it is not a JSON object,
    or its `id` is not an integer. Only call this on verified pairs.
    """
    raw_user = next((value for key, value in pairs if key == USER_FIELD), None)
    if raw_user is None:
        return None

    try:
        user = json.loads(raw_user)
    except ValueError:
        return None

    if not isinstance(user, dict):
        return None

    user_id = user.get("id")
    # bool is an int subclass; JSON true is not a user ID
    if not isinstance(user_id, int) or isinstance(user_id, bool):
        return None

    return VerifiedIdentity(user_id=user_id)


def verify_init_data(init_data: str, bot_token: str) -> VerificationResult:
    """
    Verify a Mini App initData payload against the bot token.

    Args:
        init_data: Raw initData query string from the client
        bot_token: Telegram bot token shared with the platform

    Returns:
        VerificationResult with status INVALID, VALID_NO_IDENTITY or
        VALID_WITH_IDENTITY (identity populated only in the last case)
    """
    try:
        pairs = parse_init_data(init_data)

        received_hash = next((value for key, value in pairs if key == HASH_FIELD), None)
        if received_hash is None:
            logger.debug("initData rejected: no hash field")
            return INVALID_RESULT

        expected_hash = compute_signature(build_check_string(pairs), bot_token)

        if not hmac.compare_digest(
            expected_hash.encode("utf-8"),
            received_hash.encode("utf-8"),
        ):
            logger.debug("initData rejected: signature mismatch")
            return INVALID_RESULT

        identity = extract_identity(pairs)
        if identity is None:
            return VerificationResult(status=VerificationStatus.VALID_NO_IDENTITY)

        return VerificationResult(
            status=VerificationStatus.VALID_WITH_IDENTITY,
            identity=identity,
        )

    except Exception:
        logger.debug("initData rejected: unparseable payload")
        return INVALID_RESULT


__all__ = [
    "INVALID_RESULT",
    "VerificationResult",
    "VerificationStatus",
    "VerifiedIdentity",
    "WEBAPP_DATA_KEY",
    "build_check_string",
    "compute_signature",
    "derive_secret_key",
    "extract_identity",
    "parse_init_data",
    "verify_init_data",
]
