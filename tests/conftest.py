"""
Shared test fixtures.

Signed initData is produced here independently of app.core.webapp_auth so
tests check the verifier against the protocol, not against itself.
"""

import hashlib
import hmac
import json
from urllib.parse import urlencode

import pytest

TEST_BOT_TOKEN = "123456789:AAH-test-bot-token"


def sign_init_data(
    pairs: list[tuple[str, str]],
    bot_token: str = TEST_BOT_TOKEN,
) -> str:
    """Return a query string for pairs with a valid Telegram `hash` appended."""
    check_string = "\n".join(sorted(f"{key}={value}" for key, value in pairs))
    secret_key = hmac.new(b"WebAppData", bot_token.encode(), hashlib.sha256).digest()
    signature = hmac.new(secret_key, check_string.encode(), hashlib.sha256).hexdigest()
    return urlencode([*pairs, ("hash", signature)])


@pytest.fixture
def bot_token() -> str:
    return TEST_BOT_TOKEN


@pytest.fixture(name="sign_init_data")
def sign_init_data_fixture():
    return sign_init_data


@pytest.fixture
def make_init_data():
    """
    Build signed initData.

    Usage:
        make_init_data(user_id=42)
        make_init_data(user=None)                 # no user claim
        make_init_data(raw_user="not json")       # unusable user claim
    """

    def _make(
        user_id: int | None = 424242,
        *,
        user: dict | None = None,
        raw_user: str | None = None,
        bot_token: str = TEST_BOT_TOKEN,
        extra: list[tuple[str, str]] | None = None,
    ) -> str:
        pairs: list[tuple[str, str]] = [
            ("auth_date", "1760000000"),
            ("query_id", "AAHdF6IQAAAAAN0XohDhrOrc"),
        ]
        if raw_user is not None:
            pairs.append(("user", raw_user))
        elif user is not None:
            pairs.append(("user", json.dumps(user, separators=(",", ":"))))
        elif user_id is not None:
            pairs.append(
                (
                    "user",
                    json.dumps(
                        {"id": user_id, "first_name": "Aziz", "language_code": "uz"},
                        separators=(",", ":"),
                    ),
                )
            )
        pairs.extend(extra or [])
        return sign_init_data(pairs, bot_token)

    return _make
