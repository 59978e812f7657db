"""
Signed OAuth state tokens.

The state parameter carries the athlete through the provider redirect
without server-side storage:

    state = base64url("{athlete_id}:{base36(created_ms)}:{hmac16}")

hmac16 is the first 16 hex chars of HMAC-SHA256(signing_key, payload).
Tokens are valid for 10 minutes.
"""

import base64
import binascii
import hashlib
import hmac
import logging
import time
from typing import Optional, TypedDict

from app.config import settings

logger = logging.getLogger(__name__)


STATE_TTL_MS = 10 * 60 * 1000
SIGNATURE_LENGTH = 16

_DEV_SIGNING_KEY = "fallback-dev-key-change-in-production"
_BASE36_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


class VerifiedState(TypedDict):
    athlete_id: str


def _now_ms() -> int:
    return int(time.time() * 1000)


def _signing_key() -> bytes:
    key = settings.oauth_state_secret or settings.jwt_secret or _DEV_SIGNING_KEY
    return key.encode("utf-8")


def _sign(payload: str) -> str:
    digest = hmac.new(_signing_key(), payload.encode("utf-8"), hashlib.sha256).hexdigest()
    return digest[:SIGNATURE_LENGTH]


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36_ALPHABET[rem])
    return "".join(reversed(digits))


def create_oauth_state(athlete_id: str) -> str:
    """
    Create a signed, time-limited state token.

    Args:
        athlete_id: Athlete starting the OAuth flow

    Returns:
        URL-safe state string
    """
    payload = f"{athlete_id}:{to_base36(_now_ms())}"
    token = f"{payload}:{_sign(payload)}"
    return base64.urlsafe_b64encode(token.encode("utf-8")).decode("ascii").rstrip("=")


def verify_oauth_state(state: Optional[str]) -> Optional[VerifiedState]:
    """
    Verify a state token.

    Returns:
        {"athlete_id": ...} when the signature matches and the token is
        younger than 10 minutes, None for anything else.
    """
    if not state:
        return None

    try:
        padded = state + "=" * (-len(state) % 4)
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        decoded = raw.decode("utf-8")
    except (binascii.Error, ValueError, UnicodeError):
        return None

    # The decoder ignores unused trailing bits; only the canonical encoding is valid
    if base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=") != state:
        return None

    parts = decoded.split(":")
    if len(parts) != 3:
        return None

    athlete_id, ts_base36, signature = parts
    if not athlete_id:
        return None

    try:
        created_ms = int(ts_base36, 36)
    except ValueError:
        return None

    if _now_ms() - created_ms > STATE_TTL_MS:
        logger.debug(f"OAuth state expired for athlete {athlete_id}")
        return None

    expected = _sign(f"{athlete_id}:{ts_base36}")
    if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
        return None

    return {"athlete_id": athlete_id}
