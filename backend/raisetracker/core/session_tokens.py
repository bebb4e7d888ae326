"""Stateless signed session tokens.

A token is ``b64(payload) + "." + b64(mac)`` where ``payload`` is the compact
JSON encoding of an :class:`AuthSession` and ``mac`` is HMAC-SHA256 over those
exact payload bytes. Base64 is the URL-safe alphabet without padding so the
token is a legal cookie value.

Verification never reports why a token was rejected: bad format, bad
signature, malformed payload, expiry and revocation all return ``None``.
"""

import base64
import binascii
import hashlib
import hmac
import threading
import uuid
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

TOKEN_SEPARATOR = "."


class AuthSession(BaseModel):
    """Identity and validity window carried inside a session token."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    user_id: uuid.UUID
    display_name: str
    is_admin: bool = False
    issued_at: datetime
    expires_at: datetime

    @classmethod
    def start(
        cls,
        *,
        user_id: uuid.UUID,
        display_name: str,
        is_admin: bool,
        lifetime: timedelta,
        now: datetime | None = None,
    ) -> "AuthSession":
        now = now or datetime.now(timezone.utc)
        return cls(
            user_id=user_id,
            display_name=display_name,
            is_admin=is_admin,
            issued_at=now,
            expires_at=now + lifetime,
        )

    def remaining(self, now: datetime | None = None) -> timedelta:
        return self.expires_at - (now or datetime.now(timezone.utc))

    def extended(self, lifetime: timedelta, now: datetime | None = None) -> "AuthSession":
        """Same session (same ``issued_at``) with expiry pushed to ``now + lifetime``."""
        now = now or datetime.now(timezone.utc)
        return self.model_copy(update={"expires_at": now + lifetime})


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    padded = text + "=" * (-len(text) % 4)
    data = base64.urlsafe_b64decode(padded.encode("ascii"))
    # Reject non-canonical spellings (stray characters, altered trailing bits)
    if _b64encode(data) != text:
        raise ValueError("non-canonical base64")
    return data


def _sign(payload: bytes, secret_key: str) -> bytes:
    return hmac.new(secret_key.encode("utf-8"), payload, hashlib.sha256).digest()


def issue_token(session: AuthSession, secret_key: str) -> str:
    payload = session.model_dump_json(by_alias=True).encode("utf-8")
    return _b64encode(payload) + TOKEN_SEPARATOR + _b64encode(_sign(payload, secret_key))


def verify_token(
    token: str,
    secret_key: str,
    *,
    now: datetime | None = None,
    revocations: "RevocationRegistry | None" = None,
) -> AuthSession | None:
    parts = token.split(TOKEN_SEPARATOR)
    if len(parts) != 2 or not all(parts):
        return None

    try:
        payload = _b64decode(parts[0])
        signature = _b64decode(parts[1])
    except (binascii.Error, ValueError):
        return None

    if not hmac.compare_digest(_sign(payload, secret_key), signature):
        return None

    try:
        session = AuthSession.model_validate_json(payload)
    except ValidationError:
        return None

    if session.expires_at.tzinfo is None:
        return None
    if session.remaining(now) <= timedelta(0):
        return None
    if revocations is not None and revocations.is_revoked(session):
        return None
    return session


class RevocationRegistry:
    """Per-user cut-off: tokens issued before ``not_before`` are rejected.

    Process-local, like the magic-link store; a multi-instance deployment
    needs a shared store instead.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._not_before: dict[uuid.UUID, datetime] = {}

    def revoke_user(self, user_id: uuid.UUID, now: datetime | None = None) -> None:
        with self._lock:
            self._not_before[user_id] = now or datetime.now(timezone.utc)

    def is_revoked(self, session: AuthSession) -> bool:
        with self._lock:
            cutoff = self._not_before.get(session.user_id)
        return cutoff is not None and session.issued_at < cutoff

    def clear(self) -> None:
        with self._lock:
            self._not_before.clear()


revocations = RevocationRegistry()
