"""One-time magic-link login tokens.

Tokens live in a process-wide map guarded by a single lock. A token is
Active until it is redeemed (Used) or its 15 minutes run out (Expired); both
end states are terminal and swept by a background task.

Process-local: a multi-instance deployment needs a shared store instead.
"""

import asyncio
import logging
import secrets
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from raisetracker.config import settings

logger = logging.getLogger("raisetracker.magic_links")

TOKEN_BYTES = 32


@dataclass
class MagicLinkToken:
    token: str
    user_id: uuid.UUID
    email: str
    created_at: datetime
    expires_at: datetime
    used: bool = False

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class MagicLinkStore:
    def __init__(self, ttl: timedelta = timedelta(minutes=15)) -> None:
        self.ttl = ttl
        self._lock = threading.Lock()
        self._tokens: dict[str, MagicLinkToken] = {}

    def mint(
        self, user_id: uuid.UUID, email: str, now: datetime | None = None
    ) -> MagicLinkToken:
        now = now or datetime.now(timezone.utc)
        record = MagicLinkToken(
            token=secrets.token_urlsafe(TOKEN_BYTES),
            user_id=user_id,
            email=email.lower(),
            created_at=now,
            expires_at=now + self.ttl,
        )
        with self._lock:
            self._tokens[record.token] = record
        return record

    def redeem(self, token: str, now: datetime | None = None) -> uuid.UUID | None:
        """Mark the token used and return its user id; ``None`` if not redeemable.

        Lookup and the used flag flip happen under the lock, so at most one
        caller can redeem a given token.
        """
        now = now or datetime.now(timezone.utc)
        with self._lock:
            record = self._tokens.get(token)
            if record is None:
                return None
            if record.used or record.is_expired(now):
                del self._tokens[token]
                return None
            record.used = True
            return record.user_id

    def sweep(self, now: datetime | None = None) -> int:
        """Drop used and expired tokens. Returns how many were removed."""
        now = now or datetime.now(timezone.utc)
        with self._lock:
            stale = [
                token
                for token, record in self._tokens.items()
                if record.used or record.is_expired(now)
            ]
            for token in stale:
                del self._tokens[token]
        return len(stale)

    def get(self, token: str) -> MagicLinkToken | None:
        with self._lock:
            return self._tokens.get(token)

    def clear(self) -> None:
        with self._lock:
            self._tokens.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)


async def run_sweeper(store: MagicLinkStore, interval_seconds: float) -> None:
    """Sweep ``store`` forever on a fixed interval; stopped by task cancellation."""
    while True:
        await asyncio.sleep(interval_seconds)
        removed = store.sweep()
        if removed:
            logger.debug("Swept %d magic-link tokens", removed)


magic_links = MagicLinkStore(ttl=timedelta(minutes=settings.magic_link_ttl_minutes))
