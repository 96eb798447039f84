"""
csrf/store.py -- In-memory, process-wide CSRF token store.

One entry per user id: {token, issued_at}. Storing a token for a user
replaces the previous one, so at most one token is live per user at any time.
Entries older than the TTL (default 10 minutes) fail validation and are
evicted on access; purge_expired() trims the rest periodically.

Concurrency:
  FastAPI runs sync route handlers and dependencies on a thread pool, so two
  mutating requests from the same user can reach the store at the same time.
  Every operation holds a single lock, and rotate() performs
  validate -> evict -> mint -> store as one critical section. Of two requests
  presenting the same token, exactly one rotates; the other sees the new
  token and fails validation.

Limitations:
  The map lives in process memory. A restart drops every entry (clients
  re-authenticate), and multiple server instances would not share tokens.
  Running more than one instance needs a shared store behind this interface.

Usage:
    store = CsrfTokenStore(ttl_seconds=600)
    token = store.issue_for(user_id)
    new_token = store.rotate(user_id, token)   # None if invalid or expired
    store.invalidate(user_id)

Layer rule: stdlib only. No imports from api/, auth/, or mail/.
"""

from __future__ import annotations

import hmac
import logging
import secrets
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger("otpgate.csrf")

_DEFAULT_TTL = 10 * 60  # seconds


@dataclass(frozen=True)
class CsrfEntry:
    token: str
    issued_at: float


class CsrfTokenStore:
    def __init__(self, ttl_seconds: int = _DEFAULT_TTL, clock: Callable[[], float] = time.time) -> None:
        self.ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[int, CsrfEntry] = {}
        self._lock = threading.Lock()

    @staticmethod
    def issue() -> str:
        """Return a new opaque token: 32 random bytes as 64 hex characters."""
        return secrets.token_hex(32)

    def store(self, user_id: int, token: str) -> None:
        """Record token as the only live token for user_id."""
        with self._lock:
            self._entries[user_id] = CsrfEntry(token=token, issued_at=self._clock())

    def issue_for(self, user_id: int) -> str:
        """Mint and store a token for user_id; returns it."""
        token = self.issue()
        self.store(user_id, token)
        return token

    def validate(self, user_id: int, token: str) -> bool:
        """Return True if token is the live, unexpired token for user_id.

        An expired entry is evicted as a side effect. A valid token is NOT
        consumed here -- callers enforcing single use go through rotate().
        """
        with self._lock:
            return self._check(user_id, token)

    def rotate(self, user_id: int, token: str) -> str | None:
        """Consume token and replace it with a fresh one.

        Returns the replacement token, or None if token was missing, wrong,
        or expired (in which case nothing new is stored).
        """
        with self._lock:
            if not self._check(user_id, token):
                return None
            new_token = self.issue()
            self._entries[user_id] = CsrfEntry(token=new_token, issued_at=self._clock())
            return new_token

    def invalidate(self, user_id: int) -> None:
        with self._lock:
            self._entries.pop(user_id, None)

    def peek(self, user_id: int) -> str | None:
        """Return the live token for user_id without touching the entry.

        An expired entry reads as None but is left for validate() or
        purge_expired() to remove.
        """
        with self._lock:
            entry = self._entries.get(user_id)
        if entry is None or self._clock() - entry.issued_at > self.ttl:
            return None
        return entry.token

    def purge_expired(self) -> int:
        """Delete all entries older than the TTL. Returns number removed."""
        cutoff = self._clock() - self.ttl
        with self._lock:
            stale = [uid for uid, entry in self._entries.items() if entry.issued_at < cutoff]
            for uid in stale:
                del self._entries[uid]
        if stale:
            logger.debug("Purged %d expired CSRF tokens", len(stale))
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _check(self, user_id: int, token: str) -> bool:
        # Caller holds self._lock.
        entry = self._entries.get(user_id)
        if entry is None:
            return False
        if not hmac.compare_digest(entry.token.encode(), token.encode()):
            return False
        if self._clock() - entry.issued_at > self.ttl:
            del self._entries[user_id]
            return False
        return True
