"""Unit tests for csrf/store.py -- the per-user CSRF token map.

Covers:
- issued tokens are 64 hex characters and unique
- storing a new token for a user invalidates the previous one
- tokens expire after the TTL and are evicted on validation
- rotate() consumes the presented token exactly once
- peek() and purge_expired() housekeeping
"""

import string
import threading

import pytest

from csrf.store import CsrfTokenStore


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return CsrfTokenStore(ttl_seconds=600, clock=clock)


# ---------------------------------------------------------------------------
# Issue / store / validate
# ---------------------------------------------------------------------------


class TestIssue:
    def test_token_is_64_hex_chars(self):
        token = CsrfTokenStore.issue()
        assert len(token) == 64
        assert set(token) <= set(string.hexdigits.lower())

    def test_tokens_are_unique(self):
        assert len({CsrfTokenStore.issue() for _ in range(50)}) == 50

    def test_issue_for_stores_token(self, store):
        token = store.issue_for(1)
        assert store.validate(1, token) is True
        assert len(store) == 1


class TestValidate:
    def test_unknown_user_is_rejected(self, store):
        assert store.validate(42, "anything") is False

    def test_wrong_token_is_rejected(self, store):
        store.store(1, "a" * 64)
        assert store.validate(1, "b" * 64) is False

    def test_token_of_other_user_is_rejected(self, store):
        token = store.issue_for(1)
        store.issue_for(2)
        assert store.validate(2, token) is False

    def test_validate_does_not_consume(self, store):
        token = store.issue_for(1)
        assert store.validate(1, token) is True
        assert store.validate(1, token) is True

    def test_new_token_replaces_old(self, store):
        old = store.issue_for(1)
        new = store.issue_for(1)
        assert store.validate(1, old) is False
        assert store.validate(1, new) is True
        assert len(store) == 1


class TestExpiry:
    def test_valid_just_before_ttl(self, store, clock):
        token = store.issue_for(1)
        clock.advance(600)
        assert store.validate(1, token) is True

    def test_expired_after_ttl_and_evicted(self, store, clock):
        token = store.issue_for(1)
        clock.advance(601)
        assert store.validate(1, token) is False
        assert len(store) == 0

    def test_restore_resets_age(self, store, clock):
        store.issue_for(1)
        clock.advance(500)
        token = store.issue_for(1)
        clock.advance(500)
        assert store.validate(1, token) is True


# ---------------------------------------------------------------------------
# Rotation
# ---------------------------------------------------------------------------


class TestRotate:
    def test_rotate_returns_different_valid_token(self, store):
        token = store.issue_for(1)
        new = store.rotate(1, token)
        assert new is not None
        assert new != token
        assert store.validate(1, new) is True

    def test_rotated_token_cannot_be_reused(self, store):
        token = store.issue_for(1)
        assert store.rotate(1, token) is not None
        assert store.rotate(1, token) is None

    def test_failed_rotate_leaves_live_token(self, store):
        token = store.issue_for(1)
        assert store.rotate(1, "f" * 64) is None
        assert store.validate(1, token) is True

    def test_rotate_expired_token(self, store, clock):
        token = store.issue_for(1)
        clock.advance(601)
        assert store.rotate(1, token) is None
        assert store.peek(1) is None

    def test_concurrent_rotation_has_single_winner(self, store):
        token = store.issue_for(1)
        results: list[str | None] = []
        barrier = threading.Barrier(8)

        def attempt():
            barrier.wait()
            results.append(store.rotate(1, token))

        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        assert store.validate(1, winners[0]) is True


# ---------------------------------------------------------------------------
# Housekeeping
# ---------------------------------------------------------------------------


class TestHousekeeping:
    def test_invalidate_removes_entry(self, store):
        token = store.issue_for(1)
        store.invalidate(1)
        assert store.validate(1, token) is False
        store.invalidate(1)  # no entry: no error

    def test_peek_returns_live_token(self, store):
        token = store.issue_for(1)
        assert store.peek(1) == token
        assert store.peek(2) is None

    def test_peek_hides_expired_token_without_evicting(self, store, clock):
        store.issue_for(1)
        clock.advance(601)
        assert store.peek(1) is None
        assert len(store) == 1

    def test_purge_expired(self, store, clock):
        store.issue_for(1)
        clock.advance(400)
        store.issue_for(2)
        clock.advance(300)
        assert store.purge_expired() == 1
        assert len(store) == 1
        assert store.peek(2) is not None
