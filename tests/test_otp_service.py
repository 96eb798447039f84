"""Unit tests for auth/otp.py -- code issuance and verification.

Covers:
- generate_otp() length and digit-only output
- send_otp() rejects emails without "@" and creates the account on first use
- the stored code expires about ten minutes after issuance
- delivery failures are swallowed; the code stays verifiable
- verify_otp() failure paths leave the stored code untouched
- a verified code is cleared and cannot be replayed, even by racing requests
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from auth.otp import OtpService, generate_otp, is_valid_email
from auth.store import UserStore
from conftest import RecordingSender
from core.errors import InvalidInput, Unauthorized

EMAIL = "alice@example.com"


@pytest.fixture
def store():
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def service(store, sender):
    return OtpService(store, sender, ttl_seconds=600, length=6)


class TestGenerateOtp:
    def test_six_digits(self):
        for _ in range(100):
            code = generate_otp(6)
            assert len(code) == 6
            assert code.isdigit()

    def test_custom_length(self):
        assert len(generate_otp(8)) == 8


class TestEmailCheck:
    @pytest.mark.parametrize("email", ["a@b", "user@example.com", "@"])
    def test_accepts_anything_with_at(self, email):
        assert is_valid_email(email)

    @pytest.mark.parametrize("email", ["", None, "no-at-sign.example.com"])
    def test_rejects_missing_at(self, email):
        assert not is_valid_email(email)


class TestSendOtp:
    def test_rejects_invalid_email(self, service, store, sender):
        with pytest.raises(InvalidInput, match="Invalid email format"):
            service.send_otp("not-an-email")
        assert store.count_users() == 0
        assert sender.sent == []

    def test_creates_unverified_user(self, service, store, sender):
        result = service.send_otp(EMAIL)
        assert result == {"success": True, "message": "OTP sent successfully to your email", "email": EMAIL}

        user = store.get_by_email(EMAIL)
        assert user is not None
        assert user.role == "user"
        assert user.is_verified is False
        assert sender.sent == [(EMAIL, user.otp)]

    def test_expiry_is_ten_minutes_out(self, service, store):
        before = datetime.now(timezone.utc)
        service.send_otp(EMAIL)
        expiry = datetime.fromisoformat(store.get_by_email(EMAIL).otp_expiry)
        assert timedelta(minutes=9, seconds=59) <= expiry - before <= timedelta(minutes=10, seconds=5)

    def test_resend_replaces_code_and_keeps_account(self, service, store, sender):
        service.send_otp(EMAIL)
        first_id = store.get_by_email(EMAIL).id
        service.send_otp(EMAIL)
        assert store.count_users() == 1
        user = store.get_by_email(EMAIL)
        assert user.id == first_id
        assert user.otp == sender.last_code_for(EMAIL)

    def test_delivery_failure_still_succeeds(self, service, store, sender):
        sender.fail = True
        result = service.send_otp(EMAIL)
        assert result["success"] is True
        assert store.get_by_email(EMAIL).otp is not None


class TestVerifyOtp:
    def test_missing_fields(self, service):
        with pytest.raises(InvalidInput, match="Email and OTP are required"):
            service.verify_otp(EMAIL, "")

    def test_unknown_email(self, service):
        with pytest.raises(Unauthorized, match="User not found"):
            service.verify_otp("ghost@example.com", "123456")

    def test_wrong_code_keeps_stored_code(self, service, store, sender):
        service.send_otp(EMAIL)
        code = sender.last_code_for(EMAIL)
        wrong = "000000" if code != "000000" else "111111"

        with pytest.raises(Unauthorized, match="Invalid OTP"):
            service.verify_otp(EMAIL, wrong)

        user = store.get_by_email(EMAIL)
        assert user.otp == code
        assert user.is_verified is False

    def test_expired_code(self, service, store):
        past = (datetime.now(timezone.utc) - timedelta(seconds=1)).isoformat()
        store.upsert_otp(EMAIL, "123456", past)

        with pytest.raises(Unauthorized, match="OTP has expired"):
            service.verify_otp(EMAIL, "123456")
        assert store.get_by_email(EMAIL).otp == "123456"

    def test_success_clears_code_and_verifies(self, service, store, sender):
        service.send_otp(EMAIL)
        user = service.verify_otp(EMAIL, sender.last_code_for(EMAIL))

        assert user.email == EMAIL
        assert user.is_verified is True
        assert user.otp is None
        assert user.otp_expiry is None

    def test_code_is_single_use(self, service, sender):
        service.send_otp(EMAIL)
        code = sender.last_code_for(EMAIL)
        service.verify_otp(EMAIL, code)

        with pytest.raises(Unauthorized, match="Invalid OTP"):
            service.verify_otp(EMAIL, code)

    def test_resend_keeps_role_of_existing_admin(self, service, store, sender):
        service.send_otp(EMAIL)
        user = store.get_by_email(EMAIL)
        store.update_user(user.id, role="admin")

        service.send_otp(EMAIL)
        verified = service.verify_otp(EMAIL, sender.last_code_for(EMAIL))
        assert verified.role == "admin"


def test_racing_verifications_succeed_once(tmp_path, sender):
    store = UserStore(f"sqlite:///{tmp_path / 'otp.db'}")
    service = OtpService(store, sender, ttl_seconds=600, length=6)
    service.send_otp(EMAIL)
    code = sender.last_code_for(EMAIL)

    # Hold both requests after their read until each has passed the code
    # check, so both reach the consuming update.
    barrier = threading.Barrier(2)
    read_once = threading.local()
    original_get = store.get_by_email

    def get_then_wait(email):
        user = original_get(email)
        if not getattr(read_once, "done", False):
            read_once.done = True
            barrier.wait(timeout=5)
        return user

    store.get_by_email = get_then_wait
    outcomes: list[str] = []

    def verify():
        try:
            service.verify_otp(EMAIL, code)
            outcomes.append("ok")
        except (Unauthorized, InvalidInput) as exc:
            outcomes.append(exc.message)

    threads = [threading.Thread(target=verify) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    try:
        assert outcomes.count("ok") == 1
        assert original_get(EMAIL).otp is None
    finally:
        store.close()
