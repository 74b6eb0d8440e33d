"""
Tests for onboarding: signup with OTP, verification, login gating, password reset.
"""
from datetime import timedelta

import pytest

from app.application.accounts import (
    AdminSignupUseCase, AuthenticateUseCase, ForgotPasswordUseCase, ResendOtpUseCase,
    ResetPasswordUseCase, SignupUseCase, VerifyOtpUseCase, purge_expired_codes,
)
from app.application.errors import (
    AuthenticationError, ConflictError, NotFoundError, PermissionDeniedError,
    RateLimitError, ValidationError,
)
from app.infrastructure.db.models import EmailOutboxModel, OtpCode, PendingRegistration, User
from app.utils.dates import utcnow


def _signup(db, email="acme@client.com", role="client", **kw):
    values = dict(
        name="Jane Client", fullname="Jane Client", number="+1 555 123 4567",
        email=email, password="secret123", role=role,
    )
    values.update(kw)
    return SignupUseCase(db).execute(**values)


def _pending(db, email):
    return db.query(PendingRegistration).filter(PendingRegistration.email == email).one()


def _outbox(db, template):
    return db.query(EmailOutboxModel).filter(EmailOutboxModel.template == template).all()


# ── Signup ──

class TestSignup:
    def test_creates_pending_registration_and_otp_email(self, db_session):
        email = _signup(db_session, email="  ACME@Client.com ")
        assert email == "acme@client.com"

        pending = _pending(db_session, email)
        assert pending.role == "client"
        assert len(pending.otp_code) == 6
        assert db_session.query(User).count() == 0

        [mail] = _outbox(db_session, "otp")
        assert mail.recipient == email
        assert mail.status == "pending"
        assert mail.context["otp"] == pending.otp_code

    def test_staff_roles_need_company_email(self, db_session):
        with pytest.raises(ValidationError, match="euroshub"):
            _signup(db_session, email="bob@gmail.com", role="employee")
        _signup(db_session, email="bob.euroshub@gmail.com", role="employee")

    def test_admin_role_rejected(self, db_session):
        with pytest.raises(ValidationError, match="Invalid role"):
            _signup(db_session, role="admin")

    @pytest.mark.parametrize("missing", ["fullname", "number"])
    def test_fullname_and_number_required(self, db_session, missing):
        with pytest.raises(ValidationError, match="All fields are required"):
            _signup(db_session, **{missing: "  "})
        assert db_session.query(PendingRegistration).count() == 0

    def test_invalid_number_rejected(self, db_session):
        with pytest.raises(ValidationError, match="phone"):
            _signup(db_session, number="12-34")

    def test_short_password_rejected(self, db_session):
        with pytest.raises(ValidationError, match="6 characters"):
            _signup(db_session, password="123")

    def test_existing_user_conflicts(self, db_session, make_user):
        make_user("client", email="taken@client.com")
        with pytest.raises(ConflictError):
            _signup(db_session, email="taken@client.com")

    def test_second_signup_replaces_pending(self, db_session):
        _signup(db_session)
        _signup(db_session, name="Jane Updated")
        assert db_session.query(PendingRegistration).count() == 1
        assert _pending(db_session, "acme@client.com").name == "Jane Updated"


# ── OTP verification ──

class TestVerifyOtp:
    def test_correct_code_creates_pending_user(self, db_session, admin):
        email = _signup(db_session)
        otp = _pending(db_session, email).otp_code

        user = VerifyOtpUseCase(db_session).execute(email=email, otp=otp)

        assert user.email_verified is True
        assert user.account_status == "pending"
        assert user.id_assigned is False
        assert db_session.query(PendingRegistration).count() == 0
        assert [m.recipient for m in _outbox(db_session, "welcome")] == [email]
        assert [m.recipient for m in _outbox(db_session, "new_signup")] == [admin.email]

    def test_wrong_code(self, db_session):
        email = _signup(db_session)
        wrong = "000000" if _pending(db_session, email).otp_code != "000000" else "111111"
        with pytest.raises(ValidationError, match="Invalid OTP"):
            VerifyOtpUseCase(db_session).execute(email=email, otp=wrong)
        assert db_session.query(User).count() == 0

    def test_expired_code(self, db_session):
        email = _signup(db_session)
        pending = _pending(db_session, email)
        pending.otp_expiry = utcnow() - timedelta(minutes=1)
        db_session.commit()
        with pytest.raises(ValidationError, match="expired"):
            VerifyOtpUseCase(db_session).execute(email=email, otp=pending.otp_code)

    def test_unknown_email(self, db_session):
        with pytest.raises(NotFoundError):
            VerifyOtpUseCase(db_session).execute(email="nobody@client.com", otp="123456")

    def test_already_verified(self, db_session):
        email = _signup(db_session)
        VerifyOtpUseCase(db_session).execute(email=email, otp=_pending(db_session, email).otp_code)
        with pytest.raises(ConflictError, match="already verified"):
            VerifyOtpUseCase(db_session).execute(email=email, otp="123456")

    def test_malformed_code(self, db_session):
        with pytest.raises(ValidationError, match="6 digits"):
            VerifyOtpUseCase(db_session).execute(email="a@b.com", otp="12ab")


class TestResendOtp:
    def test_cooldown(self, db_session):
        email = _signup(db_session)
        with pytest.raises(RateLimitError):
            ResendOtpUseCase(db_session).execute(email=email)

    def test_resend_after_cooldown(self, db_session):
        email = _signup(db_session)
        pending = _pending(db_session, email)
        pending.otp_sent_at = utcnow() - timedelta(minutes=5)
        db_session.commit()

        ResendOtpUseCase(db_session).execute(email=email)

        assert len(_outbox(db_session, "otp")) == 2
        latest = db_session.query(EmailOutboxModel).order_by(EmailOutboxModel.id.desc()).first()
        assert latest.context["otp"] == _pending(db_session, email).otp_code


# ── Admin bootstrap ──

class TestAdminSignup:
    def test_only_one_admin(self, db_session):
        user = AdminSignupUseCase(db_session).execute(name="Boss", email="boss@example.com", password="secret123")
        assert user.role == "admin"
        assert user.account_status == "approved"
        with pytest.raises(ConflictError, match="Only one admin"):
            AdminSignupUseCase(db_session).execute(name="Other", email="other@example.com", password="secret123")


# ── Login ──

class TestAuthenticate:
    def test_approved_user_logs_in(self, db_session, make_user):
        user = make_user("client", email="ok@client.com")
        result = AuthenticateUseCase(db_session).execute(email="OK@client.com", password="secret123")
        assert result.id == user.id
        assert result.last_seen_at is not None

    def test_wrong_password(self, db_session, make_user):
        make_user("client", email="ok@client.com")
        with pytest.raises(AuthenticationError):
            AuthenticateUseCase(db_session).execute(email="ok@client.com", password="nope123")

    def test_unknown_email(self, db_session):
        with pytest.raises(AuthenticationError):
            AuthenticateUseCase(db_session).execute(email="ghost@client.com", password="secret123")

    @pytest.mark.parametrize("status,message", [
        ("pending", "pending approval"),
        ("declined", "declined"),
        ("blocked", "blocked"),
    ])
    def test_status_gates(self, db_session, make_user, status, message):
        make_user("client", email="gate@client.com", account_status=status)
        with pytest.raises(PermissionDeniedError, match=message):
            AuthenticateUseCase(db_session).execute(email="gate@client.com", password="secret123")

    def test_approved_without_id(self, db_session, make_user):
        make_user("client", email="noid@client.com", id_assigned=False)
        with pytest.raises(PermissionDeniedError, match="assign your ID"):
            AuthenticateUseCase(db_session).execute(email="noid@client.com", password="secret123")

    def test_unverified_email(self, db_session, make_user):
        make_user("client", email="unverified@client.com", email_verified=False)
        with pytest.raises(PermissionDeniedError, match="verify"):
            AuthenticateUseCase(db_session).execute(email="unverified@client.com", password="secret123")


# ── Password reset ──

class TestPasswordReset:
    def test_reset_flow(self, db_session, make_user):
        make_user("client", email="forgot@client.com")
        recipient = ForgotPasswordUseCase(db_session).execute(email="forgot@client.com")
        assert recipient == "forgot@client.com"
        code = db_session.query(OtpCode).one().code

        ResetPasswordUseCase(db_session).execute(email="forgot@client.com", otp=code, new_password="newpass99")

        assert db_session.query(OtpCode).count() == 0
        AuthenticateUseCase(db_session).execute(email="forgot@client.com", password="newpass99")

    def test_unknown_email(self, db_session):
        with pytest.raises(NotFoundError):
            ForgotPasswordUseCase(db_session).execute(email="ghost@client.com")

    def test_wrong_code(self, db_session, make_user):
        make_user("client", email="forgot@client.com")
        ForgotPasswordUseCase(db_session).execute(email="forgot@client.com")
        code = db_session.query(OtpCode).one().code
        wrong = "000000" if code != "000000" else "111111"
        with pytest.raises(ValidationError, match="Invalid OTP"):
            ResetPasswordUseCase(db_session).execute(email="forgot@client.com", otp=wrong, new_password="newpass99")

    def test_expired_code(self, db_session, make_user):
        make_user("client", email="forgot@client.com")
        ForgotPasswordUseCase(db_session).execute(email="forgot@client.com")
        row = db_session.query(OtpCode).one()
        row.expires_at = utcnow() - timedelta(seconds=1)
        db_session.commit()
        with pytest.raises(ValidationError, match="expired"):
            ResetPasswordUseCase(db_session).execute(email="forgot@client.com", otp=row.code, new_password="newpass99")


def test_purge_expired_codes(db_session):
    email = _signup(db_session)
    pending = _pending(db_session, email)
    pending.otp_expiry = utcnow() - timedelta(days=2)
    db_session.commit()
    assert purge_expired_codes(db_session) == 1
    assert db_session.query(PendingRegistration).count() == 0
