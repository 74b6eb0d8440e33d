"""
Account onboarding use-cases: signup with OTP email verification, login,
password reset.

Lifecycle:
  signup -> PendingRegistration (+ OTP email)
  verify_otp -> User(account_status="pending", id_assigned=False)
  admin approves and assigns an ID (see user_admin) -> login allowed
"""
import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from app.application.errors import (
    AuthenticationError, ConflictError, NotFoundError, PermissionDeniedError,
    RateLimitError, ValidationError,
)
from app.application.notifications import enqueue_email
from app.auth import generate_otp, get_user_by_email, hash_password, needs_rehash, normalize_email, verify_password
from app.config import get_settings
from app.infrastructure.db.models import OtpCode, PendingRegistration, User
from app.infrastructure.db.transactions import run_in_transaction
from app.utils.dates import ensure_aware, utcnow
from app.utils.validation import (
    is_authorized_staff_email, is_valid_email, is_valid_otp, is_valid_password, is_valid_phone,
)

logger = logging.getLogger(__name__)

SIGNUP_ROLES = ("hr", "client", "employee")
ACCOUNT_STATUSES = ("pending", "approved", "declined", "blocked")
PASSWORD_RESET = "password-reset"

STATUS_LOGIN_ERRORS = {
    "pending": "Your account is pending approval by the admin",
    "declined": "Your account has been declined by the admin",
    "blocked": "Your account has been blocked. Please contact the admin",
}


def _validate_profile(name: str, email: str, password: str, number: str | None) -> None:
    if not (name or "").strip() or not email or not password:
        raise ValidationError("All fields are required")
    if len(name.strip()) < 2:
        raise ValidationError("Name must be at least 2 characters")
    if not is_valid_email(email):
        raise ValidationError("Invalid email address")
    if not is_valid_password(password):
        raise ValidationError("Password must be at least 6 characters")
    if not is_valid_phone(number):
        raise ValidationError("Invalid phone number")


class SignupUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        name: str,
        email: str,
        password: str,
        role: str,
        fullname: str,
        number: str,
    ) -> str:
        settings = get_settings()
        email = normalize_email(email)
        if not (fullname or "").strip() or not (number or "").strip():
            raise ValidationError("All fields are required")
        _validate_profile(name, email, password, number)
        if role not in SIGNUP_ROLES:
            raise ValidationError("Invalid role")
        if role in ("hr", "employee") and not is_authorized_staff_email(email, settings.AUTHORIZED_EMAIL_SUFFIX):
            raise ValidationError(
                f"HR and Employee must use euroshub email format (e.g., name.{settings.AUTHORIZED_EMAIL_SUFFIX})"
            )

        def _apply():
            if get_user_by_email(self.db, email):
                raise ConflictError("User already exists")

            now = utcnow()
            otp = generate_otp()
            pending = self.db.query(PendingRegistration).filter(PendingRegistration.email == email).first()
            if pending is None:
                pending = PendingRegistration(email=email)
                self.db.add(pending)
            pending.password_hash = hash_password(password)
            pending.role = role
            pending.name = name.strip()
            pending.fullname = fullname.strip()
            pending.number = number.strip()
            pending.otp_code = otp
            pending.otp_expiry = now + timedelta(minutes=settings.OTP_EXPIRY_MINUTES)
            pending.otp_sent_at = now
            self.db.flush()

            enqueue_email(self.db, email, "otp", {
                "name": pending.name,
                "otp": otp,
                "expires_minutes": settings.OTP_EXPIRY_MINUTES,
            })
            return email

        return run_in_transaction(self.db, _apply)


class VerifyOtpUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, email: str, otp: str) -> User:
        email = normalize_email(email)
        if not email or not otp:
            raise ValidationError("Email and OTP are required")
        if not is_valid_otp(otp):
            raise ValidationError("OTP must be 6 digits")

        def _apply():
            pending = self.db.query(PendingRegistration).filter(PendingRegistration.email == email).first()
            if pending is None:
                if get_user_by_email(self.db, email):
                    raise ConflictError("OTP already verified. Waiting for admin approval.")
                raise NotFoundError("User not found")
            if ensure_aware(pending.otp_expiry) < utcnow():
                raise ValidationError("OTP has expired. Please request a new one")
            if pending.otp_code != otp:
                raise ValidationError("Invalid OTP")

            user = User(
                email=pending.email,
                password_hash=pending.password_hash,
                role=pending.role,
                name=pending.name,
                fullname=pending.fullname,
                number=pending.number,
                email_verified=True,
                account_status="pending",
                id_assigned=False,
            )
            self.db.add(user)
            self.db.delete(pending)
            self.db.flush()

            enqueue_email(self.db, user.email, "welcome", {"name": user.fullname or user.name, "role": user.role})
            _notify_admins_of_signup(self.db, user)
            logger.info("User %s verified email, awaiting approval", user.email)
            return user

        return run_in_transaction(self.db, _apply)


def _notify_admins_of_signup(db: Session, user: User) -> None:
    context = {
        "name": user.fullname or user.name,
        "email": user.email,
        "role": user.role,
    }
    admins = db.query(User).filter(User.role == "admin").all()
    recipients = [a.email for a in admins]
    if not recipients and get_settings().ADMIN_OTP_EMAIL:
        recipients = [get_settings().ADMIN_OTP_EMAIL]
    for recipient in recipients:
        enqueue_email(db, recipient, "new_signup", context)


class ResendOtpUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, email: str) -> None:
        settings = get_settings()
        email = normalize_email(email)
        if not email:
            raise ValidationError("Email is required")

        def _apply():
            pending = self.db.query(PendingRegistration).filter(PendingRegistration.email == email).first()
            if pending is None:
                if get_user_by_email(self.db, email):
                    raise ConflictError("OTP already verified. Waiting for admin approval.")
                raise NotFoundError("User not found")

            now = utcnow()
            elapsed = (now - ensure_aware(pending.otp_sent_at)).total_seconds()
            if elapsed < settings.OTP_RESEND_COOLDOWN_SECONDS:
                remaining = int(settings.OTP_RESEND_COOLDOWN_SECONDS - elapsed) + 1
                raise RateLimitError(f"Please wait {remaining} seconds before requesting another OTP")

            otp = generate_otp()
            pending.otp_code = otp
            pending.otp_expiry = now + timedelta(minutes=settings.OTP_EXPIRY_MINUTES)
            pending.otp_sent_at = now
            enqueue_email(self.db, email, "otp", {
                "name": pending.name,
                "otp": otp,
                "expires_minutes": settings.OTP_EXPIRY_MINUTES,
            })

        run_in_transaction(self.db, _apply)


class AdminSignupUseCase:
    """Bootstrap the single administrator account."""

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        name: str,
        email: str,
        password: str,
        fullname: str | None = None,
        number: str | None = None,
    ) -> User:
        email = normalize_email(email)
        _validate_profile(name, email, password, number)

        def _apply():
            if self.db.query(User).filter(User.role == "admin").first():
                raise ConflictError("Admin already exists. Only one admin is allowed.")
            if get_user_by_email(self.db, email):
                raise ConflictError("Email already registered")
            now = utcnow()
            user = User(
                email=email,
                password_hash=hash_password(password),
                role="admin",
                name=name.strip(),
                fullname=(fullname or "").strip() or None,
                number=(number or "").strip() or None,
                email_verified=True,
                account_status="approved",
                id_assigned=True,
                id_assigned_at=now,
            )
            self.db.add(user)
            self.db.flush()
            enqueue_email(self.db, user.email, "welcome", {"name": user.fullname or user.name, "role": "admin"})
            logger.info("Admin account created: %s", user.email)
            return user

        return run_in_transaction(self.db, _apply)


class AuthenticateUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, email: str, password: str) -> User:
        if not email or not password:
            raise ValidationError("Email and password are required")
        user = get_user_by_email(self.db, email)
        if user is None or not verify_password(password, user.password_hash):
            raise AuthenticationError("Invalid email or password")
        if not user.email_verified:
            raise PermissionDeniedError("Please verify your email first")
        if user.account_status in STATUS_LOGIN_ERRORS:
            raise PermissionDeniedError(STATUS_LOGIN_ERRORS[user.account_status])
        if user.role != "admin" and not user.id_assigned:
            raise PermissionDeniedError("Please wait for admin to assign your ID before logging in")

        if needs_rehash(user.password_hash):
            user.password_hash = hash_password(password)
        user.last_seen_at = utcnow()
        self.db.commit()
        return user


class ForgotPasswordUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, email: str) -> str:
        """Returns the address the reset code was sent to."""
        settings = get_settings()
        email = normalize_email(email)
        if not email:
            raise ValidationError("Email is required")

        def _apply():
            user = get_user_by_email(self.db, email)
            if user is None:
                raise NotFoundError("User not found with this email address")

            code = generate_otp()
            row = self.db.query(OtpCode).filter(OtpCode.email == email, OtpCode.purpose == PASSWORD_RESET).first()
            if row is None:
                row = OtpCode(email=email, purpose=PASSWORD_RESET)
                self.db.add(row)
            row.code = code
            row.expires_at = utcnow() + timedelta(minutes=settings.PASSWORD_RESET_EXPIRY_MINUTES)
            self.db.flush()

            recipient = email
            if user.role == "admin" and settings.ADMIN_OTP_EMAIL:
                recipient = settings.ADMIN_OTP_EMAIL
            enqueue_email(self.db, recipient, "password_reset", {
                "name": user.fullname or user.name,
                "otp": code,
                "expires_minutes": settings.PASSWORD_RESET_EXPIRY_MINUTES,
            })
            return recipient

        return run_in_transaction(self.db, _apply)


class ResetPasswordUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, email: str, otp: str, new_password: str) -> None:
        email = normalize_email(email)
        if not is_valid_otp(otp):
            raise ValidationError("OTP must be 6 digits")
        if not is_valid_password(new_password):
            raise ValidationError("Password must be at least 6 characters")

        def _apply():
            row = self.db.query(OtpCode).filter(OtpCode.email == email, OtpCode.purpose == PASSWORD_RESET).first()
            if row is None or row.code != otp:
                raise ValidationError("Invalid OTP")
            if ensure_aware(row.expires_at) < utcnow():
                raise ValidationError("OTP has expired. Please request a new one")
            user = get_user_by_email(self.db, email)
            if user is None:
                raise NotFoundError("User not found with this email address")
            user.password_hash = hash_password(new_password)
            self.db.delete(row)

        run_in_transaction(self.db, _apply)


def purge_expired_codes(db: Session) -> int:
    """Drop pending registrations and OTP codes whose code expired over a day ago."""
    cutoff = utcnow() - timedelta(days=1)
    removed = db.query(PendingRegistration).filter(PendingRegistration.otp_expiry < cutoff).delete(
        synchronize_session=False
    )
    removed += db.query(OtpCode).filter(OtpCode.expires_at < cutoff).delete(synchronize_session=False)
    db.commit()
    if removed:
        logger.info("Purged %s expired registration/OTP rows", removed)
    return removed
