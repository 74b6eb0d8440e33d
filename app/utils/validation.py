"""
Validation utilities
"""
import re

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^\+?[\d\s\-()]{10,}$")
OTP_RE = re.compile(r"^\d{6}$")
EMPLOYEE_ID_RE = re.compile(r"^EMP[A-Z]{2}\d{6}$")
CLIENT_ID_RE = re.compile(r"^CLI[A-Z]{2}\d{6}$")
PROJECT_KEY_RE = re.compile(r"^[A-Z]{2,10}$")
HEX_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")
NAME_RE = re.compile(r"^[A-Za-z\s]{2,}$")

MIN_PASSWORD_LENGTH = 6


def is_valid_email(value: str) -> bool:
    return bool(value) and bool(EMAIL_RE.match(value))


def is_authorized_staff_email(value: str, suffix: str) -> bool:
    """
    HR and employee accounts must use the organisation mailbox.

    Example:
        >>> is_authorized_staff_email("jane.euroshub@gmail.com", "euroshub@gmail.com")
        True
        >>> is_authorized_staff_email("jane@gmail.com", "euroshub@gmail.com")
        False
    """
    return bool(re.match(r"^\S+" + re.escape(suffix) + r"$", value or ""))


def is_valid_password(value: str) -> bool:
    return bool(value) and len(value) >= MIN_PASSWORD_LENGTH


def is_valid_name(value: str) -> bool:
    return bool(NAME_RE.match((value or "").strip()))


def is_valid_phone(value: str | None) -> bool:
    """Phone number is optional; when present it needs at least 10 digits/separators."""
    if not value:
        return True
    return bool(PHONE_RE.match(value))


def is_valid_otp(value: str) -> bool:
    return bool(OTP_RE.match(value or ""))


def is_valid_employee_id(value: str) -> bool:
    """
    Example:
        >>> is_valid_employee_id("EMPAB123456")
        True
    """
    return bool(EMPLOYEE_ID_RE.match(value or ""))


def is_valid_client_id(value: str) -> bool:
    return bool(CLIENT_ID_RE.match(value or ""))


def is_valid_project_key(value: str) -> bool:
    return bool(PROJECT_KEY_RE.match(value or ""))


def is_valid_hex_color(value: str) -> bool:
    return bool(HEX_COLOR_RE.match(value or ""))


def sanitize_input(value: str | None) -> str:
    """Strip whitespace and angle brackets from free text."""
    return re.sub(r"[<>]", "", (value or "").strip())
