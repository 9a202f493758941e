from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List

from .types import ValidationError

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 8


@dataclass(frozen=True)
class PasswordStrength:
    score: int
    feedback: List[str] = field(default_factory=list)


def _email_error(email: str) -> str:
    if not email:
        return "Email is required"
    if not EMAIL_PATTERN.match(email):
        return "Invalid email format"
    return ""


def _raise_if_any(errors: Dict[str, str]) -> None:
    errors = {k: v for k, v in errors.items() if v}
    if errors:
        raise ValidationError(errors)


def validate_email(email: str) -> None:
    _raise_if_any({"email": _email_error(email)})


def validate_sign_in(email: str, password: str) -> None:
    _raise_if_any(
        {
            "email": _email_error(email),
            "password": "" if password else "Password is required",
        }
    )


def validate_sign_up(email: str, password: str, username: str) -> None:
    password_error = ""
    if not password:
        password_error = "Password is required"
    elif len(password) < MIN_PASSWORD_LENGTH:
        password_error = f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    _raise_if_any(
        {
            "email": _email_error(email),
            "password": password_error,
            "username": "" if username.strip() else "Username is required",
        }
    )


def validate_password_reset(password: str, confirm_password: str) -> None:
    errors: Dict[str, str] = {}
    if not password:
        errors["password"] = "Password is required"
    elif len(password) < MIN_PASSWORD_LENGTH:
        errors["password"] = f"Password must be at least {MIN_PASSWORD_LENGTH} characters"

    if not confirm_password:
        errors["confirm_password"] = "Please confirm your password"
    elif password != confirm_password:
        errors["confirm_password"] = "Passwords do not match"
    _raise_if_any(errors)


def password_strength(password: str) -> PasswordStrength:
    checks = [
        (len(password) >= MIN_PASSWORD_LENGTH, f"At least {MIN_PASSWORD_LENGTH} characters"),
        (re.search(r"[a-z]", password) is not None, "Lowercase letter"),
        (re.search(r"[A-Z]", password) is not None, "Uppercase letter"),
        (re.search(r"[0-9]", password) is not None, "Number"),
        (re.search(r"[^a-zA-Z0-9]", password) is not None, "Special character"),
    ]
    score = sum(1 for ok, _ in checks if ok)
    return PasswordStrength(score=score, feedback=[hint for ok, hint in checks if not ok])
