from __future__ import annotations

import re

from loyalty.ledger.errors import ValidationError

UTORID_RE = re.compile(r"^[A-Za-z0-9]{7,8}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
ALLOWED_EMAIL_DOMAINS = ("@mail.utoronto.ca", "@utoronto.ca")
NAME_MAX_LENGTH = 50


def validate_utorid(value: str) -> str:
    utorid = (value or "").strip()
    if not UTORID_RE.fullmatch(utorid):
        raise ValidationError("utorid must be 7-8 alphanumeric characters")
    return utorid


def validate_name(value: str) -> str:
    name = (value or "").strip()
    if not name or len(name) > NAME_MAX_LENGTH:
        raise ValidationError(f"name must be 1-{NAME_MAX_LENGTH} characters")
    return name


def validate_email(value: str) -> str:
    email = (value or "").strip().lower()
    if not EMAIL_RE.fullmatch(email):
        raise ValidationError("invalid email format")
    if not email.endswith(ALLOWED_EMAIL_DOMAINS):
        raise ValidationError("email must be a University of Toronto address")
    return email
