"""
web/forms.py -- Validation of the signup and login form submissions.

Two passes, in this order:

  1. Empty-field checks, in form field order. Each produces a dedicated
     "<Field> can not be empty" message.
  2. Schema validation through the Pydantic models below. Fields are checked
     in declaration order and rules in the order they are listed per field.

Only the first failure is ever reported; check_signup()/check_login() raise
FormRejected carrying that one message. Routes catch it and re-render the
form. Values are returned as submitted -- nothing is trimmed or case-folded,
because the email string is the lookup key.

Rules:
  name      alphanumeric, at most 30 characters
  email     valid address syntax (email-validator, no DNS lookups)
  password  at most 30 characters, no complexity rules
"""

from __future__ import annotations

import re

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

_ALPHANUM = re.compile(r"^[a-zA-Z0-9]+$")
_MAX_LENGTH = 30


class FormRejected(Exception):
    """A submission failed validation or a business rule.

    message is shown to the user verbatim above the form.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


# ---------------------------------------------------------------------------
# Field rules
# ---------------------------------------------------------------------------


def _utf16_length(value: str) -> int:
    """Length in UTF-16 code units, so characters outside the BMP count twice."""
    return len(value.encode("utf-16-le")) // 2


def _max_length(field: str, value: str) -> str:
    if _utf16_length(value) > _MAX_LENGTH:
        raise ValueError(f'"{field}" length must be less than or equal to {_MAX_LENGTH} characters long')
    return value


def _email(value: str) -> str:
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        raise ValueError('"email" must be a valid email') from None
    return value


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class SignupForm(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    email: str
    password: str

    @field_validator("name")
    @classmethod
    def name_rules(cls, value: str) -> str:
        if not _ALPHANUM.match(value):
            raise ValueError('"name" must only contain alpha-numeric characters')
        return _max_length("name", value)

    @field_validator("email")
    @classmethod
    def email_rules(cls, value: str) -> str:
        return _email(value)

    @field_validator("password")
    @classmethod
    def password_rules(cls, value: str) -> str:
        return _max_length("password", value)


class LoginForm(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: str
    password: str

    @field_validator("email")
    @classmethod
    def email_rules(cls, value: str) -> str:
        return _email(value)

    @field_validator("password")
    @classmethod
    def password_rules(cls, value: str) -> str:
        return _max_length("password", value)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def first_error_message(exc: ValidationError) -> str:
    """Return the message of the first error Pydantic reported.

    Our field validators raise ValueError with the final user-facing text;
    Pydantic keeps the original exception in ctx["error"]. Anything else
    (e.g. a missing field) falls back to Pydantic's own message.
    """
    err = exc.errors()[0]
    original = (err.get("ctx") or {}).get("error")
    if isinstance(original, ValueError):
        return str(original)
    return err["msg"]


def _require(fields: list[tuple[str, str]]) -> None:
    for label, value in fields:
        if not value:
            raise FormRejected(f"{label} can not be empty")


def check_signup(name: str, email: str, password: str) -> SignupForm:
    """Validate a signup submission or raise FormRejected with the first problem."""
    _require([("Name", name), ("Email", email), ("Password", password)])
    try:
        return SignupForm(name=name, email=email, password=password)
    except ValidationError as exc:
        raise FormRejected(first_error_message(exc)) from None


def check_login(email: str, password: str) -> LoginForm:
    """Validate a login submission or raise FormRejected with the first problem."""
    _require([("Email", email), ("Password", password)])
    try:
        return LoginForm(email=email, password=password)
    except ValidationError as exc:
        raise FormRejected(first_error_message(exc)) from None
