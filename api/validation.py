"""
api/validation.py -- Declarative request validation for the gateway endpoints.

Each schema is a table of fields; each field carries an ordered tuple of
rules. validate_payload() evaluates every rule of every field in one pass and
reports each violation once as "<field>: <message>". Bad input is an expected
outcome, so nothing here raises for it -- callers branch on result.ok.

Per-field evaluation:
  missing / null           -> "<field>: Required" (optional fields skip)
  not a string             -> "<field>: Expected string"
  otherwise                -> every rule runs against the (optionally
                              stripped, NFC-composed) value; all failures
                              are reported

Schemas: register, login, profileUpdate, forgotPassword, resetPassword.

The "malformed body" case (not JSON at all) is handled before this module is
reached -- see read_json() / validated() in api/dependencies.py.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel

from api.models import (
    ForgotPasswordPayload,
    LoginPayload,
    ProfileUpdatePayload,
    RegisterPayload,
    ResetPasswordPayload,
)

# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Rule:
    check: Callable[[str], bool]
    message: str


def _is_email(value: str) -> bool:
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def _length(low: int, high: int) -> Callable[[str], bool]:
    return lambda value: low <= len(value) <= high


def _contains(pattern: str) -> Callable[[str], bool]:
    compiled = re.compile(pattern)
    return lambda value: compiled.search(value) is not None


_NAME_CHARS = re.compile(r"^(?:[^\W\d_]|[ '\-])*$")

EMAIL_SYNTAX = Rule(_is_email, "Invalid email address")
EMAIL_RULES = (
    EMAIL_SYNTAX,
    Rule(_length(1, 254), "Must be between 1 and 254 characters"),
)
PASSWORD_RULES = (
    Rule(_length(8, 128), "Must be between 8 and 128 characters"),
    Rule(_contains(r"[a-z]"), "Must contain at least one lowercase letter"),
    Rule(_contains(r"[A-Z]"), "Must contain at least one uppercase letter"),
    Rule(_contains(r"[0-9]"), "Must contain at least one digit"),
)
NAME_RULES = (
    Rule(_length(1, 100), "Must be between 1 and 100 characters"),
    Rule(lambda value: _NAME_CHARS.match(value) is not None, "May only contain letters, spaces, hyphens and apostrophes"),
)
NON_EMPTY = Rule(lambda value: len(value) > 0, "Must not be empty")


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldSpec:
    rules: tuple[Rule, ...]
    required: bool = True
    strip: bool = False
    # NFC-compose before the rules run, so decomposed accents count as letters.
    nfc: bool = False


@dataclass(frozen=True)
class Schema:
    fields: dict[str, FieldSpec]
    model: type[BaseModel]
    # Cross-field checks see only the fields that passed their own rules.
    checks: tuple[Callable[[dict[str, str]], str | None], ...] = ()


def _at_least_one_of(*names: str) -> Callable[[dict[str, str]], str | None]:
    def check(values: dict[str, str]) -> str | None:
        if any(name in values for name in names):
            return None
        return "body: At least one field must be provided"

    return check


SCHEMAS: dict[str, Schema] = {
    "register": Schema(
        fields={
            "email": FieldSpec(EMAIL_RULES, strip=True),
            "password": FieldSpec(PASSWORD_RULES),
            "name": FieldSpec(NAME_RULES, strip=True, nfc=True),
        },
        model=RegisterPayload,
    ),
    "login": Schema(
        fields={
            "email": FieldSpec((EMAIL_SYNTAX,), strip=True),
            "password": FieldSpec((NON_EMPTY,)),
        },
        model=LoginPayload,
    ),
    "profileUpdate": Schema(
        fields={
            "name": FieldSpec(NAME_RULES, required=False, strip=True, nfc=True),
            "email": FieldSpec(EMAIL_RULES, required=False, strip=True),
        },
        model=ProfileUpdatePayload,
        checks=(_at_least_one_of("name", "email"),),
    ),
    "forgotPassword": Schema(
        fields={"email": FieldSpec((EMAIL_SYNTAX,), strip=True)},
        model=ForgotPasswordPayload,
    ),
    "resetPassword": Schema(
        fields={
            "token": FieldSpec((NON_EMPTY,)),
            "password": FieldSpec(PASSWORD_RULES),
        },
        model=ResetPasswordPayload,
    ),
}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    data: BaseModel | None = None
    errors: list[str] = field(default_factory=list)


def validate_payload(schema_name: str, raw: Any) -> ValidationResult:
    """Validate decoded JSON against a named schema.

    Returns ValidationResult(ok=True, data=<payload model>) or
    ValidationResult(ok=False, errors=[...]). Raises KeyError only for an
    unknown schema name, which is a programming error.
    """
    schema = SCHEMAS[schema_name]
    if not isinstance(raw, dict):
        return ValidationResult(ok=False, errors=["body: Expected object"])

    errors: list[str] = []
    clean: dict[str, str] = {}
    for name, spec in schema.fields.items():
        value = raw.get(name)
        if value is None:
            if spec.required:
                errors.append(f"{name}: Required")
            continue
        if not isinstance(value, str):
            errors.append(f"{name}: Expected string")
            continue
        if spec.strip:
            value = value.strip()
        if spec.nfc:
            value = unicodedata.normalize("NFC", value)
        failed = [f"{name}: {rule.message}" for rule in spec.rules if not rule.check(value)]
        if failed:
            errors.extend(failed)
            continue
        clean[name] = value

    if not errors:
        for check in schema.checks:
            message = check(clean)
            if message is not None:
                errors.append(message)

    if errors:
        return ValidationResult(ok=False, errors=list(dict.fromkeys(errors)))
    return ValidationResult(ok=True, data=schema.model.model_validate(clean))
