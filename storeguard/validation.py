"""
Input Validation

Validators and sanitizers for untrusted request input: identifiers, emails,
free text and numbers.

Every function returns a ValidationResult and never raises, so request
handlers can branch on ``result.valid`` without try/except.

Note on sanitize_string: stripping ``<...>`` substrings is defense in depth
against stored markup. It is NOT an HTML sanitizer and must not be relied on
to make HTML safe to render.
"""

import math
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Mapping, Optional, Union


# cuid() ids: 25 chars, leading 'c'
CUID_PATTERN = re.compile(r'^c[a-z0-9]{24}$')

# UUID v4
UUID_PATTERN = re.compile(
    r'^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$'
)

# Simplified RFC 5322
EMAIL_PATTERN = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)

TAG_PATTERN = re.compile(r'<[^>]*>')

EMAIL_MAX_LENGTH = 254
DEFAULT_STRING_MAX_LENGTH = 10000
DEFAULT_DECIMAL_MAX = Decimal("999999999.99")
MAX_SAFE_INTEGER = 2 ** 53 - 1

Number = Union[int, float, str, Decimal]


@dataclass
class ValidationResult:
    """Outcome of validating one value."""
    valid: bool
    error: Optional[str] = None
    sanitized: Optional[str] = None


@dataclass
class BodyValidationResult:
    """Outcome of validating a whole request body against a schema."""
    valid: bool
    errors: Dict[str, str] = field(default_factory=dict)
    data: Dict[str, Any] = field(default_factory=dict)


def _missing(value: Any) -> bool:
    return value is None or value == ""


def _validate_identifier(value: Any, label: str, pattern: re.Pattern,
                         lowercase: bool = False) -> ValidationResult:
    if _missing(value):
        return ValidationResult(False, f"{label} is required")
    if not isinstance(value, str):
        return ValidationResult(False, f"{label} must be a string")

    candidate = value.strip().lower() if lowercase else value.strip()
    if not pattern.match(candidate):
        return ValidationResult(False, f"Invalid {label} format")
    return ValidationResult(True, sanitized=candidate)


def validate_cuid(value: Any) -> ValidationResult:
    """Validate a CUID record identifier."""
    return _validate_identifier(value, "ID", CUID_PATTERN)


def validate_uuid(value: Any) -> ValidationResult:
    """Validate a v4 UUID; the sanitized form is lowercase."""
    return _validate_identifier(value, "UUID", UUID_PATTERN, lowercase=True)


def validate_email(value: Any) -> ValidationResult:
    """
    Validate an email address.

    Args:
        value: Untrusted input

    Returns:
        ValidationResult with the trimmed, lowercased address on success
    """
    if _missing(value):
        return ValidationResult(False, "Email is required")
    if not isinstance(value, str):
        return ValidationResult(False, "Email must be a string")

    email = value.strip().lower()
    if len(email) > EMAIL_MAX_LENGTH:
        return ValidationResult(False, "Email is too long")
    if not EMAIL_PATTERN.match(email):
        return ValidationResult(False, "Invalid email format")
    return ValidationResult(True, sanitized=email)


def sanitize_string(value: Any,
                    max_length: int = DEFAULT_STRING_MAX_LENGTH,
                    allow_html: bool = False,
                    required: bool = False) -> ValidationResult:
    """
    Clean free text for storage and display.

    Trims whitespace, removes NUL bytes and, unless ``allow_html`` is set,
    strips tag-like substrings. Input longer than ``max_length`` fails
    validation rather than being truncated.

    Args:
        value: Untrusted input
        max_length: Maximum length after trimming
        allow_html: Keep ``<...>`` substrings
        required: Treat empty input as an error

    Returns:
        ValidationResult with the cleaned string
    """
    if _missing(value):
        if required:
            return ValidationResult(False, "This field is required")
        return ValidationResult(True, sanitized="")
    if not isinstance(value, str):
        return ValidationResult(False, "Input must be a string")

    cleaned = value.strip().replace("\0", "")

    if len(cleaned) > max_length:
        return ValidationResult(
            False, f"Input exceeds maximum length of {max_length} characters"
        )

    if not allow_html:
        cleaned = TAG_PATTERN.sub("", cleaned)

    return ValidationResult(True, sanitized=cleaned)


def validate_positive_int(value: Any,
                          min: int = 0,
                          max: int = MAX_SAFE_INTEGER,
                          required: bool = False) -> ValidationResult:
    """
    Validate a non-negative integer given as int, integral float or string.

    Booleans, fractional values and non-numeric strings are rejected.
    """
    if _missing(value):
        if required:
            return ValidationResult(False, "This field is required")
        return ValidationResult(True)

    if isinstance(value, bool):
        return ValidationResult(False, "Must be a valid integer")

    if isinstance(value, int):
        number = value
    elif isinstance(value, float):
        if not value.is_integer():
            return ValidationResult(False, "Must be a valid integer")
        number = int(value)
    elif isinstance(value, str):
        try:
            number = int(value.strip(), 10)
        except ValueError:
            return ValidationResult(False, "Must be a valid integer")
    else:
        return ValidationResult(False, "Must be a valid integer")

    if number < 0:
        return ValidationResult(False, "Must be a positive number")
    if number < min:
        return ValidationResult(False, f"Must be at least {min}")
    if number > max:
        return ValidationResult(False, f"Must not exceed {max}")

    return ValidationResult(True, sanitized=str(number))


def validate_decimal(value: Any,
                     min: Number = 0,
                     max: Number = DEFAULT_DECIMAL_MAX,
                     required: bool = False) -> ValidationResult:
    """
    Validate a decimal or money amount.

    On success the sanitized value has exactly two decimal places
    (``"12.50"``), rounded half up.
    """
    if _missing(value):
        if required:
            return ValidationResult(False, "This field is required")
        return ValidationResult(True)

    if isinstance(value, bool):
        return ValidationResult(False, "Must be a valid number")

    if isinstance(value, float) and not math.isfinite(value):
        return ValidationResult(False, "Must be a valid number")

    try:
        amount = Decimal(value.strip() if isinstance(value, str) else str(value))
    except (InvalidOperation, ValueError, TypeError):
        return ValidationResult(False, "Must be a valid number")

    if not amount.is_finite():
        return ValidationResult(False, "Must be a valid number")

    if amount < Decimal(str(min)):
        return ValidationResult(False, f"Must be at least {min}")
    if amount > Decimal(str(max)):
        return ValidationResult(False, f"Must not exceed {max}")

    return ValidationResult(
        True, sanitized=str(amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
    )


_IDENTIFIER_VALIDATORS = {
    "email": validate_email,
    "cuid": validate_cuid,
    "uuid": validate_uuid,
}


def validate_request_body(body: Any, schema: Mapping[str, Mapping[str, Any]]) -> BodyValidationResult:
    """
    Validate a request body against a declarative schema.

    Only fields named in the schema are read, so unexpected input fields
    never reach ``data`` (no mass assignment). All field errors are
    collected before returning.

    Args:
        body: Parsed request body
        schema: field name -> {'type': 'string'|'number'|'boolean'|'email'|
                'cuid'|'uuid', 'required': bool, 'max_length': int}

    Returns:
        BodyValidationResult with per-field errors and the cleaned data
    """
    if not isinstance(body, Mapping):
        return BodyValidationResult(False, errors={"_body": "Invalid request body"})

    errors: Dict[str, str] = {}
    data: Dict[str, Any] = {}

    for name, rules in schema.items():
        value = body.get(name)
        kind = rules.get("type", "string")
        required = bool(rules.get("required", False))

        if kind in _IDENTIFIER_VALIDATORS:
            result = _IDENTIFIER_VALIDATORS[kind](value)
            if not result.valid and (required or not _missing(value)):
                errors[name] = result.error
            elif result.valid:
                data[name] = result.sanitized

        elif kind == "string":
            result = sanitize_string(
                value,
                max_length=rules.get("max_length", DEFAULT_STRING_MAX_LENGTH),
                required=required,
            )
            if not result.valid:
                errors[name] = result.error
            else:
                data[name] = result.sanitized

        elif kind == "number":
            result = validate_decimal(value, required=required)
            if not result.valid:
                errors[name] = result.error
            elif result.sanitized is not None:
                data[name] = float(result.sanitized)

        elif kind == "boolean":
            if value is None:
                if required:
                    errors[name] = "This field is required"
            elif isinstance(value, bool):
                data[name] = value
            else:
                errors[name] = "Must be true or false"

        else:
            errors[name] = f"Unsupported field type: {kind}"

    return BodyValidationResult(not errors, errors, data)
