"""
Payment validation utilities.

Pure, synchronous checks. Each returns a ValidationResult so callers can chain
them and report the first failure; none of them touch storage.
"""

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from upi_bank import config

IDENTIFIER_PATTERN = re.compile(r"[A-Za-z0-9._-]+@[A-Za-z0-9.-]+")
PIN_PATTERN = re.compile(r"[0-9]{4,6}")
PHONE_PATTERN = re.compile(r"[6-9][0-9]{9}")
EMAIL_PATTERN = re.compile(r"[^@\s]+@[^@\s]+\.[A-Za-z]{2,}")

CENT = Decimal("0.01")


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.ok


PASSED = ValidationResult(True)


def _failed(reason: str) -> ValidationResult:
    return ValidationResult(False, reason)


def parse_amount(value: Any) -> Optional[Decimal]:
    """
    Coerce a request amount (number or numeric string) to Decimal.
    Returns None for anything that is not a finite number.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    return amount


def validate_identifier(identifier: Any) -> ValidationResult:
    """
    local-part@domain-part with local in [A-Za-z0-9._-]+ and domain in [A-Za-z0-9.-]+
    """
    if not isinstance(identifier, str) or not IDENTIFIER_PATTERN.fullmatch(identifier):
        return _failed("Invalid UPI ID format")
    return PASSED


def validate_amount(value: Any, max_amount: Decimal = config.MAX_TRANSACTION_AMOUNT) -> ValidationResult:
    amount = parse_amount(value)
    if amount is None:
        return _failed("Amount must be a number")
    if amount <= 0:
        return _failed("Amount must be greater than zero")
    # bound first: quantize() raises InvalidOperation past the context precision
    if amount > max_amount:
        return _failed(f"Amount exceeds the per-transaction limit of {max_amount}")
    if amount != amount.quantize(CENT):
        return _failed("Amount cannot have more than two decimal places")
    return PASSED


def validate_pin(pin: Any) -> ValidationResult:
    if not isinstance(pin, str) or not PIN_PATTERN.fullmatch(pin):
        return _failed("PIN must be 4 to 6 digits")
    return PASSED


def validate_description(description: Any) -> ValidationResult:
    if description is None:
        return PASSED
    if not isinstance(description, str):
        return _failed("Description must be text")
    if len(description) > config.MAX_DESCRIPTION_LENGTH:
        return _failed(f"Description cannot exceed {config.MAX_DESCRIPTION_LENGTH} characters")
    return PASSED


def check_daily_limit(
    spent_today: Decimal,
    amount: Decimal,
    limit: Decimal = config.DAILY_TRANSFER_LIMIT,
) -> ValidationResult:
    """
    Compliance ceiling on the total sent per day, independent of the
    per-transaction maximum.
    """
    if spent_today + amount > limit:
        remaining = max(limit - spent_today, Decimal("0"))
        return _failed(f"Daily transfer limit of {limit} exceeded ({remaining} remaining today)")
    return PASSED


def validate_transfer_request(
    to_identifier: Any,
    amount: Any,
    pin: Any,
    description: Any = None,
    max_amount: Decimal = config.MAX_TRANSACTION_AMOUNT,
) -> ValidationResult:
    """
    Run every request-shape check for a transfer and return the first failure.
    """
    for result in (
        validate_identifier(to_identifier),
        validate_amount(amount, max_amount),
        validate_pin(pin),
        validate_description(description),
    ):
        if not result:
            return result
    return PASSED


def validate_phone(phone: Any) -> ValidationResult:
    if not isinstance(phone, str) or not PHONE_PATTERN.fullmatch(phone):
        return _failed("Phone must be a 10 digit mobile number")
    return PASSED


def validate_registration(name: Any, phone: Any, email: Any, pin: Any) -> ValidationResult:
    if not isinstance(name, str) or not 2 <= len(name.strip()) <= 50:
        return _failed("Name must be 2 to 50 characters")
    phone_result = validate_phone(phone)
    if not phone_result:
        return phone_result
    if not isinstance(email, str) or not EMAIL_PATTERN.fullmatch(email):
        return _failed("Invalid email address")
    return validate_pin(pin)
