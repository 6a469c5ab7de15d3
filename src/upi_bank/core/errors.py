"""
Error taxonomy for the payment path.

Every business or storage failure is raised as a PaymentError subclass. Each
class carries a stable machine-readable code, the HTTP status the API maps it
to, and whether the client may safely retry. The FastAPI app renders them
through a single exception handler (see upi_bank.app).
"""

from typing import Any, Dict, Optional


class PaymentError(Exception):
    code = "PAYMENT_ERROR"
    http_status = 500
    retryable = False
    default_message = "Payment could not be processed"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.default_message
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "success": False,
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        body.update(self.extra)
        return body


# --- client errors: nothing recorded -------------------------------------


class ValidationError(PaymentError):
    code = "VALIDATION_ERROR"
    http_status = 400
    default_message = "Invalid request"


class DailyLimitExceeded(PaymentError):
    code = "DAILY_LIMIT_EXCEEDED"
    http_status = 403
    default_message = "Daily transfer limit exceeded"


class Unauthenticated(PaymentError):
    code = "UNAUTHENTICATED"
    http_status = 401
    default_message = "Authentication required"


class TokenExpired(Unauthenticated):
    code = "TOKEN_EXPIRED"
    default_message = "Session expired, please log in again"


class Forbidden(PaymentError):
    code = "FORBIDDEN"
    http_status = 403
    default_message = "Not allowed"


class InvalidPin(PaymentError):
    code = "INVALID_PIN"
    http_status = 401
    default_message = "Invalid PIN"


class AccountLocked(PaymentError):
    code = "ACCOUNT_LOCKED"
    http_status = 423
    default_message = "Account is locked due to too many failed PIN attempts"


class AccountNotFound(PaymentError):
    code = "ACCOUNT_NOT_FOUND"
    http_status = 404
    default_message = "Account not found"


class TransactionNotFound(PaymentError):
    code = "TRANSACTION_NOT_FOUND"
    http_status = 404
    default_message = "Transaction not found"


class InsufficientBalance(PaymentError):
    code = "INSUFFICIENT_BALANCE"
    http_status = 400
    default_message = "Insufficient balance"


class InsufficientFunds(PaymentError):
    """Raised by the account store when an adjustment would make a balance negative."""

    code = "INSUFFICIENT_FUNDS"
    http_status = 400
    default_message = "Balance cannot go below zero"


class Conflict(PaymentError):
    code = "CONFLICT"
    http_status = 409
    default_message = "Resource already exists"


# --- recorded failures: a FAILED transaction row exists ------------------


class RecipientNotFound(PaymentError):
    code = "RECIPIENT_NOT_FOUND"
    http_status = 404
    default_message = (
        "Invalid recipient identifier. Your account was not debited; "
        "any amount debited in error will be reversed."
    )


class RecipientLocked(PaymentError):
    code = "RECIPIENT_LOCKED"
    http_status = 423
    default_message = "Recipient account is locked. Your account was not debited."


class SelfTransfer(ValidationError):
    code = "SELF_TRANSFER"
    default_message = "Cannot transfer to your own account"


# --- storage failures: nothing applied, safe to retry --------------------


class SettlementFailure(PaymentError):
    code = "SETTLEMENT_FAILED"
    http_status = 500
    retryable = True
    default_message = "Payment could not be settled, no money moved. Please try again."


class DuplicateReference(SettlementFailure):
    code = "DUPLICATE_REFERENCE"
    default_message = "Could not allocate a unique payment reference. Please try again."
