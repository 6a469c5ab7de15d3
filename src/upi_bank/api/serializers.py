from typing import Any, Dict, Iterable, Optional
from uuid import UUID

from upi_bank.core.engine import TransferResult
from upi_bank.db.models import Account, PaymentIdentifier, Transaction


def serialize_account(a: Account, identifiers: Iterable[PaymentIdentifier] = ()) -> Dict[str, Any]:
    identifiers = list(identifiers)
    default = next((p.identifier for p in identifiers if p.is_default), None)
    return {
        "account_id": str(a.account_id),
        "display_name": a.display_name,
        "phone": a.phone,
        "email": a.email,
        "balance": float(a.balance) if a.balance is not None else 0.0,
        "is_locked": bool(a.is_locked),
        "upi_id": default,
        "payment_identifiers": [
            {"identifier": p.identifier, "is_default": bool(p.is_default)} for p in identifiers
        ],
        "created_at": a.created_at.isoformat() if getattr(a, "created_at", None) else None,
    }


def serialize_tx(t: Transaction, viewer_id: Optional[UUID] = None) -> Dict[str, Any]:
    direction = None
    if viewer_id is not None:
        direction = "sent" if t.from_account_id == viewer_id else "received"
    return {
        "transaction_id": str(t.transaction_id),
        "reference_id": t.reference_id,
        "from_account_id": str(t.from_account_id),
        "to_account_id": str(t.to_account_id) if t.to_account_id else None,
        "to_identifier": t.to_identifier,
        "amount": float(t.amount),
        "description": t.description,
        "status": t.status,
        "failure_reason": t.failure_reason,
        "created_at": t.created_at.isoformat(),
        "direction": direction,
    }


def serialize_transfer(r: TransferResult) -> Dict[str, Any]:
    return {
        "success": True,
        "message": "Payment already processed" if r.replayed else "Payment successful",
        "transaction_id": str(r.transaction_id),
        "reference_id": r.reference_id,
        "status": r.status,
        "amount": float(r.amount),
        "new_balance": float(r.new_sender_balance),
        "to_identifier": r.to_identifier,
        "recipient_name": r.recipient_name,
        "created_at": r.created_at.isoformat(),
        "replayed": r.replayed,
    }


def serialize_stats(stats: Dict[str, Any]) -> Dict[str, Any]:
    return {
        **stats,
        "total_amount": float(stats["total_amount"]),
        "average_amount": float(stats["average_amount"]),
    }
