from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query

from upi_bank.core.engine import TransferEngine
from upi_bank.core.errors import Forbidden, TransactionNotFound, ValidationError
from upi_bank.core.ledger import MAX_PAGE_SIZE, TransactionLedger
from upi_bank.logging_config import get_logger
from .deps import get_current_account_id, get_db, get_transfer_engine
from .schemas import PaymentIn, PaymentOut, StatsOut, TransactionOut, TransactionPage
from .serializers import serialize_stats, serialize_transfer, serialize_tx

logger = get_logger("upi_bank.api.transactions")

router = APIRouter(tags=["transactions"])


@router.post("/payment", response_model=PaymentOut)
@router.post("/transactions", response_model=PaymentOut)
async def make_payment(
    payload: PaymentIn,
    idempotency_key: str = Header(None),
    account_id: UUID = Depends(get_current_account_id),
    engine: TransferEngine = Depends(get_transfer_engine),
):
    """
    Send money from the authenticated account to a UPI ID.

    Retries carrying the same Idempotency-Key header return the original outcome
    instead of paying twice.
    """
    if idempotency_key is not None and not 1 <= len(idempotency_key) <= 100:
        raise ValidationError("Idempotency-Key must be 1-100 characters")
    logger.info("Payment request from=%s to=%s amount=%s", account_id, payload.to_identifier, payload.amount)
    result = await engine.transfer(
        account_id,
        payload.to_identifier,
        payload.amount,
        description=payload.description,
        pin=payload.pin,
        idempotency_key=idempotency_key,
    )
    return serialize_transfer(result)


@router.get("/transactions/stats", response_model=StatsOut)
async def my_stats(account_id: UUID = Depends(get_current_account_id), db=Depends(get_db)):
    stats = await TransactionLedger(db).stats(account_id)
    return serialize_stats(stats)


@router.get("/transactions/reference/{reference_id}", response_model=TransactionOut)
async def get_by_reference(
    reference_id: str,
    account_id: UUID = Depends(get_current_account_id),
    db=Depends(get_db),
):
    tx = await TransactionLedger(db).get_by_reference(reference_id)
    # Same answer for "missing" and "not yours" so references cannot be probed
    if tx is None or account_id not in (tx.from_account_id, tx.to_account_id):
        raise TransactionNotFound(reference_id=reference_id)
    return serialize_tx(tx, viewer_id=account_id)


@router.get("/transactions/{owner_id}", response_model=TransactionPage)
async def list_transactions(
    owner_id: UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    account_id: UUID = Depends(get_current_account_id),
    db=Depends(get_db),
):
    """
    Paginated history (sent and received), newest first.
    """
    if owner_id != account_id:
        raise Forbidden("You can only view your own transactions")
    items, total = await TransactionLedger(db).list_for_account(owner_id, page=page, limit=limit)
    return {
        "success": True,
        "items": [serialize_tx(t, viewer_id=account_id) for t in items],
        "page": page,
        "limit": limit,
        "total": total,
    }
