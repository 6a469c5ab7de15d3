from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.exc import IntegrityError

from upi_bank import config
from upi_bank.core.auth import hash_pin
from upi_bank.core.errors import AccountNotFound
from upi_bank.core.ledger import MAX_PAGE_SIZE, TransactionLedger
from upi_bank.core.store import AccountStore
from upi_bank.logging_config import get_logger
from .deps import get_db, require_admin
from .schemas import AccountOut, AdminStatsOut, TransactionPage
from .serializers import serialize_account, serialize_stats, serialize_tx

logger = get_logger("upi_bank.api.admin")

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])

DEMO_PIN = "1234"
DEMO_USERS = [
    {"name": "Rahul Sharma", "phone": "9876543210", "email": "rahul.sharma@example.com"},
    {"name": "Priya Patel", "phone": "9876543211", "email": "priya.patel@example.com"},
    {"name": "Amit Kumar", "phone": "9876543212", "email": "amit.kumar@example.com"},
    {"name": "Sneha Reddy", "phone": "9876543213", "email": "sneha.reddy@example.com"},
    {"name": "Vikram Singh", "phone": "9876543214", "email": "vikram.singh@example.com"},
]


async def _existing_account(store: AccountStore, account_id: UUID):
    account = await store.get(account_id)
    if account is None:
        raise AccountNotFound()
    return account


@router.post("/unlock/{account_id}", response_model=AccountOut)
async def unlock_account(account_id: UUID, db=Depends(get_db)):
    """
    Unlock an account and clear its failed PIN counter.
    """
    store = AccountStore(db)
    await _existing_account(store, account_id)
    await store.unlock(account_id)
    await db.commit()
    logger.info("Admin unlocked account_id=%s", account_id)
    account = await store.get(account_id)
    return serialize_account(account, await store.identifiers_for(account_id))


@router.post("/reset-attempts/{account_id}", response_model=AccountOut)
async def reset_attempts(account_id: UUID, db=Depends(get_db)):
    store = AccountStore(db)
    await _existing_account(store, account_id)
    await store.reset_failed_auth(account_id)
    await db.commit()
    account = await store.get(account_id)
    return serialize_account(account, await store.identifiers_for(account_id))


@router.get("/locked-accounts")
async def locked_accounts(db=Depends(get_db)):
    accounts = await AccountStore(db).list_locked()
    return {
        "success": True,
        "count": len(accounts),
        "accounts": [
            {
                **serialize_account(a),
                "failed_pin_attempts": a.failed_pin_attempts,
                "locked_at": a.locked_at.isoformat() if a.locked_at else None,
            }
            for a in accounts
        ],
    }


@router.get("/accounts")
async def list_accounts(
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    db=Depends(get_db),
):
    accounts = await AccountStore(db).list_accounts(limit=limit, offset=offset)
    return {"success": True, "accounts": [serialize_account(a) for a in accounts]}


@router.get("/stats", response_model=AdminStatsOut)
async def system_stats(db=Depends(get_db)):
    store = AccountStore(db)
    stats = serialize_stats(await TransactionLedger(db).stats())
    stats["total_accounts"] = await store.count()
    stats["locked_accounts"] = len(await store.list_locked())
    return stats


@router.get("/transactions", response_model=TransactionPage)
async def all_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    db=Depends(get_db),
):
    items, total = await TransactionLedger(db).list_all(page=page, limit=limit)
    return {
        "success": True,
        "items": [serialize_tx(t) for t in items],
        "page": page,
        "limit": limit,
        "total": total,
    }


@router.post("/seed")
async def seed_demo(db=Depends(get_db)):
    """
    Idempotent seeding of demo users (PIN 1234, starting balance).
    """
    store = AccountStore(db)
    created = 0
    for user in DEMO_USERS:
        if await store.get_by_phone(user["phone"]):
            continue
        try:
            await store.create(
                display_name=user["name"],
                phone=user["phone"],
                email=user["email"],
                pin_hash=hash_pin(DEMO_PIN),
                balance=Decimal(config.STARTING_BALANCE),
            )
            await db.commit()
            created += 1
        except IntegrityError:
            await db.rollback()
            logger.warning("seed_demo: %s already exists (email clash), skipping", user["phone"])
    logger.info("Admin seed complete; created=%s accounts", created)
    return {"success": True, "seeded_accounts_created": created, "demo_pin": DEMO_PIN}


@router.post("/reset")
async def reset_all(request: Request, confirm: bool = Query(False), db=Depends(get_db)):
    """
    Delete every account and transaction. Requires ?confirm=true.
    """
    if not confirm:
        return {"success": False, "message": "Pass confirm=true to wipe all data"}
    removed = await AccountStore(db).delete_all()
    await db.commit()
    request.app.state.sessions.clear()
    return {"success": True, "accounts_removed": removed}
