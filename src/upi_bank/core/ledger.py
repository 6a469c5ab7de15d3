"""
Transaction Ledger
Append-only record of every transfer attempt that got past authentication.

Rows are inserted once and never updated or deleted through this class (the
ORM mapping additionally rejects updates, see db.models). Reference ids are
unique across all rows including failures; a collision surfaces as
IntegrityError from insert() and is handled by the transfer engine.
"""

import secrets
import string
import time
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple, Union
from uuid import UUID, uuid4

from sqlalchemy import case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from upi_bank.db.models import Transaction, TransactionStatus
from upi_bank.db.session import utcnow

REFERENCE_PREFIX = "TXN"
REFERENCE_ALPHABET = string.ascii_uppercase + string.digits
REFERENCE_SUFFIX_LENGTH = 6

MAX_PAGE_SIZE = 100

AccountId = Union[UUID, str]


def generate_reference_id() -> str:
    """
    ``TXN<epoch millis><6 random chars>``: sortable by creation time, unique in practice.
    """
    millis = int(time.time() * 1000)
    suffix = "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(REFERENCE_SUFFIX_LENGTH))
    return f"{REFERENCE_PREFIX}{millis}{suffix}"


def _as_uuid(value: AccountId) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


def _page_bounds(page: int, limit: int) -> Tuple[int, int]:
    page = max(int(page), 1)
    limit = min(max(int(limit), 1), MAX_PAGE_SIZE)
    return limit, (page - 1) * limit


class TransactionLedger:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def insert(
        self,
        *,
        reference_id: str,
        from_account_id: AccountId,
        to_identifier: str,
        amount: Decimal,
        status: TransactionStatus,
        to_account_id: Optional[AccountId] = None,
        description: Optional[str] = None,
        failure_reason: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Transaction:
        """
        Stage a new ledger row and flush it so constraint violations surface here.
        The caller commits.
        """
        status = TransactionStatus(status)
        if (status == TransactionStatus.FAILED) != bool(failure_reason):
            raise ValueError("failure_reason is required for FAILED rows and only allowed there")

        tx = Transaction(
            transaction_id=uuid4(),
            reference_id=reference_id,
            from_account_id=_as_uuid(from_account_id),
            to_account_id=_as_uuid(to_account_id) if to_account_id is not None else None,
            to_identifier=to_identifier,
            amount=Decimal(amount).quantize(Decimal("0.01")),
            description=description or None,
            status=status.value,
            failure_reason=failure_reason,
            idempotency_key=idempotency_key,
            created_at=utcnow(),
        )
        self.db.add(tx)
        await self.db.flush()
        return tx

    async def get_by_id(self, transaction_id: Union[UUID, str]) -> Optional[Transaction]:
        stmt = select(Transaction).where(Transaction.transaction_id == _as_uuid(transaction_id))
        return (await self.db.execute(stmt)).scalars().first()

    async def get_by_reference(self, reference_id: str) -> Optional[Transaction]:
        stmt = select(Transaction).where(Transaction.reference_id == reference_id)
        return (await self.db.execute(stmt)).scalars().first()

    async def get_by_idempotency_key(self, from_account_id: AccountId, key: str) -> Optional[Transaction]:
        stmt = select(Transaction).where(
            Transaction.from_account_id == _as_uuid(from_account_id),
            Transaction.idempotency_key == key,
        )
        return (await self.db.execute(stmt)).scalars().first()

    async def list_for_account(
        self, account_id: AccountId, page: int = 1, limit: int = 20
    ) -> Tuple[List[Transaction], int]:
        """
        Transactions where the account is sender or receiver, newest first.
        Returns (page items, total matching rows).
        """
        account_id = _as_uuid(account_id)
        involved = or_(Transaction.from_account_id == account_id, Transaction.to_account_id == account_id)
        return await self._page(involved, page, limit)

    async def list_all(self, page: int = 1, limit: int = 20) -> Tuple[List[Transaction], int]:
        return await self._page(None, page, limit)

    async def _page(self, condition, page: int, limit: int) -> Tuple[List[Transaction], int]:
        limit, offset = _page_bounds(page, limit)
        stmt = select(Transaction)
        count_stmt = select(func.count()).select_from(Transaction)
        if condition is not None:
            stmt = stmt.where(condition)
            count_stmt = count_stmt.where(condition)
        stmt = (
            stmt.order_by(Transaction.created_at.desc(), Transaction.reference_id.desc())
            .limit(limit)
            .offset(offset)
        )
        items = list((await self.db.execute(stmt)).scalars().all())
        total = (await self.db.execute(count_stmt)).scalar_one()
        return items, total

    async def stats(self, account_id: Optional[AccountId] = None) -> Dict[str, Any]:
        """
        Counts by status plus sum/average of successful amounts, optionally
        restricted to transactions an account took part in.
        """
        succeeded = Transaction.status == TransactionStatus.SUCCESS.value
        stmt = select(
            func.count(Transaction.transaction_id),
            func.sum(case((succeeded, 1), else_=0)),
            func.sum(case((Transaction.status == TransactionStatus.FAILED.value, 1), else_=0)),
            func.sum(case((Transaction.status == TransactionStatus.PENDING.value, 1), else_=0)),
            func.sum(case((succeeded, Transaction.amount), else_=None)),
            func.avg(case((succeeded, Transaction.amount), else_=None)),
        )
        if account_id is not None:
            account_id = _as_uuid(account_id)
            stmt = stmt.where(
                or_(Transaction.from_account_id == account_id, Transaction.to_account_id == account_id)
            )
        total, ok, failed, pending, amount_sum, amount_avg = (await self.db.execute(stmt)).one()
        return {
            "total_transactions": int(total or 0),
            "successful_transactions": int(ok or 0),
            "failed_transactions": int(failed or 0),
            "pending_transactions": int(pending or 0),
            "total_amount": Decimal(str(amount_sum or 0)).quantize(Decimal("0.01")),
            "average_amount": Decimal(str(amount_avg or 0)).quantize(Decimal("0.01")),
        }

    async def spent_since(self, account_id: AccountId, since: datetime) -> Decimal:
        """
        Sum of successful outgoing transfers created at or after ``since``.
        """
        stmt = select(func.coalesce(func.sum(Transaction.amount), 0)).where(
            Transaction.from_account_id == _as_uuid(account_id),
            Transaction.status == TransactionStatus.SUCCESS.value,
            Transaction.created_at >= since,
        )
        spent = (await self.db.execute(stmt)).scalar_one()
        return Decimal(str(spent)).quantize(Decimal("0.01"))
