"""
Account Store
CRUD over accounts and their payment identifiers, plus the atomic primitives
the transfer engine depends on.

All methods run on the caller's AsyncSession and never commit; the caller
owns the unit of work. Balance and lock-counter changes are single
conditional UPDATE statements so that concurrent requests (possibly from
different server processes) serialize in the database, not in Python.
"""

from decimal import Decimal
from typing import List, Optional, Union
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from upi_bank import config
from upi_bank.core.errors import AccountNotFound, InsufficientFunds
from upi_bank.db.models import Account, PaymentIdentifier, Transaction
from upi_bank.db.session import utcnow
from upi_bank.logging_config import get_logger

logger = get_logger("upi_bank.core.store")

AccountId = Union[UUID, str]


def _as_uuid(account_id: AccountId) -> UUID:
    return account_id if isinstance(account_id, UUID) else UUID(str(account_id))


def default_identifier_for(phone: str) -> str:
    return f"{phone}@{config.UPI_DOMAIN}"


class AccountStore:
    def __init__(self, db: AsyncSession, max_pin_attempts: int = config.MAX_PIN_ATTEMPTS):
        self.db = db
        self.max_pin_attempts = max_pin_attempts

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def _first(self, stmt) -> Optional[Account]:
        # populate_existing: always reflect the row as stored, never a stale identity-map copy
        res = await self.db.execute(stmt.execution_options(populate_existing=True))
        return res.scalars().first()

    async def get(self, account_id: AccountId) -> Optional[Account]:
        return await self._first(select(Account).where(Account.account_id == _as_uuid(account_id)))

    async def get_by_phone(self, phone: str) -> Optional[Account]:
        return await self._first(select(Account).where(Account.phone == phone.strip()))

    async def get_by_email(self, email: str) -> Optional[Account]:
        return await self._first(
            select(Account).where(func.lower(Account.email) == email.strip().lower())
        )

    async def get_by_identifier(self, identifier: str) -> Optional[Account]:
        """
        Exact match on the stored identifier. Identifiers are stored lowercased
        (see add_identifier), so the lookup is case-insensitive the way UPI
        handles are.
        """
        stmt = (
            select(Account)
            .join(PaymentIdentifier, PaymentIdentifier.account_id == Account.account_id)
            .where(PaymentIdentifier.identifier == identifier.strip().lower())
        )
        return await self._first(stmt)

    async def identifiers_for(self, account_id: AccountId) -> List[PaymentIdentifier]:
        stmt = (
            select(PaymentIdentifier)
            .where(PaymentIdentifier.account_id == _as_uuid(account_id))
            .order_by(PaymentIdentifier.is_default.desc(), PaymentIdentifier.identifier)
        )
        res = await self.db.execute(stmt.execution_options(populate_existing=True))
        return list(res.scalars().all())

    async def list_accounts(self, limit: int = 50, offset: int = 0) -> List[Account]:
        stmt = select(Account).order_by(Account.created_at.desc()).limit(limit).offset(offset)
        res = await self.db.execute(stmt.execution_options(populate_existing=True))
        return list(res.scalars().all())

    async def list_locked(self) -> List[Account]:
        stmt = select(Account).where(Account.is_locked.is_(True)).order_by(Account.locked_at.desc())
        res = await self.db.execute(stmt.execution_options(populate_existing=True))
        return list(res.scalars().all())

    async def count(self) -> int:
        res = await self.db.execute(select(func.count()).select_from(Account))
        return res.scalar_one()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def create(
        self,
        display_name: str,
        phone: str,
        email: str,
        pin_hash: str,
        balance: Decimal = config.STARTING_BALANCE,
    ) -> Account:
        """
        Insert a new account with ``<phone>@<UPI_DOMAIN>`` as its default payment identifier.
        Unique-constraint violations (phone, email, identifier) surface as IntegrityError on flush.
        """
        now = utcnow()
        account = Account(
            account_id=uuid4(),
            display_name=display_name.strip(),
            phone=phone.strip(),
            email=email.strip().lower(),
            pin_hash=pin_hash,
            balance=Decimal(balance).quantize(Decimal("0.01")),
            is_locked=False,
            failed_pin_attempts=0,
            created_at=now,
            updated_at=now,
        )
        self.db.add(account)
        await self.db.flush()
        await self.add_identifier(account.account_id, default_identifier_for(account.phone), make_default=True)
        logger.info("Account created account_id=%s phone=%s", account.account_id, account.phone)
        return account

    async def add_identifier(
        self, account_id: AccountId, identifier: str, make_default: bool = False
    ) -> PaymentIdentifier:
        """
        Attach a payment identifier. With make_default the previous default is cleared
        in the same unit of work, keeping exactly one default per account.
        """
        account_id = _as_uuid(account_id)
        if make_default:
            await self.db.execute(
                update(PaymentIdentifier)
                .where(PaymentIdentifier.account_id == account_id)
                .values(is_default=False)
                .execution_options(synchronize_session=False)
            )
        pid = PaymentIdentifier(
            identifier=identifier.strip().lower(),
            account_id=account_id,
            is_default=make_default,
            created_at=utcnow(),
        )
        self.db.add(pid)
        await self.db.flush()
        return pid

    async def adjust_balance(self, account_id: AccountId, delta: Decimal) -> Decimal:
        """
        Atomically add ``delta`` (negative to debit) and return the new balance.

        Check and write are one statement: the row only changes when the result
        stays >= 0. Raises InsufficientFunds otherwise, AccountNotFound if there
        is no such account.
        """
        account_id = _as_uuid(account_id)
        delta = Decimal(delta)
        stmt = (
            update(Account)
            .where(Account.account_id == account_id, Account.balance + delta >= 0)
            .values(balance=Account.balance + delta, updated_at=utcnow())
            .returning(Account.balance)
            .execution_options(synchronize_session=False)
        )
        res = await self.db.execute(stmt)
        new_balance = res.scalar_one_or_none()
        if new_balance is None:
            if await self._exists(account_id):
                raise InsufficientFunds(account_id=str(account_id))
            raise AccountNotFound(account_id=str(account_id))
        return Decimal(new_balance).quantize(Decimal("0.01"))

    async def record_failed_auth(self, account_id: AccountId) -> int:
        """
        Increment the failed-PIN counter and lock the account once it reaches
        max_pin_attempts. Returns the new attempt count.
        """
        account_id = _as_uuid(account_id)
        stmt = (
            update(Account)
            .where(Account.account_id == account_id)
            .values(failed_pin_attempts=Account.failed_pin_attempts + 1, updated_at=utcnow())
            .returning(Account.failed_pin_attempts)
            .execution_options(synchronize_session=False)
        )
        attempts = (await self.db.execute(stmt)).scalar_one_or_none()
        if attempts is None:
            raise AccountNotFound(account_id=str(account_id))
        if attempts >= self.max_pin_attempts:
            await self.lock(account_id)
            logger.warning("Account locked after %s failed PIN attempts account_id=%s", attempts, account_id)
        return attempts

    async def reset_failed_auth(self, account_id: AccountId) -> None:
        await self._update(account_id, failed_pin_attempts=0)

    async def lock(self, account_id: AccountId) -> None:
        await self._update(account_id, is_locked=True, locked_at=utcnow())

    async def unlock(self, account_id: AccountId) -> None:
        await self._update(account_id, is_locked=False, locked_at=None, failed_pin_attempts=0)

    async def delete_all(self) -> int:
        """
        Administrative reset: wipe the ledger, identifiers and accounts.
        This is the only path that ever deletes account or transaction rows.
        """
        await self.db.execute(delete(Transaction))
        await self.db.execute(delete(PaymentIdentifier))
        res = await self.db.execute(delete(Account))
        logger.warning("Administrative reset removed %s accounts", res.rowcount)
        return res.rowcount

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _exists(self, account_id: UUID) -> bool:
        res = await self.db.execute(select(Account.account_id).where(Account.account_id == account_id))
        return res.scalar_one_or_none() is not None

    async def _update(self, account_id: AccountId, **values) -> None:
        account_id = _as_uuid(account_id)
        values["updated_at"] = utcnow()
        res = await self.db.execute(
            update(Account)
            .where(Account.account_id == account_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 0:
            raise AccountNotFound(account_id=str(account_id))
