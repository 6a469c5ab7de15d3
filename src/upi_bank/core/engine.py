"""
Transfer Engine
Validates, authenticates and settles a peer-to-peer payment.

States for one call to TransferEngine.transfer():

    RECEIVED -> VALIDATED -> AUTHENTICATED -> RESOLVED -> SETTLED

with two terminal failure states, REJECTED and RECORDED_FAILURE.
REJECTED failures write nothing to the ledger. RECORDED_FAILURE writes one
FAILED row (recipient problems) without touching any balance. SETTLED moves
money and writes the SUCCESS row in a single database transaction.

The engine is built per request around one AsyncSession and holds no
process-wide state; concurrent transfers on the same account serialize on
the conditional balance UPDATE in AccountStore.adjust_balance(). The daily
limit is checked once up front and again after that UPDATE, inside the
settlement transaction, so racing transfers cannot overshoot it together.
"""

import enum
from dataclasses import dataclass
from datetime import datetime, time
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Type
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from upi_bank import config
from upi_bank.core import validators
from upi_bank.core.auth import check_pin
from upi_bank.core.errors import (
    AccountNotFound,
    Conflict,
    DailyLimitExceeded,
    DuplicateReference,
    InsufficientBalance,
    InsufficientFunds,
    PaymentError,
    RecipientLocked,
    RecipientNotFound,
    SelfTransfer,
    SettlementFailure,
    ValidationError,
)
from upi_bank.core.ledger import TransactionLedger, generate_reference_id
from upi_bank.core.resolver import IdentityResolver
from upi_bank.core.store import AccountStore
from upi_bank.db.models import Account, TransactionStatus
from upi_bank.db.session import utcnow
from upi_bank.logging_config import get_logger

logger = get_logger("upi_bank.core.engine")

REASON_RECIPIENT_NOT_FOUND = "Invalid recipient identifier"
REASON_RECIPIENT_LOCKED = "Recipient account is locked"
REASON_SELF_TRANSFER = "Cannot transfer to own account"

# Used to replay a recorded failure for a repeated idempotency key
_RECORDED_FAILURES: Dict[str, Type[PaymentError]] = {
    REASON_RECIPIENT_NOT_FOUND: RecipientNotFound,
    REASON_RECIPIENT_LOCKED: RecipientLocked,
    REASON_SELF_TRANSFER: SelfTransfer,
}


class TransferState(str, enum.Enum):
    RECEIVED = "RECEIVED"
    VALIDATED = "VALIDATED"
    AUTHENTICATED = "AUTHENTICATED"
    RESOLVED = "RESOLVED"
    SETTLED = "SETTLED"
    RECORDED_FAILURE = "RECORDED_FAILURE"
    REJECTED = "REJECTED"


@dataclass
class TransferResult:
    transaction_id: UUID
    reference_id: str
    status: str
    amount: Decimal
    new_sender_balance: Decimal
    to_identifier: str
    recipient_name: Optional[str]
    created_at: datetime
    replayed: bool = False


class TransferEngine:
    def __init__(
        self,
        db: AsyncSession,
        *,
        max_amount: Decimal = config.MAX_TRANSACTION_AMOUNT,
        daily_limit: Decimal = config.DAILY_TRANSFER_LIMIT,
        max_pin_attempts: int = config.MAX_PIN_ATTEMPTS,
        reference_factory: Callable[[], str] = generate_reference_id,
        resolver: Optional[IdentityResolver] = None,
    ):
        self.db = db
        self.accounts = AccountStore(db, max_pin_attempts=max_pin_attempts)
        self.ledger = TransactionLedger(db)
        self.resolver = resolver or IdentityResolver(self.accounts)
        self.max_amount = max_amount
        self.daily_limit = daily_limit
        self.reference_factory = reference_factory
        self.state = TransferState.RECEIVED

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def transfer(
        self,
        from_account_id: UUID,
        to_identifier: Any,
        amount: Any,
        description: Optional[str] = None,
        pin: Any = None,
        idempotency_key: Optional[str] = None,
    ) -> TransferResult:
        self.state = TransferState.RECEIVED
        try:
            return await self._run(from_account_id, to_identifier, amount, description, pin, idempotency_key)
        except PaymentError as exc:
            if self.state != TransferState.RECORDED_FAILURE:
                self.state = TransferState.REJECTED
            logger.warning(
                "Transfer rejected from=%s to=%s amount=%s code=%s state=%s reason=%s",
                from_account_id,
                to_identifier,
                amount,
                exc.code,
                self.state.value,
                exc.message,
            )
            raise

    async def _run(self, from_account_id, to_identifier, amount, description, pin, idempotency_key):
        if isinstance(to_identifier, str):
            to_identifier = to_identifier.strip()
        if isinstance(description, str):
            description = description.strip() or None

        # 1. request shape
        check = validators.validate_transfer_request(
            to_identifier, amount, pin, description, max_amount=self.max_amount
        )
        if not check:
            raise ValidationError(check.reason)
        value = validators.parse_amount(amount).quantize(validators.CENT)
        self.state = TransferState.VALIDATED

        # 2. payer; replays are authenticated like fresh requests
        sender = await self._authenticate(from_account_id, pin)
        self.state = TransferState.AUTHENTICATED

        if idempotency_key:
            replay = await self._replay(from_account_id, idempotency_key, to_identifier, value)
            if replay is not None:
                return replay

        await self._check_daily_limit(from_account_id, value)

        # 3. pre-authorization balance check, nothing recorded
        if sender.balance < value:
            raise InsufficientBalance(balance=float(sender.balance))

        # 4. recipient
        recipient = await self.resolver.resolve(to_identifier)
        if recipient is None:
            await self._record_failure(
                sender, to_identifier, value, description, idempotency_key,
                RecipientNotFound, REASON_RECIPIENT_NOT_FOUND,
            )
        if recipient.account_id == sender.account_id:
            await self._record_failure(
                sender, to_identifier, value, description, idempotency_key,
                SelfTransfer, REASON_SELF_TRANSFER, recipient_id=recipient.account_id,
            )
        if recipient.is_locked:
            await self._record_failure(
                sender, to_identifier, value, description, idempotency_key,
                RecipientLocked, REASON_RECIPIENT_LOCKED, recipient_id=recipient.account_id,
            )
        self.state = TransferState.RESOLVED

        # 5. money moves
        result = await self._settle(sender, recipient, to_identifier, value, description, idempotency_key)
        self.state = TransferState.SETTLED
        logger.info(
            "Transfer success ref=%s from=%s to=%s amount=%s",
            result.reference_id,
            from_account_id,
            result.to_identifier,
            value,
        )
        return result

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------
    async def _authenticate(self, account_id: UUID, pin: str) -> Account:
        sender = await self.accounts.get(account_id)
        if sender is None:
            raise AccountNotFound("Sender account not found")
        await check_pin(self.accounts, sender, pin)
        return sender

    async def _check_daily_limit(self, account_id: UUID, amount: Decimal) -> None:
        spent_today = await self.ledger.spent_since(account_id, _start_of_day())
        check = validators.check_daily_limit(spent_today, amount, self.daily_limit)
        if not check:
            raise DailyLimitExceeded(check.reason)

    async def _record_failure(
        self,
        sender: Account,
        to_identifier: str,
        amount: Decimal,
        description: Optional[str],
        idempotency_key: Optional[str],
        error_cls: Type[PaymentError],
        reason: str,
        recipient_id: Optional[UUID] = None,
    ) -> None:
        """
        Write a FAILED ledger row (no balance change) and raise ``error_cls``.
        """
        sender_id = sender.account_id
        for attempt in (1, 2):
            reference_id = self.reference_factory()
            try:
                tx = await self.ledger.insert(
                    reference_id=reference_id,
                    from_account_id=sender_id,
                    to_account_id=recipient_id,
                    to_identifier=to_identifier,
                    amount=amount,
                    description=description,
                    status=TransactionStatus.FAILED,
                    failure_reason=reason,
                    idempotency_key=idempotency_key,
                )
                await self.db.commit()
            except IntegrityError as exc:
                await self.db.rollback()
                if await self._replay_after_conflict(sender_id, idempotency_key, to_identifier, amount):
                    raise Conflict("A payment with this idempotency key has already completed")
                if attempt == 1:
                    logger.warning("Reference collision on %s, reminting", reference_id)
                    continue
                raise DuplicateReference() from exc
            except SQLAlchemyError as exc:
                await self.db.rollback()
                logger.exception("Failed to record failed transfer from=%s: %s", sender_id, exc)
                raise SettlementFailure("Payment could not be recorded. Please try again.") from exc
            break

        self.state = TransferState.RECORDED_FAILURE
        raise error_cls(
            reference_id=tx.reference_id,
            transaction_id=str(tx.transaction_id),
            debited=False,
        )

    async def _settle(
        self,
        sender: Account,
        recipient: Account,
        to_identifier: str,
        amount: Decimal,
        description: Optional[str],
        idempotency_key: Optional[str],
    ) -> TransferResult:
        """
        Debit, credit and SUCCESS row as one all-or-nothing unit. A reference
        collision is retried once with a fresh reference.
        """
        # rollback() expires loaded instances; keep plain values
        sender_id, recipient_id = sender.account_id, recipient.account_id
        recipient_name = recipient.display_name

        for attempt in (1, 2):
            reference_id = self.reference_factory()
            try:
                new_sender_balance = await self.accounts.adjust_balance(sender_id, -amount)
                # The debit holds the sender's row lock until commit, so this
                # re-read sees every transfer that settled ahead of this one.
                await self._check_daily_limit(sender_id, amount)
                await self.accounts.adjust_balance(recipient_id, amount)
                tx = await self.ledger.insert(
                    reference_id=reference_id,
                    from_account_id=sender_id,
                    to_account_id=recipient_id,
                    to_identifier=to_identifier,
                    amount=amount,
                    description=description,
                    status=TransactionStatus.SUCCESS,
                    idempotency_key=idempotency_key,
                )
                await self.db.commit()
            except InsufficientFunds as exc:
                # a concurrent transfer drained the balance after the precheck
                await self.db.rollback()
                raise InsufficientBalance() from exc
            except IntegrityError as exc:
                await self.db.rollback()
                replay = await self._replay_after_conflict(sender_id, idempotency_key, to_identifier, amount)
                if replay is not None:
                    return replay
                if attempt == 1:
                    logger.warning("Reference collision on %s, reminting", reference_id)
                    continue
                raise DuplicateReference() from exc
            except SQLAlchemyError as exc:
                await self.db.rollback()
                logger.exception("Settlement failed from=%s to=%s amount=%s: %s", sender_id, recipient_id, amount, exc)
                raise SettlementFailure() from exc
            except PaymentError:
                await self.db.rollback()
                raise

            return TransferResult(
                transaction_id=tx.transaction_id,
                reference_id=tx.reference_id,
                status=tx.status,
                amount=amount,
                new_sender_balance=new_sender_balance,
                to_identifier=to_identifier,
                recipient_name=recipient_name,
                created_at=tx.created_at,
            )

    # ------------------------------------------------------------------
    # Idempotency
    # ------------------------------------------------------------------
    async def _replay(
        self, from_account_id: UUID, key: str, to_identifier: str, amount: Decimal
    ) -> Optional[TransferResult]:
        """
        Return the stored outcome for a repeated idempotency key, re-raising a
        recorded failure. None if the key has not been used.
        """
        tx = await self.ledger.get_by_idempotency_key(from_account_id, key)
        if tx is None:
            return None
        if tx.to_identifier != to_identifier or Decimal(tx.amount) != amount:
            raise Conflict("Idempotency key was already used for a different payment")

        logger.info("Replaying transfer ref=%s for idempotency key", tx.reference_id)
        if tx.status == TransactionStatus.FAILED.value:
            self.state = TransferState.RECORDED_FAILURE
            error_cls = _RECORDED_FAILURES.get(tx.failure_reason, PaymentError)
            raise error_cls(
                reference_id=tx.reference_id,
                transaction_id=str(tx.transaction_id),
                debited=False,
                replayed=True,
            )

        sender = await self.accounts.get(from_account_id)
        recipient = await self.accounts.get(tx.to_account_id) if tx.to_account_id else None
        self.state = TransferState.SETTLED
        return TransferResult(
            transaction_id=tx.transaction_id,
            reference_id=tx.reference_id,
            status=tx.status,
            amount=Decimal(tx.amount),
            new_sender_balance=Decimal(sender.balance),
            to_identifier=tx.to_identifier,
            recipient_name=recipient.display_name if recipient else None,
            created_at=tx.created_at,
            replayed=True,
        )

    async def _replay_after_conflict(self, sender_id, idempotency_key, to_identifier, amount):
        # an IntegrityError may mean a concurrent request with the same key won the race
        if not idempotency_key:
            return None
        return await self._replay(sender_id, idempotency_key, to_identifier, amount)


def _start_of_day() -> datetime:
    return datetime.combine(utcnow().date(), time.min)
