# upi_bank/db/models.py
import enum

from sqlalchemy import (
    DECIMAL,
    TIMESTAMP,
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    event,
)

from upi_bank.db.session import Base


class TransactionStatus(str, enum.Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    PENDING = "PENDING"


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_accounts_balance_non_negative"),
    )

    account_id = Column(Uuid(as_uuid=True), primary_key=True)
    display_name = Column(String(50), nullable=False)
    phone = Column(String(15), unique=True, nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    # Salted PBKDF2 digest, see core.auth.hash_pin
    pin_hash = Column(String(255), nullable=False)
    balance = Column(DECIMAL(15, 2), nullable=False)
    is_locked = Column(Boolean, nullable=False, default=False)
    failed_pin_attempts = Column(Integer, nullable=False, default=0)
    locked_at = Column(TIMESTAMP, nullable=True)
    created_at = Column(TIMESTAMP, nullable=False)
    updated_at = Column(TIMESTAMP, nullable=False)


class PaymentIdentifier(Base):
    __tablename__ = "payment_identifiers"

    identifier = Column(String(255), primary_key=True)
    account_id = Column(Uuid(as_uuid=True), ForeignKey("accounts.account_id"), nullable=False, index=True)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(TIMESTAMP, nullable=False)


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint("from_account_id", "idempotency_key", name="uq_transactions_idempotency"),
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
    )

    transaction_id = Column(Uuid(as_uuid=True), primary_key=True)
    reference_id = Column(String(50), unique=True, nullable=False)
    from_account_id = Column(Uuid(as_uuid=True), ForeignKey("accounts.account_id"), nullable=False, index=True)
    # NULL when the target identifier did not resolve to an account
    to_account_id = Column(Uuid(as_uuid=True), ForeignKey("accounts.account_id"), nullable=True, index=True)
    to_identifier = Column(String(255), nullable=False)
    amount = Column(DECIMAL(15, 2), nullable=False)
    description = Column(String(100), nullable=True)
    status = Column(String(10), nullable=False)
    failure_reason = Column(String(255), nullable=True)
    idempotency_key = Column(String(100), nullable=True)
    created_at = Column(TIMESTAMP, nullable=False, index=True)


@event.listens_for(Transaction, "before_update")
def _reject_transaction_update(mapper, connection, target):
    raise RuntimeError(
        f"transaction {target.reference_id} is append-only and cannot be modified"
    )
