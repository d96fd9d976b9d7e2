# models/transaction.py
"""
Transaction model - one monetary event (purchase, recharge, commission payout, ...).
"""
import secrets
import string
import time

from sqlalchemy import (
    Column, Integer, String, DECIMAL, DateTime, ForeignKey, JSON, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship

from core.exceptions import InvalidStatusTransition
from models.base import Base, AuditMixin, Money, _get_current_time


class TransactionType:
    RECHARGE = "recharge"
    COURSE_PURCHASE = "course_purchase"
    COMMISSION_EARNED = "commission_earned"
    REFERRAL_BONUS = "referral_bonus"
    WITHDRAWAL = "withdrawal"
    DEPOSIT = "deposit"
    LOAN_DISBURSEMENT = "loan_disbursement"
    LOAN_REPAYMENT = "loan_repayment"
    INSURANCE_PREMIUM = "insurance_premium"
    BANK_TRANSFER = "bank_transfer"
    REFUND = "refund"
    PENALTY = "penalty"

    ALL = (
        RECHARGE, COURSE_PURCHASE, COMMISSION_EARNED, REFERRAL_BONUS, WITHDRAWAL,
        DEPOSIT, LOAN_DISBURSEMENT, LOAN_REPAYMENT, INSURANCE_PREMIUM,
        BANK_TRANSFER, REFUND, PENALTY,
    )

    # Only these trigger upline commission; commission_earned never does
    COMMISSIONABLE = (COURSE_PURCHASE, RECHARGE)


class TransactionStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    TERMINAL = (COMPLETED, FAILED, CANCELLED, REFUNDED)

    TRANSITIONS = {
        PENDING: (PROCESSING, COMPLETED, FAILED, CANCELLED),
        PROCESSING: (COMPLETED, FAILED, CANCELLED),
        COMPLETED: (REFUNDED,),
        FAILED: (),
        CANCELLED: (),
        REFUNDED: (),
    }


class CommissionStatus:
    PROCESSING = "processing"
    DISTRIBUTED = "distributed"
    PARTIAL = "partial"


TRANSACTION_REF_ALPHABET = string.ascii_uppercase + string.digits


def generate_transaction_ref() -> str:
    """TXN + epoch millis + 5 random upper-case alphanumerics."""
    suffix = "".join(secrets.choice(TRANSACTION_REF_ALPHABET) for _ in range(5))
    return f"TXN{int(time.time() * 1000)}{suffix}"


class Transaction(Base, AuditMixin):
    __tablename__ = 'transactions'

    # Primary key
    transactionID = Column(Integer, primary_key=True, autoincrement=True)
    transactionRef = Column(String(40), nullable=False, unique=True, default=generate_transaction_ref)

    # Relations
    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)

    # Details
    type = Column(String(32), nullable=False, index=True)
    subType = Column(String(64), nullable=True)
    amount = Column(Money, nullable=False)
    currency = Column(String(8), nullable=False, default="INR")
    status = Column(String(20), nullable=False, default=TransactionStatus.PENDING, index=True)
    serviceDetails = Column(JSON, nullable=True)

    # Balance snapshot
    balanceBefore = Column(Money, nullable=True)
    balanceAfter = Column(Money, nullable=True)

    # Provider / error details
    apiTransactionId = Column(String, nullable=True)
    errorCode = Column(String, nullable=True)
    errorMessage = Column(String, nullable=True)

    # Commission audit (commission_earned rows only)
    sourceTransactionID = Column(Integer, ForeignKey('transactions.transactionID'), nullable=True, index=True)
    sourceUserID = Column(Integer, ForeignKey('users.userID'), nullable=True)
    commissionLevel = Column(Integer, nullable=True)
    commissionPercentage = Column(DECIMAL(6, 3), nullable=True)

    # Distribution (purchase-type rows only)
    commissionDistribution = Column(JSON, nullable=True)
    commissionStatus = Column(String(20), nullable=True, index=True)

    description = Column(String, nullable=True)
    notes = Column(String, nullable=True)

    # Lifecycle timestamps
    initiatedAt = Column(DateTime, default=_get_current_time)
    completedAt = Column(DateTime, nullable=True)
    failedAt = Column(DateTime, nullable=True)

    # Relationships
    user = relationship('User', foreign_keys=[userID], backref='transactions')
    sourceTransaction = relationship('Transaction', remote_side=[transactionID])

    __table_args__ = (
        # One credit per source transaction and level
        UniqueConstraint('sourceTransactionID', 'commissionLevel', name='uq_commission_source_level'),
        Index('ix_transactions_user_type_created', 'userID', 'type', 'createdAt'),
    )

    def updateStatus(self, status: str, errorCode: str = None, errorMessage: str = None):
        """
        Move to a new status, enforcing the lifecycle.

        completedAt / failedAt are set exactly once.

        Raises:
            InvalidStatusTransition: If the transition is not allowed
        """
        allowed = TransactionStatus.TRANSITIONS.get(self.status, ())
        if status not in allowed:
            raise InvalidStatusTransition(self.transactionID, self.status, status)

        self.status = status

        if status == TransactionStatus.COMPLETED and self.completedAt is None:
            self.completedAt = _get_current_time()
        elif status == TransactionStatus.FAILED and self.failedAt is None:
            self.failedAt = _get_current_time()
            self.errorCode = errorCode
            self.errorMessage = errorMessage

    def __repr__(self):
        return (
            f"<Transaction(transactionID={self.transactionID}, type={self.type}, "
            f"amount={self.amount}, status={self.status})>"
        )
