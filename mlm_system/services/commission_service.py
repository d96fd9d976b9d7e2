# mlm_system/services/commission_service.py
"""
Commission distribution service - pays upline commissions for a completed purchase.

Each beneficiary's ledger credit and its commission_earned record commit together
in their own DB transaction. A failure for one beneficiary never touches the
others or the source transaction; it is recorded in DistributionResult.failures.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Dict, Optional, Union
import logging

from sqlalchemy import update, or_
from sqlalchemy.orm import Session

from core.db import run_in_transaction, get_session_factory
from core.exceptions import (
    DistributionPartialFailure,
    InvalidCommissionLevel,
    MLMError,
    TransactionNotFound,
    UserNotFound,
)
from models.base import _get_current_time
from models.transaction import (
    Transaction,
    TransactionType,
    TransactionStatus,
    CommissionStatus,
)
from models.user import User
from mlm_system.config.commission import CommissionSettings
from mlm_system.services.ledger_service import LedgerService, CommissionCategory
from mlm_system.utils.money_helpers import calculate_commission, to_decimal, to_json_number

logger = logging.getLogger(__name__)

TRANSACTION_CATEGORIES = {
    TransactionType.COURSE_PURCHASE: CommissionCategory.COURSE,
    TransactionType.RECHARGE: CommissionCategory.SERVICE,
}

ENTRY_STATUS_PENDING = "pending"


@dataclass
class DistributionResult:
    """Outcome of one distribute() call. Never raised, always returned."""
    transactionId: int
    totalPaid: Decimal = Decimal("0")
    beneficiaryCount: int = 0
    entries: List[Dict] = field(default_factory=list)
    failures: List[DistributionPartialFailure] = field(default_factory=list)
    alreadyDistributed: bool = False
    skippedReason: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return not self.failures and self.error is None

    def asDict(self) -> Dict:
        return {
            "transactionId": self.transactionId,
            "totalPaid": self.totalPaid,
            "beneficiaryCount": self.beneficiaryCount,
            "entries": list(self.entries),
            "failures": [failure.to_dict() for failure in self.failures],
            "alreadyDistributed": self.alreadyDistributed,
            "skippedReason": self.skippedReason,
            "error": self.error,
        }


class CommissionService:
    """Service for distributing upline commissions."""

    def __init__(self, sessionFactory=None, settings: Optional[CommissionSettings] = None):
        self.sessionFactory = sessionFactory or get_session_factory()
        self.settings = settings or CommissionSettings.from_config()

    # ============================================================
    # PUBLIC API
    # ============================================================

    def distribute(
            self,
            transaction: Union[Transaction, int],
            purchasingUser: Union[User, int, None] = None
    ) -> DistributionResult:
        """
        Distribute commissions for a completed purchase or recharge.

        Idempotent per transaction: the first call claims it, later calls
        return alreadyDistributed. A partial distribution can be retried and
        pays only the levels that are still missing.

        Args:
            transaction: Source transaction or its id
            purchasingUser: Buyer or their id (defaults to transaction owner)

        Returns:
            DistributionResult
        """
        transactionId = self._idOf(transaction, "transactionID")
        purchasingUserId = self._idOf(purchasingUser, "userID")
        result = DistributionResult(transactionId=transactionId)

        try:
            snapshot = run_in_transaction(
                lambda session: self._claim(session, transactionId, purchasingUserId),
                self.sessionFactory
            )
        except (TransactionNotFound, UserNotFound) as e:
            logger.warning(f"Commission distribution skipped for transaction {transactionId}: {e}")
            result.skippedReason = str(e)
            return result
        except Exception as e:
            logger.error(
                f"Could not claim transaction {transactionId} for distribution: {e}",
                exc_info=True
            )
            result.error = str(e)
            return result

        if snapshot.get("skippedReason"):
            result.skippedReason = snapshot["skippedReason"]
            logger.info(f"Transaction {transactionId} not distributed: {result.skippedReason}")
            return result

        if not snapshot["claimed"]:
            result.alreadyDistributed = True
            logger.info(f"Transaction {transactionId} already distributed, skipping")
            return result

        for entry in snapshot["chain"]:
            self._payBeneficiary(entry, snapshot, result)

        try:
            result.entries = run_in_transaction(
                lambda session: self._finalize(session, transactionId, bool(result.failures)),
                self.sessionFactory
            )
        except Exception as e:
            logger.error(
                f"Could not record distribution on transaction {transactionId}: {e}",
                exc_info=True
            )
            result.error = str(e)

        logger.info(
            f"Distributed transaction {transactionId}: "
            f"{result.beneficiaryCount} beneficiaries, total {result.totalPaid}, "
            f"{len(result.failures)} failures"
        )
        return result

    def releaseClaim(self, transactionId: int) -> bool:
        """
        Turn a claim left in 'processing' (crash or store failure between claim
        and finalize) into 'partial' so distribute() can resume it.

        Returns:
            True if a stale claim was released
        """
        def work(session: Session) -> bool:
            stmt = (
                update(Transaction)
                .where(
                    Transaction.transactionID == transactionId,
                    Transaction.commissionStatus == CommissionStatus.PROCESSING
                )
                .values(commissionStatus=CommissionStatus.PARTIAL)
                .execution_options(synchronize_session=False)
            )
            return session.execute(stmt).rowcount > 0

        released = run_in_transaction(work, self.sessionFactory)
        if released:
            logger.warning(f"Released stale commission claim on transaction {transactionId}")
        return released

    # ============================================================
    # STEPS
    # ============================================================

    def _claim(self, session: Session, transactionId: int, purchasingUserId: Optional[int]) -> Dict:
        """Check preconditions and claim the transaction in one DB transaction."""
        tx = session.get(Transaction, transactionId)
        if not tx:
            raise TransactionNotFound(transactionId)

        if tx.type not in TransactionType.COMMISSIONABLE:
            return {"skippedReason": f"type {tx.type} does not earn commission"}
        if tx.status != TransactionStatus.COMPLETED:
            return {"skippedReason": f"status is {tx.status}, not completed"}
        if to_decimal(tx.amount) <= 0:
            return {"skippedReason": f"amount {tx.amount} is not positive"}
        if purchasingUserId is not None and purchasingUserId != tx.userID:
            return {"skippedReason": f"user {purchasingUserId} is not the buyer of transaction {transactionId}"}

        buyer = session.get(User, tx.userID)
        if not buyer:
            raise UserNotFound(tx.userID)

        stmt = (
            update(Transaction)
            .where(
                Transaction.transactionID == transactionId,
                or_(
                    Transaction.commissionStatus.is_(None),
                    Transaction.commissionStatus == CommissionStatus.PARTIAL
                )
            )
            .values(commissionStatus=CommissionStatus.PROCESSING)
            .execution_options(synchronize_session=False)
        )
        claimed = session.execute(stmt).rowcount > 0

        chain = sorted(buyer.uplineChain or [], key=lambda entry: entry["level"])

        return {
            "claimed": claimed,
            "amount": to_decimal(tx.amount),
            "type": tx.type,
            "buyerId": buyer.userID,
            "chain": chain[:self.settings.maxLevels],
        }

    def _payBeneficiary(self, entry: Dict, snapshot: Dict, result: DistributionResult):
        """Credit one upline user; failures are recorded, never raised."""
        userId = entry["userId"]
        level = entry["level"]
        amount = Decimal("0")

        try:
            rate = self.settings.rateFor(level)
            if rate is None:
                raise InvalidCommissionLevel(level, self.settings.maxLevels)

            amount = calculate_commission(snapshot["amount"], rate)
            if amount == 0:
                logger.debug(f"Level {level} commission rounds to zero, skipping user {userId}")
                return

            paid = run_in_transaction(
                lambda session: self._creditBeneficiary(
                    session, result.transactionId, snapshot, userId, level, rate, amount
                ),
                self.sessionFactory
            )

            if paid:
                result.totalPaid += amount
                result.beneficiaryCount += 1

        except Exception as e:
            level_logger = logger.warning if isinstance(e, MLMError) else logger.error
            level_logger(
                f"Commission level {level} for user {userId} on transaction "
                f"{result.transactionId} failed: {e}",
                exc_info=True
            )
            result.failures.append(DistributionPartialFailure(userId, level, amount, str(e)))

    def _creditBeneficiary(
            self,
            session: Session,
            transactionId: int,
            snapshot: Dict,
            userId: int,
            level: int,
            rate: Decimal,
            amount: Decimal
    ) -> bool:
        """
        Ledger credit plus audit record. Runs inside its own DB transaction.

        Returns:
            False if this level was already paid for the source transaction
        """
        existing = session.query(Transaction.transactionID).filter(
            Transaction.sourceTransactionID == transactionId,
            Transaction.commissionLevel == level
        ).first()
        if existing:
            logger.info(
                f"Level {level} of transaction {transactionId} already paid "
                f"(record {existing[0]}), skipping"
            )
            return False

        ledger = LedgerService(session, self.settings.maxLevels)
        ledger.creditCommission(userId, level, TRANSACTION_CATEGORIES.get(snapshot["type"]), amount)

        sourceType = snapshot["type"]
        record = Transaction(
            userID=userId,
            type=TransactionType.COMMISSION_EARNED,
            subType=f"{sourceType}_commission",
            amount=amount,
            status=TransactionStatus.COMPLETED,
            sourceTransactionID=transactionId,
            sourceUserID=snapshot["buyerId"],
            commissionLevel=level,
            commissionPercentage=rate,
            description=f"Level {level} commission from {sourceType}",
            completedAt=_get_current_time()
        )
        session.add(record)
        session.flush()

        logger.debug(
            f"Commission record {record.transactionID}: user {userId}, "
            f"level {level}, {rate}% = {amount}"
        )
        return True

    def _finalize(self, session: Session, transactionId: int, hasFailures: bool) -> List[Dict]:
        """Rebuild the distribution list from audit records and store it on the source."""
        records = session.query(Transaction).filter(
            Transaction.sourceTransactionID == transactionId,
            Transaction.type == TransactionType.COMMISSION_EARNED
        ).order_by(Transaction.commissionLevel).all()

        entries = [
            {
                "userId": record.userID,
                "level": record.commissionLevel,
                "percentage": to_json_number(record.commissionPercentage),
                "amount": to_json_number(record.amount),
                "status": ENTRY_STATUS_PENDING,
            }
            for record in records
        ]

        tx = session.get(Transaction, transactionId)
        tx.commissionDistribution = entries
        tx.commissionStatus = CommissionStatus.PARTIAL if hasFailures else CommissionStatus.DISTRIBUTED
        return entries

    @staticmethod
    def _idOf(obj, attribute: str) -> Optional[int]:
        if obj is None or isinstance(obj, int):
            return obj
        return getattr(obj, attribute)
