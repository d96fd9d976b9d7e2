# mlm_system/services/purchase_service.py
"""
Purchase flow - course purchases and recharges paid from the wallet.

A completed purchase and its commission task are committed together, so
distribution always happens later and never affects the purchase outcome.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional, Protocol
import logging

from sqlalchemy.orm import Session

from core.exceptions import InsufficientBalance, TransactionNotFound, UserNotFound
from models.base import CENT
from models.commission_task import CommissionTask
from models.transaction import Transaction, TransactionType, TransactionStatus
from models.user import User
from mlm_system.services.ledger_service import LedgerService, LedgerField
from mlm_system.utils.money_helpers import to_decimal, Number

logger = logging.getLogger(__name__)


@dataclass
class ProviderResult:
    """Answer of an external recharge/banking provider."""
    success: bool
    apiTransactionId: Optional[str] = None
    errorCode: Optional[str] = None
    errorMessage: Optional[str] = None
    details: Dict = field(default_factory=dict)


class ServiceProvider(Protocol):
    """External provider seam. Implementations live outside this package."""

    def submit(self, request: Dict) -> ProviderResult:
        ...


class PurchaseService:
    """Service for wallet-paid purchases."""

    def __init__(self, session: Session):
        self.session = session
        self.ledger = LedgerService(session)

    def purchaseCourse(self, userId: int, courseId, courseName: str, amount: Number) -> Transaction:
        """
        Buy a course from the wallet.

        Raises:
            InsufficientBalance: Wallet too low (transaction recorded as failed)
            UserNotFound: Unknown user
        """
        return self._execute(
            userId=userId,
            txType=TransactionType.COURSE_PURCHASE,
            subType="course",
            amount=amount,
            serviceDetails={"courseId": courseId, "courseName": courseName},
            description=f"Course purchase: {courseName}",
        )

    def recharge(
            self,
            userId: int,
            amount: Number,
            serviceDetails: Dict,
            provider: Optional[ServiceProvider] = None,
            subType: str = "mobile_recharge"
    ) -> Transaction:
        """
        Recharge paid from the wallet, optionally fulfilled by a provider.

        With a provider the amount is frozen first, then settled on provider
        success or released on provider failure.

        Returns:
            The transaction (status completed, or failed on provider failure)

        Raises:
            InsufficientBalance: Wallet too low (transaction recorded as failed)
            UserNotFound: Unknown user
        """
        return self._execute(
            userId=userId,
            txType=TransactionType.RECHARGE,
            subType=subType,
            amount=amount,
            serviceDetails=dict(serviceDetails or {}),
            description=f"Recharge: {subType}",
            provider=provider,
        )

    def updateStatus(
            self,
            transactionId: int,
            status: str,
            errorCode: Optional[str] = None,
            errorMessage: Optional[str] = None
    ) -> Transaction:
        """
        Move a transaction through its lifecycle.

        Completing a commissionable transaction enqueues its commission task
        in the same commit.

        Raises:
            TransactionNotFound: Unknown transaction
            InvalidStatusTransition: Transition not allowed
        """
        tx = self.session.get(Transaction, transactionId)
        if not tx:
            raise TransactionNotFound(transactionId)

        try:
            tx.updateStatus(status, errorCode, errorMessage)
            if status == TransactionStatus.COMPLETED:
                self._enqueueCommission(tx)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Transaction {transactionId} moved to {status}")
        return tx

    # ============================================================
    # INTERNALS
    # ============================================================

    def _execute(
            self,
            userId: int,
            txType: str,
            subType: str,
            amount: Number,
            serviceDetails: Dict,
            description: str,
            provider: Optional[ServiceProvider] = None
    ) -> Transaction:
        amount = to_decimal(amount)
        if amount <= 0:
            raise ValueError(f"Purchase amount must be positive, got {amount}")
        if amount != amount.quantize(CENT):
            raise ValueError(f"Purchase amount has more than two decimal places: {amount}")

        if not self.session.get(User, userId):
            raise UserNotFound(userId)

        tx = Transaction(
            userID=userId,
            type=txType,
            subType=subType,
            amount=amount,
            status=TransactionStatus.PENDING,
            serviceDetails=serviceDetails,
            description=description
        )
        self.session.add(tx)
        self.session.commit()

        logger.info(f"Transaction {tx.transactionRef} created: user={userId}, {txType} {amount}")

        if provider is None:
            return self._settleFromWallet(tx, amount)
        return self._settleThroughProvider(tx, amount, provider)

    def _settleFromWallet(self, tx: Transaction, amount: Decimal) -> Transaction:
        try:
            self.ledger.debit(tx.userID, LedgerField.WALLET_BALANCE, amount)
            balanceAfter = self.ledger.getBalance(tx.userID)
            tx.balanceBefore = balanceAfter + amount
            tx.balanceAfter = balanceAfter
            tx.updateStatus(TransactionStatus.COMPLETED)
            self._enqueueCommission(tx)
            self.session.commit()
        except InsufficientBalance as e:
            self.session.rollback()
            self._markFailed(tx, "INSUFFICIENT_BALANCE", str(e))
            raise
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Transaction {tx.transactionRef} completed, balance {tx.balanceAfter}")
        return tx

    def _settleThroughProvider(self, tx: Transaction, amount: Decimal, provider: ServiceProvider) -> Transaction:
        # Hold the funds while the provider works
        try:
            self.ledger.freeze(tx.userID, amount)
            balanceAfter = self.ledger.getBalance(tx.userID)
            tx.balanceBefore = balanceAfter + amount
            tx.balanceAfter = balanceAfter
            tx.updateStatus(TransactionStatus.PROCESSING)
            self.session.commit()
        except InsufficientBalance as e:
            self.session.rollback()
            self._markFailed(tx, "INSUFFICIENT_BALANCE", str(e))
            raise
        except Exception:
            self.session.rollback()
            raise

        request = {
            "transactionRef": tx.transactionRef,
            "userId": tx.userID,
            "amount": amount,
            "subType": tx.subType,
            "serviceDetails": tx.serviceDetails,
        }

        try:
            outcome = provider.submit(request)
        except Exception as e:
            logger.error(f"Provider call failed for {tx.transactionRef}: {e}", exc_info=True)
            outcome = ProviderResult(success=False, errorCode="PROVIDER_ERROR", errorMessage=str(e))

        try:
            if outcome.success:
                self.ledger.debit(tx.userID, LedgerField.FROZEN_AMOUNT, amount)
                tx.apiTransactionId = outcome.apiTransactionId
                tx.updateStatus(TransactionStatus.COMPLETED)
                self._enqueueCommission(tx)
            else:
                self.ledger.release(tx.userID, amount)
                tx.balanceAfter = tx.balanceBefore
                tx.updateStatus(
                    TransactionStatus.FAILED,
                    outcome.errorCode or "PROVIDER_FAILED",
                    outcome.errorMessage
                )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Transaction {tx.transactionRef} finished with status {tx.status}")
        return tx

    def _markFailed(self, tx: Transaction, errorCode: str, errorMessage: str):
        tx.updateStatus(TransactionStatus.FAILED, errorCode, errorMessage)
        self.session.commit()
        logger.info(f"Transaction {tx.transactionRef} failed: {errorCode}")

    def _enqueueCommission(self, tx: Transaction):
        """Outbox row, flushed with the completing transaction."""
        if tx.type not in TransactionType.COMMISSIONABLE:
            return

        existing = self.session.query(CommissionTask.id).filter_by(
            transactionID=tx.transactionID
        ).first()
        if existing:
            return

        self.session.add(CommissionTask(transactionID=tx.transactionID))
        logger.debug(f"Commission task queued for transaction {tx.transactionID}")
