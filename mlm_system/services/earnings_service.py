# mlm_system/services/earnings_service.py
"""
Earnings reporting - commission history, summaries and counter reconciliation.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
import logging

from core.exceptions import UserNotFound
from models.transaction import Transaction, TransactionType, TransactionStatus
from models.user import User
from mlm_system.utils.money_helpers import to_decimal

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

COURSE_COMMISSION = f"{TransactionType.COURSE_PURCHASE}_commission"
SERVICE_COMMISSION = f"{TransactionType.RECHARGE}_commission"


class EarningsService:
    """Service for reading what users earned."""

    def __init__(self, session: Session):
        self.session = session

    def getCommissionSummary(self, userId: int) -> Dict:
        """
        Commission totals by level.

        Returns:
            {"byLevel": {level: {"totalAmount", "count"}}, "totalEarned": Decimal}
        """
        self._requireUser(userId)

        rows = self.session.query(
            Transaction.commissionLevel,
            func.sum(Transaction.amount),
            func.count(Transaction.transactionID)
        ).filter(
            Transaction.userID == userId,
            Transaction.type == TransactionType.COMMISSION_EARNED
        ).group_by(Transaction.commissionLevel).all()

        byLevel = {
            level: {"totalAmount": to_decimal(total or 0), "count": count}
            for level, total, count in rows
        }

        return {
            "byLevel": byLevel,
            "totalEarned": sum((item["totalAmount"] for item in byLevel.values()), ZERO),
        }

    def getCommissionHistory(
            self,
            userId: int,
            subType: Optional[str] = None,
            startDate: Optional[datetime] = None,
            endDate: Optional[datetime] = None
    ) -> List[Transaction]:
        """Commission records of a user, newest first, optionally filtered."""
        self._requireUser(userId)

        query = self.session.query(Transaction).filter(
            Transaction.userID == userId,
            Transaction.type == TransactionType.COMMISSION_EARNED
        )
        if subType:
            query = query.filter(Transaction.subType == subType)
        if startDate:
            query = query.filter(Transaction.createdAt >= startDate)
        if endDate:
            query = query.filter(Transaction.createdAt <= endDate)

        return query.order_by(Transaction.createdAt.desc(), Transaction.transactionID.desc()).all()

    def getMonthlyEarnings(self, userId: int, year: int, month: int) -> Decimal:
        """Commission earned in one calendar month (UTC)."""
        self._requireUser(userId)

        start = datetime(year, month, 1, tzinfo=timezone.utc)
        if month == 12:
            end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
        else:
            end = datetime(year, month + 1, 1, tzinfo=timezone.utc)

        total = self.session.query(func.sum(Transaction.amount)).filter(
            Transaction.userID == userId,
            Transaction.type == TransactionType.COMMISSION_EARNED,
            Transaction.createdAt >= start,
            Transaction.createdAt < end
        ).scalar()

        return to_decimal(total or 0)

    def getTransactionSummary(
            self,
            userId: int,
            startDate: Optional[datetime] = None,
            endDate: Optional[datetime] = None
    ) -> List[Dict]:
        """All transactions of a user grouped by type."""
        self._requireUser(userId)

        query = self.session.query(
            Transaction.type,
            func.sum(Transaction.amount),
            func.count(Transaction.transactionID),
            func.max(Transaction.createdAt)
        ).filter(Transaction.userID == userId)
        if startDate:
            query = query.filter(Transaction.createdAt >= startDate)
        if endDate:
            query = query.filter(Transaction.createdAt <= endDate)

        rows = query.group_by(Transaction.type).order_by(Transaction.type).all()
        return [
            {
                "type": txType,
                "totalAmount": to_decimal(total or 0),
                "count": count,
                "lastTransaction": last,
            }
            for txType, total, count, last in rows
        ]

    def reconcileUser(self, userId: int) -> Dict:
        """
        Compare earnings counters with the audit records behind them.

        Returns:
            {"userId", "consistent": bool, "discrepancies": [{"field", "counter", "records"}]}
        """
        user = self.session.get(User, userId, populate_existing=True)
        if not user:
            raise UserNotFound(userId)

        expected = {
            "earningsLevel1": self._sumCommissions(userId, Transaction.commissionLevel == 1),
            "earningsLevel2": self._sumCommissions(userId, Transaction.commissionLevel == 2),
            "earningsLevel3": self._sumCommissions(userId, Transaction.commissionLevel == 3),
            "earningsCourse": self._sumCommissions(userId, Transaction.subType == COURSE_COMMISSION),
            "earningsService": self._sumCommissions(userId, Transaction.subType == SERVICE_COMMISSION),
            "earningsReferralBonus": self._sumReferralBonuses(userId),
        }
        expected["earningsTotal"] = (
            self._sumCommissions(userId) + expected["earningsReferralBonus"]
        )

        discrepancies = []
        for fieldName, records in expected.items():
            counter = to_decimal(getattr(user, fieldName) or 0)
            if counter != records:
                discrepancies.append({"field": fieldName, "counter": counter, "records": records})

        if discrepancies:
            logger.warning(f"User {userId} earnings out of balance: {discrepancies}")
        else:
            logger.debug(f"User {userId} earnings reconcile")

        return {
            "userId": userId,
            "consistent": not discrepancies,
            "discrepancies": discrepancies,
        }

    def _sumCommissions(self, userId: int, *criteria) -> Decimal:
        total = self.session.query(func.sum(Transaction.amount)).filter(
            Transaction.userID == userId,
            Transaction.type == TransactionType.COMMISSION_EARNED,
            *criteria
        ).scalar()
        return to_decimal(total or 0)

    def _sumReferralBonuses(self, userId: int) -> Decimal:
        total = self.session.query(func.sum(Transaction.amount)).filter(
            Transaction.userID == userId,
            Transaction.type == TransactionType.REFERRAL_BONUS,
            Transaction.status == TransactionStatus.COMPLETED
        ).scalar()
        return to_decimal(total or 0)

    def _requireUser(self, userId: int) -> User:
        user = self.session.get(User, userId)
        if not user:
            raise UserNotFound(userId)
        return user
