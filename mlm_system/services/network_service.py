# mlm_system/services/network_service.py
"""
Network analytics - live downline size, earnings projection, tree and statistics.

Everything here is read-only and derived from the live referredBy graph,
never from the cached upline chains.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
import logging

from core.exceptions import UserNotFound
from models.transaction import Transaction, TransactionStatus
from models.user import User
from mlm_system.config.commission import CommissionSettings
from mlm_system.services.rank_service import getRank, getNextRank, calculateRankProgress
from mlm_system.utils.chain_walker import ChainWalker
from mlm_system.utils.money_helpers import to_decimal

logger = logging.getLogger(__name__)

# Network size is always reported over three levels
NETWORK_LEVELS = 3
ACTIVITY_WINDOW = timedelta(days=30)


@dataclass(frozen=True)
class NetworkSize:
    level1: int = 0
    level2: int = 0
    level3: int = 0

    @property
    def total(self) -> int:
        return self.level1 + self.level2 + self.level3

    def byLevel(self) -> Dict[int, int]:
        return {1: self.level1, 2: self.level2, 3: self.level3}

    def asDict(self) -> Dict[str, int]:
        return {
            "level1": self.level1,
            "level2": self.level2,
            "level3": self.level3,
            "total": self.total,
        }


class NetworkService:
    """Service for network statistics."""

    def __init__(self, session: Session, settings: Optional[CommissionSettings] = None):
        self.session = session
        self.settings = settings or CommissionSettings.from_config()
        self.walker = ChainWalker(session)

    def getNetworkSize(self, userId: int) -> NetworkSize:
        """
        Downline members per level, one batched query per level.

        Raises:
            UserNotFound: Unknown user
        """
        self._requireUser(userId)

        counts = self.walker.count_downline_by_level(userId, NETWORK_LEVELS)
        return NetworkSize(level1=counts[1], level2=counts[2], level3=counts[3])

    def getPotentialEarnings(self, userId: int) -> Dict:
        """
        Projected commission if every network member spends the configured averages.

        Monthly: members x AVG_MONTHLY_RECHARGE x level rate.
        Yearly: monthly x 12 plus members x AVG_YEARLY_COURSE_SPEND x projected
        course rate (10/5/3 by default, separate from the payout rates).
        """
        size = self.getNetworkSize(userId)

        monthlyRecharge = {}
        yearlyCourses = Decimal("0")
        for level, members in size.byLevel().items():
            rate = self.settings.rateFor(level) or Decimal("0")
            courseRate = self.settings.projectionCourseRateFor(level)
            monthlyRecharge[f"level{level}"] = members * self.settings.avgMonthlyRecharge * rate / 100
            yearlyCourses += members * self.settings.avgYearlyCourseSpend * courseRate / 100

        monthlyPotential = sum(monthlyRecharge.values(), Decimal("0"))
        yearlyRecharge = monthlyPotential * 12

        return {
            "networkSize": size.asDict(),
            "monthlyPotential": monthlyPotential,
            "yearlyPotential": yearlyRecharge + yearlyCourses,
            "breakdown": {
                "monthlyRecharge": monthlyRecharge,
                "yearlyRecharge": yearlyRecharge,
                "yearlyCourses": yearlyCourses,
            },
        }

    def getNetworkTree(self, userId: int, maxDepth: int = NETWORK_LEVELS) -> Dict:
        """
        Nested downline tree, maxDepth levels below the user.

        Depth is counted from the user's direct referrals: the default of 3
        covers every commission level. A depth that counted the user itself
        as the first level would stop one level earlier.

        Raises:
            UserNotFound: Unknown user
        """
        tree = self.walker.get_downline_tree(userId, maxDepth)
        if tree is None:
            raise UserNotFound(userId)
        return tree

    def getNetworkStats(self, userId: int, now: Optional[datetime] = None) -> Dict:
        """
        Dashboard statistics for a user's network.

        - activeUsers: members logged in within the last 30 days
        - networkBusiness: completed transactions of members in the last 30 days, by type
        - growth: direct referrals in the last 30 days vs the 30 days before
        """
        user = self._requireUser(userId)
        now = now or datetime.now(timezone.utc)
        since = now - ACTIVITY_WINDOW
        previousSince = now - 2 * ACTIVITY_WINDOW

        levels = dict(self.walker.iter_downline_levels(userId, NETWORK_LEVELS))
        size = NetworkSize(
            level1=len(levels.get(1, [])),
            level2=len(levels.get(2, [])),
            level3=len(levels.get(3, [])),
        )
        memberIds = [memberId for ids in levels.values() for memberId in ids]

        activeUsers = 0
        networkBusiness: List[Dict] = []

        if memberIds:
            activeUsers = self.session.query(func.count(User.userID)).filter(
                User.userID.in_(memberIds),
                User.lastLogin >= since
            ).scalar() or 0

            rows = self.session.query(
                Transaction.type,
                func.sum(Transaction.amount),
                func.count(Transaction.transactionID)
            ).filter(
                Transaction.userID.in_(memberIds),
                Transaction.createdAt >= since,
                Transaction.status == TransactionStatus.COMPLETED
            ).group_by(Transaction.type).order_by(Transaction.type).all()

            networkBusiness = [
                {"type": txType, "totalAmount": to_decimal(total or 0), "count": count}
                for txType, total, count in rows
            ]

        thisMonth = self._countDirectReferrals(userId, since, None)
        lastMonth = self._countDirectReferrals(userId, previousSince, since)

        totalEarnings = to_decimal(user.earningsTotal or 0)
        nextRank = getNextRank(size.total, totalEarnings)

        return {
            "networkSize": size.asDict(),
            "activeUsers": activeUsers,
            "totalNetworkUsers": len(memberIds),
            "networkBusiness": networkBusiness,
            "growth": {
                "thisMonth": thisMonth,
                "lastMonth": lastMonth,
                "growthRate": self._growthRate(thisMonth, lastMonth),
            },
            "earnings": user.earningsAsDict(),
            "rankInfo": {
                "currentRank": getRank(size.total, totalEarnings).value,
                "nextRank": nextRank.value if nextRank else None,
                "progress": calculateRankProgress(size.total, totalEarnings),
            },
        }

    def _countDirectReferrals(self, userId: int, start: datetime, end: Optional[datetime]) -> int:
        query = self.session.query(func.count(User.userID)).filter(
            User.referredBy == userId,
            User.createdAt >= start
        )
        if end is not None:
            query = query.filter(User.createdAt < end)
        return query.scalar() or 0

    @staticmethod
    def _growthRate(thisMonth: int, lastMonth: int) -> Decimal:
        if lastMonth > 0:
            rate = Decimal(thisMonth - lastMonth) / Decimal(lastMonth) * 100
            return rate.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        return Decimal("100") if thisMonth > 0 else Decimal("0")

    def _requireUser(self, userId: int) -> User:
        user = self.session.get(User, userId)
        if not user:
            raise UserNotFound(userId)
        return user
