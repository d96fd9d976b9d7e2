"""
Rank calculation for the MLM network.

Ranks are derived, never stored: a pure function of total network size and
total earnings. A rank needs BOTH floors from RANK_CONFIG.
"""
from decimal import Decimal
from typing import Optional, Dict
from sqlalchemy.orm import Session
import logging

from core.exceptions import UserNotFound
from models.user import User
from mlm_system.config.ranks import RANK_CONFIG, RANK_ORDER, Rank
from mlm_system.utils.money_helpers import to_decimal, Number

logger = logging.getLogger(__name__)

FULL_PROGRESS = Decimal("100")


def getRank(networkSize: int, totalEarnings: Number) -> Rank:
    """
    Highest rank whose network AND earnings floors are both met.

    Example:
        getRank(30, 3000) -> Rank.BRONZE
        getRank(600, 3000) -> Rank.BRONZE    # earnings bind
    """
    earnings = to_decimal(totalEarnings)

    for rank in reversed(RANK_ORDER):
        requirements = RANK_CONFIG[rank]
        if networkSize >= requirements["networkRequired"] and earnings >= requirements["earningsRequired"]:
            return rank

    return Rank.STARTER


def getNextRank(networkSize: int, totalEarnings: Number) -> Optional[Rank]:
    """Rank above the current one, None at the top."""
    current = getRank(networkSize, totalEarnings)
    index = RANK_ORDER.index(current)
    if index + 1 >= len(RANK_ORDER):
        return None
    return RANK_ORDER[index + 1]


def calculateRankProgress(networkSize: int, totalEarnings: Number) -> Decimal:
    """
    Progress towards the next rank in percent, limited by the weaker floor.

    progress = min(network%, earnings%), each capped at 100; 100 at the top rank.
    """
    nextRank = getNextRank(networkSize, totalEarnings)
    if nextRank is None:
        return FULL_PROGRESS

    requirements = RANK_CONFIG[nextRank]
    networkProgress = min(
        Decimal(networkSize) / Decimal(requirements["networkRequired"]) * 100,
        FULL_PROGRESS
    )
    earningsProgress = min(
        to_decimal(totalEarnings) / requirements["earningsRequired"] * 100,
        FULL_PROGRESS
    )

    return min(networkProgress, earningsProgress)


class RankService:
    """Service for reporting user ranks."""

    def __init__(self, session: Session, networkService=None):
        self.session = session
        if networkService is None:
            from mlm_system.services.network_service import NetworkService
            networkService = NetworkService(session)
        self.networkService = networkService

    def getRankInfo(self, userId: int) -> Dict:
        """
        Current rank, next rank and progress for a user.

        Raises:
            UserNotFound: Unknown user
        """
        user = self.session.get(User, userId)
        if not user:
            raise UserNotFound(userId)

        networkSize = self.networkService.getNetworkSize(userId).total
        totalEarnings = to_decimal(user.earningsTotal or 0)

        current = getRank(networkSize, totalEarnings)
        nextRank = getNextRank(networkSize, totalEarnings)
        progress = calculateRankProgress(networkSize, totalEarnings)

        logger.debug(
            f"Rank of user {userId}: {current.value} "
            f"(network={networkSize}, earnings={totalEarnings}, progress={progress})"
        )

        return {
            "currentRank": current.value,
            "nextRank": nextRank.value if nextRank else None,
            "progress": progress,
            "networkSize": networkSize,
            "totalEarnings": totalEarnings,
        }
