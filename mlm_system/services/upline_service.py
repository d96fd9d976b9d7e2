# mlm_system/services/upline_service.py
"""
Upline resolver - registration with referral codes and the cached upline chain.

The chain is a point-in-time snapshot of the referrer's own chain, copied once
at registration. Referrer reassignment is rejected, so snapshots never go stale
through normal operation; isChainStale() detects drift caused outside the service.
"""
from typing import List, Optional
from sqlalchemy.orm import Session
import logging

from core.exceptions import (
    InvalidReferralCode,
    ReferrerReassignmentError,
    UserAlreadyExists,
    UserNotFound,
)
from models.base import _get_current_time
from models.transaction import Transaction, TransactionType, TransactionStatus
from models.user import User
from mlm_system.config.commission import CommissionSettings
from mlm_system.services.ledger_service import LedgerService
from mlm_system.utils.chain_walker import ChainWalker

logger = logging.getLogger(__name__)


class UplineService:
    """Service for registration and upline chain maintenance."""

    def __init__(self, session: Session, settings: Optional[CommissionSettings] = None):
        self.session = session
        self.settings = settings or CommissionSettings.from_config()
        self.ledger = LedgerService(session, self.settings.maxLevels)

    def registerUser(
            self,
            email: str,
            firstname: Optional[str] = None,
            surname: Optional[str] = None,
            referralCode: Optional[str] = None
    ) -> User:
        """
        Register a user, optionally under a referrer.

        Fails closed: on any error nothing is persisted, no chain built, no bonus paid.

        Raises:
            UserAlreadyExists: Email already registered
            InvalidReferralCode: Code does not resolve to an active user
        """
        try:
            existing = self.session.query(User.userID).filter_by(email=email).first()
            if existing:
                raise UserAlreadyExists(email)

            referrer = None
            if referralCode:
                referrer = self.session.query(User).filter_by(referralCode=referralCode).first()
                if not referrer:
                    raise InvalidReferralCode(referralCode)

            user = User(email=email, firstname=firstname, surname=surname, uplineChain=[])
            self.session.add(user)
            self.session.flush()

            if referrer:
                self.buildUplineChain(user.userID, referrer.userID)

            self.session.commit()

        except Exception:
            self.session.rollback()
            raise

        logger.info(
            f"User {user.userID} registered "
            f"(referredBy={user.referredBy}, chain={user.uplineChain})"
        )
        return user

    def buildUplineChain(self, newUserId: int, referrerId: int) -> List[dict]:
        """
        Build and store the upline chain of a newly registered user.

        new chain = [{referrerId, 1}] + referrer's chain shifted by one level,
        truncated at MAX_LEVELS. Also links the referrer and pays the join bonus.
        Runs inside the caller's transaction (no commit).

        Args:
            newUserId: User being registered
            referrerId: Direct referrer

        Returns:
            The new upline chain

        Raises:
            InvalidReferralCode: Referrer missing, inactive, self or cyclic
            ReferrerReassignmentError: User already has a referrer
            UserNotFound: New user does not exist
        """
        newUser = self.session.get(User, newUserId)
        if not newUser:
            raise UserNotFound(newUserId)

        if newUser.referredBy is not None:
            raise ReferrerReassignmentError(newUserId)

        if newUserId == referrerId:
            raise InvalidReferralCode(referrerId, "A user cannot refer itself")

        referrer = self.session.get(User, referrerId)
        if not referrer or not referrer.isActive:
            raise InvalidReferralCode(referrerId, "Referrer not found or inactive")

        referrerChain = referrer.uplineChain or []
        if any(entry["userId"] == newUserId for entry in referrerChain):
            raise InvalidReferralCode(referrerId, "Referral would create a cycle")

        maxLevels = self.settings.maxLevels
        chain = [{"userId": referrerId, "level": 1}]
        for entry in referrerChain:
            if entry["level"] + 1 <= maxLevels:
                chain.append({"userId": entry["userId"], "level": entry["level"] + 1})

        self._assertChainInvariant(chain, maxLevels)

        newUser.referredBy = referrerId
        newUser.uplineChain = chain
        newUser.uplineBuiltAt = _get_current_time()
        newUser.uplineSourceVersion = referrer.uplineVersion
        self.session.flush()

        self._payJoinBonus(referrer, newUser)

        logger.info(f"Upline chain built for user {newUserId}: {chain}")
        return chain

    def reassignReferrer(self, userId: int, newReferrerId: int):
        """
        Referrer changes are not supported: cached chains of the whole
        downline would silently diverge from the live tree.

        Raises:
            ReferrerReassignmentError: Always
        """
        logger.warning(f"Rejected referrer reassignment: user {userId} -> {newReferrerId}")
        raise ReferrerReassignmentError(userId)

    def getUplineChain(self, userId: int) -> List[dict]:
        user = self.session.get(User, userId)
        if not user:
            raise UserNotFound(userId)
        return list(user.uplineChain or [])

    def isChainStale(self, userId: int) -> bool:
        """True when the cached chain no longer matches the live referrer walk."""
        user = self.session.get(User, userId)
        if not user:
            raise UserNotFound(userId)

        walker = ChainWalker(self.session)
        return not walker.validate_cached_chain(user, self.settings.maxLevels)

    def _payJoinBonus(self, referrer: User, newUser: User):
        """Flat one-time credit to the direct referrer, with its audit record."""
        bonus = self.settings.joinBonusAmount
        if bonus <= 0:
            return

        self.ledger.creditReferralBonus(referrer.userID, bonus)

        record = Transaction(
            userID=referrer.userID,
            type=TransactionType.REFERRAL_BONUS,
            subType="join_bonus",
            amount=bonus,
            status=TransactionStatus.COMPLETED,
            sourceUserID=newUser.userID,
            description=f"Join bonus for referring user {newUser.userID}",
            completedAt=_get_current_time()
        )
        self.session.add(record)
        self.session.flush()

        logger.info(f"Join bonus {bonus} paid to user {referrer.userID} for user {newUser.userID}")

    @staticmethod
    def _assertChainInvariant(chain: List[dict], maxLevels: int):
        if len(chain) > maxLevels:
            raise ValueError(f"Upline chain longer than {maxLevels}: {chain}")
        for index, entry in enumerate(chain):
            if entry["level"] != index + 1:
                raise ValueError(f"Upline chain level mismatch at position {index}: {chain}")
