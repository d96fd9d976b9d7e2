# models/user.py
"""
User model - wallet, referral links, cached upline chain and earnings counters.

Balance and earnings columns are mutated only through LedgerService.
"""
import secrets
import string

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, JSON, CheckConstraint
)
from sqlalchemy.orm import relationship

from models.base import Base, AuditMixin, Money

REFERRAL_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_referral_code() -> str:
    """REF + 8 upper-case alphanumerics."""
    return "REF" + "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(8))


class User(Base, AuditMixin):
    __tablename__ = 'users'

    # Primary key
    userID = Column(Integer, primary_key=True, autoincrement=True)

    # Identity
    email = Column(String, nullable=False, unique=True, index=True)
    firstname = Column(String, nullable=True)
    surname = Column(String, nullable=True)
    referralCode = Column(String(16), nullable=False, unique=True, default=generate_referral_code)
    isActive = Column(Boolean, default=True, nullable=False)
    lastLogin = Column(DateTime, nullable=True)

    # Wallet: settled funds and held funds are disjoint
    walletBalance = Column(Money, nullable=False, default=0)
    frozenAmount = Column(Money, nullable=False, default=0)

    # Referral structure
    referredBy = Column(Integer, ForeignKey('users.userID'), nullable=True, index=True)

    # Cached upline: [{"userId": int, "level": int}], level 1 = direct referrer.
    # Snapshot of the referrer's chain at join time, never recomputed.
    uplineChain = Column(JSON, nullable=False, default=list)
    uplineBuiltAt = Column(DateTime, nullable=True)
    uplineSourceVersion = Column(Integer, nullable=True)
    uplineVersion = Column(Integer, nullable=False, default=1)

    # Earnings counters (credit only)
    earningsTotal = Column(Money, nullable=False, default=0)
    earningsReferralBonus = Column(Money, nullable=False, default=0)
    earningsLevel1 = Column(Money, nullable=False, default=0)
    earningsLevel2 = Column(Money, nullable=False, default=0)
    earningsLevel3 = Column(Money, nullable=False, default=0)
    earningsCourse = Column(Money, nullable=False, default=0)
    earningsService = Column(Money, nullable=False, default=0)

    # Relationships
    referrer = relationship('User', remote_side=[userID], backref='referredUsers')

    __table_args__ = (
        CheckConstraint('"walletBalance" >= 0', name='ck_users_wallet_non_negative'),
        CheckConstraint('"frozenAmount" >= 0', name='ck_users_frozen_non_negative'),
    )

    def earningsAsDict(self) -> dict:
        """Earnings in the persisted JSON-like shape."""
        return {
            "total": self.earningsTotal,
            "referralBonus": self.earningsReferralBonus,
            "levelCommissions": {
                "level1": self.earningsLevel1,
                "level2": self.earningsLevel2,
                "level3": self.earningsLevel3,
            },
            "courseCommissions": self.earningsCourse,
            "serviceCommissions": self.earningsService,
        }

    def __repr__(self):
        return f"<User(userID={self.userID}, email={self.email}, referredBy={self.referredBy})>"
