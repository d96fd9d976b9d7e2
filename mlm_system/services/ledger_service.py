# mlm_system/services/ledger_service.py
"""
Ledger/Wallet accessor - the only mutation surface for balance and earnings fields.

Every mutation is a single UPDATE ... SET col = col +/- :amount statement, so
concurrent credits to the same user never lose updates. The caller's session
transaction is the atomicity unit.
"""
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional
import logging

from sqlalchemy import update
from sqlalchemy.orm import Session
from sqlalchemy.orm.util import identity_key

from config import Config
from core.exceptions import InsufficientBalance, InvalidCommissionLevel, UserNotFound
from models.base import CENT
from models.user import User
from mlm_system.utils.money_helpers import to_decimal, Number

logger = logging.getLogger(__name__)


class LedgerField(Enum):
    """Closed set of mutable money columns on User."""
    WALLET_BALANCE = "walletBalance"
    FROZEN_AMOUNT = "frozenAmount"
    EARNINGS_TOTAL = "earningsTotal"
    EARNINGS_REFERRAL_BONUS = "earningsReferralBonus"
    EARNINGS_LEVEL_1 = "earningsLevel1"
    EARNINGS_LEVEL_2 = "earningsLevel2"
    EARNINGS_LEVEL_3 = "earningsLevel3"
    EARNINGS_COURSE = "earningsCourse"
    EARNINGS_SERVICE = "earningsService"

    @property
    def column(self):
        return getattr(User, self.value)


# Only settled/held funds can go down; earnings are credit-only
DEBITABLE_FIELDS = (LedgerField.WALLET_BALANCE, LedgerField.FROZEN_AMOUNT)

LEVEL_FIELDS: Dict[int, LedgerField] = {
    1: LedgerField.EARNINGS_LEVEL_1,
    2: LedgerField.EARNINGS_LEVEL_2,
    3: LedgerField.EARNINGS_LEVEL_3,
}


class CommissionCategory:
    COURSE = "course"
    SERVICE = "service"


CATEGORY_FIELDS: Dict[str, LedgerField] = {
    CommissionCategory.COURSE: LedgerField.EARNINGS_COURSE,
    CommissionCategory.SERVICE: LedgerField.EARNINGS_SERVICE,
}


class LedgerService:
    """Atomic credits and debits on User money columns."""

    def __init__(self, session: Session, maxLevels: Optional[int] = None):
        self.session = session
        self.maxLevels = maxLevels or Config.SUPPORTED_MAX_LEVELS

    # ============================================================
    # PUBLIC API
    # ============================================================

    def credit(self, userId: int, field: LedgerField, amount: Number) -> None:
        """
        Credit a single field. No upper bound check.

        Raises:
            UserNotFound: If user does not exist
            ValueError: If amount is not positive
        """
        amount = self._validateAmount(amount)
        self._increment(userId, {field: amount})
        logger.debug(f"Credited user {userId}: {field.value} +{amount}")

    def debit(self, userId: int, field: LedgerField, amount: Number) -> None:
        """
        Debit a balance field. Checked and applied in one conditional UPDATE,
        so the column never goes negative.

        Raises:
            InsufficientBalance: If the field holds less than amount (nothing changed)
            UserNotFound: If user does not exist
            ValueError: If amount is not positive or field is credit-only
        """
        amount = self._validateAmount(amount)
        if field not in DEBITABLE_FIELDS:
            raise ValueError(f"{field.value} is credit-only")

        column = field.column
        stmt = (
            update(User)
            .where(User.userID == userId, column >= amount)
            .values({column: column - amount})
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)

        if result.rowcount == 0:
            available = self._currentValue(userId, field)
            logger.info(
                f"Debit refused for user {userId}: {field.value} "
                f"requested={amount}, available={available}"
            )
            raise InsufficientBalance(userId, amount, available)

        self._expireCached(userId)
        logger.debug(f"Debited user {userId}: {field.value} -{amount}")

    def creditCommission(self, userId: int, level: int, category: Optional[str], amount: Number) -> None:
        """
        Credit one beneficiary's commission: wallet, level counter,
        category counter and total, in a single UPDATE.

        Raises:
            InvalidCommissionLevel: If level is outside 1..maxLevels
            UserNotFound: If user does not exist
        """
        amount = self._validateAmount(amount)

        if not 1 <= level <= self.maxLevels or level not in LEVEL_FIELDS:
            raise InvalidCommissionLevel(level, self.maxLevels)

        increments = {
            LedgerField.WALLET_BALANCE: amount,
            LedgerField.EARNINGS_TOTAL: amount,
            LEVEL_FIELDS[level]: amount,
        }
        categoryField = CATEGORY_FIELDS.get(category)
        if categoryField:
            increments[categoryField] = amount

        self._increment(userId, increments)

        logger.debug(
            f"Commission credited: user={userId}, level={level}, "
            f"category={category}, amount={amount}"
        )

    def creditReferralBonus(self, userId: int, amount: Number) -> None:
        """Join bonus: wallet, referral-bonus counter and total."""
        amount = self._validateAmount(amount)
        self._increment(userId, {
            LedgerField.WALLET_BALANCE: amount,
            LedgerField.EARNINGS_REFERRAL_BONUS: amount,
            LedgerField.EARNINGS_TOTAL: amount,
        })
        logger.debug(f"Referral bonus credited: user={userId}, amount={amount}")

    def freeze(self, userId: int, amount: Number) -> None:
        """Move funds from wallet balance to frozen amount."""
        self._move(userId, LedgerField.WALLET_BALANCE, LedgerField.FROZEN_AMOUNT, amount)

    def release(self, userId: int, amount: Number) -> None:
        """Move held funds back to wallet balance."""
        self._move(userId, LedgerField.FROZEN_AMOUNT, LedgerField.WALLET_BALANCE, amount)

    def getBalance(self, userId: int) -> Decimal:
        """Current settled wallet balance, read from the store."""
        return self._currentValue(userId, LedgerField.WALLET_BALANCE)

    # ============================================================
    # INTERNALS
    # ============================================================

    @staticmethod
    def _validateAmount(amount: Number) -> Decimal:
        amount = to_decimal(amount)
        if amount <= 0:
            raise ValueError(f"Ledger amount must be positive, got {amount}")
        if amount != amount.quantize(CENT):
            raise ValueError(f"Ledger amount has more than two decimal places: {amount}")
        return amount

    def _increment(self, userId: int, increments: Dict[LedgerField, Decimal]) -> None:
        values = {field.column: field.column + amount for field, amount in increments.items()}
        stmt = (
            update(User)
            .where(User.userID == userId)
            .values(values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)

        if result.rowcount == 0:
            raise UserNotFound(userId)

        self._expireCached(userId)

    def _move(self, userId: int, source: LedgerField, target: LedgerField, amount: Number) -> None:
        amount = self._validateAmount(amount)
        stmt = (
            update(User)
            .where(User.userID == userId, source.column >= amount)
            .values({
                source.column: source.column - amount,
                target.column: target.column + amount,
            })
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)

        if result.rowcount == 0:
            raise InsufficientBalance(userId, amount, self._currentValue(userId, source))

        self._expireCached(userId)
        logger.debug(f"Moved {amount} for user {userId}: {source.value} -> {target.value}")

    def _currentValue(self, userId: int, field: LedgerField) -> Decimal:
        value = self.session.query(field.column).filter(User.userID == userId).scalar()
        if value is None:
            raise UserNotFound(userId)
        return to_decimal(value)

    def _expireCached(self, userId: int) -> None:
        """Drop stale in-session copies so the next attribute access reloads."""
        cached = self.session.identity_map.get(identity_key(User, userId))
        if cached is not None:
            self.session.expire(cached)
