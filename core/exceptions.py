# core/exceptions.py
"""
Domain exceptions for the MLM commission core.

Registration and purchase paths raise these and roll back.
Commission distribution records DistributionPartialFailure instead of raising.
"""
from decimal import Decimal
from typing import Optional


class MLMError(Exception):
    """Base class for all domain errors."""
    pass


class InvalidReferralCode(MLMError):
    """Referral code or referrer id does not resolve to an active user."""

    def __init__(self, code, reason: str = "Invalid referral code"):
        self.code = code
        self.reason = reason
        super().__init__(f"{reason}: {code}")


class UserNotFound(MLMError):
    def __init__(self, userId):
        self.userId = userId
        super().__init__(f"User {userId} not found")


class UserAlreadyExists(MLMError):
    def __init__(self, email: str):
        self.email = email
        super().__init__(f"User already exists with email {email}")


class TransactionNotFound(MLMError):
    def __init__(self, transactionId):
        self.transactionId = transactionId
        super().__init__(f"Transaction {transactionId} not found")


class InsufficientBalance(MLMError):
    """Debit would push a balance below zero. Nothing was changed."""

    def __init__(self, userId: int, requested: Decimal, available: Optional[Decimal] = None):
        self.userId = userId
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient balance for user {userId}: "
            f"requested {requested}, available {available}"
        )


class InvalidStatusTransition(MLMError):
    def __init__(self, transactionId, current: str, requested: str):
        self.transactionId = transactionId
        self.current = current
        self.requested = requested
        super().__init__(
            f"Transaction {transactionId}: cannot move from {current} to {requested}"
        )


class InvalidCommissionLevel(MLMError):
    def __init__(self, level, maxLevels: int):
        self.level = level
        self.maxLevels = maxLevels
        super().__init__(f"Commission level {level} outside 1..{maxLevels}")


class ReferrerReassignmentError(MLMError):
    """Upline chains are point-in-time snapshots, so a referrer never changes."""

    def __init__(self, userId: int):
        self.userId = userId
        super().__init__(f"Referrer of user {userId} cannot be reassigned")


class StoreUnavailable(MLMError):
    """Transient store failure. Retried at the store-access layer."""
    pass


class DistributionPartialFailure(MLMError):
    """
    One beneficiary could not be credited.

    Never raised to the purchase caller: collected in DistributionResult.failures.
    """

    def __init__(self, userId: int, level: int, amount: Decimal, error: str):
        self.userId = userId
        self.level = level
        self.amount = amount
        self.error = error
        super().__init__(
            f"Commission level {level} for user {userId} ({amount}) failed: {error}"
        )

    def to_dict(self) -> dict:
        return {
            "userId": self.userId,
            "level": self.level,
            "amount": self.amount,
            "error": self.error,
        }
