"""
Database models for the MLM commission core.
Import all models here for easy access.
"""

# Base and mixins
from models.base import Base, AuditMixin, Money

# Core models
from models.user import User
from models.transaction import Transaction, TransactionType, TransactionStatus, CommissionStatus
from models.commission_task import CommissionTask, CommissionTaskStatus

__all__ = [
    # Base
    'Base',
    'AuditMixin',
    'Money',

    # Core
    'User',
    'Transaction',
    'TransactionType',
    'TransactionStatus',
    'CommissionStatus',
    'CommissionTask',
    'CommissionTaskStatus',
]
