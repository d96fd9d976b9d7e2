# models/commission_task.py
"""
Outbox for commission distribution.
Written in the same commit that completes a purchase, drained by CommissionProcessor.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from models.base import Base, _get_current_time


class CommissionTaskStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class CommissionTask(Base):
    """Commission distribution task queue."""
    __tablename__ = 'commission_tasks'

    id = Column(Integer, primary_key=True, autoincrement=True)
    transactionID = Column(
        Integer, ForeignKey('transactions.transactionID'), nullable=False, unique=True
    )
    status = Column(String(20), default=CommissionTaskStatus.PENDING, index=True)
    createdAt = Column(DateTime, default=_get_current_time, index=True)
    startedAt = Column(DateTime, nullable=True)
    completedAt = Column(DateTime, nullable=True)
    attempts = Column(Integer, default=0)
    lastError = Column(String, nullable=True)

    def __repr__(self):
        return f"<CommissionTask(transactionID={self.transactionID}, status={self.status})>"
