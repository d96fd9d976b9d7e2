# background/commission_processor.py
"""
Commission Processor - drains the commission task outbox.
Owns retry and failure bookkeeping so purchases never wait on distribution.
"""
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import and_, or_, update

from config import Config
from core.db import run_in_transaction, get_session_factory
from models.commission_task import CommissionTask, CommissionTaskStatus
from mlm_system.config.commission import CommissionSettings
from mlm_system.services.commission_service import CommissionService, DistributionResult

logger = logging.getLogger(__name__)


class CommissionProcessor:
    """
    Processor for queued commission distributions.
    One task per completed purchase; tasks with partial failures are retried.
    """

    def __init__(
            self,
            sessionFactory=None,
            settings: Optional[CommissionSettings] = None,
            commissionService: Optional[CommissionService] = None,
            batch_size: Optional[int] = None,
            max_attempts: Optional[int] = None,
            polling_interval: Optional[int] = None,
            lease_seconds: Optional[int] = None
    ):
        """
        Initialize commission processor.

        Args:
            sessionFactory: Session factory (default: core.db factory)
            settings: Commission settings passed to the CommissionService
            commissionService: Ready service instance (tests)
            batch_size: Tasks claimed per run (default: COMMISSION_BATCH_SIZE)
            max_attempts: Attempts before a task is marked failed (default: COMMISSION_MAX_ATTEMPTS)
            polling_interval: Seconds between runs (default: COMMISSION_POLL_SECONDS)
            lease_seconds: Age after which a task stuck in processing is reclaimed
                (default: COMMISSION_TASK_LEASE_SECONDS)
        """
        self.sessionFactory = sessionFactory or get_session_factory()
        self.commissionService = commissionService or CommissionService(self.sessionFactory, settings)
        self.batch_size = batch_size or Config.get(Config.COMMISSION_BATCH_SIZE, 50)
        self.max_attempts = max_attempts or Config.get(Config.COMMISSION_MAX_ATTEMPTS, 5)
        self.polling_interval = polling_interval or Config.get(Config.COMMISSION_POLL_SECONDS, 10)
        if lease_seconds is None:
            lease_seconds = Config.get(Config.COMMISSION_TASK_LEASE_SECONDS, 300)
        self.lease_seconds = lease_seconds

        self.scheduler: Optional[BackgroundScheduler] = None
        self._running = False
        self.stats = {
            "processed": 0,
            "completed": 0,
            "retried": 0,
            "failed": 0,
            "totalPaid": Decimal("0"),
            "lastRunAt": None,
            "lastError": None
        }

    def process_pending_tasks(self) -> Dict:
        """
        Claim a batch of pending tasks and distribute each.

        Returns:
            Counters for this run
        """
        claimed = self._claimBatch()
        run = {"processed": 0, "completed": 0, "retried": 0, "failed": 0}

        if not claimed:
            return run

        logger.info(f"Found {len(claimed)} pending commission tasks to process")

        for task in claimed:
            outcome = self._processTask(task)
            run["processed"] += 1
            run[outcome] += 1
            self.stats["processed"] += 1
            self.stats[outcome] += 1

        self.stats["lastRunAt"] = datetime.now(timezone.utc)

        logger.info(
            f"Commission task processing complete: "
            f"completed={run['completed']}, retried={run['retried']}, failed={run['failed']}"
        )
        return run

    def start(self):
        """Schedule process_pending_tasks every polling_interval seconds."""
        if self._running:
            logger.warning("Commission Processor already running")
            return

        self.scheduler = BackgroundScheduler(
            timezone='UTC',
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': 60
            }
        )
        self.scheduler.add_job(
            func=self._safe_process_wrapper,
            trigger=IntervalTrigger(seconds=self.polling_interval),
            id='commission_tasks',
            name='Commission Task Processing',
            replace_existing=True
        )
        self.scheduler.start()
        self._running = True

        logger.info(f"Commission Processor started (every {self.polling_interval} seconds)")

    def stop(self):
        """Stop the processor gracefully."""
        if not self._running:
            return

        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self._running = False

        logger.info("Commission Processor stopped")

    def get_stats(self) -> dict:
        """Get processor statistics."""
        return {
            "running": self._running,
            "processed": self.stats["processed"],
            "completed": self.stats["completed"],
            "retried": self.stats["retried"],
            "failed": self.stats["failed"],
            "totalPaid": float(self.stats["totalPaid"]),
            "lastRunAt": self.stats["lastRunAt"],
            "lastError": self.stats["lastError"]
        }

    # ============================================================
    # INTERNALS
    # ============================================================

    def _safe_process_wrapper(self):
        try:
            self.process_pending_tasks()
        except Exception as e:
            self.stats["lastError"] = str(e)
            logger.error(f"Error in commission processor: {e}", exc_info=True)

    def _claimBatch(self) -> List[Dict]:
        """
        Move up to batch_size claimable tasks to processing.

        Claimable means pending, or processing with startedAt older than
        lease_seconds (a worker died between claim and finish). Both count
        an attempt.
        """
        def work(session) -> List[Dict]:
            cutoff = datetime.now(timezone.utc) - timedelta(seconds=self.lease_seconds)
            claimable = or_(
                CommissionTask.status == CommissionTaskStatus.PENDING,
                and_(
                    CommissionTask.status == CommissionTaskStatus.PROCESSING,
                    CommissionTask.startedAt < cutoff
                )
            )
            candidates = (
                session.query(CommissionTask.id, CommissionTask.status)
                .filter(claimable)
                .order_by(CommissionTask.createdAt.asc(), CommissionTask.id.asc())
                .limit(self.batch_size)
                .all()
            )

            claimed = []
            now = datetime.now(timezone.utc)
            for taskId, status in candidates:
                stmt = (
                    update(CommissionTask)
                    .where(CommissionTask.id == taskId, claimable)
                    .values(
                        status=CommissionTaskStatus.PROCESSING,
                        attempts=CommissionTask.attempts + 1,
                        startedAt=now
                    )
                    .execution_options(synchronize_session=False)
                )
                if session.execute(stmt).rowcount:
                    task = session.get(CommissionTask, taskId, populate_existing=True)
                    if status == CommissionTaskStatus.PROCESSING:
                        logger.warning(
                            f"Reclaimed commission task {taskId} stuck in processing "
                            f"longer than {self.lease_seconds}s (attempt {task.attempts})"
                        )
                    claimed.append({
                        "id": task.id,
                        "transactionID": task.transactionID,
                        "attempts": task.attempts
                    })
            return claimed

        return run_in_transaction(work, self.sessionFactory)

    def _processTask(self, task: Dict) -> str:
        transactionId = task["transactionID"]

        try:
            if task["attempts"] > 1:
                self.commissionService.releaseClaim(transactionId)
            result = self.commissionService.distribute(transactionId)
        except Exception as e:
            logger.error(f"Error processing commission task {task['id']}: {e}", exc_info=True)
            result = DistributionResult(transactionId=transactionId, error=str(e))

        self.stats["totalPaid"] += result.totalPaid

        if result.success:
            note = result.skippedReason
            self._finishTask(task["id"], CommissionTaskStatus.COMPLETED, note)
            return "completed"

        error = result.error or "; ".join(str(failure) for failure in result.failures)
        if task["attempts"] >= self.max_attempts:
            logger.error(
                f"Commission task {task['id']} for transaction {transactionId} "
                f"failed after {task['attempts']} attempts: {error}"
            )
            self._finishTask(task["id"], CommissionTaskStatus.FAILED, error)
            return "failed"

        logger.warning(
            f"Commission task {task['id']} for transaction {transactionId} "
            f"will be retried (attempt {task['attempts']}/{self.max_attempts}): {error}"
        )
        self._finishTask(task["id"], CommissionTaskStatus.PENDING, error)
        return "retried"

    def _finishTask(self, taskId: int, status: str, lastError: Optional[str]):
        def work(session):
            task = session.get(CommissionTask, taskId)
            task.status = status
            task.lastError = lastError[:500] if lastError else None
            if status == CommissionTaskStatus.COMPLETED:
                task.completedAt = datetime.now(timezone.utc)

        try:
            run_in_transaction(work, self.sessionFactory)
        except Exception as e:
            logger.error(f"Could not update commission task {taskId}: {e}", exc_info=True)
