
from dataclasses import dataclass
from typing import List, Optional

import structlog
from sqlalchemy import update
from sqlalchemy.orm import Session

from aromasouq import config
from aromasouq.database import unit_of_work
from aromasouq.models.reconciliation import PendingReconciliation, ReconciliationAction, ReconciliationStatus
from aromasouq.models.wallet import CoinSource
from aromasouq.services.wallet_service import WalletService
from aromasouq.utils.clock import utcnow

logger = structlog.get_logger(__name__)


@dataclass
class ReplayResult:
    resolved: int = 0
    retried: int = 0
    failed: int = 0


class ReconciliationService:
    """Durable queue for coin side effects that failed after their order committed."""

    @staticmethod
    def enqueue(db: Session, user_id: int, action: ReconciliationAction, amount: int, source: CoinSource,
                order_id: Optional[int] = None, description: Optional[str] = None,
                error: Optional[str] = None) -> PendingReconciliation:
        with unit_of_work(db):
            entry = PendingReconciliation(
                user_id=user_id,
                order_id=order_id,
                action=action,
                amount=amount,
                source=source,
                description=description,
                status=ReconciliationStatus.PENDING,
                attempts=1 if error else 0,
                last_error=error,
            )
            db.add(entry)
        db.refresh(entry)
        logger.warning(
            "Coin side effect queued for reconciliation",
            reconciliation_id=entry.id,
            user_id=user_id,
            order_id=order_id,
            action=action.value,
            amount=amount,
        )
        return entry

    @staticmethod
    def pending(db: Session) -> List[PendingReconciliation]:
        return (
            db.query(PendingReconciliation)
            .filter(PendingReconciliation.status == ReconciliationStatus.PENDING)
            .order_by(PendingReconciliation.id)
            .all()
        )

    @staticmethod
    def apply(db: Session, entry_id: int) -> bool:
        """Claim one pending entry and post it through the ledger in a single commit.

        The claim is a conditional status update, so a concurrent replay that
        listed the same entry finds nothing to claim. Returns False in that case.
        """
        with unit_of_work(db):
            claimed = db.execute(
                update(PendingReconciliation)
                .where(
                    PendingReconciliation.id == entry_id,
                    PendingReconciliation.status == ReconciliationStatus.PENDING,
                )
                .values(status=ReconciliationStatus.RESOLVED, resolved_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                return False

            entry = db.get(PendingReconciliation, entry_id)
            if entry.order_id is not None and WalletService.has_order_credit(db, entry.order_id, entry.source):
                logger.info("Reconciliation already applied", reconciliation_id=entry_id, order_id=entry.order_id)
                return True
            WalletService.credit(
                db, entry.user_id, entry.amount, entry.source,
                description=entry.description, order_id=entry.order_id,
            )
        return True

    @staticmethod
    def replay_pending(db: Session, max_attempts: Optional[int] = None) -> ReplayResult:
        max_attempts = max_attempts or config.RECONCILIATION_MAX_ATTEMPTS
        result = ReplayResult()

        for entry_id in [entry.id for entry in ReconciliationService.pending(db)]:
            try:
                applied = ReconciliationService.apply(db, entry_id)
            except Exception as exc:
                with unit_of_work(db):
                    entry = db.get(PendingReconciliation, entry_id)
                    entry.attempts += 1
                    entry.last_error = str(exc)
                    if entry.attempts >= max_attempts:
                        entry.status = ReconciliationStatus.FAILED
                        result.failed += 1
                    else:
                        result.retried += 1
                logger.exception("Reconciliation replay failed", reconciliation_id=entry_id)
                continue

            if applied:
                result.resolved += 1
            else:
                logger.info("Reconciliation claimed elsewhere", reconciliation_id=entry_id)

        logger.info(
            "Reconciliation replay complete",
            resolved=result.resolved,
            retried=result.retried,
            failed=result.failed,
        )
        return result
