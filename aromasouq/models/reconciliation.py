import enum
from sqlalchemy import Column, Integer, String, Enum, DateTime, ForeignKey, Text, func
from aromasouq.database import Base
from aromasouq.models.wallet import coin_source_enum


class ReconciliationAction(str, enum.Enum):
    AWARD = "AWARD"
    REFUND = "REFUND"


class ReconciliationStatus(str, enum.Enum):
    PENDING = "PENDING"
    RESOLVED = "RESOLVED"
    FAILED = "FAILED"


class PendingReconciliation(Base):
    """Coin side effect that failed after its order change had committed."""

    __tablename__ = "pending_reconciliations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    action = Column(Enum(ReconciliationAction, name="reconciliation_action"), nullable=False)
    amount = Column(Integer, nullable=False)
    source = Column(coin_source_enum, nullable=False)
    description = Column(String(255), nullable=True)
    status = Column(
        Enum(ReconciliationStatus, name="reconciliation_status"),
        default=ReconciliationStatus.PENDING, nullable=False, index=True,
    )
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
