import enum
from sqlalchemy import Column, Integer, String, Enum, DateTime, ForeignKey, Index, CheckConstraint, func
from sqlalchemy.orm import relationship
from aromasouq.database import Base


class CoinTransactionType(str, enum.Enum):
    EARNED = "EARNED"
    SPENT = "SPENT"
    EXPIRED = "EXPIRED"


class CoinSource(str, enum.Enum):
    ORDER_PURCHASE = "ORDER_PURCHASE"
    PRODUCT_REVIEW = "PRODUCT_REVIEW"
    REFERRAL = "REFERRAL"
    PROMOTION = "PROMOTION"
    REFUND = "REFUND"
    ADMIN = "ADMIN"


coin_source_enum = Enum(CoinSource, name="coin_source")


class Wallet(Base):
    __tablename__ = "wallets"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    balance = Column(Integer, default=0, nullable=False)
    lifetime_earned = Column(Integer, default=0, nullable=False)
    lifetime_spent = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    user = relationship("User", back_populates="wallet")
    transactions = relationship("CoinTransaction", back_populates="wallet")

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
    )


class CoinTransaction(Base):
    """Append-only ledger entry.

    ``amount`` is signed: credits are positive, debits negative. The only
    mutation ever applied to a row is the EARNED -> EXPIRED flip performed by
    the expiry sweep, which also records how many coins it actually removed
    in ``expired_amount``.
    """

    __tablename__ = "coin_transactions"

    id = Column(Integer, primary_key=True, index=True)
    wallet_id = Column(Integer, ForeignKey("wallets.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    type = Column(Enum(CoinTransactionType, name="coin_transaction_type"), nullable=False)
    source = Column(coin_source_enum, nullable=False)
    description = Column(String(255), nullable=True)
    balance_after = Column(Integer, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    expired_amount = Column(Integer, nullable=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    product_id = Column(Integer, nullable=True)
    review_id = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    wallet = relationship("Wallet", back_populates="transactions")

    __table_args__ = (
        Index("ix_coin_transactions_type_expires", "type", "expires_at"),
    )
