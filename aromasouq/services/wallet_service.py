
import math
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from aromasouq import config, errors
from aromasouq.database import unit_of_work
from aromasouq.models.coupon import Coupon, DiscountType
from aromasouq.models.user import User, Vendor
from aromasouq.models.wallet import CoinSource, CoinTransaction, CoinTransactionType, Wallet
from aromasouq.services.pricing import D, round2
from aromasouq.utils.clock import utcnow

logger = structlog.get_logger(__name__)

_CODE_ALPHABET = string.ascii_uppercase + string.digits


@dataclass
class LedgerEntry:
    wallet: Wallet
    transaction: CoinTransaction


@dataclass
class WalletSummary:
    id: int
    user_id: int
    balance: int
    lifetime_earned: int
    lifetime_spent: int
    available_balance: int
    coins_expiring_soon: int


@dataclass
class RedeemResult:
    coupon: Coupon
    coins_spent: int
    value: Decimal
    expires_at: datetime

    @property
    def message(self) -> str:
        return f"Successfully redeemed {self.coins_spent} coins"


@dataclass
class ExpiryResult:
    transactions_expired: int = 0
    coins_expired: int = 0
    batches: int = 0
    wallet_ids: List[int] = field(default_factory=list)

    @property
    def message(self) -> str:
        return f"Expired {self.transactions_expired} coin transactions"


class WalletService:
    """Coin wallet ledger.

    Every balance change goes through :meth:`credit` or :meth:`debit`, which
    update the wallet with a single conditional statement and append exactly
    one :class:`CoinTransaction` whose ``balance_after`` is read back inside
    the same transaction. Neither helper commits; the public operations wrap
    them in :func:`unit_of_work`, and the order coordinator composes them into
    its own.
    """

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    def find_wallet(db: Session, user_id: int) -> Optional[Wallet]:
        return db.query(Wallet).filter(Wallet.user_id == user_id).populate_existing().first()

    @staticmethod
    def balance_of(db: Session, user_id: int) -> int:
        balance = db.execute(select(Wallet.balance).where(Wallet.user_id == user_id)).scalar()
        return balance or 0

    @staticmethod
    def get_wallet(db: Session, user_id: int, now: Optional[datetime] = None) -> WalletSummary:
        now = now or utcnow()
        with unit_of_work(db):
            user = WalletService.require_user(db, user_id)
            wallet = WalletService._get_or_create_wallet(db, user)
            expiring = db.execute(
                select(func.coalesce(func.sum(CoinTransaction.amount), 0)).where(
                    CoinTransaction.wallet_id == wallet.id,
                    CoinTransaction.type == CoinTransactionType.EARNED,
                    CoinTransaction.expires_at >= now,
                    CoinTransaction.expires_at <= now + timedelta(days=config.COINS_EXPIRING_SOON_DAYS),
                )
            ).scalar_one()
            summary = WalletSummary(
                id=wallet.id,
                user_id=wallet.user_id,
                balance=wallet.balance,
                lifetime_earned=wallet.lifetime_earned,
                lifetime_spent=wallet.lifetime_spent,
                available_balance=wallet.balance,
                coins_expiring_soon=int(expiring),
            )
        return summary

    @staticmethod
    def get_transactions(db: Session, user_id: int, page: int = 1, limit: int = 20) -> dict:
        page = max(page, 1)
        limit = min(max(limit, 1), 100)
        wallet = WalletService.find_wallet(db, user_id)
        if wallet is None:
            return {"data": [], "meta": {"total": 0, "page": page, "limit": limit, "total_pages": 0}}

        query = db.query(CoinTransaction).filter(CoinTransaction.wallet_id == wallet.id)
        total = query.count()
        transactions = (
            query.order_by(CoinTransaction.created_at.desc(), CoinTransaction.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "data": transactions,
            "meta": {"total": total, "page": page, "limit": limit, "total_pages": math.ceil(total / limit)},
        }

    @staticmethod
    def get_stats(db: Session, user_id: int) -> dict:
        wallet = WalletService.find_wallet(db, user_id)
        if wallet is None:
            return {
                "total_earned": 0,
                "total_spent": 0,
                "total_expired": 0,
                "current_balance": 0,
                "transaction_count": 0,
                "earnings_by_source": [],
            }

        transaction_count = db.query(CoinTransaction).filter(CoinTransaction.wallet_id == wallet.id).count()
        earnings = (
            db.query(CoinTransaction.source, func.sum(CoinTransaction.amount))
            .filter(
                CoinTransaction.wallet_id == wallet.id,
                CoinTransaction.type == CoinTransactionType.EARNED,
            )
            .group_by(CoinTransaction.source)
            .all()
        )
        return {
            "total_earned": wallet.lifetime_earned,
            "total_spent": wallet.lifetime_spent,
            "total_expired": WalletService.expired_total(db, wallet.id),
            "current_balance": wallet.balance,
            "transaction_count": transaction_count,
            "earnings_by_source": [{"source": source, "amount": int(amount or 0)} for source, amount in earnings],
        }

    @staticmethod
    def expired_total(db: Session, wallet_id: int) -> int:
        total = db.execute(
            select(func.coalesce(func.sum(CoinTransaction.expired_amount), 0)).where(
                CoinTransaction.wallet_id == wallet_id,
                CoinTransaction.type == CoinTransactionType.EXPIRED,
            )
        ).scalar_one()
        return int(total)

    @staticmethod
    def has_order_credit(db: Session, order_id: int, source: CoinSource) -> bool:
        """True when the ledger already holds a credit of ``source`` for the order."""
        found = db.execute(
            select(CoinTransaction.id).where(
                CoinTransaction.order_id == order_id,
                CoinTransaction.source == source,
                CoinTransaction.amount > 0,
            ).limit(1)
        ).first()
        return found is not None

    # ------------------------------------------------------------------
    # Ledger primitives (no commit)
    # ------------------------------------------------------------------

    @staticmethod
    def credit(db: Session, user_id: int, amount: int, source: CoinSource,
               description: Optional[str] = None, order_id: Optional[int] = None,
               product_id: Optional[int] = None, review_id: Optional[int] = None,
               now: Optional[datetime] = None) -> LedgerEntry:
        if amount <= 0:
            raise ValueError("amount must be positive")
        now = now or utcnow()
        user = WalletService.require_user(db, user_id)
        wallet = WalletService._get_or_create_wallet(db, user)

        db.execute(
            update(Wallet)
            .where(Wallet.id == wallet.id)
            .values(balance=Wallet.balance + amount, lifetime_earned=Wallet.lifetime_earned + amount)
            .execution_options(synchronize_session=False)
        )
        db.refresh(wallet)

        transaction = CoinTransaction(
            wallet_id=wallet.id,
            amount=amount,
            type=CoinTransactionType.EARNED,
            source=source,
            description=description or f"Earned {amount} coins from {source.value.lower().replace('_', ' ')}",
            order_id=order_id,
            product_id=product_id,
            review_id=review_id,
            balance_after=wallet.balance,
            expires_at=now + timedelta(days=config.COIN_EXPIRY_DAYS),
        )
        db.add(transaction)
        db.flush()
        return LedgerEntry(wallet=wallet, transaction=transaction)

    @staticmethod
    def debit(db: Session, user_id: int, amount: int, description: Optional[str] = None,
              order_id: Optional[int] = None, source: CoinSource = CoinSource.ORDER_PURCHASE) -> LedgerEntry:
        if amount <= 0:
            raise ValueError("amount must be positive")
        wallet = WalletService.find_wallet(db, user_id)
        if wallet is None:
            raise errors.WalletNotFound()
        if wallet.balance < amount:
            raise errors.InsufficientBalance(
                f"Insufficient coins balance. Available: {wallet.balance}, Required: {amount}"
            )

        # Re-checked in the statement itself: a concurrent debit may have landed since the read
        result = db.execute(
            update(Wallet)
            .where(Wallet.id == wallet.id, Wallet.balance >= amount)
            .values(balance=Wallet.balance - amount, lifetime_spent=Wallet.lifetime_spent + amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise errors.InsufficientBalance()
        db.refresh(wallet)

        transaction = CoinTransaction(
            wallet_id=wallet.id,
            amount=-amount,
            type=CoinTransactionType.SPENT,
            source=source,
            description=description or f"Used {amount} coins for order discount",
            order_id=order_id,
            balance_after=wallet.balance,
        )
        db.add(transaction)
        db.flush()
        return LedgerEntry(wallet=wallet, transaction=transaction)

    # ------------------------------------------------------------------
    # Public operations (one unit of work each)
    # ------------------------------------------------------------------

    @staticmethod
    def award_coins(db: Session, user_id: int, amount: int, source: CoinSource,
                    description: Optional[str] = None, order_id: Optional[int] = None,
                    product_id: Optional[int] = None, review_id: Optional[int] = None,
                    now: Optional[datetime] = None) -> LedgerEntry:
        with unit_of_work(db):
            entry = WalletService.credit(
                db, user_id, amount, source, description=description, order_id=order_id,
                product_id=product_id, review_id=review_id, now=now,
            )
        logger.info(
            "Coins awarded",
            user_id=user_id,
            amount=amount,
            source=source.value,
            order_id=order_id,
            balance_after=entry.transaction.balance_after,
        )
        return entry

    @staticmethod
    def spend_coins(db: Session, user_id: int, amount: int, order_id: Optional[int] = None,
                    description: Optional[str] = None) -> LedgerEntry:
        with unit_of_work(db):
            entry = WalletService.debit(db, user_id, amount, description=description, order_id=order_id)
        logger.info(
            "Coins spent",
            user_id=user_id,
            amount=amount,
            order_id=order_id,
            balance_after=entry.transaction.balance_after,
        )
        return entry

    @staticmethod
    def refund_coins(db: Session, user_id: int, amount: int, order_id: Optional[int],
                     description: Optional[str] = None) -> LedgerEntry:
        return WalletService.award_coins(
            db, user_id, amount, CoinSource.REFUND,
            description=description or f"Refund of {amount} coins",
            order_id=order_id,
        )

    @staticmethod
    def redeem_coins(db: Session, user_id: int, amount: int, now: Optional[datetime] = None) -> RedeemResult:
        """Exchange coins for a single-use FIXED coupon at the redemption rate."""
        now = now or utcnow()
        wallet = WalletService.find_wallet(db, user_id)
        if wallet is None:
            raise errors.WalletNotFound()
        if wallet.balance < amount:
            raise errors.InsufficientBalance(f"Insufficient balance. You have {wallet.balance} coins")

        discount_value = round2(D(amount) * config.REDEMPTION_COIN_RATE)
        vendor = WalletService._system_vendor(db)
        expires_at = now + timedelta(days=config.REDEEMED_COUPON_VALID_DAYS)

        with unit_of_work(db):
            coupon = Coupon(
                code=WalletService._redemption_code(now),
                discount_type=DiscountType.FIXED,
                discount_value=discount_value,
                usage_limit=1,
                usage_count=0,
                is_active=True,
                start_date=now,
                end_date=expires_at,
                vendor_id=vendor.id,
            )
            db.add(coupon)
            WalletService.debit(
                db, user_id, amount,
                description=f"Redeemed {amount} coins for {discount_value} {config.CURRENCY} coupon",
            )
        db.refresh(coupon)
        logger.info("Coins redeemed", user_id=user_id, amount=amount, coupon_code=coupon.code, value=str(discount_value))
        return RedeemResult(coupon=coupon, coins_spent=amount, value=discount_value, expires_at=expires_at)

    @staticmethod
    def expire_old_coins(db: Session, now: Optional[datetime] = None,
                         batch_size: Optional[int] = None) -> ExpiryResult:
        """Flip due EARNED credits to EXPIRED and remove them from balances.

        Only rows still EARNED are selected and the flip is conditional on
        that state, so re-running (or running concurrently) never removes the
        same credit twice. Each batch commits on its own.
        """
        now = now or utcnow()
        batch_size = batch_size or config.EXPIRY_BATCH_SIZE
        result = ExpiryResult()

        while True:
            with unit_of_work(db):
                due = db.execute(
                    select(CoinTransaction.id, CoinTransaction.wallet_id, CoinTransaction.amount)
                    .where(
                        CoinTransaction.type == CoinTransactionType.EARNED,
                        CoinTransaction.expires_at <= now,
                    )
                    .order_by(CoinTransaction.id)
                    .limit(batch_size)
                    .with_for_update(skip_locked=True)
                ).all()
                for tx_id, wallet_id, amount in due:
                    removed = WalletService._expire_one(db, tx_id, wallet_id, amount)
                    if removed is None:
                        continue
                    result.transactions_expired += 1
                    result.coins_expired += removed
                    if wallet_id not in result.wallet_ids:
                        result.wallet_ids.append(wallet_id)
            if not due:
                break
            result.batches += 1
            logger.info("Coin expiry batch processed", batch=result.batches, size=len(due))
            if len(due) < batch_size:
                break

        logger.info(
            "Coin expiry sweep complete",
            transactions_expired=result.transactions_expired,
            coins_expired=result.coins_expired,
        )
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _expire_one(db: Session, tx_id: int, wallet_id: int, amount: int) -> Optional[int]:
        balance = db.execute(
            select(Wallet.balance).where(Wallet.id == wallet_id).with_for_update()
        ).scalar_one()
        # Coins already spent cannot be removed again; balance never goes negative
        removed = min(amount, balance)

        flipped = db.execute(
            update(CoinTransaction)
            .where(CoinTransaction.id == tx_id, CoinTransaction.type == CoinTransactionType.EARNED)
            .values(type=CoinTransactionType.EXPIRED, expired_amount=removed)
            .execution_options(synchronize_session=False)
        )
        if flipped.rowcount != 1:
            return None
        if removed:
            db.execute(
                update(Wallet)
                .where(Wallet.id == wallet_id)
                .values(balance=Wallet.balance - removed)
                .execution_options(synchronize_session=False)
            )
        return removed

    @staticmethod
    def require_user(db: Session, user_id: int) -> User:
        user = db.get(User, user_id)
        if user is None:
            raise errors.UserNotFound()
        return user

    @staticmethod
    def _get_or_create_wallet(db: Session, user: User) -> Wallet:
        wallet = WalletService.find_wallet(db, user.id)
        if wallet is None:
            wallet = Wallet(user=user, balance=0, lifetime_earned=0, lifetime_spent=0)
            db.add(wallet)
            db.flush()
            logger.info("Wallet created", user_id=user.id, wallet_id=wallet.id)
        return wallet

    @staticmethod
    def _system_vendor(db: Session) -> Vendor:
        if config.SYSTEM_VENDOR_ID is not None:
            vendor = db.get(Vendor, config.SYSTEM_VENDOR_ID)
        else:
            vendor = db.query(Vendor).order_by(Vendor.id).first()
        if vendor is None:
            raise errors.NoSystemVendorConfigured()
        return vendor

    @staticmethod
    def _redemption_code(now: datetime) -> str:
        suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(7))
        return f"COINS-{int(now.timestamp() * 1000)}-{suffix}"
