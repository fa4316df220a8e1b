
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

import structlog
from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from aromasouq import errors
from aromasouq.database import unit_of_work
from aromasouq.models.coupon import Coupon, DiscountType
from aromasouq.models.user import Vendor, VendorStatus
from aromasouq.schemas.coupon import CouponCreate, CouponUpdate
from aromasouq.services.pricing import D, ZERO, round2
from aromasouq.utils.clock import as_utc, utcnow

logger = structlog.get_logger(__name__)

_CLEARABLE = frozenset({"min_order_amount", "max_discount", "usage_limit"})


@dataclass(frozen=True)
class CouponValidation:
    coupon: Coupon
    discount_amount: Decimal
    final_amount: Decimal


class CouponService:
    """Vendor coupon management and redemption-time validation"""

    @staticmethod
    def create_coupon(db: Session, vendor_user_id: int, coupon_data: CouponCreate) -> Coupon:
        vendor = CouponService._approved_vendor(db, vendor_user_id)
        if CouponService.get_by_code(db, coupon_data.code) is not None:
            raise errors.DuplicateCouponCode(f"Coupon code {coupon_data.code} already exists")
        CouponService._validate_coupon_rules(
            coupon_data.discount_type, coupon_data.discount_value, coupon_data.start_date, coupon_data.end_date,
        )

        with unit_of_work(db):
            db_coupon = Coupon(
                code=coupon_data.code,
                discount_type=coupon_data.discount_type,
                discount_value=coupon_data.discount_value,
                min_order_amount=coupon_data.min_order_amount,
                max_discount=coupon_data.max_discount,
                usage_limit=coupon_data.usage_limit,
                usage_count=0,
                start_date=coupon_data.start_date,
                end_date=coupon_data.end_date,
                is_active=True,
                vendor_id=vendor.id,
            )
            db.add(db_coupon)
        db.refresh(db_coupon)
        logger.info("Coupon created", coupon_id=db_coupon.id, code=db_coupon.code, vendor_id=vendor.id)
        return db_coupon

    @staticmethod
    def get_coupon(db: Session, coupon_id: int) -> Coupon:
        coupon = db.get(Coupon, coupon_id)
        if coupon is None:
            raise errors.CouponNotFound(f"Coupon with ID {coupon_id} not found")
        return coupon

    @staticmethod
    def get_by_code(db: Session, code: str) -> Optional[Coupon]:
        return db.query(Coupon).filter(Coupon.code == code).first()

    @staticmethod
    def list_for_vendor(db: Session, vendor_user_id: int) -> List[Coupon]:
        vendor = CouponService._vendor_for_user(db, vendor_user_id)
        return (
            db.query(Coupon)
            .filter(Coupon.vendor_id == vendor.id, Coupon.is_active == True)  # noqa: E712
            .order_by(Coupon.created_at.desc(), Coupon.id.desc())
            .all()
        )

    @staticmethod
    def update_coupon(db: Session, coupon_id: int, vendor_user_id: int, coupon_data: CouponUpdate) -> Coupon:
        db_coupon = CouponService._owned_coupon(db, coupon_id, vendor_user_id)

        if coupon_data.code is not None and coupon_data.code != db_coupon.code:
            if CouponService.get_by_code(db, coupon_data.code) is not None:
                raise errors.DuplicateCouponCode(f"Coupon code {coupon_data.code} already exists")

        # Compute final fields then validate. Only the optional limits may be cleared to null.
        changes = coupon_data.model_dump(exclude_unset=True)
        cleared = sorted(field for field, value in changes.items() if value is None and field not in _CLEARABLE)
        if cleared:
            raise errors.InvalidCoupon(f"Cannot clear required fields: {', '.join(cleared)}")

        final_type = changes.get("discount_type", db_coupon.discount_type)
        final_value = changes.get("discount_value", db_coupon.discount_value)
        final_start = changes.get("start_date", db_coupon.start_date)
        final_end = changes.get("end_date", db_coupon.end_date)
        CouponService._validate_coupon_rules(final_type, final_value, final_start, final_end)

        final_limit = changes.get("usage_limit", db_coupon.usage_limit)
        if final_limit is not None and final_limit < db_coupon.usage_count:
            raise errors.InvalidCoupon(
                f"Usage limit cannot be lower than current usage count ({db_coupon.usage_count})"
            )

        with unit_of_work(db):
            for field, value in changes.items():
                setattr(db_coupon, field, value)
        db.refresh(db_coupon)
        logger.info("Coupon updated", coupon_id=db_coupon.id, fields=sorted(changes))
        return db_coupon

    @staticmethod
    def deactivate_coupon(db: Session, coupon_id: int, vendor_user_id: int) -> Coupon:
        db_coupon = CouponService._owned_coupon(db, coupon_id, vendor_user_id)
        with unit_of_work(db):
            db_coupon.is_active = False
        db.refresh(db_coupon)
        logger.info("Coupon deactivated", coupon_id=db_coupon.id)
        return db_coupon

    @staticmethod
    def calculate_discount(coupon: Coupon, order_amount: Decimal) -> Decimal:
        order_amount = D(order_amount)
        if coupon.discount_type == DiscountType.PERCENTAGE:
            discount = round2(order_amount * D(coupon.discount_value) / D(100))
        else:
            discount = round2(D(coupon.discount_value))
        if coupon.max_discount is not None and discount > D(coupon.max_discount):
            discount = round2(D(coupon.max_discount))
        return max(min(discount, order_amount), ZERO)

    @staticmethod
    def validate(db: Session, code: str, order_amount: Decimal, now: Optional[datetime] = None) -> CouponValidation:
        """Check a code against an order amount. Never mutates the coupon."""
        now = now or utcnow()
        coupon = CouponService.get_by_code(db, code)
        try:
            CouponService.ensure_redeemable(coupon, D(order_amount), now)
        except errors.DomainError as exc:
            logger.warning("Coupon rejected", code=code, reason=exc.code)
            raise

        discount = CouponService.calculate_discount(coupon, order_amount)
        return CouponValidation(
            coupon=coupon,
            discount_amount=discount,
            final_amount=round2(D(order_amount) - discount),
        )

    @staticmethod
    def ensure_redeemable(coupon: Optional[Coupon], order_amount: Decimal, now: datetime) -> None:
        if coupon is None:
            raise errors.CouponNotFound()
        if not coupon.is_active:
            raise errors.CouponInactive()
        if now < as_utc(coupon.start_date):
            raise errors.CouponNotYetValid()
        if now > as_utc(coupon.end_date):
            raise errors.CouponExpired()
        if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
            raise errors.CouponUsageLimitReached()
        if coupon.min_order_amount is not None and order_amount < D(coupon.min_order_amount):
            raise errors.BelowMinimumOrder(
                f"Minimum order amount of {round2(D(coupon.min_order_amount))} AED required"
            )

    @staticmethod
    def list_active_for_vendor(db: Session, vendor_id: int, now: Optional[datetime] = None) -> List[Coupon]:
        now = now or utcnow()
        return (
            db.query(Coupon)
            .filter(
                Coupon.vendor_id == vendor_id,
                Coupon.is_active == True,  # noqa: E712
                Coupon.start_date <= now,
                Coupon.end_date >= now,
                or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit),
            )
            .order_by(Coupon.created_at.desc(), Coupon.id.desc())
            .all()
        )

    @staticmethod
    def increment_usage(db: Session, coupon_id: int) -> None:
        """Count one redemption, re-checking the usage limit in the same statement.

        Runs inside the caller's unit of work and never commits.
        """
        result = db.execute(
            update(Coupon)
            .where(
                Coupon.id == coupon_id,
                or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit),
            )
            .values(usage_count=Coupon.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise errors.CouponUsageLimitReached()

    @staticmethod
    def _validate_coupon_rules(discount_type: DiscountType, discount_value: Decimal,
                               start_date: datetime, end_date: datetime) -> None:
        if as_utc(start_date) >= as_utc(end_date):
            raise errors.InvalidCoupon("End date must be after start date")
        if discount_type == DiscountType.PERCENTAGE and D(discount_value) > D(100):
            raise errors.InvalidCoupon("Percentage discount cannot exceed 100%")

    @staticmethod
    def _vendor_for_user(db: Session, user_id: int) -> Vendor:
        vendor = db.query(Vendor).filter(Vendor.user_id == user_id).first()
        if vendor is None:
            raise errors.VendorNotFound()
        return vendor

    @staticmethod
    def _approved_vendor(db: Session, user_id: int) -> Vendor:
        vendor = CouponService._vendor_for_user(db, user_id)
        if vendor.status != VendorStatus.APPROVED:
            raise errors.VendorNotApproved(f"Cannot create coupons. Vendor status is: {vendor.status.value}")
        return vendor

    @staticmethod
    def _owned_coupon(db: Session, coupon_id: int, vendor_user_id: int) -> Coupon:
        coupon = CouponService.get_coupon(db, coupon_id)
        vendor = CouponService._vendor_for_user(db, vendor_user_id)
        if coupon.vendor_id != vendor.id:
            raise errors.OwnershipMismatch("You can only manage your own coupons")
        return coupon
