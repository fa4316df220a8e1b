import enum
from sqlalchemy import (
    Column, Integer, String, Enum, Boolean, Numeric, DateTime, ForeignKey, Index, CheckConstraint, func,
)
from sqlalchemy.orm import relationship
from aromasouq.database import Base


class DiscountType(str, enum.Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(64), unique=True, nullable=False, index=True)
    discount_type = Column(Enum(DiscountType, name="discount_type"), nullable=False)
    discount_value = Column(Numeric(12, 2), nullable=False)
    min_order_amount = Column(Numeric(12, 2), nullable=True)
    max_discount = Column(Numeric(12, 2), nullable=True)
    usage_limit = Column(Integer, nullable=True)
    usage_count = Column(Integer, default=0, nullable=False)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    vendor = relationship("Vendor", back_populates="coupons")

    __table_args__ = (
        Index("ix_coupons_vendor_active", "vendor_id", "is_active"),
        CheckConstraint("usage_count >= 0", name="ck_coupons_usage_count_non_negative"),
    )
