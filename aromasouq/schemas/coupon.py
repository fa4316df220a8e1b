from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from decimal import Decimal
from datetime import datetime
from aromasouq.models.coupon import DiscountType

CODE_PATTERN = r"^[A-Z0-9_-]+$"


# Request schemas
class CouponCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=64, pattern=CODE_PATTERN,
                      description="Uppercase letters, numbers, hyphens and underscores")
    discount_type: DiscountType
    discount_value: Decimal = Field(..., ge=0)
    min_order_amount: Optional[Decimal] = Field(default=None, ge=0)
    max_discount: Optional[Decimal] = Field(default=None, ge=0)
    usage_limit: Optional[int] = Field(default=None, ge=1)
    start_date: datetime
    end_date: datetime


class CouponUpdate(BaseModel):
    code: Optional[str] = Field(None, min_length=1, max_length=64, pattern=CODE_PATTERN)
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = Field(None, ge=0)
    min_order_amount: Optional[Decimal] = Field(None, ge=0)
    max_discount: Optional[Decimal] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=1)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: Optional[bool] = Field(None, description="Whether coupon is active")


class CouponValidateRequest(BaseModel):
    code: str = Field(..., min_length=1)
    order_amount: Decimal = Field(..., ge=0)


# Response schemas
class CouponResponse(BaseModel):
    id: int
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    min_order_amount: Optional[Decimal] = None
    max_discount: Optional[Decimal] = None
    usage_limit: Optional[int] = None
    usage_count: int
    start_date: datetime
    end_date: datetime
    is_active: bool
    vendor_id: int

    model_config = ConfigDict(from_attributes=True)


class CouponSummary(BaseModel):
    id: int
    code: str
    discount_type: DiscountType
    discount_value: Decimal

    model_config = ConfigDict(from_attributes=True)


class CouponValidationResponse(BaseModel):
    valid: bool = True
    coupon: CouponSummary
    discount_amount: Decimal
    final_amount: Decimal


class ActiveCouponResponse(BaseModel):
    id: int
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    min_order_amount: Optional[Decimal] = None
    max_discount: Optional[Decimal] = None
    end_date: datetime

    model_config = ConfigDict(from_attributes=True)
