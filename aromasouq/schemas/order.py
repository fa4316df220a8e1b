from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional
from decimal import Decimal
from datetime import datetime
from aromasouq.models.order import OrderStatus, PaymentMethod, PaymentStatus
from aromasouq.schemas.wallet import PageMeta
from aromasouq.services.pricing import DeliveryMethod, GiftWrapping


# Request schemas
class OrderCreate(BaseModel):
    address_id: int = Field(..., gt=0)
    payment_method: PaymentMethod
    coins_to_use: int = Field(default=0, ge=0)
    coupon_code: Optional[str] = None


class CartQuoteRequest(BaseModel):
    address_id: int = Field(..., gt=0)
    coins_to_use: int = Field(default=0, ge=0)
    coupon_code: Optional[str] = None


class GiftOptions(BaseModel):
    is_gift: bool = False
    gift_message: Optional[str] = Field(None, max_length=500)
    gift_wrapping: Optional[GiftWrapping] = None


class QuickCheckoutRequest(BaseModel):
    product_id: int = Field(..., gt=0)
    variant_id: Optional[int] = Field(default=None, gt=0)
    quantity: int = Field(..., ge=1)
    address_id: int = Field(..., gt=0)
    delivery_method: DeliveryMethod
    payment_method: PaymentMethod
    coins_to_use: int = Field(default=0, ge=0)
    coupon_code: Optional[str] = None
    gift_options: Optional[GiftOptions] = None


class OrderStatusUpdate(BaseModel):
    order_status: OrderStatus
    tracking_number: Optional[str] = Field(None, max_length=100)


# Response schemas
class QuoteResponse(BaseModel):
    subtotal: Decimal
    coupon_discount: Decimal
    coins_discount: Decimal
    coins_used: int
    discount: Decimal
    shipping_fee: Decimal
    gift_wrapping_fee: Decimal
    tax: Decimal
    total: Decimal
    coins_earned: int

    model_config = ConfigDict(from_attributes=True)


class OrderItemResponse(BaseModel):
    id: int
    product_id: int
    variant_id: Optional[int] = None
    quantity: int
    price: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderResponse(BaseModel):
    id: int
    order_number: str
    user_id: int
    address_id: int
    payment_method: PaymentMethod
    subtotal: Decimal
    tax: Decimal
    shipping_fee: Decimal
    gift_wrapping_fee: Decimal
    discount: Decimal
    total: Decimal
    coins_used: int
    coins_earned: int
    order_status: OrderStatus
    payment_status: PaymentStatus
    coupon_id: Optional[int] = None
    tracking_number: Optional[str] = None
    created_at: datetime
    confirmed_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    items: List[OrderItemResponse]

    model_config = ConfigDict(from_attributes=True)


class OrderCreatedResponse(BaseModel):
    id: int
    order_number: str

    model_config = ConfigDict(from_attributes=True)


class OrderPage(BaseModel):
    data: List[OrderResponse]
    meta: PageMeta
