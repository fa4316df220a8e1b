
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional
from aromasouq.database import get_db
from aromasouq.models.order import OrderStatus
from aromasouq.routers.deps import current_user_id
from aromasouq.schemas.order import (
    OrderCreate, CartQuoteRequest, QuickCheckoutRequest, OrderStatusUpdate, QuoteResponse,
    OrderResponse, OrderCreatedResponse, OrderPage,
)
from aromasouq.services.order_service import OrderService

router = APIRouter(tags=["orders"])


def _gift_wrapping(payload: QuickCheckoutRequest):
    return payload.gift_options.gift_wrapping if payload.gift_options else None


@router.post("/orders/quote", response_model=QuoteResponse)
def quote_order(payload: CartQuoteRequest, user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    return OrderService.quote_cart(db, user_id, payload.address_id, payload.coins_to_use, payload.coupon_code)


@router.post("/orders", response_model=OrderResponse, status_code=201)
def create_order(payload: OrderCreate, user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    return OrderService.create_order(
        db, user_id, payload.address_id, payload.payment_method,
        coins_to_use=payload.coins_to_use, coupon_code=payload.coupon_code,
    )


@router.get("/orders", response_model=OrderPage)
def list_orders(order_status: Optional[OrderStatus] = None, page: int = 1, limit: int = 20,
                user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    return OrderService.list_orders(db, user_id, order_status, page, limit)


@router.get("/orders/{order_id}", response_model=OrderResponse)
def get_order(order_id: int, user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    return OrderService.get_order(db, user_id, order_id)


@router.patch("/orders/{order_id}/status", response_model=OrderResponse)
def update_order_status(order_id: int, payload: OrderStatusUpdate, db: Session = Depends(get_db)):
    return OrderService.update_status(db, order_id, payload.order_status, payload.tracking_number)


@router.post("/orders/{order_id}/cancel", response_model=OrderResponse)
def cancel_order(order_id: int, user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    return OrderService.cancel_order(db, user_id, order_id)


@router.post("/orders/quick-checkout/quote", response_model=QuoteResponse)
def quote_quick_checkout(payload: QuickCheckoutRequest, user_id: int = Depends(current_user_id),
                         db: Session = Depends(get_db)):
    return OrderService.quote_quick(
        db, user_id, payload.product_id, payload.quantity, payload.address_id, payload.delivery_method,
        variant_id=payload.variant_id, coins_to_use=payload.coins_to_use,
        coupon_code=payload.coupon_code, gift_wrapping=_gift_wrapping(payload),
    )


@router.post("/orders/quick-checkout", response_model=OrderCreatedResponse, status_code=201)
def quick_checkout(payload: QuickCheckoutRequest, user_id: int = Depends(current_user_id),
                   db: Session = Depends(get_db)):
    return OrderService.quick_checkout(
        db, user_id, payload.product_id, payload.quantity, payload.address_id,
        payload.delivery_method, payload.payment_method,
        variant_id=payload.variant_id, coins_to_use=payload.coins_to_use,
        coupon_code=payload.coupon_code, gift_wrapping=_gift_wrapping(payload),
    )
