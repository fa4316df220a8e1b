
import math
import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

import structlog
from sqlalchemy import update
from sqlalchemy.orm import Session

from aromasouq import errors
from aromasouq.database import unit_of_work
from aromasouq.models.catalog import Product
from aromasouq.models.order import Order, OrderItem, OrderStatus, PaymentMethod
from aromasouq.models.reconciliation import ReconciliationAction
from aromasouq.models.user import Address
from aromasouq.models.wallet import CoinSource
from aromasouq.services import order_transitions
from aromasouq.services.catalog_service import CatalogService
from aromasouq.services.coupon_service import CouponService
from aromasouq.services.order_transitions import SideEffect, Transition
from aromasouq.services.pricing import (
    ZERO, DeliveryMethod, GiftWrapping, PricedItem, PricingEngine, PricingInput, Quote,
)
from aromasouq.services.reconciliation_service import ReconciliationService
from aromasouq.services.wallet_service import WalletService
from aromasouq.utils.clock import utcnow

logger = structlog.get_logger(__name__)

_ORDER_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


@dataclass(frozen=True)
class OrderLine:
    product: Product
    variant_id: Optional[int]
    quantity: int
    unit_price: Decimal


@dataclass
class Checkout:
    """Everything needed to persist an order, computed before any write."""

    user_id: int
    address: Address
    lines: List[OrderLine]
    quote: Quote
    coupon_id: Optional[int] = None


class OrderService:
    """Order creation and lifecycle.

    Pricing, coupon and balance checks run before the write. The write itself
    (order rows, stock, coupon usage, coin spend, cart clearing) is one unit
    of work, and stock and coupon limits are re-checked there by conditional
    updates.
    """

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------

    @staticmethod
    def quote_cart(db: Session, user_id: int, address_id: int, coins_to_use: int = 0,
                   coupon_code: Optional[str] = None, now: Optional[datetime] = None) -> Quote:
        return OrderService._prepare_cart_checkout(db, user_id, address_id, coins_to_use, coupon_code, now).quote

    @staticmethod
    def quote_quick(db: Session, user_id: int, product_id: int, quantity: int, address_id: int,
                    delivery_method: DeliveryMethod, variant_id: Optional[int] = None, coins_to_use: int = 0,
                    coupon_code: Optional[str] = None, gift_wrapping: Optional[GiftWrapping] = None,
                    now: Optional[datetime] = None) -> Quote:
        return OrderService._prepare_quick_checkout(
            db, user_id, product_id, quantity, address_id, delivery_method,
            variant_id, coins_to_use, coupon_code, gift_wrapping, now,
        ).quote

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @staticmethod
    def create_order(db: Session, user_id: int, address_id: int, payment_method: PaymentMethod,
                     coins_to_use: int = 0, coupon_code: Optional[str] = None,
                     now: Optional[datetime] = None) -> Order:
        checkout = OrderService._prepare_cart_checkout(db, user_id, address_id, coins_to_use, coupon_code, now)
        cart = CatalogService.get_cart(db, user_id)
        return OrderService._place(db, checkout, payment_method, cart_id=cart.id)

    @staticmethod
    def quick_checkout(db: Session, user_id: int, product_id: int, quantity: int, address_id: int,
                       delivery_method: DeliveryMethod, payment_method: PaymentMethod,
                       variant_id: Optional[int] = None, coins_to_use: int = 0,
                       coupon_code: Optional[str] = None, gift_wrapping: Optional[GiftWrapping] = None,
                       now: Optional[datetime] = None) -> Order:
        """Single item purchase that bypasses the cart."""
        checkout = OrderService._prepare_quick_checkout(
            db, user_id, product_id, quantity, address_id, delivery_method,
            variant_id, coins_to_use, coupon_code, gift_wrapping, now,
        )
        return OrderService._place(db, checkout, payment_method)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    def get_order(db: Session, user_id: int, order_id: int) -> Order:
        order = OrderService._get(db, order_id)
        if order.user_id != user_id:
            raise errors.OwnershipMismatch("Order does not belong to user")
        return order

    @staticmethod
    def list_orders(db: Session, user_id: int, status: Optional[OrderStatus] = None,
                    page: int = 1, limit: int = 20) -> dict:
        page = max(page, 1)
        limit = min(max(limit, 1), 100)
        query = db.query(Order).filter(Order.user_id == user_id)
        if status is not None:
            query = query.filter(Order.order_status == status)
        total = query.count()
        orders = (
            query.order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "data": orders,
            "meta": {"total": total, "page": page, "limit": limit, "total_pages": math.ceil(total / limit)},
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @staticmethod
    def update_status(db: Session, order_id: int, new_status: OrderStatus,
                      tracking_number: Optional[str] = None, now: Optional[datetime] = None) -> Order:
        """Administrative status change driven by the transition table.

        Stock restoration is part of the status write. Coin awards and refunds
        run after it commits; a failure there is logged and queued for
        reconciliation instead of failing the status change.
        """
        now = now or utcnow()
        order = OrderService._get(db, order_id)
        transition = order_transitions.resolve(order.order_status, new_status)

        with unit_of_work(db):
            OrderService._claim(db, order, transition, now, tracking_number)
            if SideEffect.RESTORE_STOCK in transition.effects:
                OrderService._restore_stock(db, order)

        logger.info(
            "Order status updated",
            order_id=order_id,
            from_status=transition.source.value,
            to_status=transition.target.value,
        )

        if SideEffect.AWARD_COINS_EARNED in transition.effects:
            OrderService._award_coins_earned(db, order)
        if SideEffect.REFUND_COINS_USED in transition.effects:
            OrderService._refund_coins_used(db, order)

        db.refresh(order)
        return order

    @staticmethod
    def cancel_order(db: Session, user_id: int, order_id: int, now: Optional[datetime] = None) -> Order:
        """Customer cancellation: stock, coin refund and earned-coin reversal in one commit."""
        now = now or utcnow()
        order = OrderService.get_order(db, user_id, order_id)
        if order.order_status not in order_transitions.CANCELLABLE:
            raise errors.InvalidTransition(f"Cannot cancel order with status {order.order_status.value}")
        transition = order_transitions.resolve(order.order_status, OrderStatus.CANCELLED)

        with unit_of_work(db):
            OrderService._claim(db, order, transition, now)
            OrderService._restore_stock(db, order)

            if order.coins_used > 0:
                WalletService.credit(
                    db, user_id, order.coins_used, CoinSource.REFUND,
                    description=f"Refund of {order.coins_used} coins for cancelled order #{order.order_number}",
                    order_id=order.id, now=now,
                )

            if order.coins_earned > 0:
                balance = WalletService.balance_of(db, user_id)
                if balance >= order.coins_earned:
                    WalletService.debit(
                        db, user_id, order.coins_earned,
                        description=f"Reversal of {order.coins_earned} coins for cancelled order #{order.order_number}",
                        order_id=order.id,
                    )
                else:
                    # TODO: record the unrecovered amount as a debt once the business rule is decided
                    logger.warning(
                        "Earned coin reversal skipped, balance too low",
                        order_id=order.id,
                        user_id=user_id,
                        coins_earned=order.coins_earned,
                        balance=balance,
                    )

        logger.info("Order cancelled", order_id=order.id, user_id=user_id)
        db.refresh(order)
        return order

    # ------------------------------------------------------------------
    # Checkout preparation (read only)
    # ------------------------------------------------------------------

    @staticmethod
    def _prepare_cart_checkout(db: Session, user_id: int, address_id: int, coins_to_use: int,
                               coupon_code: Optional[str], now: Optional[datetime]) -> Checkout:
        address = CatalogService.get_address_for_user(db, user_id, address_id)
        cart = CatalogService.get_cart(db, user_id)
        if cart is None or not cart.items:
            raise errors.EmptyCart()

        lines = [
            OrderLine(
                product=item.product,
                variant_id=item.variant_id,
                quantity=item.quantity,
                unit_price=CatalogService.unit_price(db, item.product, item.variant_id),
            )
            for item in cart.items
        ]
        OrderService._check_availability(lines)
        subtotal = PricingEngine.subtotal(OrderService._priced(lines))
        delivery_fee = PricingEngine.cart_shipping_fee(subtotal)
        return OrderService._price(db, user_id, address, lines, delivery_fee, ZERO, coins_to_use, coupon_code, now)

    @staticmethod
    def _prepare_quick_checkout(db: Session, user_id: int, product_id: int, quantity: int, address_id: int,
                                delivery_method: DeliveryMethod, variant_id: Optional[int], coins_to_use: int,
                                coupon_code: Optional[str], gift_wrapping: Optional[GiftWrapping],
                                now: Optional[datetime]) -> Checkout:
        product = CatalogService.get_product(db, product_id)
        line = OrderLine(
            product=product,
            variant_id=variant_id,
            quantity=quantity,
            unit_price=CatalogService.unit_price(db, product, variant_id),
        )
        address = CatalogService.get_address_for_user(db, user_id, address_id)
        OrderService._check_availability([line])
        return OrderService._price(
            db, user_id, address, [line],
            PricingEngine.quick_shipping_fee(delivery_method),
            PricingEngine.gift_wrap_fee(gift_wrapping),
            coins_to_use, coupon_code, now,
        )

    @staticmethod
    def _check_availability(lines: List[OrderLine]) -> None:
        """Validate every line before anything is written."""
        requested = {}
        for line in lines:
            if not line.product.is_active:
                raise errors.ProductUnavailable(f'Product "{line.product.name}" is no longer available')
            requested[line.product.id] = requested.get(line.product.id, 0) + line.quantity

        products = {line.product.id: line.product for line in lines}
        for product_id, quantity in requested.items():
            product = products[product_id]
            if product.stock < quantity:
                raise errors.InsufficientStock(
                    f'Insufficient stock for "{product.name}". Available: {product.stock}, Requested: {quantity}'
                )

    @staticmethod
    def _price(db: Session, user_id: int, address: Address, lines: List[OrderLine], delivery_fee: Decimal,
               gift_wrap_fee: Decimal, coins_to_use: int, coupon_code: Optional[str],
               now: Optional[datetime]) -> Checkout:
        priced = OrderService._priced(lines)
        subtotal = PricingEngine.subtotal(priced)

        coupon_discount = ZERO
        coupon_id = None
        if coupon_code:
            validation = CouponService.validate(db, coupon_code, subtotal, now=now)
            coupon_discount = validation.discount_amount
            coupon_id = validation.coupon.id

        coin_balance = 0
        if coins_to_use > 0:
            WalletService.require_user(db, user_id)
            coin_balance = WalletService.balance_of(db, user_id)
            if coin_balance < coins_to_use:
                raise errors.InsufficientBalance("Insufficient coins balance")

        quote = PricingEngine.quote(PricingInput(
            items=priced,
            delivery_fee=delivery_fee,
            gift_wrap_fee=gift_wrap_fee,
            coupon_discount=coupon_discount,
            coins_to_use=coins_to_use,
            coin_balance=coin_balance,
        ))
        return Checkout(user_id=user_id, address=address, lines=lines, quote=quote, coupon_id=coupon_id)

    @staticmethod
    def _priced(lines: List[OrderLine]) -> List[PricedItem]:
        return [PricedItem(unit_price=line.unit_price, quantity=line.quantity) for line in lines]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    def _place(db: Session, checkout: Checkout, payment_method: PaymentMethod,
               cart_id: Optional[int] = None) -> Order:
        quote = checkout.quote
        with unit_of_work(db):
            order = Order(
                order_number=OrderService._order_number(),
                user_id=checkout.user_id,
                address_id=checkout.address.id,
                payment_method=payment_method,
                subtotal=quote.subtotal,
                tax=quote.tax,
                shipping_fee=quote.shipping_fee,
                gift_wrapping_fee=quote.gift_wrapping_fee,
                discount=quote.discount,
                total=quote.total,
                coins_used=quote.coins_used,
                coins_earned=quote.coins_earned,
                coupon_id=checkout.coupon_id,
                order_status=OrderStatus.PENDING,
                items=[
                    OrderItem(
                        product_id=line.product.id,
                        variant_id=line.variant_id,
                        quantity=line.quantity,
                        price=line.unit_price,
                    )
                    for line in checkout.lines
                ],
            )
            db.add(order)
            db.flush()

            for line in checkout.lines:
                CatalogService.reserve_stock(db, line.product.id, line.quantity)

            if quote.coins_used > 0:
                WalletService.debit(
                    db, checkout.user_id, quote.coins_used,
                    description=f"Used {quote.coins_used} coins for order #{order.order_number}",
                    order_id=order.id,
                )

            if checkout.coupon_id is not None:
                CouponService.increment_usage(db, checkout.coupon_id)

            if cart_id is not None:
                CatalogService.clear_cart(db, cart_id)

        db.refresh(order)
        logger.info(
            "Order created",
            order_id=order.id,
            order_number=order.order_number,
            user_id=checkout.user_id,
            total=str(order.total),
            coins_used=order.coins_used,
            coupon_id=order.coupon_id,
        )
        return order

    @staticmethod
    def _claim(db: Session, order: Order, transition: Transition, now: datetime,
               tracking_number: Optional[str] = None) -> None:
        """Move the order to the transition target if it is still in the source state."""
        values = {"order_status": transition.target}
        if transition.stamp:
            values[transition.stamp] = now
        if transition.payment_status is not None:
            values["payment_status"] = transition.payment_status
        if tracking_number:
            values["tracking_number"] = tracking_number

        result = db.execute(
            update(Order)
            .where(Order.id == order.id, Order.order_status == transition.source)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise errors.InvalidTransition("Order status changed concurrently, please retry")

    @staticmethod
    def _restore_stock(db: Session, order: Order) -> None:
        for item in order.items:
            CatalogService.release_stock(db, item.product_id, item.quantity)

    @staticmethod
    def _award_coins_earned(db: Session, order: Order) -> None:
        if order.coins_earned <= 0:
            return
        order_id, user_id, amount = order.id, order.user_id, order.coins_earned
        description = f"Earned {amount} coins from order #{order.order_number}"
        try:
            if WalletService.has_order_credit(db, order_id, CoinSource.ORDER_PURCHASE):
                return
            WalletService.award_coins(
                db, user_id, amount, CoinSource.ORDER_PURCHASE, description=description, order_id=order_id,
            )
        except Exception as exc:
            db.rollback()
            entry = ReconciliationService.enqueue(
                db, user_id, ReconciliationAction.AWARD, amount, CoinSource.ORDER_PURCHASE,
                order_id=order_id, description=description, error=str(exc),
            )
            logger.exception(
                "Failed to award coins for delivered order", order_id=order_id, reconciliation_id=entry.id,
            )

    @staticmethod
    def _refund_coins_used(db: Session, order: Order) -> None:
        if order.coins_used <= 0:
            return
        order_id, user_id, amount = order.id, order.user_id, order.coins_used
        description = f"Refund of {amount} coins for cancelled order #{order.order_number}"
        try:
            if WalletService.has_order_credit(db, order_id, CoinSource.REFUND):
                return
            WalletService.refund_coins(db, user_id, amount, order_id, description)
        except Exception as exc:
            db.rollback()
            entry = ReconciliationService.enqueue(
                db, user_id, ReconciliationAction.REFUND, amount, CoinSource.REFUND,
                order_id=order_id, description=description, error=str(exc),
            )
            logger.exception(
                "Failed to refund coins for cancelled order", order_id=order_id, reconciliation_id=entry.id,
            )

    @staticmethod
    def _get(db: Session, order_id: int) -> Order:
        order = db.get(Order, order_id)
        if order is None:
            raise errors.OrderNotFound(f"Order with ID {order_id} not found")
        return order

    @staticmethod
    def _order_number() -> str:
        suffix = "".join(secrets.choice(_ORDER_SUFFIX_ALPHABET) for _ in range(9))
        return f"ORD-{int(utcnow().timestamp() * 1000)}-{suffix}"
