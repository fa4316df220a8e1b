
import enum
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, ROUND_FLOOR, getcontext
from typing import Iterable, Optional, Sequence
from aromasouq import config

getcontext().prec = 28

ZERO = Decimal("0")


def D(x) -> Decimal:
    return Decimal(str(x))


def round2(x: Decimal) -> Decimal:
    return x.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def floor_int(x: Decimal) -> int:
    return int(x.to_integral_value(rounding=ROUND_FLOOR))


class DeliveryMethod(str, enum.Enum):
    STANDARD = "STANDARD"
    EXPRESS = "EXPRESS"


class GiftWrapping(str, enum.Enum):
    BASIC = "BASIC"
    PREMIUM = "PREMIUM"
    LUXURY = "LUXURY"


@dataclass(frozen=True)
class PricedItem:
    unit_price: Decimal
    quantity: int


@dataclass(frozen=True)
class PricingInput:
    items: Sequence[PricedItem]
    delivery_fee: Decimal = ZERO
    gift_wrap_fee: Decimal = ZERO
    coupon_discount: Decimal = ZERO
    coins_to_use: int = 0
    coin_balance: int = 0
    coin_rate: Decimal = config.CHECKOUT_COIN_RATE


@dataclass(frozen=True)
class Quote:
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


class PricingEngine:
    """Order totals: subtotal, coupon and coin discounts, fees, VAT and coins earned.

    Pure functions only. Money is Decimal rounded half-up to 2 places.
    """

    @staticmethod
    def subtotal(items: Iterable[PricedItem]) -> Decimal:
        return round2(sum((D(item.unit_price) * item.quantity for item in items), ZERO))

    @staticmethod
    def cart_shipping_fee(subtotal: Decimal) -> Decimal:
        # Cart checkout: free shipping from the threshold up, flat fee below it
        if subtotal >= config.FREE_SHIPPING_THRESHOLD:
            return ZERO
        return config.STANDARD_SHIPPING_FEE

    @staticmethod
    def quick_shipping_fee(method: DeliveryMethod) -> Decimal:
        # Quick checkout: flat tiers regardless of subtotal
        if method == DeliveryMethod.EXPRESS:
            return config.QUICK_EXPRESS_SHIPPING_FEE
        return config.QUICK_STANDARD_SHIPPING_FEE

    @staticmethod
    def gift_wrap_fee(wrapping: Optional[GiftWrapping]) -> Decimal:
        if wrapping is None:
            return ZERO
        return {
            GiftWrapping.BASIC: config.GIFT_WRAP_BASIC_FEE,
            GiftWrapping.PREMIUM: config.GIFT_WRAP_PREMIUM_FEE,
            GiftWrapping.LUXURY: config.GIFT_WRAP_LUXURY_FEE,
        }[wrapping]

    @staticmethod
    def coins_discount(subtotal: Decimal, coupon_discount: Decimal, coins_to_use: int,
                       coin_balance: int, coin_rate: Decimal) -> tuple:
        """Return ``(coins_discount, coins_used)``.

        The discount is capped at half of the post-coupon subtotal and at
        what the balance can cover. Coins are consumed in whole units, rounded
        down, and the discount granted is exactly what those coins buy.
        """
        if coins_to_use <= 0 or coin_balance <= 0:
            return ZERO, 0
        max_coins_discount = config.MAX_COINS_DISCOUNT_RATIO * (subtotal - coupon_discount)
        raw = min(D(coins_to_use) * coin_rate, max_coins_discount, D(coin_balance) * coin_rate)
        if raw <= ZERO:
            return ZERO, 0
        coins_used = floor_int(raw / coin_rate)
        return round2(coins_used * coin_rate), coins_used

    @staticmethod
    def tax(taxable: Decimal) -> Decimal:
        return round2(taxable * config.TAX_RATE)

    @staticmethod
    def coins_earned(total: Decimal) -> int:
        return floor_int(total / config.COINS_EARN_DIVISOR)

    @staticmethod
    def quote(pricing: PricingInput) -> Quote:
        subtotal = PricingEngine.subtotal(pricing.items)
        coupon_discount = min(round2(D(pricing.coupon_discount)), subtotal)
        coins_discount, coins_used = PricingEngine.coins_discount(
            subtotal, coupon_discount, pricing.coins_to_use, pricing.coin_balance, pricing.coin_rate,
        )
        discount = coupon_discount + coins_discount
        delivery_fee = round2(D(pricing.delivery_fee))
        gift_wrap_fee = round2(D(pricing.gift_wrap_fee))

        pre_tax = subtotal - discount + delivery_fee + gift_wrap_fee
        tax = PricingEngine.tax(pre_tax)
        total = pre_tax + tax

        return Quote(
            subtotal=subtotal,
            coupon_discount=coupon_discount,
            coins_discount=coins_discount,
            coins_used=coins_used,
            discount=discount,
            shipping_fee=delivery_fee,
            gift_wrapping_fee=gift_wrap_fee,
            tax=tax,
            total=total,
            coins_earned=PricingEngine.coins_earned(total),
        )
