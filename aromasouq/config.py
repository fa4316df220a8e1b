import os
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()


def _decimal(name: str, default: str) -> Decimal:
    return Decimal(os.getenv(name, default))


def _int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./aromasouq.db")
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite://")

CURRENCY = os.getenv("CURRENCY", "AED")

# Pricing
TAX_RATE = _decimal("TAX_RATE", "0.05")
FREE_SHIPPING_THRESHOLD = _decimal("FREE_SHIPPING_THRESHOLD", "200")
STANDARD_SHIPPING_FEE = _decimal("STANDARD_SHIPPING_FEE", "25")
QUICK_STANDARD_SHIPPING_FEE = _decimal("QUICK_STANDARD_SHIPPING_FEE", "15")
QUICK_EXPRESS_SHIPPING_FEE = _decimal("QUICK_EXPRESS_SHIPPING_FEE", "25")
GIFT_WRAP_BASIC_FEE = _decimal("GIFT_WRAP_BASIC_FEE", "10")
GIFT_WRAP_PREMIUM_FEE = _decimal("GIFT_WRAP_PREMIUM_FEE", "20")
GIFT_WRAP_LUXURY_FEE = _decimal("GIFT_WRAP_LUXURY_FEE", "35")

# Coins: checkout spends at 1 coin = 1 AED, redemption at 1 coin = 0.1 AED
CHECKOUT_COIN_RATE = _decimal("CHECKOUT_COIN_RATE", "1.0")
REDEMPTION_COIN_RATE = _decimal("REDEMPTION_COIN_RATE", "0.1")
MAX_COINS_DISCOUNT_RATIO = _decimal("MAX_COINS_DISCOUNT_RATIO", "0.5")
COINS_EARN_DIVISOR = _decimal("COINS_EARN_DIVISOR", "10")

# Wallet
COIN_EXPIRY_DAYS = _int("COIN_EXPIRY_DAYS", 90)
COINS_EXPIRING_SOON_DAYS = _int("COINS_EXPIRING_SOON_DAYS", 30)
REDEEMED_COUPON_VALID_DAYS = _int("REDEEMED_COUPON_VALID_DAYS", 30)
REDEEM_MIN_COINS = _int("REDEEM_MIN_COINS", 10)
REDEEM_MAX_COINS = _int("REDEEM_MAX_COINS", 10000)
EXPIRY_BATCH_SIZE = _int("EXPIRY_BATCH_SIZE", 500)
SYSTEM_VENDOR_ID = int(os.environ["SYSTEM_VENDOR_ID"]) if os.getenv("SYSTEM_VENDOR_ID") else None

# Reconciliation outbox
RECONCILIATION_MAX_ATTEMPTS = _int("RECONCILIATION_MAX_ATTEMPTS", 5)
