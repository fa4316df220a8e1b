"""Domain errors raised by the pricing, coupon, wallet and order services.

Each error carries an HTTP-ish ``status_code`` and a machine readable
``code`` so the API layer can render it without knowing the error class.
"""

from typing import Optional


class DomainError(Exception):
    status_code = 400
    code = "DOMAIN_ERROR"
    default_detail = "Request could not be processed"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


# --- NotFound -------------------------------------------------------------

class NotFound(DomainError):
    status_code = 404
    code = "NOT_FOUND"
    default_detail = "Resource not found"


class CouponNotFound(NotFound):
    code = "COUPON_NOT_FOUND"
    default_detail = "Invalid coupon code"


class OrderNotFound(NotFound):
    code = "ORDER_NOT_FOUND"
    default_detail = "Order not found"


class AddressNotFound(NotFound):
    code = "ADDRESS_NOT_FOUND"
    default_detail = "Address not found"


class UserNotFound(NotFound):
    code = "USER_NOT_FOUND"
    default_detail = "User not found"


class WalletNotFound(NotFound):
    code = "WALLET_NOT_FOUND"
    default_detail = "Wallet not found"


class ProductNotFound(NotFound):
    code = "PRODUCT_NOT_FOUND"
    default_detail = "Product not found"


class VariantNotFound(NotFound):
    code = "VARIANT_NOT_FOUND"
    default_detail = "Variant not found"


class VendorNotFound(NotFound):
    code = "VENDOR_NOT_FOUND"
    default_detail = "Vendor profile not found"


# --- Forbidden ------------------------------------------------------------

class Forbidden(DomainError):
    status_code = 403
    code = "FORBIDDEN"
    default_detail = "Operation not permitted"


class OwnershipMismatch(Forbidden):
    code = "OWNERSHIP_MISMATCH"
    default_detail = "Resource does not belong to user"


class VendorNotApproved(Forbidden):
    code = "VENDOR_NOT_APPROVED"
    default_detail = "Vendor is not approved"


# --- Conflict -------------------------------------------------------------

class Conflict(DomainError):
    status_code = 409
    code = "CONFLICT"
    default_detail = "Resource already exists"


class DuplicateCouponCode(Conflict):
    code = "DUPLICATE_COUPON_CODE"
    default_detail = "Coupon code already exists"


# --- InvalidState ---------------------------------------------------------

class InvalidState(DomainError):
    code = "INVALID_STATE"
    default_detail = "Operation not allowed in the current state"


class InvalidCoupon(InvalidState):
    code = "INVALID_COUPON"
    default_detail = "Coupon data is invalid"


class CouponInactive(InvalidState):
    code = "COUPON_INACTIVE"
    default_detail = "This coupon is no longer active"


class CouponNotYetValid(InvalidState):
    code = "COUPON_NOT_YET_VALID"
    default_detail = "This coupon is not yet valid"


class CouponExpired(InvalidState):
    code = "COUPON_EXPIRED"
    default_detail = "This coupon has expired"


class CouponUsageLimitReached(InvalidState):
    code = "COUPON_USAGE_LIMIT_REACHED"
    default_detail = "This coupon has reached its usage limit"


class BelowMinimumOrder(InvalidState):
    code = "BELOW_MINIMUM_ORDER"
    default_detail = "Order amount is below the coupon minimum"


class InvalidTransition(InvalidState):
    code = "INVALID_TRANSITION"
    default_detail = "Order status transition not permitted"


class InsufficientStock(InvalidState):
    code = "INSUFFICIENT_STOCK"
    default_detail = "Insufficient stock"


class ProductUnavailable(InvalidState):
    code = "PRODUCT_UNAVAILABLE"
    default_detail = "Product is no longer available"


class EmptyCart(InvalidState):
    code = "EMPTY_CART"
    default_detail = "Cart is empty"


# --- Balance / configuration ----------------------------------------------

class InsufficientBalance(DomainError):
    code = "INSUFFICIENT_BALANCE"
    default_detail = "Insufficient coins balance"


class ConfigurationError(DomainError):
    status_code = 500
    code = "CONFIGURATION_ERROR"
    default_detail = "Service is misconfigured"


class NoSystemVendorConfigured(ConfigurationError):
    code = "NO_SYSTEM_VENDOR"
    default_detail = "System vendor not configured. Please contact support."
