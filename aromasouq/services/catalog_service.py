
from decimal import Decimal
from typing import Optional

from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from aromasouq import errors
from aromasouq.models.catalog import Cart, CartItem, Product, ProductVariant
from aromasouq.models.user import Address
from aromasouq.services.pricing import D


class CatalogService:
    """Address, product, cart and stock access used by checkout"""

    @staticmethod
    def get_address_for_user(db: Session, user_id: int, address_id: int) -> Address:
        address = db.get(Address, address_id)
        if address is None:
            raise errors.AddressNotFound(f"Address with ID {address_id} not found")
        if address.user_id != user_id:
            raise errors.OwnershipMismatch("Address does not belong to user")
        return address

    @staticmethod
    def get_product(db: Session, product_id: int) -> Product:
        product = db.get(Product, product_id)
        if product is None:
            raise errors.ProductNotFound(f"Product with ID {product_id} not found")
        return product

    @staticmethod
    def unit_price(db: Session, product: Product, variant_id: Optional[int] = None) -> Decimal:
        if variant_id is None:
            return D(product.price)
        variant = db.get(ProductVariant, variant_id)
        if variant is None or variant.product_id != product.id:
            raise errors.VariantNotFound()
        return D(variant.price)

    @staticmethod
    def get_cart(db: Session, user_id: int) -> Optional[Cart]:
        return db.query(Cart).filter(Cart.user_id == user_id).first()

    @staticmethod
    def clear_cart(db: Session, cart_id: int) -> None:
        db.execute(delete(CartItem).where(CartItem.cart_id == cart_id).execution_options(synchronize_session=False))

    @staticmethod
    def reserve_stock(db: Session, product_id: int, quantity: int) -> None:
        """Take ``quantity`` units off the shelf, failing if they are no longer there."""
        result = db.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity, sales_count=Product.sales_count + quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise errors.InsufficientStock(f"Insufficient stock for product {product_id}")

    @staticmethod
    def release_stock(db: Session, product_id: int, quantity: int) -> None:
        db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock=Product.stock + quantity, sales_count=Product.sales_count - quantity)
            .execution_options(synchronize_session=False)
        )
