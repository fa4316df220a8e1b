"""Import every model module so relationships resolve and metadata is complete."""

from aromasouq.database import Base, engine
from aromasouq.models import user, catalog, coupon, wallet, order, reconciliation  # noqa: F401


def create_all(bind=engine) -> None:
    Base.metadata.create_all(bind=bind)


def drop_all(bind=engine) -> None:
    Base.metadata.drop_all(bind=bind)
