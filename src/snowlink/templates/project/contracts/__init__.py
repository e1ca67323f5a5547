"""Landing table contracts."""

from .landing import OrdersDataLz

__all__ = [
    "OrdersDataLz",
]
