"""
Package estimation for rating and label purchase.

Orders ship as a single package. Weight is the sum of item weights; the box
takes the largest length, width and height seen on any linked product, and
any axis no product knows falls back to the default box. That per-axis
maximum is not bin packing: multi-item orders are quoted on the biggest
item's footprint. Swap ``estimate_package`` for a packing algorithm if
quotes need dimensional accuracy.
"""
from typing import Iterable

from warehouse.db.models import Order, OrderItem
from warehouse.integrations.carriers.base import Address, Package

MIN_WEIGHT_LB = 0.5
DEFAULT_BOX_IN = (12.0, 10.0, 6.0)


def estimate_package(items: Iterable[OrderItem]) -> Package:
    weight = 0.0
    length = width = height = 0.0

    for item in items:
        product = item.product
        if product is None:
            continue
        weight += (product.weight or 0.0) * item.quantity
        length = max(length, product.length or 0.0)
        width = max(width, product.width or 0.0)
        height = max(height, product.height or 0.0)

    default_length, default_width, default_height = DEFAULT_BOX_IN
    return Package(
        weight=max(weight, MIN_WEIGHT_LB),
        length=length if length > 0 else default_length,
        width=width if width > 0 else default_width,
        height=height if height > 0 else default_height,
    )


def destination_for(order: Order) -> Address:
    return Address(
        name=order.customer_name or "Customer",
        address1=order.shipping_address1 or "",
        address2=order.shipping_address2 or "",
        city=order.shipping_city or "",
        state=order.shipping_state or "",
        postal_code=order.shipping_zip or "",
        country=order.shipping_country or "US",
    )
