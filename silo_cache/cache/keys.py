"""
Cache key builders for consistent key naming.

The cache treats keys as opaque strings; these helpers keep screens and
prefetchers agreeing on them, and keep related keys under a common prefix
so they can be dropped together with invalidate_pattern.
"""
from typing import Optional, Union

Id = Union[str, int]


def products() -> str:
    return "products"


def product_by_id(product_id: Id) -> str:
    return f"product_{product_id}"


def categories() -> str:
    return "categories"


def items(type: Optional[str] = None, category: Optional[str] = None) -> str:
    """Item list key, narrowed by item type and/or category."""
    parts = ["items"]
    if type:
        parts.append(f"type_{type}")
    if category:
        parts.append(f"cat_{category}")
    return "_".join(parts)


def item_by_id(item_id: Id) -> str:
    return f"item_{item_id}"


def inventory_stock() -> str:
    return "inventory_stock"


def inventory_stats() -> str:
    return "inventory_stats"


def orders(status: Optional[str] = None) -> str:
    return f"orders_{status}" if status else "orders"


def order_by_id(order_id: Id) -> str:
    return f"order_{order_id}"


def vendors() -> str:
    return "vendors"


def purchase_orders() -> str:
    return "purchase_orders"


def transfers() -> str:
    return "transfers"


def dashboard(period: str) -> str:
    return f"dashboard_{period}"


def business(business_id: Id) -> str:
    return f"business_{business_id}"


def branches(business_id: Id) -> str:
    return f"branches_{business_id}"


def production_templates() -> str:
    return "production_templates"


def productions() -> str:
    return "productions"


def production_stats() -> str:
    return "production_stats"


# Management screens

def delivery_partners() -> str:
    return "management_delivery_partners"


def tables() -> str:
    return "management_tables"


def drivers() -> str:
    return "management_drivers"


def discounts() -> str:
    return "management_discounts"


def staff_users() -> str:
    return "management_staff_users"


def bundles() -> str:
    return "management_bundles"


def store_products() -> str:
    return "management_store_products"


def management_orders(filter: Optional[str] = None) -> str:
    return f"management_orders_{filter}" if filter else "management_orders"


def raw_items(filter: Optional[str] = None) -> str:
    return f"management_items_raw_{filter}" if filter else "management_items_raw"


def composite_items() -> str:
    return "management_items_composite"


def production_data() -> str:
    return "management_production_data"
