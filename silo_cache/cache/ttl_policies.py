"""
TTL tiers and key-to-category mapping.
"""
from enum import Enum
from typing import Any, Dict, List, Tuple


class CacheTTL:
    """Standard TTL tiers, in seconds."""
    SHORT = 60            # 1 minute - frequently changing data
    MEDIUM = 300          # 5 minutes - default
    LONG = 1800           # 30 minutes - stable data
    VERY_LONG = 3600      # 1 hour - rarely changing data
    INFINITE = -1         # Never expires (manual invalidation only)


class DataCategory(Enum):
    """Families of cached business data with different caching behaviors."""
    CATALOG = "catalog"               # products, bundles, store products
    REFERENCE = "reference"           # categories, business, branches
    ITEMS = "items"                   # raw and composite inventory items
    INVENTORY = "inventory"           # stock levels, POs, transfers
    ORDERS = "orders"                 # live order queues, no SWR
    PRODUCTION = "production"         # production templates and runs
    DASHBOARD = "dashboard"           # aggregated stats
    MANAGEMENT = "management"         # management screen lists
    DEFAULT = "default"


# TTL configuration by category
TTL_CONFIG: Dict[DataCategory, Dict[str, Any]] = {
    DataCategory.CATALOG: {
        "ttl": CacheTTL.MEDIUM,
        "allow_swr": True,
    },
    DataCategory.REFERENCE: {
        "ttl": CacheTTL.LONG,
        "allow_swr": True,
    },
    DataCategory.ITEMS: {
        "ttl": CacheTTL.MEDIUM,
        "allow_swr": True,
    },
    DataCategory.INVENTORY: {
        "ttl": CacheTTL.SHORT,
        "allow_swr": True,
    },
    DataCategory.ORDERS: {
        "ttl": CacheTTL.SHORT,
        "allow_swr": False,       # No stale serving for order queues
    },
    DataCategory.PRODUCTION: {
        "ttl": CacheTTL.MEDIUM,
        "allow_swr": True,
    },
    DataCategory.DASHBOARD: {
        "ttl": CacheTTL.SHORT,
        "allow_swr": True,
    },
    DataCategory.MANAGEMENT: {
        "ttl": CacheTTL.MEDIUM,
        "allow_swr": True,
    },
    DataCategory.DEFAULT: {
        "ttl": CacheTTL.MEDIUM,
        "allow_swr": True,
    },
}


# Ordered (prefix, category) rules; first match wins, so longer prefixes go first
_KEY_RULES: List[Tuple[str, DataCategory]] = [
    ("management_orders", DataCategory.ORDERS),
    ("management_items_", DataCategory.ITEMS),
    ("management_production", DataCategory.PRODUCTION),
    ("management_store_products", DataCategory.CATALOG),
    ("management_bundles", DataCategory.CATALOG),
    ("management_", DataCategory.MANAGEMENT),
    ("production_stats", DataCategory.DASHBOARD),
    ("production", DataCategory.PRODUCTION),
    ("products", DataCategory.CATALOG),
    ("product_", DataCategory.CATALOG),
    ("categories", DataCategory.REFERENCE),
    ("business_", DataCategory.REFERENCE),
    ("branches_", DataCategory.REFERENCE),
    ("items", DataCategory.ITEMS),
    ("item_", DataCategory.ITEMS),
    ("inventory_", DataCategory.INVENTORY),
    ("vendors", DataCategory.INVENTORY),
    ("purchase_orders", DataCategory.INVENTORY),
    ("transfers", DataCategory.INVENTORY),
    ("orders", DataCategory.ORDERS),
    ("order_", DataCategory.ORDERS),
    ("dashboard_", DataCategory.DASHBOARD),
]


def get_category_for_key(key: str) -> DataCategory:
    """
    Determine the data category for a cache key.

    Keys are matched by prefix against the key naming scheme in
    silo_cache.cache.keys; unknown keys fall back to DEFAULT.
    """
    for prefix, category in _KEY_RULES:
        if key.startswith(prefix):
            return category
    return DataCategory.DEFAULT


def get_ttl_for_category(category: DataCategory) -> Tuple[float, bool]:
    """
    Get TTL configuration for a data category.

    Returns:
        (ttl_seconds, allow_swr)
    """
    config = TTL_CONFIG.get(category, TTL_CONFIG[DataCategory.DEFAULT])
    return config["ttl"], config.get("allow_swr", True)


def get_ttl_for_key(key: str) -> Tuple[float, bool]:
    """Shortcut for get_ttl_for_category(get_category_for_key(key))."""
    return get_ttl_for_category(get_category_for_key(key))
