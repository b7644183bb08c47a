"""
Marketplace SKU format catalog.

Per-marketplace identifier patterns used for validation and for
auto-detecting which marketplace issued a SKU.
"""

from src.catalog.marketplace_formats import (
    DEFAULT_MARKETPLACE_FORMATS,
    MarketplaceFormatCatalog,
    build_catalog,
)

__all__ = [
    "DEFAULT_MARKETPLACE_FORMATS",
    "MarketplaceFormatCatalog",
    "build_catalog",
]
