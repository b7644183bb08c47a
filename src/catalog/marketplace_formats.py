"""
Marketplace SKU format catalog.

Holds one regular expression per marketplace. Entries keep their
registration order: detect() returns the FIRST marketplace whose pattern
matches, so the order below is part of the catalog's contract.
"""

import logging
import re
from typing import Dict, Iterable, Iterator, List, Optional, Pattern, Tuple

from src.exceptions import ConfigurationError
from src.utils.config_loader import AppConfig


logger = logging.getLogger(__name__)


# (marketplace, pattern) in detection order
DEFAULT_MARKETPLACE_FORMATS: Tuple[Tuple[str, str], ...] = (
    ("Amazon", r"^[A-Z0-9]{10}$"),
    ("Walmart", r"^[A-Z]{3}\d{5}$"),
    ("eBay", r"^[A-Z]+-\d{4}$"),
    ("Shopify", r"^[A-Z]+-[A-Z0-9]+-\d{2}$"),
)


class MarketplaceFormatCatalog:
    """
    Ordered registry of marketplace SKU patterns.

    Unknown marketplaces are permissive: validate() accepts any SKU for a
    marketplace that has no registered pattern.

    Attributes:
        formats: Compiled patterns keyed by marketplace, in registration order.
    """

    def __init__(self, formats: Optional[Iterable[Tuple[str, str]]] = None) -> None:
        """
        Initialize the catalog.

        Args:
            formats: Ordered (marketplace, regex) pairs. Defaults to
                DEFAULT_MARKETPLACE_FORMATS.
        """
        # dict preserves insertion order, which detect() relies on
        self.formats: Dict[str, Pattern[str]] = {}
        for marketplace, pattern in (formats if formats is not None else DEFAULT_MARKETPLACE_FORMATS):
            self.register(marketplace, pattern)

    def register(self, marketplace: str, pattern: str) -> None:
        """
        Register a marketplace pattern.

        New marketplaces are appended to the end of the detection order.
        Re-registering an existing marketplace replaces its pattern but keeps
        its position.

        Raises:
            ConfigurationError: If the pattern is not a valid regex.
        """
        try:
            compiled = re.compile(pattern)
        except re.error as e:
            raise ConfigurationError(
                f"Invalid SKU pattern for {marketplace}: {e}",
                details={"marketplace": marketplace, "pattern": pattern},
            )
        self.formats[marketplace] = compiled
        logger.debug(f"Registered SKU format for {marketplace}: {pattern}")

    def get_pattern(self, marketplace: str) -> Optional[str]:
        """Return the regex source for a marketplace, or None if unregistered."""
        compiled = self.formats.get(marketplace)
        return compiled.pattern if compiled else None

    def validate(self, marketplace: str, sku: str) -> bool:
        """
        Check a SKU against its marketplace format.

        Args:
            marketplace: Marketplace name (case-sensitive catalog key).
            sku: SKU to check.

        Returns:
            True if the marketplace has no registered pattern or the SKU
            matches it, False otherwise.
        """
        compiled = self.formats.get(marketplace)
        if compiled is None:
            return True
        if not isinstance(sku, str):
            return False
        return compiled.fullmatch(sku) is not None

    def detect(self, sku: str) -> Optional[str]:
        """
        Detect the marketplace that issued a SKU.

        Returns:
            The first marketplace in catalog order whose pattern matches,
            or None if none match.
        """
        if not isinstance(sku, str):
            return None
        for marketplace, compiled in self.formats.items():
            if compiled.fullmatch(sku):
                return marketplace
        return None

    @property
    def marketplaces(self) -> List[str]:
        """Marketplace names in detection order."""
        return list(self.formats)

    def to_dict(self) -> Dict[str, str]:
        """Marketplace -> regex source, in detection order."""
        return {name: compiled.pattern for name, compiled in self.formats.items()}

    def __contains__(self, marketplace: object) -> bool:
        return marketplace in self.formats

    def __iter__(self) -> Iterator[str]:
        return iter(self.formats)

    def __len__(self) -> int:
        return len(self.formats)


def build_catalog(config: Optional[AppConfig] = None) -> MarketplaceFormatCatalog:
    """
    Build the catalog from the built-in formats plus configured extras.

    Extra formats from config are appended after the built-in entries, so
    configuration can never reorder the built-in detection order.

    Args:
        config: Optional configuration (uses defaults if not provided).

    Returns:
        MarketplaceFormatCatalog: The catalog.
    """
    catalog = MarketplaceFormatCatalog()
    if config is None:
        return catalog

    for marketplace, pattern in config.catalog.extra_formats.items():
        if marketplace in catalog:
            logger.warning(f"Overriding built-in SKU format for {marketplace}")
        catalog.register(marketplace, pattern)

    return catalog
