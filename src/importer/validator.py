"""
Per-row validation for imported records.

Checks identifier syntax and required-field presence. Validation never
raises for bad data: it returns an error message (or None) so the pipeline
can record the failure and move on to the next row.
"""

import logging
import re
from typing import Any, Dict, Iterable, Optional, Tuple

from src.catalog.marketplace_formats import MarketplaceFormatCatalog
from src.exceptions import ConfigurationError
from src.utils.config_loader import DEFAULT_SKU_PATTERN


logger = logging.getLogger(__name__)

INVALID_SKU_MESSAGE = "Invalid SKU format"
MISSING_FIELD_MESSAGE = "Missing required field"

SKU_FIELD = "sku"
MSKU_FIELD = "msku"
MARKETPLACE_FIELD = "marketplace"

# Header variations accepted for each record field, canonical name first
FIELD_ALIASES = {
    SKU_FIELD: ["sku", "SKU", "Sku", "seller_sku", "Seller SKU", "marketplace_sku"],
    MSKU_FIELD: ["msku", "MSKU", "Msku", "master_sku", "Master SKU", "master sku"],
    MARKETPLACE_FIELD: ["marketplace", "Marketplace", "MARKETPLACE", "channel", "Channel"],
}


def resolve_field(record: Dict[str, Any], name: str) -> Tuple[Optional[str], Any]:
    """
    Find a field in a record under its canonical name or any header alias.

    Returns:
        Tuple of (key found, value), or (None, None) if no alias is present.
    """
    for key in FIELD_ALIASES.get(name, [name]):
        if key in record:
            return key, record[key]
    return None, None


class ImportValidator:
    """
    Validator applied to each record during an import.

    The SKU check has two parts: the generic identifier pattern, then the
    marketplace's own pattern when the record names a marketplace that the
    catalog knows.

    Attributes:
        catalog: Marketplace format catalog.
        sku_pattern: Compiled generic SKU pattern.
        required_fields: Fields that must be present and non-blank.
    """

    def __init__(
        self,
        catalog: Optional[MarketplaceFormatCatalog] = None,
        sku_pattern: str = DEFAULT_SKU_PATTERN,
        required_fields: Iterable[str] = (),
    ) -> None:
        self.catalog = catalog if catalog is not None else MarketplaceFormatCatalog()
        try:
            self.sku_pattern = re.compile(sku_pattern)
        except re.error as e:
            raise ConfigurationError(f"Invalid SKU pattern {sku_pattern!r}: {e}")
        self.required_fields = tuple(required_fields)

    @classmethod
    def from_config(cls, config, catalog: Optional[MarketplaceFormatCatalog] = None) -> "ImportValidator":
        """Create a validator from an ImportConfig."""
        return cls(
            catalog=catalog,
            sku_pattern=config.sku_pattern,
            required_fields=config.required_fields,
        )

    def is_valid_sku(self, sku: Any, marketplace: Any = None) -> bool:
        """
        Check a SKU's syntax.

        Args:
            sku: SKU value from the record.
            marketplace: Optional marketplace value from the same record.

        Returns:
            True if the SKU is a non-blank string matching the generic pattern
            and, when the marketplace has a registered format, that format.
        """
        if not isinstance(sku, str) or not sku.strip():
            return False
        if self.sku_pattern.fullmatch(sku) is None:
            return False
        if isinstance(marketplace, str) and marketplace:
            return self.catalog.validate(marketplace, sku)
        return True

    def missing_field(self, record: Dict[str, Any]) -> Optional[str]:
        """Return the first required field that is absent or blank, if any."""
        for name in self.required_fields:
            value = record.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                return name
        return None

    def validate(self, record: Dict[str, Any], check_sku: bool = True) -> Optional[str]:
        """
        Validate one record.

        Args:
            record: Field name -> value mapping.
            check_sku: Apply the SKU syntax check when the record has a
                SKU column under "sku" or one of its header aliases.

        Returns:
            An error message, or None if the record is valid.
        """
        if check_sku:
            sku_key, sku = resolve_field(record, SKU_FIELD)
            if sku_key is not None:
                _, marketplace = resolve_field(record, MARKETPLACE_FIELD)
                if not self.is_valid_sku(sku, marketplace):
                    return INVALID_SKU_MESSAGE

        missing = self.missing_field(record)
        if missing is not None:
            return f"{MISSING_FIELD_MESSAGE}: {missing}"

        return None
