"""
Mapping storage module.

Mirrors the mapping registry to a JSON file. The store never touches the
registry's internals: it subscribes to the registry's change notifications
and rewrites its snapshot after each one, or once per batch when the
registry is applying a bulk import.
"""

import json
import logging
from pathlib import Path
from typing import Any, Callable, List, Optional

from src.mapping.mapping_registry import MappingRegistry, MappingResult, SkuRecord

logger = logging.getLogger(__name__)

# Default path for the mapping snapshot
DEFAULT_STORE_PATH = "data/mappings/mappings.json"

CORRUPT_SUFFIX = ".corrupt"


class MappingStore:
    """
    File-backed snapshot of registry mappings.

    Attributes:
        store_path: JSON snapshot file.
        save_count: Number of successful writes.
        dirty: True when a change has been seen but not yet written.
    """

    def __init__(self, store_path: Optional[str] = None) -> None:
        """Initialize the mapping store."""
        self.store_path = Path(store_path or DEFAULT_STORE_PATH)
        self.save_count = 0
        self.dirty = False

    def _set_aside(self, reason: Any) -> None:
        """Move an unreadable snapshot out of the way so it is not overwritten."""
        backup = self.store_path.with_name(self.store_path.name + CORRUPT_SUFFIX)
        try:
            self.store_path.replace(backup)
            logger.warning(f"Unreadable mapping store {self.store_path} ({reason}); moved to {backup}")
        except OSError as e:
            logger.warning(f"Unreadable mapping store {self.store_path} ({reason}); could not move it: {e}")

    def load(self) -> List[SkuRecord]:
        """
        Read stored records.

        Malformed entries are skipped one by one. A file that cannot be read
        as a whole is renamed with a ".corrupt" suffix so later saves do not
        replace it.

        Returns:
            Stored records, or an empty list if the file is missing or
            unreadable.
        """
        if not self.store_path.exists():
            logger.debug(f"No mapping store at {self.store_path}")
            return []

        try:
            with open(self.store_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            self._set_aside(e)
            return []

        items = data.get("mappings") if isinstance(data, dict) else None
        if not isinstance(items, list):
            self._set_aside("no mappings list")
            return []

        records: List[SkuRecord] = []
        for position, item in enumerate(items, start=1):
            if not isinstance(item, dict):
                logger.warning(f"Skipping stored mapping {position}: not an object")
                continue
            try:
                records.append(SkuRecord.from_dict(item))
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping stored mapping {position} ({item.get('sku')}): {e}")

        logger.info(f"Loaded {len(records)} of {len(items)} stored mappings from {self.store_path}")
        return records

    def load_into(self, registry: MappingRegistry) -> MappingResult:
        """
        Add stored records to a registry.

        Records go through the registry's normal bulk import, so format and
        uniqueness rules apply and last_updated is stamped at load time.
        """
        return registry.import_mappings(self.load())

    def save(self, records: List[SkuRecord]) -> None:
        """Write records to the store file."""
        try:
            self.store_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.store_path, "w", encoding="utf-8") as f:
                json.dump({"mappings": [r.to_dict() for r in records]}, f, indent=2)
            self.save_count += 1
            self.dirty = False
            logger.debug(f"Saved {len(records)} mappings to {self.store_path}")
        except OSError as e:
            logger.warning(f"Failed to save mapping store {self.store_path}: {e}")

    def flush(self, registry: MappingRegistry) -> None:
        """Write the registry's snapshot if a change is pending."""
        if self.dirty:
            self.save(registry.export_mappings())

    def attach(self, registry: MappingRegistry) -> Callable[[], None]:
        """
        Keep the store in sync with a registry.

        Single mutations are written immediately. Mutations inside a
        registry batch only mark the store dirty; the snapshot is written
        once when the batch ends.

        Returns:
            A function that detaches the store.
        """

        def on_change(event: str, record: SkuRecord) -> None:
            self.dirty = True
            if registry.in_batch:
                return
            logger.debug(f"Persisting after {event} for {record.sku}")
            self.flush(registry)

        unsubscribe_changes = registry.subscribe(on_change)
        unsubscribe_batches = registry.subscribe_batch_end(lambda: self.flush(registry))

        def detach() -> None:
            unsubscribe_changes()
            unsubscribe_batches()

        return detach
