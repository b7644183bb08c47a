"""
Mapping registry for SKU to MSKU relationships.

The registry is the authoritative in-memory store of marketplace SKUs and
the master SKU (MSKU) each one resolves to. Each SKU key is either absent
or present: add moves it to present, update keeps it present, remove moves
it back to absent. Updating or removing an absent SKU is a failure, not a
no-op.

Registry operations never raise for bad input. They return a MappingResult
whose error field says what went wrong (DUPLICATE_KEY, NOT_FOUND,
INVALID_FORMAT).

The registry is not safe for concurrent writers; callers must serialize
mutations.
"""

import logging
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Union

from src.catalog.marketplace_formats import MarketplaceFormatCatalog
from src.exceptions import (
    DuplicateKeyError,
    InvalidFormatError,
    MappingNotFoundError,
    RegistryError,
)


logger = logging.getLogger(__name__)


class RegistryErrorCode(str, Enum):
    """
    Failure codes for registry operations.

    Values:
        DUPLICATE_KEY: The SKU is already mapped.
        NOT_FOUND: The SKU has no mapping.
        INVALID_FORMAT: The SKU does not match its marketplace format.
    """
    DUPLICATE_KEY = "DUPLICATE_KEY"
    NOT_FOUND = "NOT_FOUND"
    INVALID_FORMAT = "INVALID_FORMAT"


class MappingEvent(str, Enum):
    """Notification names emitted after a successful mutation."""
    ADDED = "mapping-added"
    UPDATED = "mapping-updated"
    REMOVED = "mapping-removed"


ERROR_EXCEPTIONS = {
    RegistryErrorCode.DUPLICATE_KEY: DuplicateKeyError,
    RegistryErrorCode.NOT_FOUND: MappingNotFoundError,
    RegistryErrorCode.INVALID_FORMAT: InvalidFormatError,
}

UPDATABLE_FIELDS = ("msku", "marketplace")


@dataclass
class SkuRecord:
    """
    A marketplace SKU and the MSKU it maps to.

    Attributes:
        sku: Marketplace SKU (unique across the registry).
        msku: Master SKU.
        marketplace: Marketplace that issued the SKU.
        last_updated: Set by the registry on every mutation; any value
            supplied by the caller is ignored.
    """
    sku: str
    msku: str
    marketplace: str = ""
    last_updated: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "sku": self.sku,
            "msku": self.msku,
            "marketplace": self.marketplace,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SkuRecord":
        """
        Create from a dictionary.

        Missing fields become empty strings. last_updated is parsed when it
        is an ISO-8601 string, so stored snapshots can be read back.
        """
        last_updated = data.get("last_updated")
        if isinstance(last_updated, str):
            last_updated = datetime.fromisoformat(last_updated)
        elif not isinstance(last_updated, datetime):
            last_updated = None

        return cls(
            sku=str(data.get("sku") or ""),
            msku=str(data.get("msku") or ""),
            marketplace=str(data.get("marketplace") or ""),
            last_updated=last_updated,
        )


@dataclass
class BulkImportSummary:
    """
    Outcome of import_mappings().

    Attributes:
        total: Records submitted.
        imported: Records added.
        failed: Records rejected.
        errors: One "SKU <sku>: <message>" entry per rejected record, in
            input order.
    """
    total: int = 0
    imported: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "total": self.total,
            "imported": self.imported,
            "failed": self.failed,
            "errors": self.errors,
        }


@dataclass
class MappingResult:
    """
    Result of a registry operation.

    Attributes:
        success: True if the operation was applied.
        message: Failure (or summary) message.
        data: Operation payload (the stored record, the removed record, or a
            BulkImportSummary).
        error: Failure code when success is False.
    """
    success: bool
    message: Optional[str] = None
    data: Any = None
    error: Optional[RegistryErrorCode] = None

    def raise_for_error(self) -> "MappingResult":
        """
        Raise the matching RegistryError for a failed result.

        Returns:
            self, when the result is a success.
        """
        if self.success:
            return self
        exc_class = ERROR_EXCEPTIONS.get(self.error, RegistryError)
        sku = getattr(self.data, "sku", None) if self.data is not None else None
        raise exc_class(self.message or "Mapping operation failed", sku=sku)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = self.data.to_dict() if hasattr(self.data, "to_dict") else self.data
        return {
            "success": self.success,
            "message": self.message,
            "error": self.error.value if self.error else None,
            "data": data,
        }


Subscriber = Callable[[str, SkuRecord], None]
RecordInput = Union[SkuRecord, Mapping[str, Any]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MappingRegistry:
    """
    In-memory store of SKU to MSKU mappings.

    Subscribers registered with subscribe() are called synchronously, in
    registration order, after every successful mutation with the event name
    and a copy of the affected record.

    Attributes:
        catalog: Marketplace formats checked on add and update.
    """

    def __init__(
        self,
        catalog: Optional[MarketplaceFormatCatalog] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """
        Initialize the registry.

        Args:
            catalog: Marketplace format catalog (built-in formats if omitted).
            clock: Time source for last_updated stamps.
        """
        self.catalog = catalog if catalog is not None else MarketplaceFormatCatalog()
        self._clock = clock or _utcnow
        self._records: Dict[str, SkuRecord] = {}
        self._subscribers: List[Subscriber] = []
        self._batch_subscribers: List[Callable[[], None]] = []
        self._batch_depth = 0

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a change subscriber.

        Args:
            callback: Called as callback(event_name, record).

        Returns:
            A function that removes the subscription.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, event: MappingEvent, record: SkuRecord) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event.value, replace(record))
            except Exception:
                # The mutation is already applied; remaining subscribers still run
                logger.exception(f"Subscriber {callback!r} failed on {event.value} for {record.sku}")

    def subscribe_batch_end(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Register a callback run once when the outermost batch() closes.

        Per-record notifications are still delivered inside a batch; this
        lets a subscriber defer expensive work (such as rewriting a file)
        until the whole batch is applied.

        Returns:
            A function that removes the subscription.
        """
        self._batch_subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._batch_subscribers:
                self._batch_subscribers.remove(callback)

        return unsubscribe

    @property
    def in_batch(self) -> bool:
        """True while a batch() block is open."""
        return self._batch_depth > 0

    @contextmanager
    def batch(self) -> Iterator["MappingRegistry"]:
        """
        Group several mutations.

        Batches nest; batch-end subscribers run when the outermost block
        exits, including when it exits with an exception.
        """
        self._batch_depth += 1
        try:
            yield self
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0:
                for callback in list(self._batch_subscribers):
                    try:
                        callback()
                    except Exception:
                        logger.exception(f"Batch subscriber {callback!r} failed")

    def _stamp(self, previous: Optional[datetime] = None) -> datetime:
        now = self._clock()
        if previous is not None and now <= previous:
            now = previous + timedelta(microseconds=1)
        return now

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    @staticmethod
    def _coerce(record: RecordInput) -> SkuRecord:
        if isinstance(record, SkuRecord):
            return replace(record)
        return SkuRecord.from_dict(record)

    def _format_error(self, record: SkuRecord) -> Optional[MappingResult]:
        if self.catalog.validate(record.marketplace, record.sku):
            return None
        return MappingResult(
            success=False,
            message=f"Invalid SKU format for {record.marketplace}",
            data=record,
            error=RegistryErrorCode.INVALID_FORMAT,
        )

    def add_mapping(self, record: RecordInput) -> MappingResult:
        """
        Add a new SKU mapping.

        Args:
            record: SkuRecord or dict with sku, msku and marketplace.

        Returns:
            MappingResult with the stored record, or INVALID_FORMAT when the
            SKU does not match its marketplace's format, or DUPLICATE_KEY when
            the SKU is already mapped.
        """
        candidate = self._coerce(record)

        failure = self._format_error(candidate)
        if failure is not None:
            logger.warning(f"Rejected SKU {candidate.sku}: {failure.message}")
            return failure

        if candidate.sku in self._records:
            logger.warning(f"Rejected SKU {candidate.sku}: already exists")
            return MappingResult(
                success=False,
                message="SKU already exists",
                data=candidate,
                error=RegistryErrorCode.DUPLICATE_KEY,
            )

        candidate.last_updated = self._stamp()
        self._records[candidate.sku] = candidate
        logger.debug(f"Added mapping {candidate.sku} -> {candidate.msku} ({candidate.marketplace})")

        self._notify(MappingEvent.ADDED, candidate)
        return MappingResult(success=True, data=replace(candidate))

    def update_mapping(self, changes: RecordInput) -> MappingResult:
        """
        Update an existing mapping.

        Only the fields present in changes overwrite the stored record;
        sku selects the record and last_updated is always refreshed.

        Args:
            changes: Dict (or SkuRecord) containing at least "sku".

        Returns:
            MappingResult with the merged record, NOT_FOUND if the SKU is not
            mapped, or INVALID_FORMAT if the merged record no longer matches
            its marketplace's format.
        """
        if isinstance(changes, SkuRecord):
            changes = {"sku": changes.sku, "msku": changes.msku, "marketplace": changes.marketplace}

        sku = changes.get("sku")
        existing = self._records.get(sku)
        if existing is None:
            logger.warning(f"Cannot update SKU {sku}: not found")
            return MappingResult(
                success=False,
                message="SKU not found",
                data=SkuRecord(sku=str(sku or ""), msku=""),
                error=RegistryErrorCode.NOT_FOUND,
            )

        provided = {
            name: str(changes[name]) for name in UPDATABLE_FIELDS
            if name in changes and changes[name] is not None
        }
        merged = replace(existing, **provided)

        failure = self._format_error(merged)
        if failure is not None:
            logger.warning(f"Rejected update of SKU {sku}: {failure.message}")
            return failure

        merged.last_updated = self._stamp(existing.last_updated)
        self._records[merged.sku] = merged
        logger.debug(f"Updated mapping {merged.sku}: {provided}")

        self._notify(MappingEvent.UPDATED, merged)
        return MappingResult(success=True, data=replace(merged))

    def remove_mapping(self, sku: str) -> MappingResult:
        """
        Remove a mapping.

        Returns:
            MappingResult with the removed record, or NOT_FOUND.
        """
        removed = self._records.pop(sku, None)
        if removed is None:
            logger.warning(f"Cannot remove SKU {sku}: not found")
            return MappingResult(
                success=False,
                message="SKU not found",
                data=SkuRecord(sku=str(sku), msku=""),
                error=RegistryErrorCode.NOT_FOUND,
            )

        logger.debug(f"Removed mapping {sku}")
        self._notify(MappingEvent.REMOVED, removed)
        return MappingResult(success=True, data=replace(removed))

    def import_mappings(self, records: Iterable[RecordInput]) -> MappingResult:
        """
        Add many mappings, continuing past failures.

        Runs as one batch: each added record is still notified, and
        batch-end subscribers run once after the last record.

        Args:
            records: Records to add, in order.

        Returns:
            MappingResult whose data is a BulkImportSummary. success is True
            only if every record was added.
        """
        summary = BulkImportSummary()

        with self.batch():
            for record in records:
                summary.total += 1
                result = self.add_mapping(record)
                if result.success:
                    summary.imported += 1
                else:
                    summary.failed += 1
                    sku = record.sku if isinstance(record, SkuRecord) else record.get("sku")
                    summary.errors.append(f"SKU {sku}: {result.message}")

        message = f"Imported {summary.imported} of {summary.total} mappings"
        if summary.failed:
            logger.warning(f"{message}; {summary.failed} failed")
        else:
            logger.info(message)

        return MappingResult(success=summary.success, message=message, data=summary)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_mapping(self, sku: str) -> Optional[SkuRecord]:
        """Get a copy of the stored record for a SKU, or None."""
        record = self._records.get(sku)
        return replace(record) if record else None

    def get_msku(self, sku: str) -> Optional[str]:
        """Get the MSKU a SKU maps to, or None if unmapped."""
        record = self._records.get(sku)
        return record.msku if record else None

    def get_skus_for_msku(self, msku: str) -> List[SkuRecord]:
        """All records mapped to an MSKU, in registry order."""
        return [replace(r) for r in self._records.values() if r.msku == msku]

    def search_skus(self, query: str) -> List[SkuRecord]:
        """
        Case-insensitive substring search over sku, msku and marketplace.

        Returns:
            Matching records in registry order.
        """
        needle = query.lower()
        return [
            replace(r) for r in self._records.values()
            if needle in r.sku.lower()
            or needle in r.msku.lower()
            or needle in r.marketplace.lower()
        ]

    def detect_marketplace(self, sku: str) -> Optional[str]:
        """Detect the marketplace that issued a SKU from the catalog."""
        return self.catalog.detect(sku)

    def export_mappings(self) -> List[SkuRecord]:
        """
        Snapshot of all stored records.

        The returned records are copies; later mutations do not affect them.
        """
        return [replace(r) for r in self._records.values()]

    def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about stored mappings.

        Returns:
            Dict with total count, distinct MSKU count and counts by
            marketplace.
        """
        by_marketplace = Counter(r.marketplace or "Unknown" for r in self._records.values())
        return {
            "total": len(self._records),
            "msku_count": len({r.msku for r in self._records.values()}),
            "by_marketplace": dict(by_marketplace),
        }

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, sku: object) -> bool:
        return sku in self._records
