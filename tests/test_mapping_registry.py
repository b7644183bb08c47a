"""
Tests for the mapping registry.
"""

from datetime import datetime, timezone

import pytest

from src.catalog.marketplace_formats import MarketplaceFormatCatalog
from src.exceptions import DuplicateKeyError, InvalidFormatError, MappingNotFoundError
from src.mapping.mapping_registry import (
    MappingEvent,
    MappingRegistry,
    RegistryErrorCode,
    SkuRecord,
)


FIXED_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def registry() -> MappingRegistry:
    return MappingRegistry()


@pytest.fixture
def populated(registry: MappingRegistry) -> MappingRegistry:
    registry.add_mapping({"sku": "B000123456", "msku": "MSKU-1", "marketplace": "Amazon"})
    registry.add_mapping({"sku": "ABC12345", "msku": "MSKU-1", "marketplace": "Walmart"})
    registry.add_mapping({"sku": "ITEM-1234", "msku": "MSKU-2", "marketplace": "eBay"})
    return registry


class TestAddMapping:
    """Tests for add_mapping."""

    def test_add(self, registry: MappingRegistry) -> None:
        result = registry.add_mapping(SkuRecord(sku="B000123456", msku="MSKU-1", marketplace="Amazon"))

        assert result.success
        assert result.data.sku == "B000123456"
        assert result.data.last_updated is not None
        assert registry.get_msku("B000123456") == "MSKU-1"
        assert "B000123456" in registry

    def test_duplicate_key(self, populated: MappingRegistry) -> None:
        result = populated.add_mapping({"sku": "B000123456", "msku": "OTHER", "marketplace": "Amazon"})

        assert not result.success
        assert result.error == RegistryErrorCode.DUPLICATE_KEY
        assert result.message == "SKU already exists"
        assert populated.get_msku("B000123456") == "MSKU-1"

    @pytest.mark.parametrize("sku", ["b000123456", "B00012345", "B0001234567"])
    def test_invalid_format(self, registry: MappingRegistry, sku: str) -> None:
        """Lowercase or wrong-length Amazon SKUs are rejected."""
        result = registry.add_mapping({"sku": sku, "msku": "M", "marketplace": "Amazon"})

        assert not result.success
        assert result.error == RegistryErrorCode.INVALID_FORMAT
        assert result.message == "Invalid SKU format for Amazon"
        assert len(registry) == 0

    def test_same_sku_under_unregistered_marketplace(self, registry: MappingRegistry) -> None:
        result = registry.add_mapping({"sku": "b000123456", "msku": "M", "marketplace": "Etsy"})
        assert result.success

    def test_caller_timestamp_ignored(self, registry: MappingRegistry) -> None:
        stale = datetime(2000, 1, 1, tzinfo=timezone.utc)
        result = registry.add_mapping(SkuRecord(sku="X-1", msku="M", last_updated=stale))
        assert result.data.last_updated != stale

    def test_stored_record_is_not_caller_object(self, registry: MappingRegistry) -> None:
        record = SkuRecord(sku="X-1", msku="M")
        registry.add_mapping(record)
        record.msku = "CHANGED"
        assert registry.get_msku("X-1") == "M"


class TestUpdateMapping:
    """Tests for update_mapping."""

    def test_update_keeps_unprovided_fields(self, populated: MappingRegistry) -> None:
        result = populated.update_mapping({"sku": "B000123456", "msku": "MSKU-9"})

        assert result.success
        record = populated.get_mapping("B000123456")
        assert record.msku == "MSKU-9"
        assert record.marketplace == "Amazon"

    def test_update_refreshes_timestamp(self, populated: MappingRegistry) -> None:
        before = populated.get_mapping("ITEM-1234").last_updated
        populated.update_mapping({"sku": "ITEM-1234", "msku": "MSKU-3"})
        assert populated.get_mapping("ITEM-1234").last_updated > before

    def test_update_not_found(self, registry: MappingRegistry) -> None:
        result = registry.update_mapping({"sku": "MISSING", "msku": "M"})

        assert not result.success
        assert result.error == RegistryErrorCode.NOT_FOUND
        assert len(registry) == 0

    def test_update_to_mismatched_marketplace(self, populated: MappingRegistry) -> None:
        result = populated.update_mapping({"sku": "ITEM-1234", "marketplace": "Amazon"})

        assert result.error == RegistryErrorCode.INVALID_FORMAT
        assert populated.get_mapping("ITEM-1234").marketplace == "eBay"

    def test_update_with_record(self, populated: MappingRegistry) -> None:
        result = populated.update_mapping(SkuRecord(sku="ABC12345", msku="MSKU-5", marketplace="Walmart"))
        assert result.success
        assert populated.get_msku("ABC12345") == "MSKU-5"


class TestRemoveMapping:
    """Tests for remove_mapping."""

    def test_remove(self, populated: MappingRegistry) -> None:
        result = populated.remove_mapping("ABC12345")

        assert result.success
        assert result.data.msku == "MSKU-1"
        assert "ABC12345" not in populated
        assert populated.get_msku("ABC12345") is None

    def test_remove_absent(self, registry: MappingRegistry) -> None:
        result = registry.remove_mapping("MISSING")
        assert result.error == RegistryErrorCode.NOT_FOUND

    def test_readd_after_remove(self, populated: MappingRegistry) -> None:
        populated.remove_mapping("ITEM-1234")
        result = populated.add_mapping({"sku": "ITEM-1234", "msku": "MSKU-7", "marketplace": "eBay"})
        assert result.success


class TestImportMappings:
    """Tests for import_mappings."""

    def test_partial_failure(self, registry: MappingRegistry) -> None:
        records = [
            {"sku": "SKU-1", "msku": "M1"},
            {"sku": "SKU-2", "msku": "M2"},
            {"sku": "SKU-1", "msku": "M3"},
            {"sku": "SKU-4", "msku": "M4"},
            {"sku": "SKU-5", "msku": "M5"},
        ]
        result = registry.import_mappings(records)
        summary = result.data

        assert result.success is False
        assert (summary.total, summary.imported, summary.failed) == (5, 4, 1)
        assert summary.errors == ["SKU SKU-1: SKU already exists"]
        assert len(registry) == 4
        assert registry.get_msku("SKU-1") == "M1"

    def test_all_succeed(self, registry: MappingRegistry) -> None:
        result = registry.import_mappings([{"sku": "A", "msku": "M"}, {"sku": "B", "msku": "M"}])
        assert result.success
        assert result.message == "Imported 2 of 2 mappings"

    def test_error_order_follows_input(self, registry: MappingRegistry) -> None:
        records = [
            {"sku": "bad", "msku": "M", "marketplace": "Amazon"},
            {"sku": "A", "msku": "M"},
            {"sku": "A", "msku": "M"},
        ]
        summary = registry.import_mappings(records).data
        assert summary.errors == [
            "SKU bad: Invalid SKU format for Amazon",
            "SKU A: SKU already exists",
        ]

    def test_uniqueness_invariant(self, registry: MappingRegistry) -> None:
        registry.import_mappings([{"sku": f"S{i % 3}", "msku": "M"} for i in range(10)])
        skus = [r.sku for r in registry.export_mappings()]
        assert len(skus) == len(set(skus)) == 3

    def test_round_trip(self, populated: MappingRegistry) -> None:
        exported = populated.export_mappings()

        fresh = MappingRegistry()
        result = fresh.import_mappings(exported)

        assert result.data.imported == result.data.total == len(exported)
        assert result.data.errors == []
        assert [r.sku for r in fresh.export_mappings()] == [r.sku for r in exported]


class TestQueries:
    """Tests for lookup, search and export."""

    def test_get_skus_for_msku(self, populated: MappingRegistry) -> None:
        records = populated.get_skus_for_msku("MSKU-1")
        assert [r.sku for r in records] == ["B000123456", "ABC12345"]
        assert populated.get_skus_for_msku("NONE") == []

    def test_search_is_case_insensitive(self, populated: MappingRegistry) -> None:
        assert [r.sku for r in populated.search_skus("item")] == ["ITEM-1234"]
        assert len(populated.search_skus("msku-1")) == 2
        assert [r.sku for r in populated.search_skus("walm")] == ["ABC12345"]

    def test_export_is_idempotent(self, populated: MappingRegistry) -> None:
        assert populated.export_mappings() == populated.export_mappings()

    def test_export_is_a_snapshot(self, populated: MappingRegistry) -> None:
        snapshot = populated.export_mappings()
        populated.update_mapping({"sku": "B000123456", "msku": "CHANGED"})
        populated.remove_mapping("ABC12345")

        assert len(snapshot) == 3
        assert snapshot[0].msku == "MSKU-1"

    def test_detect_marketplace(self, registry: MappingRegistry) -> None:
        assert registry.detect_marketplace("ABC12345") == "Walmart"
        assert registry.detect_marketplace("???") is None

    def test_stats(self, populated: MappingRegistry) -> None:
        populated.add_mapping({"sku": "loose", "msku": "MSKU-2"})
        stats = populated.get_stats()

        assert stats["total"] == 4
        assert stats["msku_count"] == 2
        assert stats["by_marketplace"] == {"Amazon": 1, "Walmart": 1, "eBay": 1, "Unknown": 1}

    def test_custom_catalog(self) -> None:
        registry = MappingRegistry(catalog=MarketplaceFormatCatalog([("Etsy", r"^E\d+$")]))
        assert not registry.add_mapping({"sku": "X1", "msku": "M", "marketplace": "Etsy"}).success
        assert registry.add_mapping({"sku": "E1", "msku": "M", "marketplace": "Etsy"}).success
        assert registry.add_mapping({"sku": "b000123456", "msku": "M", "marketplace": "Amazon"}).success


class TestNotifications:
    """Tests for change subscribers."""

    def test_events_in_order(self, registry: MappingRegistry) -> None:
        events = []
        registry.subscribe(lambda name, record: events.append((name, record.sku, record.msku)))

        registry.add_mapping({"sku": "A", "msku": "M1"})
        registry.update_mapping({"sku": "A", "msku": "M2"})
        registry.remove_mapping("A")

        assert events == [
            (MappingEvent.ADDED.value, "A", "M1"),
            (MappingEvent.UPDATED.value, "A", "M2"),
            (MappingEvent.REMOVED.value, "A", "M2"),
        ]

    def test_no_event_on_failure(self, populated: MappingRegistry) -> None:
        events = []
        populated.subscribe(lambda name, record: events.append(name))

        populated.add_mapping({"sku": "B000123456", "msku": "M"})
        populated.update_mapping({"sku": "MISSING", "msku": "M"})
        populated.remove_mapping("MISSING")

        assert events == []

    def test_subscribers_called_in_registration_order(self, registry: MappingRegistry) -> None:
        calls = []
        registry.subscribe(lambda name, record: calls.append("first"))
        registry.subscribe(lambda name, record: calls.append("second"))

        registry.add_mapping({"sku": "A", "msku": "M"})
        assert calls == ["first", "second"]

    def test_failing_subscriber_does_not_block_others(self, registry: MappingRegistry) -> None:
        calls = []

        def broken(name, record):
            raise RuntimeError("boom")

        registry.subscribe(broken)
        registry.subscribe(lambda name, record: calls.append(name))

        result = registry.add_mapping({"sku": "A", "msku": "M"})
        assert result.success
        assert calls == [MappingEvent.ADDED.value]

    def test_payload_is_a_copy(self, registry: MappingRegistry) -> None:
        registry.subscribe(lambda name, record: setattr(record, "msku", "TAMPERED"))
        registry.add_mapping({"sku": "A", "msku": "M"})
        assert registry.get_msku("A") == "M"

    def test_unsubscribe(self, registry: MappingRegistry) -> None:
        calls = []
        unsubscribe = registry.subscribe(lambda name, record: calls.append(name))
        unsubscribe()

        registry.add_mapping({"sku": "A", "msku": "M"})
        assert calls == []

    def test_bulk_import_notifies_each_record(self, registry: MappingRegistry) -> None:
        added = []
        registry.subscribe(lambda name, record: added.append(record.sku))
        registry.import_mappings([{"sku": "A", "msku": "M"}, {"sku": "A", "msku": "M"}, {"sku": "B", "msku": "M"}])
        assert added == ["A", "B"]


class TestBatches:
    """Tests for batch() windows and batch-end subscribers."""

    def test_import_mappings_ends_one_batch(self, registry: MappingRegistry) -> None:
        ends = []
        registry.subscribe_batch_end(lambda: ends.append(len(registry)))

        registry.import_mappings([{"sku": f"S{i}", "msku": "M"} for i in range(50)])
        assert ends == [50]

    def test_nested_batches_end_once(self, registry: MappingRegistry) -> None:
        ends = []
        registry.subscribe_batch_end(lambda: ends.append("end"))

        with registry.batch():
            registry.add_mapping({"sku": "A", "msku": "M"})
            registry.import_mappings([{"sku": "B", "msku": "M"}])
            assert ends == []
        assert ends == ["end"]

    def test_records_still_notified_inside_batch(self, registry: MappingRegistry) -> None:
        seen = []
        registry.subscribe(lambda name, record: seen.append((record.sku, registry.in_batch)))

        with registry.batch():
            registry.add_mapping({"sku": "A", "msku": "M"})
            registry.remove_mapping("A")
        registry.add_mapping({"sku": "B", "msku": "M"})

        assert seen == [("A", True), ("A", True), ("B", False)]
        assert registry.in_batch is False

    def test_batch_end_runs_after_exception(self, registry: MappingRegistry) -> None:
        ends = []
        registry.subscribe_batch_end(lambda: ends.append("end"))

        with pytest.raises(RuntimeError):
            with registry.batch():
                raise RuntimeError("boom")

        assert ends == ["end"]
        assert registry.in_batch is False

    def test_failing_batch_subscriber_is_contained(self, registry: MappingRegistry) -> None:
        ends = []

        def broken():
            raise RuntimeError("boom")

        registry.subscribe_batch_end(broken)
        registry.subscribe_batch_end(lambda: ends.append("end"))

        result = registry.import_mappings([{"sku": "A", "msku": "M"}])
        assert result.success
        assert ends == ["end"]

    def test_unsubscribe_batch_end(self, registry: MappingRegistry) -> None:
        ends = []
        unsubscribe = registry.subscribe_batch_end(lambda: ends.append("end"))
        unsubscribe()

        registry.import_mappings([{"sku": "A", "msku": "M"}])
        assert ends == []


class TestTimestamps:
    """Tests for last_updated stamping."""

    def test_stamps_strictly_increase_with_frozen_clock(self) -> None:
        registry = MappingRegistry(clock=lambda: FIXED_TIME)
        registry.add_mapping({"sku": "A", "msku": "M"})
        first = registry.get_mapping("A").last_updated

        registry.update_mapping({"sku": "A", "msku": "M2"})
        second = registry.get_mapping("A").last_updated

        assert first == FIXED_TIME
        assert second > first


class TestMappingResult:
    """Tests for MappingResult helpers."""

    def test_raise_for_error_success(self, registry: MappingRegistry) -> None:
        result = registry.add_mapping({"sku": "A", "msku": "M"})
        assert result.raise_for_error() is result

    def test_raise_for_error_types(self, populated: MappingRegistry) -> None:
        with pytest.raises(DuplicateKeyError):
            populated.add_mapping({"sku": "ABC12345", "msku": "M"}).raise_for_error()
        with pytest.raises(MappingNotFoundError):
            populated.remove_mapping("MISSING").raise_for_error()
        with pytest.raises(InvalidFormatError):
            populated.add_mapping({"sku": "x", "msku": "M", "marketplace": "Walmart"}).raise_for_error()

    def test_to_dict(self, registry: MappingRegistry) -> None:
        data = registry.remove_mapping("MISSING").to_dict()
        assert data["success"] is False
        assert data["error"] == "NOT_FOUND"
        assert data["data"]["sku"] == "MISSING"


class TestSkuRecord:
    """Tests for SkuRecord serialization."""

    def test_from_dict_parses_timestamp(self) -> None:
        record = SkuRecord.from_dict(
            {"sku": "A", "msku": "M", "last_updated": "2024-01-01T00:00:00+00:00"}
        )
        assert record.last_updated == FIXED_TIME
        assert record.marketplace == ""

    def test_to_dict(self) -> None:
        record = SkuRecord(sku="A", msku="M", marketplace="eBay", last_updated=FIXED_TIME)
        assert record.to_dict() == {
            "sku": "A",
            "msku": "M",
            "marketplace": "eBay",
            "last_updated": "2024-01-01T00:00:00+00:00",
        }
