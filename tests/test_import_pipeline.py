"""
Tests for the import pipeline.
"""

import dataclasses
import json
import logging

import pytest

from src.exceptions import ConfigurationError, FileReadError, StructuralError
from src.importer.import_pipeline import (
    DELIMITED,
    INVALID_OBJECT_MESSAGE,
    JSON,
    PARSE_ERROR_PREFIX,
    ImportConfig,
    ImportPipeline,
    detect_syntax_family,
    is_tab_separated,
)
from src.importer.validator import INVALID_SKU_MESSAGE
from src.utils.config_loader import AppConfig
from src.utils.logging_config import RunContextFilter


SAMPLE_CSV = "\n".join([
    "sku,msku,marketplace",
    "B000123456,MSKU-1,Amazon",
    "bad sku!,MSKU-2,",
    "",
    "ABC12345,MSKU-3,Walmart",
])


class FakeUpload:
    """Minimal async byte source with the UploadFile attributes the pipeline reads."""

    def __init__(self, content, filename="upload.csv", content_type=None, fail=False):
        self.content = content
        self.filename = filename
        self.content_type = content_type
        self.fail = fail

    async def read(self):
        if self.fail:
            raise OSError("connection reset")
        return self.content


class TestImportConfig:
    """Tests for ImportConfig."""

    def test_defaults(self) -> None:
        config = ImportConfig()
        assert config.field_delimiter == ","
        assert config.has_header_row is True
        assert config.skip_empty_rows is True
        assert config.validate_sku is True
        assert config.strict_quotes is False

    def test_config_is_frozen(self) -> None:
        config = ImportConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.field_delimiter = ";"

    def test_with_overrides_returns_copy(self) -> None:
        config = ImportConfig()
        tab = config.with_overrides(field_delimiter="\t")
        assert tab.field_delimiter == "\t"
        assert config.field_delimiter == ","

    @pytest.mark.parametrize("delimiter", ["", "ab", '"'])
    def test_invalid_delimiter(self, delimiter: str) -> None:
        with pytest.raises(ConfigurationError):
            ImportConfig(field_delimiter=delimiter)

    def test_from_app_config(self) -> None:
        app_config = AppConfig()
        app_config.import_defaults.field_delimiter = ";"
        app_config.import_defaults.required_fields = ["msku"]

        config = ImportConfig.from_app_config(app_config, trim_whitespace=False)
        assert config.field_delimiter == ";"
        assert config.required_fields == ("msku",)
        assert config.trim_whitespace is False


class TestSyntaxFamily:
    """Tests for upload classification."""

    def test_content_type_wins(self) -> None:
        assert detect_syntax_family("data.csv", "application/json") == JSON

    def test_extension(self) -> None:
        assert detect_syntax_family("data.json") == JSON
        assert detect_syntax_family("data.TSV") == DELIMITED

    def test_content_type_parameters_ignored(self) -> None:
        assert detect_syntax_family(None, "text/csv; charset=utf-8") == DELIMITED

    def test_unknown_defaults_to_delimited(self) -> None:
        assert detect_syntax_family("data.dat") == DELIMITED
        assert detect_syntax_family() == DELIMITED

    def test_spreadsheet_rejected(self) -> None:
        with pytest.raises(StructuralError):
            detect_syntax_family("mappings.xlsx")

    def test_tab_separated(self) -> None:
        assert is_tab_separated("data.tsv")
        assert is_tab_separated(None, "text/tab-separated-values")
        assert not is_tab_separated("data.csv")


class TestRunText:
    """Tests for delimited text imports."""

    @pytest.fixture
    def pipeline(self) -> ImportPipeline:
        return ImportPipeline()

    def test_counts(self, pipeline: ImportPipeline) -> None:
        result = pipeline.run_text(SAMPLE_CSV)

        assert result.total_rows == 4
        assert result.processed_rows == 2
        assert result.skipped_rows == 2
        assert result.empty_rows == 1
        assert len(result.errors) == 1
        assert result.success is False

    def test_every_row_accounted_for(self, pipeline: ImportPipeline) -> None:
        result = pipeline.run_text(SAMPLE_CSV)
        assert result.processed_rows + len(result.errors) + result.empty_rows == result.total_rows
        assert result.processed_rows == len(result.data)

    def test_error_row_numbers_exclude_header(self, pipeline: ImportPipeline) -> None:
        result = pipeline.run_text(SAMPLE_CSV)
        error = result.errors[0]
        assert error.row == 2
        assert error.message == INVALID_SKU_MESSAGE
        assert error.data == {"sku": "bad sku!", "msku": "MSKU-2", "marketplace": ""}

    def test_records_keyed_by_header(self, pipeline: ImportPipeline) -> None:
        result = pipeline.run_text(SAMPLE_CSV)
        assert result.data[0] == {"sku": "B000123456", "msku": "MSKU-1", "marketplace": "Amazon"}
        assert result.data[1]["marketplace"] == "Walmart"

    def test_marketplace_format_checked(self, pipeline: ImportPipeline) -> None:
        """A generic-valid SKU still fails its marketplace's pattern."""
        text = "sku,msku,marketplace\nb000123456,M1,Amazon\nB00012345,M2,Amazon"
        result = pipeline.run_text(text)
        assert result.processed_rows == 0
        assert [e.row for e in result.errors] == [1, 2]

    def test_unknown_marketplace_is_permissive(self, pipeline: ImportPipeline) -> None:
        result = pipeline.run_text("sku,msku,marketplace\nanything-1,M1,Etsy")
        assert result.processed_rows == 1

    def test_validation_disabled(self, pipeline: ImportPipeline) -> None:
        config = ImportConfig(validate_sku=False)
        result = pipeline.run_text(SAMPLE_CSV, config)
        assert result.processed_rows == 3
        assert result.errors == []

    def test_no_header_row(self, pipeline: ImportPipeline) -> None:
        config = ImportConfig(has_header_row=False)
        result = pipeline.run_text("A1,M1\nA2,M2", config)
        assert result.total_rows == 2
        assert result.data[0] == {"column0": "A1", "column1": "M1"}

    def test_ragged_rows(self, pipeline: ImportPipeline) -> None:
        """Short rows are padded with empty strings; extra fields are dropped."""
        result = pipeline.run_text("sku,msku,marketplace\nA1,M1\nA2,M2,Etsy,extra")
        assert result.data[0] == {"sku": "A1", "msku": "M1", "marketplace": ""}
        assert result.data[1] == {"sku": "A2", "msku": "M2", "marketplace": "Etsy"}

    def test_keep_empty_rows(self, pipeline: ImportPipeline) -> None:
        config = ImportConfig(skip_empty_rows=False)
        result = pipeline.run_text("sku,msku\nA1,M1\n\nA2,M2", config)
        assert result.empty_rows == 0
        assert len(result.errors) == 1
        assert result.errors[0].row == 2

    def test_trailing_newline_counts_as_empty_row(self, pipeline: ImportPipeline) -> None:
        result = pipeline.run_text("sku,msku\nA1,M1\n")
        assert result.total_rows == 2
        assert result.processed_rows == 1
        assert result.empty_rows == 1

    def test_crlf_line_endings(self, pipeline: ImportPipeline) -> None:
        result = pipeline.run_text("sku,msku\r\nA1,M1\r\n", ImportConfig(trim_whitespace=False))
        assert result.data == [{"sku": "A1", "msku": "M1"}]

    def test_required_fields(self, pipeline: ImportPipeline) -> None:
        config = ImportConfig(required_fields=("msku",))
        result = pipeline.run_text("sku,msku\nA1,\nA2,M2", config)
        assert result.processed_rows == 1
        assert result.errors[0].message == "Missing required field: msku"

    def test_strict_quotes_records_parse_error(self, pipeline: ImportPipeline) -> None:
        config = ImportConfig(strict_quotes=True)
        result = pipeline.run_text('sku,msku\n"A1,M1\nA2,M2', config)
        assert result.processed_rows == 1
        assert result.errors[0].row == 1
        assert result.errors[0].message.startswith(PARSE_ERROR_PREFIX)
        assert result.errors[0].data is None

    def test_custom_delimiter(self, pipeline: ImportPipeline) -> None:
        config = ImportConfig(field_delimiter=";")
        result = pipeline.run_text("sku;msku\nA1;M1", config)
        assert result.data == [{"sku": "A1", "msku": "M1"}]

    def test_to_dataframe(self, pipeline: ImportPipeline) -> None:
        df = pipeline.run_text(SAMPLE_CSV).to_dataframe()
        assert list(df.columns) == ["sku", "msku", "marketplace"]
        assert len(df) == 2

    def test_to_dict(self, pipeline: ImportPipeline) -> None:
        data = pipeline.run_text(SAMPLE_CSV).to_dict()
        assert data["success"] is False
        assert data["errors"][0]["row"] == 2
        assert data["empty_rows"] == 1


class TestRunRecords:
    """Tests for JSON array imports."""

    @pytest.fixture
    def pipeline(self) -> ImportPipeline:
        return ImportPipeline()

    def test_records(self, pipeline: ImportPipeline) -> None:
        items = [
            {"sku": "B000123456", "msku": "M1", "marketplace": "Amazon"},
            "not an object",
            {"sku": "", "msku": "M3"},
        ]
        result = pipeline.run(items)

        assert result.total_rows == 3
        assert result.processed_rows == 1
        assert result.skipped_rows == 2
        assert result.errors[0].row == 2
        assert result.errors[0].message == INVALID_OBJECT_MESSAGE
        assert result.errors[1].message == INVALID_SKU_MESSAGE

    def test_records_without_sku_field(self, pipeline: ImportPipeline) -> None:
        """The SKU check applies only when the record has a sku field."""
        result = pipeline.run([{"name": "x"}])
        assert result.processed_rows == 1

    def test_run_json(self, pipeline: ImportPipeline) -> None:
        result = pipeline.run_json(json.dumps([{"sku": "A1", "msku": "M1"}]))
        assert result.data == [{"sku": "A1", "msku": "M1"}]

    def test_run_json_invalid(self, pipeline: ImportPipeline) -> None:
        with pytest.raises(StructuralError):
            pipeline.run_json("[{")

    def test_run_json_not_an_array(self, pipeline: ImportPipeline) -> None:
        with pytest.raises(StructuralError):
            pipeline.run_json('{"sku": "A1"}')

    def test_run_rejects_other_payloads(self, pipeline: ImportPipeline) -> None:
        with pytest.raises(StructuralError):
            pipeline.run(42)


class TestRunBytes:
    """Tests for decoding uploaded payloads."""

    @pytest.fixture
    def pipeline(self) -> ImportPipeline:
        return ImportPipeline()

    def test_strips_bom(self, pipeline: ImportPipeline) -> None:
        content = "sku,msku\nA1,M1".encode("utf-8-sig")
        assert content.startswith(b"\xef\xbb\xbf")
        result = pipeline.run_bytes(content, filename="m.csv")
        assert result.data == [{"sku": "A1", "msku": "M1"}]

    def test_tsv_switches_delimiter(self, pipeline: ImportPipeline) -> None:
        result = pipeline.run_bytes(b"sku\tmsku\nA1\tM1", filename="m.tsv")
        assert result.data == [{"sku": "A1", "msku": "M1"}]

    def test_json_by_extension(self, pipeline: ImportPipeline) -> None:
        result = pipeline.run_bytes(b'[{"sku": "A1", "msku": "M1"}]', filename="m.json")
        assert result.processed_rows == 1

    def test_undecodable_bytes(self, pipeline: ImportPipeline) -> None:
        with pytest.raises(StructuralError):
            pipeline.run_bytes(b"sku\n\xff\xfe\xfa", filename="m.csv")

    def test_unknown_encoding(self, pipeline: ImportPipeline) -> None:
        with pytest.raises(ConfigurationError):
            pipeline.run_bytes(b"sku\nA1", ImportConfig(encoding="no-such-codec"))

    def test_alternate_encoding(self, pipeline: ImportPipeline) -> None:
        content = "sku,msku,note\nA1,M1,café".encode("latin-1")
        result = pipeline.run_bytes(content, ImportConfig(encoding="latin-1"))
        assert result.data[0]["note"] == "café"

    def test_logs_size_in_characters_for_text(self, pipeline: ImportPipeline, caplog) -> None:
        caplog.set_level(logging.INFO, logger="src.importer.import_pipeline")
        pipeline.run_bytes("sku,msku\nA1,Mé", filename="m.csv")

        assert "Importing m.csv (delimited, 14 characters)" in caplog.text

    def test_logs_size_in_bytes_for_bytes(self, pipeline: ImportPipeline, caplog) -> None:
        caplog.set_level(logging.INFO, logger="src.importer.import_pipeline")
        pipeline.run_bytes("sku,msku\nA1,Mé".encode("utf-8"), filename="m.csv")

        assert "(delimited, 15 bytes)" in caplog.text

    def test_import_records_carry_run_fields(self, pipeline: ImportPipeline, caplog) -> None:
        caplog.set_level(logging.INFO, logger="src.importer.import_pipeline")
        caplog.handler.addFilter(RunContextFilter())
        pipeline.run_bytes(b'[{"sku": "A1"}]', filename="m.json")

        record = next(r for r in caplog.records if r.getMessage().startswith("Importing"))
        assert record.run_fields == {"filename": "m.json", "family": JSON}


class TestRunSource:
    """Tests for async byte sources."""

    @pytest.mark.anyio
    async def test_reads_source(self) -> None:
        pipeline = ImportPipeline()
        result = await pipeline.run_source(FakeUpload(b"sku,msku\nA1,M1"))
        assert result.processed_rows == 1

    @pytest.mark.anyio
    async def test_uses_source_metadata(self) -> None:
        pipeline = ImportPipeline()
        upload = FakeUpload(b'[{"sku": "A1"}]', filename="upload.bin", content_type="application/json")
        result = await pipeline.run_source(upload)
        assert result.data == [{"sku": "A1"}]

    @pytest.mark.anyio
    async def test_read_failure(self) -> None:
        pipeline = ImportPipeline()
        with pytest.raises(FileReadError):
            await pipeline.run_source(FakeUpload(b"", fail=True))
