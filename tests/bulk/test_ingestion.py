"""Tests for bulk CSV parsing and the upload template."""

import io

import pytest

from emv.bulk.ingestion import (
    BULK_HEADERS,
    REQUIRED_HEADERS,
    build_template_csv,
    decode_upload,
    open_bulk_csv,
    parse_bulk_csv,
)
from emv.domain.errors import BulkFormatError

HEADER = ",".join(BULK_HEADERS)


class TestParseBulkCsv:
    """Tests for whole-file parsing."""

    def test_parses_rows_with_one_based_index(self):
        text = (
            f"{HEADER}\n"
            "Alice,instagram,post,micro,beauty,50000,,5000,300,100,200,,\n"
            "Bob,tiktok,video,nano,fashion,,100000,15000,800,500,300,,\n"
        )
        upload = parse_bulk_csv(text)
        assert upload.headers == BULK_HEADERS
        assert [row.row_index for row in upload.rows] == [1, 2]
        assert upload.rows[0].fields(upload.headers)["Creator Name"] == "Alice"

    def test_cells_are_stripped(self):
        text = f"{HEADER}\n  Alice , Instagram ,post,micro,beauty,50000,,,,,,,\n"
        row = parse_bulk_csv(text).rows[0]
        fields = row.fields(BULK_HEADERS)
        assert fields["Creator Name"] == "Alice"
        assert fields["Platform"] == "Instagram"

    def test_blank_lines_skipped(self):
        text = f"\n{HEADER}\n\nAlice,instagram,post,micro,beauty,50000,,,,,,,\n,,,\n"
        upload = parse_bulk_csv(text)
        assert len(upload.rows) == 1

    def test_column_order_is_free(self):
        text = (
            "Platform,Post Type,Creator Name,Content Topic,Creator Size,Views\n"
            "tiktok,video,Bob,fashion,nano,1000\n"
        )
        upload = parse_bulk_csv(text)
        fields = upload.rows[0].fields(upload.headers)
        assert fields["Creator Name"] == "Bob"
        assert fields["Views"] == "1000"

    def test_quoted_cells_with_commas(self):
        text = f'{HEADER}\n"Smith, Jane",instagram,post,micro,beauty,50000,,,,,,,\n'
        row = parse_bulk_csv(text).rows[0]
        assert row.fields(BULK_HEADERS)["Creator Name"] == "Smith, Jane"

    def test_short_rows_are_kept_for_row_validation(self):
        text = f"{HEADER}\nAlice,instagram\n"
        row = parse_bulk_csv(text).rows[0]
        assert row.cells == ("Alice", "instagram")

    def test_empty_file_raises(self):
        with pytest.raises(BulkFormatError, match="header row and at least one data row"):
            parse_bulk_csv("")

    def test_header_only_raises(self):
        with pytest.raises(BulkFormatError, match="header row and at least one data row"):
            parse_bulk_csv(f"{HEADER}\n")

    def test_missing_required_headers_raises(self):
        with pytest.raises(BulkFormatError, match="Missing required headers: Creator Size"):
            parse_bulk_csv("Creator Name,Platform,Post Type,Content Topic\nA,instagram,post,x\n")

    def test_headers_are_case_sensitive(self):
        with pytest.raises(BulkFormatError, match="Missing required headers"):
            parse_bulk_csv(
                "creator name,platform,post type,creator size,content topic\n"
                "A,instagram,post,micro,beauty\n"
            )


class TestOpenBulkCsv:
    """Tests for lazy row iteration."""

    def test_rows_are_lazy(self):
        lines = iter([HEADER + "\n", "A,instagram,post,micro,beauty,1,,,,,,,\n"])
        headers, rows = open_bulk_csv(lines)
        assert headers == BULK_HEADERS
        first = next(rows)
        assert first.row_index == 1
        with pytest.raises(StopIteration):
            next(rows)

    def test_header_only_yields_no_rows(self):
        headers, rows = open_bulk_csv(io.StringIO(HEADER + "\n"))
        assert headers == BULK_HEADERS
        assert list(rows) == []


class TestDecodeUpload:
    """Tests for decoding uploaded bytes."""

    def test_strips_byte_order_mark(self):
        assert decode_upload(b"\xef\xbb\xbfCreator Name\n") == "Creator Name\n"

    def test_invalid_utf8_raises_format_error(self):
        with pytest.raises(BulkFormatError, match="UTF-8"):
            decode_upload(b"Creator Name,Platform\n\xff\xfe\xfa,x\n")


class TestTemplate:
    """Tests for the downloadable template."""

    def test_template_header_and_examples(self):
        lines = build_template_csv().splitlines()
        assert lines[0] == HEADER
        assert len(lines) == 3
        assert lines[1].startswith("Example Creator 1,instagram,post,micro,beauty,50000")

    def test_template_parses_cleanly(self):
        upload = parse_bulk_csv(build_template_csv())
        assert set(REQUIRED_HEADERS) <= set(upload.headers)
        assert len(upload.rows) == 2
