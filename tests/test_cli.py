"""Tests for the EMV command-line interface."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from emv import cli
from emv.bulk.ingestion import BULK_HEADERS
from emv.cli import build_parser, format_history, main
from emv.config import get_settings

HEADER = ",".join(BULK_HEADERS)
VALID_LINE = "Alice,instagram,post,micro,beauty,50000,,5000,300,100,200,,"
BOGUS_LINE = "Bob,bogus,post,micro,beauty,1000,,,,,,,"

REFERENCE_ARGS = [
    "calculate",
    "--platform", "instagram",
    "--post-type", "post",
    "--creator-size", "micro",
    "--content-topic", "beauty",
    "--impressions", "50000",
    "--likes", "5000",
    "--comments", "300",
    "--shares", "100",
    "--saves", "200",
]


@pytest.fixture(autouse=True)
def _isolated_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Point the CLI at a temp database and keep global logging untouched."""
    monkeypatch.setenv("EMV_DATABASE_PATH", str(tmp_path / "emv.db"))
    monkeypatch.setattr(cli, "configure_logging", lambda **_: None)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestBuildParser:
    """Tests for argument parser construction."""

    def test_calculate_arguments(self) -> None:
        args = build_parser().parse_args([*REFERENCE_ARGS, "--format", "json", "--save"])
        assert args.command == "calculate"
        assert args.platform == "instagram"
        assert args.post_type == "post"
        assert args.impressions == 50000.0
        assert args.views is None
        assert args.output_format == "json"
        assert args.save is True

    def test_rejects_unknown_platform(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["calculate", "--platform", "myspace", "--post-type", "post"])

    def test_bulk_arguments(self) -> None:
        args = build_parser().parse_args(["--user", "u1", "bulk", "in.csv", "--output", "out.csv"])
        assert args.user == "u1"
        assert args.file == Path("in.csv")
        assert args.output == Path("out.csv")
        assert args.save is False

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestCalculateCommand:
    """Tests for ``emv calculate``."""

    def test_table_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(REFERENCE_ARGS) == 0
        out = capsys.readouterr().out
        assert "Total EMV" in out
        assert "$11,466.00" in out
        assert "$6,240.00" in out

    def test_json_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main([*REFERENCE_ARGS, "--format", "json"]) == 0
        result = json.loads(capsys.readouterr().out)
        assert result["total_emv"] == pytest.approx(11466)
        assert result["creator_factor"] == 1.2

    def test_rejection_returns_1(self, capsys: pytest.CaptureFixture[str]) -> None:
        code = main(
            [
                "calculate",
                "--platform", "tiktok",
                "--post-type", "video",
                "--creator-size", "nano",
                "--content-topic", "fashion",
            ]
        )
        assert code == 1
        assert "Enter at least one engagement metric" in capsys.readouterr().err

    def test_negative_metric_rejected(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main([*REFERENCE_ARGS, "--views", "-5"]) == 1
        assert "Invalid engagement counts" in capsys.readouterr().err

    def test_invalid_combination_returns_1(self, capsys: pytest.CaptureFixture[str]) -> None:
        code = main(
            [
                "calculate",
                "--platform", "tiktok",
                "--post-type", "story",
                "--creator-size", "nano",
                "--content-topic", "fashion",
                "--views", "10",
            ]
        )
        assert code == 1
        assert "story is not a valid post type for tiktok" in capsys.readouterr().err

    def test_save_then_history(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main([*REFERENCE_ARGS, "--save"]) == 0
        capsys.readouterr()

        assert main(["history", "--format", "json"]) == 0
        records = json.loads(capsys.readouterr().out)
        assert len(records) == 1
        assert records[0]["user_id"] == "demo-user"
        assert records[0]["result"]["total_emv"] == pytest.approx(11466)


class TestBulkCommand:
    """Tests for ``emv bulk``."""

    def test_bulk_with_output(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        upload = tmp_path / "upload.csv"
        upload.write_text(f"{HEADER}\n{VALID_LINE}\n{BOGUS_LINE}\n")
        output = tmp_path / "results.csv"

        assert main(["bulk", str(upload), "--output", str(output)]) == 1

        out = capsys.readouterr().out
        assert "2 rows: 1 succeeded, 1 failed" in out
        assert output.read_text().splitlines()[0].startswith("Creator Name,Platform")

    def test_bulk_save_refused_with_errors(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        upload = tmp_path / "upload.csv"
        upload.write_text(f"{HEADER}\n{VALID_LINE}\n{BOGUS_LINE}\n")

        assert main(["bulk", str(upload), "--save"]) == 1
        assert "Not saved" in capsys.readouterr().err

        main(["history", "--format", "json"])
        assert json.loads(capsys.readouterr().out) == []

    def test_bulk_save_clean_file(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        upload = tmp_path / "upload.csv"
        upload.write_text(f"{HEADER}\n{VALID_LINE}\n{VALID_LINE}\n")

        assert main(["--user", "u1", "bulk", str(upload), "--save"]) == 0
        capsys.readouterr()

        main(["--user", "u1", "history", "--format", "json"])
        assert len(json.loads(capsys.readouterr().out)) == 2

    def test_missing_file(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["bulk", str(tmp_path / "nope.csv")]) == 1
        assert "Error" in capsys.readouterr().err

    def test_missing_headers(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        upload = tmp_path / "upload.csv"
        upload.write_text("Platform,Views\ninstagram,1\n")

        assert main(["bulk", str(upload)]) == 1
        assert "Missing required headers" in capsys.readouterr().err

    def test_non_utf8_file(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        upload = tmp_path / "upload.csv"
        upload.write_bytes(f"{HEADER}\n".encode() + b"\xff\xfe\xfa,instagram\n")

        assert main(["bulk", str(upload)]) == 1
        assert "must be UTF-8 encoded" in capsys.readouterr().err

    def test_header_only(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        upload = tmp_path / "upload.csv"
        upload.write_text(f"{HEADER}\n")

        assert main(["bulk", str(upload)]) == 1
        assert "at least one data row" in capsys.readouterr().err


class TestHistoryAndTemplate:
    """Tests for ``emv history`` and ``emv template``."""

    def test_empty_history_table(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["history"]) == 0
        assert "No results found." in capsys.readouterr().out

    def test_format_history_empty(self) -> None:
        assert format_history([]) == "No results found."

    def test_history_table_after_save(self, capsys: pytest.CaptureFixture[str]) -> None:
        main([*REFERENCE_ARGS, "--save"])
        capsys.readouterr()

        main(["history"])
        out = capsys.readouterr().out
        assert out.splitlines()[0].startswith("ID")
        assert "$11,466.00" in out

    def test_template(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["template"]) == 0
        assert capsys.readouterr().out.splitlines()[0] == HEADER


class TestRatesCommand:
    """Tests for ``emv rates``."""

    def test_show_section(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["rates", "show", "--section", "creator_factors"]) == 0
        lines = capsys.readouterr().out.splitlines()
        assert lines[0] == "creator_factors"
        assert any(line.split() == ["micro", "1.2"] for line in lines)

    def test_show_json(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["rates", "show", "--format", "json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert set(data) == {"base_rates", "creator_factors", "post_type_factors", "topic_factors"}
        assert data["base_rates"]["instagram"]["post"]["likes"] > 0

    def test_set_persists_and_changes_calculations(
        self, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert main(["--user", "admin", "rates", "set", "creator_factors", "micro", "2.4"]) == 0
        assert "modify creator_factors.micro: 1.2 -> 2.4" in capsys.readouterr().out

        main([*REFERENCE_ARGS, "--format", "json"])
        result = json.loads(capsys.readouterr().out)
        assert result["creator_factor"] == 2.4
        assert result["total_emv"] == pytest.approx(22932)

    def test_set_base_rate(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["rates", "set", "base_rates", "instagram/post/likes", "0.5"]) == 0
        assert "base_rates.instagram/post/likes" in capsys.readouterr().out

    def test_set_malformed_base_rate_entry(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["rates", "set", "base_rates", "instagram/likes", "0.5"]) == 1
        assert "platform/post_type/metric" in capsys.readouterr().err

    def test_set_invalid_value(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["rates", "set", "creator_factors", "micro", "-1"]) == 1
        assert "Invalid rate table update" in capsys.readouterr().err

    def test_reset_section(self, capsys: pytest.CaptureFixture[str]) -> None:
        main(["rates", "set", "creator_factors", "micro", "2.4"])
        capsys.readouterr()

        assert main(["rates", "reset", "creator_factors"]) == 0
        assert "reset  creator_factors.micro: 2.4 -> 1.2" in capsys.readouterr().out

    def test_changes_log(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["rates", "changes"]) == 0
        assert capsys.readouterr().out.strip() == "No changes recorded."

        main(["--user", "alice", "rates", "set", "creator_factors", "micro", "2.4"])
        main(["--user", "bob", "rates", "set", "creator_factors", "nano", "0.5"])
        capsys.readouterr()

        assert main(["rates", "changes", "--limit", "1"]) == 0
        out = capsys.readouterr().out.splitlines()
        assert len(out) == 1
        assert "bob" in out[0]
        assert "creator_factors.nano" in out[0]
