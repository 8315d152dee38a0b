"""Tests for CLI output helpers."""

from datetime import datetime, timezone

from rich.console import Console

from vigil_cli.cli.output import (
    format_duration,
    format_status,
    format_timestamp,
    format_value,
    print_json,
    print_key_value,
    print_result,
)


def _console() -> Console:
    return Console(record=True, width=120, color_system=None)


class TestFormatting:
    """Tests for value formatting."""

    def test_format_duration(self) -> None:
        assert format_duration(None) == ""
        assert format_duration(2.345) == "2.3s"
        assert format_duration(90) == "1m 30s"
        assert format_duration(3 * 3600 + 120) == "3h 2m"

    def test_format_timestamp(self) -> None:
        value = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)
        assert format_timestamp(value) == "2025-01-01 09:00:00 UTC"
        assert format_timestamp(None) == "Never"
        assert format_timestamp(None, empty="N/A") == "N/A"

    def test_format_status(self) -> None:
        assert format_status("FAILED") == "[red]FAILED[/red]"
        assert format_status("unknown") == "[white]unknown[/white]"

    def test_format_value(self) -> None:
        assert format_value(None) == "[dim]N/A[/dim]"
        assert format_value(True) == "[green]Yes[/green]"
        assert format_value({"a": 1}) == '{"a": 1}'
        assert format_value(3) == "3"


class TestPrinting:
    """Tests for console printers."""

    def test_print_result_skips_none_details(self) -> None:
        console = _console()
        print_result(True, "Job created", {"Schedule": "every 5m", "Next run": None}, console_instance=console)
        text = console.export_text()
        assert "✓ Job created" in text
        assert "Schedule: every 5m" in text
        assert "Next run" not in text

    def test_print_key_value_aligns_keys(self) -> None:
        console = _console()
        print_key_value({"ID": "abc", "Schedule": "@daily"}, title="Job", console_instance=console)
        lines = console.export_text().splitlines()
        assert lines[0] == "Job"
        assert "  ID       : abc" in lines
        assert "  Schedule : @daily" in lines

    def test_print_json_serialises_datetimes(self) -> None:
        console = _console()
        print_json({"at": datetime(2025, 1, 1, tzinfo=timezone.utc)}, console_instance=console)
        assert "2025-01-01 00:00:00+00:00" in console.export_text()
