"""Tests for schedule parsing and next-run calculation."""

from datetime import datetime, timedelta, timezone

import pytest

from vigil_cli.scheduler.exceptions import InvalidScheduleError
from vigil_cli.scheduler.schedule import (
    CronSchedule,
    IntervalSchedule,
    next_run_time,
    parse_schedule,
    validate_schedule,
)

T = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)


class TestParseSchedule:
    """Tests for parse_schedule."""

    def test_cron_expression(self) -> None:
        parsed = parse_schedule("0 */6 * * *")
        assert isinstance(parsed, CronSchedule)
        assert parsed.zone == "UTC"

    def test_cron_alias(self) -> None:
        assert isinstance(parse_schedule("@daily"), CronSchedule)

    def test_cron_with_time_zone(self) -> None:
        parsed = parse_schedule("TZ=Europe/Berlin 0 9 * * 1")
        assert parsed == CronSchedule(expression="0 9 * * 1", zone="Europe/Berlin")

    def test_interval(self) -> None:
        parsed = parse_schedule("every 1h30m")
        assert isinstance(parsed, IntervalSchedule)
        assert parsed.interval == timedelta(hours=1, minutes=30)

    def test_interval_with_anchor(self) -> None:
        parsed = parse_schedule("every 10m from 2025-01-01T09:03:00")
        assert parsed.anchor == datetime(2025, 1, 1, 9, 3, tzinfo=timezone.utc)

    @pytest.mark.parametrize(
        "spec",
        [
            "",
            "   ",
            "not a schedule",
            "* * * *",
            "* * * * * *",
            "61 * * * *",
            "every",
            "every 0m",
            "every 5m from yesterday",
            "TZ=Mars/Olympus 0 9 * * *",
        ],
    )
    def test_invalid(self, spec: str) -> None:
        """Malformed specifications raise InvalidScheduleError."""
        with pytest.raises(InvalidScheduleError):
            parse_schedule(spec)

    def test_error_names_the_schedule(self) -> None:
        with pytest.raises(InvalidScheduleError) as exc_info:
            parse_schedule("* * * *")
        assert exc_info.value.schedule == "* * * *"
        assert "5 cron fields" in exc_info.value.reason

    def test_validate_schedule(self) -> None:
        assert validate_schedule("every 5m") is True
        assert validate_schedule("every five minutes") is False


class TestNextRunTime:
    """Tests for next_run_time."""

    def test_interval_aligned_to_epoch(self) -> None:
        """A run one second past T fires next at T + 5 minutes."""
        assert next_run_time("every 5m", T + timedelta(seconds=1)) == T + timedelta(minutes=5)

    def test_interval_on_boundary_is_strictly_later(self) -> None:
        assert next_run_time("every 5m", T) == T + timedelta(minutes=5)

    def test_interval_with_anchor(self) -> None:
        spec = "every 10m from 2025-01-01T09:03:00Z"
        assert next_run_time(spec, T) == datetime(2025, 1, 1, 9, 3, tzinfo=timezone.utc)
        assert next_run_time(spec, T + timedelta(minutes=3)) == datetime(
            2025, 1, 1, 9, 13, tzinfo=timezone.utc
        )

    def test_interval_before_anchor(self) -> None:
        spec = "every 1h from 2030-01-01T00:00:00Z"
        assert next_run_time(spec, T) == datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc)

    def test_cron_next_hour(self) -> None:
        assert next_run_time("0 * * * *", T) == T + timedelta(hours=1)

    def test_cron_every_six_hours(self) -> None:
        result = next_run_time("0 */6 * * *", T + timedelta(minutes=1))
        assert result == datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_cron_in_time_zone(self) -> None:
        """09:00 Berlin in winter is 08:00 UTC."""
        result = next_run_time("TZ=Europe/Berlin 0 9 * * *", T)
        assert result == datetime(2025, 1, 2, 8, 0, tzinfo=timezone.utc)

    def test_naive_from_is_utc(self) -> None:
        naive = T.replace(tzinfo=None)
        assert next_run_time("every 5m", naive) == T + timedelta(minutes=5)

    def test_result_is_aware_utc(self) -> None:
        result = next_run_time("@hourly", T)
        assert result.tzinfo is not None
        assert result.utcoffset() == timedelta(0)

    @pytest.mark.parametrize(
        "spec",
        ["every 5m", "every 1d", "*/15 * * * *", "0 0 1 * *", "@weekly", "TZ=America/New_York 30 2 * * *"],
    )
    def test_strictly_later_and_deterministic(self, spec: str) -> None:
        """Results are strictly after from_ and stable across calls."""
        for minutes in (0, 1, 7, 59, 60 * 24 * 40):
            from_ = T + timedelta(minutes=minutes)
            first = next_run_time(spec, from_)
            assert first > from_
            assert next_run_time(spec, from_) == first

    def test_accepts_parsed_schedule(self) -> None:
        parsed = parse_schedule("every 1h")
        assert next_run_time(parsed, T) == T + timedelta(hours=1)

    def test_invalid_schedule_raises(self) -> None:
        with pytest.raises(InvalidScheduleError):
            next_run_time("every never", T)
