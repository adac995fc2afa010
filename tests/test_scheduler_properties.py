"""
Property-based tests for scheduler module.

Covers cron parsing (five and six fields), minute matching, computation of
the next firing minute and the no-overlap rule for running ticks.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from dns_monitor.audit_logger import AuditLogger
from dns_monitor.scheduler import (
    CronParseError,
    CronParser,
    CronSchedule,
    Scheduler,
)


def run_async(coro):
    """Helper to run async code in tests."""
    return asyncio.new_event_loop().run_until_complete(coro)


def range_of(low: int, high: int) -> st.SearchStrategy[str]:
    return st.builds(
        lambda a, b: f"{min(a, b)}-{max(a, b)}",
        st.integers(min_value=low, max_value=high),
        st.integers(min_value=low, max_value=high),
    )


def valid_minute() -> st.SearchStrategy[str]:
    """Generate valid minute field (0-59)."""
    return st.one_of(
        st.just("*"),
        st.integers(min_value=0, max_value=59).map(str),
        range_of(0, 59),
        st.builds(lambda step: f"*/{step}", st.integers(min_value=1, max_value=30)),
        st.lists(
            st.integers(min_value=0, max_value=59), min_size=1, max_size=3, unique=True,
        ).map(lambda vals: ",".join(str(v) for v in sorted(vals))),
    )


def valid_hour() -> st.SearchStrategy[str]:
    """Generate valid hour field (0-23)."""
    return st.one_of(
        st.just("*"),
        st.integers(min_value=0, max_value=23).map(str),
        range_of(0, 23),
        st.builds(lambda step: f"*/{step}", st.integers(min_value=1, max_value=12)),
    )


def valid_day_of_month() -> st.SearchStrategy[str]:
    return st.one_of(st.just("*"), st.integers(min_value=1, max_value=28).map(str), range_of(1, 28))


def valid_month() -> st.SearchStrategy[str]:
    return st.one_of(
        st.just("*"),
        st.integers(min_value=1, max_value=12).map(str),
        st.sampled_from(list(CronParser.MONTH_NAMES)),
        range_of(1, 12),
    )


def valid_day_of_week() -> st.SearchStrategy[str]:
    return st.one_of(
        st.just("*"),
        st.integers(min_value=0, max_value=7).map(str),
        st.sampled_from(list(CronParser.DOW_NAMES)),
        range_of(0, 6),
    )


def valid_cron_expression() -> st.SearchStrategy[str]:
    """Generate 5-field expressions, optionally with a leading seconds field."""
    five = st.builds(
        lambda m, h, dom, mon, dow: f"{m} {h} {dom} {mon} {dow}",
        valid_minute(), valid_hour(), valid_day_of_month(), valid_month(), valid_day_of_week(),
    )
    seconds = st.one_of(st.just(""), st.integers(min_value=0, max_value=59).map(lambda s: f"{s} "))
    return st.builds(lambda s, rest: s + rest, seconds, five)


@st.composite
def utc_minute_strategy(draw) -> datetime:
    return draw(st.datetimes(
        min_value=datetime(2024, 1, 1), max_value=datetime(2030, 12, 31),
    )).replace(second=0, microsecond=0, tzinfo=timezone.utc)


class TestCronParsingProperty:
    """Valid cron expressions parse into in-range field values."""

    @given(expression=valid_cron_expression())
    @settings(max_examples=200)
    def test_valid_expressions_parse(self, expression: str) -> None:
        schedule = CronParser().parse(expression)

        assert isinstance(schedule, CronSchedule)
        assert schedule.expression == expression
        assert schedule.minute.values and all(0 <= v <= 59 for v in schedule.minute.values)
        assert schedule.hour.values and all(0 <= v <= 23 for v in schedule.hour.values)
        assert all(1 <= v <= 31 for v in schedule.day_of_month.values)
        assert all(1 <= v <= 12 for v in schedule.month.values)
        assert all(0 <= v <= 6 for v in schedule.day_of_week.values)

    def test_six_fields_ignore_seconds(self) -> None:
        parser = CronParser()
        assert parser.parse("30 */5 * * * *").minute == parser.parse("*/5 * * * *").minute

    def test_field_values(self) -> None:
        parser = CronParser()

        assert parser.parse("*/15 * * * *").minute.values == {0, 15, 30, 45}
        assert parser.parse("0 9-17 * * *").hour.values == set(range(9, 18))
        assert parser.parse("0 0 1,15 * *").day_of_month.values == {1, 15}
        assert parser.parse("0-30/10 * * * *").minute.values == {0, 10, 20, 30}
        assert parser.parse("5/20 * * * *").minute.values == {5, 25, 45}
        assert parser.parse("0 0 * jan-mar *").month.values == {1, 2, 3}
        assert parser.parse("0 0 * * mon-fri").day_of_week.values == {1, 2, 3, 4, 5}

    def test_seven_is_sunday(self) -> None:
        assert CronParser().parse("0 0 * * 7").day_of_week.values == {0}

    @pytest.mark.parametrize(
        "expression",
        [
            "",
            "* * * *",
            "* * * * * * *",
            "60 * * * *",
            "* 24 * * *",
            "* * 0 * *",
            "* * * 13 *",
            "* * * * 8",
            "*/0 * * * *",
            "5-1 * * * *",
            "a * * * *",
            "1,,2 * * * *",
        ],
    )
    def test_invalid_expressions_raise(self, expression: str) -> None:
        with pytest.raises(CronParseError) as exc_info:
            CronParser().parse(expression)
        assert exc_info.value.expression == expression.strip()


class TestCronMatchingProperty:
    """next_after returns the first matching minute strictly after the input."""

    @given(expression=valid_cron_expression(), start=utc_minute_strategy())
    @settings(max_examples=100, deadline=None)
    def test_next_after_matches_and_is_strictly_later(self, expression: str, start: datetime) -> None:
        schedule = CronParser().parse(expression)

        nxt = schedule.next_after(start)

        assert nxt > start
        assert nxt.second == 0
        assert schedule.matches(nxt)

    @given(step=st.integers(min_value=1, max_value=30), start=utc_minute_strategy())
    @settings(max_examples=100)
    def test_no_firing_minute_is_skipped(self, step: int, start: datetime) -> None:
        schedule = CronParser().parse(f"*/{step} * * * *")

        nxt = schedule.next_after(start)

        minute = start + timedelta(minutes=1)
        while minute < nxt:
            assert not schedule.matches(minute)
            minute += timedelta(minutes=1)

    def test_day_of_week_counts_sunday_as_zero(self) -> None:
        schedule = CronParser().parse("0 12 * * 0")

        assert schedule.matches(datetime(2025, 12, 14, 12, 0, tzinfo=timezone.utc))  # Sunday
        assert not schedule.matches(datetime(2025, 12, 15, 12, 0, tzinfo=timezone.utc))

    def test_restricted_day_fields_match_either(self) -> None:
        schedule = CronParser().parse("0 0 1 * mon")

        assert schedule.matches(datetime(2025, 12, 1, 0, 0, tzinfo=timezone.utc))   # 1st, a Monday
        assert schedule.matches(datetime(2025, 12, 8, 0, 0, tzinfo=timezone.utc))   # Monday
        assert schedule.matches(datetime(2026, 1, 1, 0, 0, tzinfo=timezone.utc))    # 1st, a Thursday
        assert not schedule.matches(datetime(2025, 12, 9, 0, 0, tzinfo=timezone.utc))


class TestTickOverlapProperty:
    """A tick due while the previous tick runs is skipped, never queued."""

    MINUTE = datetime(2025, 12, 10, 5, 30, tzinfo=timezone.utc)

    def test_busy_tick_is_skipped(self) -> None:
        started = []

        async def scenario():
            release = asyncio.Event()

            async def tick():
                started.append(True)
                await release.wait()

            scheduler = Scheduler("* * * * *", tick)
            first = scheduler.fire(self.MINUTE)
            await asyncio.sleep(0)
            second = scheduler.fire(self.MINUTE + timedelta(minutes=1))
            busy = scheduler.busy
            release.set()
            await first
            third = scheduler.fire(self.MINUTE + timedelta(minutes=2))
            await third
            return scheduler, second, busy

        scheduler, second, busy = run_async(scenario())

        assert busy is True
        assert second is None
        assert scheduler.fired == 2
        assert scheduler.skipped == 1
        assert len(started) == 2

    def test_same_minute_fires_once(self) -> None:
        calls = []

        async def scenario():
            async def tick():
                calls.append(1)

            scheduler = Scheduler("* * * * *", tick)
            task = scheduler.fire(self.MINUTE)
            await task
            assert scheduler.fire(self.MINUTE) is None
            return scheduler

        scheduler = run_async(scenario())

        assert calls == [1]
        assert scheduler.skipped == 0

    def test_failing_tick_is_logged(self) -> None:
        logger = AuditLogger(output_format="json", output_stream=_NullStream())

        async def scenario():
            async def tick():
                raise RuntimeError("boom")

            scheduler = Scheduler("* * * * *", tick, logger=logger)
            await scheduler.fire(self.MINUTE)

        run_async(scenario())

        assert any(e.message == "Tick failed" for e in logger.entries)

    def test_run_fires_on_schedule_and_stops(self) -> None:
        calls = []
        base = datetime(2025, 12, 10, 5, 29, 59, 990000, tzinfo=timezone.utc)
        started = datetime.now(timezone.utc)

        def clock():
            return base + (datetime.now(timezone.utc) - started)

        async def scenario():
            stop = asyncio.Event()

            async def tick():
                calls.append(1)
                stop.set()

            scheduler = Scheduler("* * * * *", tick, clock=clock)
            await asyncio.wait_for(scheduler.run(stop), timeout=5)
            return scheduler

        scheduler = run_async(scenario())

        assert calls == [1]
        assert scheduler.fired == 1

    def test_invalid_expression_rejected_at_construction(self) -> None:
        async def tick():
            pass

        with pytest.raises(CronParseError):
            Scheduler("not a cron", tick)


class _NullStream:
    def write(self, text: str) -> int:
        return len(text)

    def flush(self) -> None:
        pass
