"""
Cron-driven tick scheduler.

Parses cron expressions and fires the monitoring tick on every
matching UTC minute. A tick that is still running when the next one is due
causes that next tick to be skipped, so ticks never overlap.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from dns_monitor.enums import LogLevel

if TYPE_CHECKING:
    from dns_monitor.audit_logger import AuditLogger


class CronParseError(Exception):
    """Raised when a cron expression cannot be parsed."""

    def __init__(self, message: str, expression: str) -> None:
        self.message = message
        self.expression = expression
        super().__init__(f"{message}: '{expression}'")


@dataclass(frozen=True)
class CronField:
    """Allowed values of one cron field."""

    values: frozenset[int]
    wildcard: bool

    def matches(self, value: int) -> bool:
        return value in self.values


@dataclass(frozen=True)
class CronSchedule:
    """A parsed cron schedule (minute resolution, evaluated in UTC)."""

    minute: CronField
    hour: CronField
    day_of_month: CronField
    month: CronField
    day_of_week: CronField  # 0 = Sunday, as in crontab
    expression: str

    def matches(self, dt: datetime) -> bool:
        """Check whether the minute containing ``dt`` is a firing minute."""
        if not (
            self.minute.matches(dt.minute)
            and self.hour.matches(dt.hour)
            and self.month.matches(dt.month)
        ):
            return False

        cron_weekday = (dt.weekday() + 1) % 7
        if self.day_of_month.wildcard and self.day_of_week.wildcard:
            return True
        if self.day_of_month.wildcard:
            return self.day_of_week.matches(cron_weekday)
        if self.day_of_week.wildcard:
            return self.day_of_month.matches(dt.day)
        # Both restricted: crontab fires when either matches
        return self.day_of_month.matches(dt.day) or self.day_of_week.matches(cron_weekday)

    def next_after(self, dt: datetime) -> datetime:
        """First firing minute strictly after ``dt``."""
        candidate = dt.replace(second=0, microsecond=0) + timedelta(minutes=1)
        # A valid schedule fires at least once in any four-year span
        for _ in range(4 * 366 * 24 * 60):
            if self.matches(candidate):
                return candidate
            candidate += timedelta(minutes=1)
        raise CronParseError("Schedule never fires", self.expression)


class CronParser:
    """Parser for five-field (or six-field, with seconds) cron expressions."""

    # (min, max, name)
    FIELD_DEFS = (
        (0, 59, "minute"),
        (0, 23, "hour"),
        (1, 31, "day_of_month"),
        (1, 12, "month"),
        (0, 7, "day_of_week"),
    )

    MONTH_NAMES = {
        "jan": 1, "feb": 2, "mar": 3, "apr": 4,
        "may": 5, "jun": 6, "jul": 7, "aug": 8,
        "sep": 9, "oct": 10, "nov": 11, "dec": 12,
    }

    DOW_NAMES = {
        "sun": 0, "mon": 1, "tue": 2, "wed": 3,
        "thu": 4, "fri": 5, "sat": 6,
    }

    def parse(self, expression: str) -> CronSchedule:
        """
        Parse a cron expression.

        Supports ``*``, lists (``1,15``), ranges (``1-5``), steps (``*/5``,
        ``0-30/10``) and three-letter month and weekday names.

        Raises:
            CronParseError: If the expression is invalid
        """
        expression = (expression or "").strip()
        if not expression:
            raise CronParseError("Empty cron expression", expression)

        fields = expression.split()
        if len(fields) == 6:
            # Leading seconds field is accepted and ignored
            fields = fields[1:]
        elif len(fields) != 5:
            raise CronParseError(
                f"Invalid number of fields (expected 5 or 6, got {len(fields)})",
                expression,
            )

        parsed = []
        for text, (min_val, max_val, name) in zip(fields, self.FIELD_DEFS):
            try:
                parsed.append(self._parse_field(text, min_val, max_val, name))
            except ValueError as e:
                raise CronParseError(f"Invalid {name} field: {e}", expression) from e

        return CronSchedule(*parsed, expression=expression)

    def _parse_field(self, text: str, min_val: int, max_val: int, name: str) -> CronField:
        names = {}
        if name == "month":
            names = self.MONTH_NAMES
        elif name == "day_of_week":
            names = self.DOW_NAMES

        values: set[int] = set()
        for part in text.lower().split(","):
            if not part:
                raise ValueError("empty list element")

            step = 1
            if "/" in part:
                part, step_text = part.split("/", 1)
                if not step_text.isdigit() or int(step_text) < 1:
                    raise ValueError(f"invalid step '{step_text}'")
                step = int(step_text)

            if part == "*":
                start, end = min_val, max_val
            elif "-" in part:
                low, high = part.split("-", 1)
                start = self._value(low, names, min_val, max_val)
                end = self._value(high, names, min_val, max_val)
                if start > end:
                    raise ValueError(f"range {part} is reversed")
            else:
                start = self._value(part, names, min_val, max_val)
                end = max_val if step > 1 else start

            values.update(range(start, end + 1, step))

        if name == "day_of_week" and 7 in values:
            values.discard(7)
            values.add(0)

        return CronField(values=frozenset(values), wildcard=text == "*")

    @staticmethod
    def _value(text: str, names: dict[str, int], min_val: int, max_val: int) -> int:
        if text in names:
            return names[text]
        if not text.isdigit():
            raise ValueError(f"invalid value '{text}'")
        value = int(text)
        if not min_val <= value <= max_val:
            raise ValueError(f"value {value} out of bounds [{min_val}-{max_val}]")
        return value


class Scheduler:
    """
    Runs one async tick callback on a cron schedule.

    Ticks are started as background tasks; when a tick is due while the
    previous one is still running, the new tick is skipped and logged.
    """

    def __init__(
        self,
        cron_expression: str,
        callback: Callable[[], Awaitable[object]],
        logger: Optional["AuditLogger"] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._schedule = CronParser().parse(cron_expression)
        self._callback = callback
        self._logger = logger
        self._clock = clock
        self._current: Optional[asyncio.Task] = None
        self._last_fired: Optional[datetime] = None
        self.fired = 0
        self.skipped = 0

    @property
    def schedule(self) -> CronSchedule:
        return self._schedule

    @property
    def busy(self) -> bool:
        return self._current is not None and not self._current.done()

    def fire(self, minute: datetime) -> Optional[asyncio.Task]:
        """
        Start the tick for ``minute`` unless one is already running.

        Returns:
            The started task, or None when the tick was skipped
        """
        if self._last_fired == minute:
            return None
        self._last_fired = minute

        if self.busy:
            self.skipped += 1
            self._log(LogLevel.WARN, "Previous tick still running, skipping", {"minute": minute.isoformat()})
            return None

        self.fired += 1
        self._current = asyncio.ensure_future(self._run_tick(minute))
        return self._current

    async def _run_tick(self, minute: datetime) -> None:
        try:
            await self._callback()
        except Exception as e:
            # One failed tick must not stop the schedule
            if self._logger:
                self._logger.log_error("Scheduler", "Tick failed", e, {"minute": minute.isoformat()})
            else:
                raise

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run until ``stop_event`` is set; waits for the running tick on exit."""
        stop_event = stop_event or asyncio.Event()
        self._log(LogLevel.INFO, "Scheduler started", {"cron": self._schedule.expression})

        while not stop_event.is_set():
            now = self._clock()
            next_minute = self._schedule.next_after(now)
            delay = max(0.0, (next_minute - now).total_seconds())
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                self.fire(next_minute)

        if self._current is not None:
            await asyncio.gather(self._current, return_exceptions=True)
        self._log(LogLevel.INFO, "Scheduler stopped", {"fired": self.fired, "skipped": self.skipped})

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, "Scheduler", message, data)
