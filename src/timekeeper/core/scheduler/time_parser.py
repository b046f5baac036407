# src/timekeeper/core/scheduler/time_parser.py
"""Time expression parser.

Parses a fixed set of English time expressions into execution plans.
Patterns are tried most-specific-first; calendar arithmetic happens on
wall-clock dates in the configured timezone.
"""

import re
from datetime import date, datetime, time, timedelta, tzinfo
from zoneinfo import ZoneInfo

from timekeeper.core.scheduler.errors import ParseError, ParseErrorReason
from timekeeper.core.scheduler.models import (
    DAY_MS,
    HOUR_MS,
    MAX_RUN_MS,
    MINUTE_MS,
    SECOND_MS,
    WEEK_MS,
    WEEKDAY_NAMES,
    ExecutionPlan,
    TaskKind,
    TimeOfDay,
    from_epoch_ms,
    to_epoch_ms,
)

UTC = ZoneInfo("UTC")

# Time unit mappings (alias -> milliseconds multiplier)
TIME_UNITS = {
    "second": SECOND_MS,
    "sec": SECOND_MS,
    "s": SECOND_MS,
    "minute": MINUTE_MS,
    "min": MINUTE_MS,
    "m": MINUTE_MS,
    "hour": HOUR_MS,
    "hr": HOUR_MS,
    "h": HOUR_MS,
    "day": DAY_MS,
    "d": DAY_MS,
    "week": WEEK_MS,
    "wk": WEEK_MS,
    "w": WEEK_MS,
}

# Weekday names and abbreviations -> datetime.weekday()
WEEKDAYS = {name: index for index, name in enumerate(WEEKDAY_NAMES)}
WEEKDAYS.update({name[:3]: index for index, name in enumerate(WEEKDAY_NAMES)})

_UNIT = r"(seconds?|secs?|s|minutes?|mins?|m|hours?|hrs?|h|days?|d|weeks?|wks?|w)"
_TIME = r"(\d{1,2})(?::(\d{2}))?\s*(am|pm)?"
_WEEKDAY = r"(" + "|".join(sorted(WEEKDAYS, key=len, reverse=True)) + r")"

EVERY_PATTERN = re.compile(rf"^every\s+(?:(\d+)\s*)?{_UNIT}$")
DAILY_PATTERN = re.compile(rf"^daily\s+(?:at\s+)?{_TIME}$")
WEEKLY_PATTERN = re.compile(rf"^weekly\s+(?:on\s+)?{_WEEKDAY}\s+(?:at\s+)?{_TIME}$")
TOMORROW_PATTERN = re.compile(rf"^tomorrow\s+(?:at\s+)?{_TIME}$")
TODAY_PATTERN = re.compile(rf"^today\s+(?:at\s+)?{_TIME}$")
IN_PATTERN = re.compile(rf"^in\s+(\d+)\s*{_UNIT}$")
AT_PATTERN = re.compile(rf"^at\s+{_TIME}$")


def unit_to_ms(unit: str) -> int:
    """Convert a unit alias (singular or plural) to milliseconds.

    Args:
        unit: Unit alias such as "min", "hours" or "w".

    Returns:
        Milliseconds per unit.

    Raises:
        KeyError: If the unit is not recognized.
    """
    normalized = unit.lower().strip()
    if normalized not in TIME_UNITS and normalized.endswith("s"):
        normalized = normalized[:-1]
    return TIME_UNITS[normalized]


def parse_time_of_day(
    hour: str,
    minute: str | None,
    meridiem: str | None,
    text: str = "",
) -> TimeOfDay:
    """Convert matched hour/minute/meridiem groups to a 24-hour TimeOfDay.

    With a meridiem the hour must be 1-12 (12am is midnight, 12pm is noon);
    without one it is read as a 24-hour value.

    Raises:
        ParseError: With INVALID_TIME if a value is out of range.
    """
    h = int(hour)
    m = int(minute) if minute else 0

    if meridiem:
        meridiem = meridiem.lower()
        if not 1 <= h <= 12:
            raise ParseError(
                ParseErrorReason.INVALID_TIME, text, f"hour {h} with {meridiem}"
            )
        if meridiem == "pm" and h != 12:
            h += 12
        elif meridiem == "am" and h == 12:
            h = 0
    elif not 0 <= h <= 23:
        raise ParseError(ParseErrorReason.INVALID_TIME, text, f"hour {h}")

    if not 0 <= m <= 59:
        raise ParseError(ParseErrorReason.INVALID_TIME, text, f"minute {m}")

    return TimeOfDay(h, m)


def _at(day: date, time_of_day: TimeOfDay, tz: tzinfo) -> datetime:
    return datetime.combine(day, time(time_of_day.hour, time_of_day.minute), tzinfo=tz)


def _today_or_tomorrow(base_time: datetime, time_of_day: TimeOfDay) -> datetime:
    target = _at(base_time.date(), time_of_day, base_time.tzinfo)
    if target <= base_time:
        target = _at(base_time.date() + timedelta(days=1), time_of_day, base_time.tzinfo)
    return target


def _next_weekday(base_time: datetime, weekday: int, time_of_day: TimeOfDay) -> datetime:
    days_until = (weekday - base_time.weekday()) % 7
    target = _at(base_time.date() + timedelta(days=days_until), time_of_day, base_time.tzinfo)
    if target <= base_time:
        target = _at(target.date() + timedelta(days=7), time_of_day, base_time.tzinfo)
    return target


def _amount_ms(amount: str | None, unit: str, text: str) -> int:
    n = int(amount) if amount is not None else 1
    if n <= 0:
        raise ParseError(ParseErrorReason.INVALID_TIME, text, "amount must be positive")
    return n * unit_to_ms(unit)


def _offset(now_ms: int, amount_ms: int, text: str) -> int:
    next_run = now_ms + amount_ms
    if next_run > MAX_RUN_MS:
        raise ParseError(ParseErrorReason.INVALID_TIME, text, "too far in the future")
    return next_run


def parse_time_expression(
    text: str,
    base_time: datetime | None = None,
    tz: tzinfo | None = None,
) -> ExecutionPlan:
    """Parse a time expression into an execution plan.

    Supports, in order:
    - "every [N] <unit>"             -> interval_from_now
    - "daily [at] <time>"            -> recurring_daily
    - "weekly [on] <weekday> [at] <time>" -> recurring_weekly
    - "tomorrow [at] <time>"         -> once
    - "today [at] <time>"            -> once (rolls to tomorrow if passed)
    - "in N <unit>"                  -> once
    - "at <time>"                    -> once (rolls to tomorrow if passed)

    Args:
        text: Time expression text.
        base_time: Reference "now". Defaults to the current time in ``tz``.
        tz: Timezone for wall-clock calculations. Defaults to base_time's
            zone, or UTC.

    Returns:
        ExecutionPlan whose next_run is strictly after base_time.

    Raises:
        ParseError: INVALID_FORMAT if no pattern matches, INVALID_TIME if a
            pattern matches but holds out-of-range values.

    Examples:
        >>> parse_time_expression("in 5 minutes")
        >>> parse_time_expression("daily at 9am")
        >>> parse_time_expression("weekly monday 3:30pm")
    """
    original = text or ""
    cleaned = " ".join(original.lower().split())

    if base_time is None:
        tz = tz or UTC
        base_time = datetime.now(tz)
    elif base_time.tzinfo is None:
        tz = tz or UTC
        base_time = base_time.replace(tzinfo=tz)
    elif tz is not None:
        base_time = base_time.astimezone(tz)

    now_ms = to_epoch_ms(base_time)

    match = EVERY_PATTERN.match(cleaned)
    if match:
        interval = _amount_ms(match.group(1), match.group(2), original)
        return ExecutionPlan(
            kind=TaskKind.INTERVAL_FROM_NOW,
            next_run=_offset(now_ms, interval, original),
            interval_ms=interval,
        )

    match = DAILY_PATTERN.match(cleaned)
    if match:
        time_of_day = parse_time_of_day(*match.groups(), text=original)
        return ExecutionPlan(
            kind=TaskKind.RECURRING_DAILY,
            next_run=to_epoch_ms(_today_or_tomorrow(base_time, time_of_day)),
            time_of_day=time_of_day,
        )

    match = WEEKLY_PATTERN.match(cleaned)
    if match:
        weekday = WEEKDAYS[match.group(1)]
        time_of_day = parse_time_of_day(*match.groups()[1:], text=original)
        return ExecutionPlan(
            kind=TaskKind.RECURRING_WEEKLY,
            next_run=to_epoch_ms(_next_weekday(base_time, weekday, time_of_day)),
            weekday=weekday,
            time_of_day=time_of_day,
        )

    match = TOMORROW_PATTERN.match(cleaned)
    if match:
        time_of_day = parse_time_of_day(*match.groups(), text=original)
        target = _at(base_time.date() + timedelta(days=1), time_of_day, base_time.tzinfo)
        return ExecutionPlan(kind=TaskKind.ONCE, next_run=to_epoch_ms(target))

    match = TODAY_PATTERN.match(cleaned)
    if match:
        time_of_day = parse_time_of_day(*match.groups(), text=original)
        target = _today_or_tomorrow(base_time, time_of_day)
        return ExecutionPlan(kind=TaskKind.ONCE, next_run=to_epoch_ms(target))

    match = IN_PATTERN.match(cleaned)
    if match:
        delay = _amount_ms(match.group(1), match.group(2), original)
        return ExecutionPlan(
            kind=TaskKind.ONCE, next_run=_offset(now_ms, delay, original)
        )

    match = AT_PATTERN.match(cleaned)
    if match:
        time_of_day = parse_time_of_day(*match.groups(), text=original)
        target = _today_or_tomorrow(base_time, time_of_day)
        return ExecutionPlan(kind=TaskKind.ONCE, next_run=to_epoch_ms(target))

    raise ParseError(ParseErrorReason.INVALID_FORMAT, original)


def format_run_time(ms: int, tz: tzinfo | None = None) -> str:
    """Format an epoch-millisecond instant for logs and listings.

    Args:
        ms: Epoch milliseconds.
        tz: Display timezone. Defaults to UTC.

    Returns:
        Formatted string like "2024-01-15 15:30 UTC".
    """
    dt = from_epoch_ms(ms, tz or UTC)
    return f"{dt.strftime('%Y-%m-%d %H:%M')} {dt.tzname()}"
