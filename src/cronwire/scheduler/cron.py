"""Five-field cron schedule helpers on top of croniter.

Format: ``minute hour day-of-month month day-of-week``

Fields accept ``*``, values, ranges, lists and steps; months and weekdays
also take three-letter names. Day-of-week ``0`` and ``7`` both mean
Sunday. When day-of-month and day-of-week are both restricted a day
matches if *either* does, as in standard cron.

Examples::

    "*/5 * * * *"     -> every 5 minutes
    "0 */6 * * *"     -> every 6 hours, on the hour
    "0 9 * * mon-fri" -> 09:00 on weekdays
    "30 2 1 * *"      -> 02:30 on the 1st of each month
"""

from __future__ import annotations

from datetime import datetime, timezone as dt_timezone, tzinfo
from zoneinfo import ZoneInfo

from croniter import CroniterBadDateError, croniter

_FIELD_COUNT = 5

# Any fixed base works: every satisfiable schedule matches within a few years.
_MATCH_BASE = datetime(2000, 1, 1, tzinfo=dt_timezone.utc)


def resolve_timezone(timezone: str | tzinfo | None) -> tzinfo:
    """Turn a zone name (or None for UTC) into a ``tzinfo``."""
    if timezone is None:
        return ZoneInfo("UTC")
    if isinstance(timezone, str):
        return ZoneInfo(timezone)
    return timezone


def parse_cron(cron_expr: str) -> str:
    """Check a 5-field cron expression and return it whitespace-normalized.

    Raises:
        ValueError: If the expression does not have exactly 5 fields, has
            a malformed or out-of-range field, or can never match a
            calendar date (e.g. ``0 0 30 2 *``).
    """
    if not isinstance(cron_expr, str):
        msg = f"Cron expression must be a string, got {type(cron_expr).__name__}"
        raise ValueError(msg)

    expression = " ".join(cron_expr.split())
    fields = expression.split(" ") if expression else []
    if len(fields) != _FIELD_COUNT:
        msg = f"Cron expression must have 5 fields, got {len(fields)}: '{cron_expr}'"
        raise ValueError(msg)
    if not croniter.is_valid(expression):
        msg = f"Invalid cron expression: '{expression}'"
        raise ValueError(msg)
    if next_after(expression, _MATCH_BASE) is None:
        msg = f"Cron expression '{expression}' never matches a calendar date"
        raise ValueError(msg)
    return expression


def validate(cron_expr: str) -> bool:
    """Return True if *cron_expr* is a valid five-field schedule."""
    try:
        parse_cron(cron_expr)
    except ValueError:
        return False
    return True


def next_after(expression: str, after: datetime) -> datetime | None:
    """First match strictly after the aware datetime *after*.

    *expression* must already be validated. The result carries *after*'s
    ``tzinfo``; None means no match exists.
    """
    try:
        return croniter(expression, after).get_next(datetime)
    except CroniterBadDateError:
        return None


def next_run(
    cron_expr: str,
    after: datetime | None = None,
    timezone: str | tzinfo | None = None,
) -> datetime | None:
    """Next instant strictly after *after* at which *cron_expr* matches.

    The expression is evaluated on the wall clock of *timezone* (UTC by
    default). A naive *after* is taken to be in that zone. Returns None
    when the expression is invalid.
    """
    tz = resolve_timezone(timezone)
    try:
        expression = parse_cron(cron_expr)
    except ValueError:
        return None

    if after is None:
        after = datetime.now(tz)
    elif after.tzinfo is None:
        after = after.replace(tzinfo=tz)
    else:
        after = after.astimezone(tz)
    return next_after(expression, after)
