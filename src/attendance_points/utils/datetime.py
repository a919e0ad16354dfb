"""Date helpers shared by the decay rules."""

from datetime import date, datetime, timedelta, timezone

from dateutil.relativedelta import relativedelta


def today_utc(now: datetime | None = None) -> date:
    """Return the calendar date for the provided timestamp (UTC)."""

    current = now.astimezone(timezone.utc) if now else datetime.now(timezone.utc)
    return current.date()


def add_months(value: date, months: int) -> date:
    """Calendar month arithmetic, clamping to the last day of short months."""

    return value + relativedelta(months=months)


def add_days(value: date, days: int) -> date:
    return value + timedelta(days=days)


def get_today() -> date:
    """Request-scoped dependency for the simulation horizon."""

    return today_utc()
