# ===============================================================
# utils/dates.py
# ===============================================================
# All calendar-day logic (streaks, on-time bonus, assignment dates)
# is evaluated in London time.
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

LONDON = ZoneInfo("Europe/London")


def london_date(value: datetime) -> date:
    """Calendar day of an instant in London. Naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(LONDON).date()


def london_today(now: datetime | None = None) -> date:
    return london_date(now or datetime.now(timezone.utc))


def parse_db_date(value) -> date:
    """Accept a `date` or a 'YYYY-MM-DD' string from the database."""
    if isinstance(value, datetime):
        return london_date(value)
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])
