from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def local_now(zone_name: str) -> datetime:
    """Naive wall-clock time in the resources' locale, comparable with slot times."""
    return datetime.now(ZoneInfo(zone_name)).replace(tzinfo=None)


def local_today(zone_name: str) -> date:
    return local_now(zone_name).date()


def format_hhmm(dt: datetime) -> str:
    return dt.strftime("%H:%M")
