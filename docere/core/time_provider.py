from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo

from docere.config import settings


APP_TIMEZONE = settings.app_timezone or "UTC"
APP_ZONEINFO = ZoneInfo(APP_TIMEZONE)
DATE_FORMAT = "%Y-%m-%d"


class TimeProvider:
    def now(self) -> datetime:
        return datetime.now(APP_ZONEINFO)

    def today(self) -> date:
        return self.now().date()

    def today_key(self) -> str:
        return self.today().strftime(DATE_FORMAT)


def ensure_aware(dt: datetime) -> datetime:
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        raise ValueError("Naive datetime not allowed in business logic")
    return dt


def parse_date_key(value: str) -> date:
    return datetime.strptime(value, DATE_FORMAT).date()


default_time_provider = TimeProvider()
