import zoneinfo

from datetime import datetime, timedelta
from datetime import timezone as datetime_timezone

from backoffice.core.conf import settings


class TimeZone:
    def __init__(self) -> None:
        self.tz_info = zoneinfo.ZoneInfo(settings.DATETIME_TIMEZONE)

    def now(self) -> datetime:
        """Current time in the configured timezone"""
        return datetime.now(self.tz_info)

    def from_datetime(self, t: datetime) -> datetime:
        """Convert a datetime to the configured timezone. Naive values are taken as UTC."""
        if t.tzinfo is None:
            t = t.replace(tzinfo=datetime_timezone.utc)
        return t.astimezone(self.tz_info)

    def from_str(self, t_str: str, format_str: str = settings.DATETIME_FORMAT) -> datetime:
        """
        Parse a string into a datetime in the configured timezone.

        :param t_str: time string
        :param format_str: format, defaults to settings.DATETIME_FORMAT
        :return:
        """
        return datetime.strptime(t_str, format_str).replace(tzinfo=self.tz_info)

    @staticmethod
    def to_str(t: datetime, format_str: str = settings.DATETIME_FORMAT) -> str:
        """
        Format a datetime.

        :param t: datetime
        :param format_str: format, defaults to settings.DATETIME_FORMAT
        :return:
        """
        return t.strftime(format_str)

    @staticmethod
    def to_utc(t: datetime | int) -> datetime:
        """Convert a datetime or a Unix timestamp to UTC."""
        if isinstance(t, datetime):
            return t.astimezone(datetime_timezone.utc)
        return datetime.fromtimestamp(t, tz=datetime_timezone.utc)

    def start_of_day(self, t: datetime | None = None) -> datetime:
        """Midnight of the given (or current) day in the configured timezone"""
        t = self.from_datetime(t) if t is not None else self.now()
        return t.replace(hour=0, minute=0, second=0, microsecond=0)

    def start_of_month(self, t: datetime | None = None) -> datetime:
        """First instant of the given (or current) month in the configured timezone"""
        return self.start_of_day(t).replace(day=1)

    def add_months(self, t: datetime, months: int = 1) -> datetime:
        """Shift by calendar months, clamping the day to the target month's length"""
        month_index = t.month - 1 + months
        year = t.year + month_index // 12
        month = month_index % 12 + 1
        next_month_first = datetime(year + (month // 12), month % 12 + 1, 1, tzinfo=t.tzinfo)
        last_day = (next_month_first - timedelta(days=1)).day
        return t.replace(year=year, month=month, day=min(t.day, last_day))


timezone = TimeZone()
