"""
Order date parsing and display formatting.
Naive inputs are read in the report timezone and stored as naive UTC.
"""

from datetime import date, datetime, time
from typing import Union

import pytz

DateInput = Union[str, date, datetime]


class OrderDateParser:
    """Normalize user supplied order dates."""

    DATE_FORMATS = [
        "%Y-%m-%d",
        "%Y-%m-%d %H:%M:%S",
        "%Y-%m-%dT%H:%M:%S",
        "%d/%m/%Y",
    ]

    @staticmethod
    def parse(value: DateInput, report_timezone: str = "US/Eastern") -> datetime:
        """
        Parse an order date to naive UTC.

        Args:
            value: datetime, date, or string in one of DATE_FORMATS
            report_timezone: timezone naive values are expressed in

        Returns:
            naive datetime in UTC

        Raises:
            ValueError: if the string matches no known format
        """
        tz = pytz.timezone(report_timezone)

        if isinstance(value, datetime):
            dt = value
        elif isinstance(value, date):
            dt = datetime.combine(value, time.min)
        else:
            dt = OrderDateParser._parse_string(str(value).strip())

        if dt.tzinfo is None:
            dt = tz.localize(dt)

        return dt.astimezone(pytz.UTC).replace(tzinfo=None)

    @staticmethod
    def _parse_string(raw: str) -> datetime:
        for fmt in OrderDateParser.DATE_FORMATS:
            try:
                return datetime.strptime(raw, fmt)
            except ValueError:
                continue
        raise ValueError(f"Could not parse order date: {raw!r}")


def format_order_date(dt_utc: datetime, report_timezone: str = "US/Eastern") -> str:
    """Render a stored UTC order date as YYYY-MM-DD in the report timezone."""
    tz = pytz.timezone(report_timezone)
    if dt_utc.tzinfo is None:
        dt_utc = pytz.UTC.localize(dt_utc)
    return dt_utc.astimezone(tz).strftime("%Y-%m-%d")
