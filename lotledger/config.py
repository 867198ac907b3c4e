"""Runtime configuration and logging setup."""

import logging
import os
from dataclasses import dataclass

import pytz

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class Settings:
    """Values read from the environment once at startup."""
    database_url: str = "sqlite:///./lot_ledger.db"
    report_timezone: str = "US/Eastern"
    log_level: str = "INFO"
    quote_type: str = "ETF"  # expected Yahoo quoteType for tracked instruments

    @classmethod
    def from_env(cls) -> "Settings":
        report_timezone = os.getenv("REPORT_TIMEZONE", cls.report_timezone)
        # Fail early on a typo rather than at first report
        pytz.timezone(report_timezone)

        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            report_timezone=report_timezone,
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
            quote_type=os.getenv("QUOTE_TYPE", cls.quote_type).upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once; later calls only adjust the level."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    root.setLevel(level)
