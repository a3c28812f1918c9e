import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        log_level: str,
        report_months: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.log_level = log_level
        self.report_months = report_months


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BALANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "balance.db"
    database_url = os.getenv("BALANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("BALANCE_TIMEZONE", "Europe/Lisbon")
    log_level = os.getenv("BALANCE_LOG_LEVEL", "INFO").upper()
    report_months = int(os.getenv("BALANCE_REPORT_MONTHS", "12"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        log_level=log_level,
        report_months=report_months,
    )
