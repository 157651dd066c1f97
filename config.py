import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        default_payday: int,
        report_cache_size: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.default_payday = default_payday
        self.report_cache_size = report_cache_size
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGET_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budget.db"
    database_url = os.getenv("BUDGET_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("BUDGET_TIMEZONE", "Europe/Stockholm")
    csrf_secret = os.getenv(
        "BUDGET_CSRF_SECRET",
        "5d1f0c9a44e2b7f36a8c0e19d2b47a6f3e5c8d90b1a2f4e6c7d8e9f0a1b2c3d4",
    )
    default_payday = min(max(_int_env("BUDGET_DEFAULT_PAYDAY", 25), 1), 31)
    report_cache_size = max(_int_env("BUDGET_REPORT_CACHE_SIZE", 32), 1)
    log_level = os.getenv("BUDGET_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        default_payday=default_payday,
        report_cache_size=report_cache_size,
        log_level=log_level,
    )
