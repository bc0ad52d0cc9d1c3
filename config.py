import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        log_level: str,
        default_currency: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.log_level = log_level
        self.default_currency = default_currency


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "Europe/Berlin")
    log_level = os.getenv("LEDGER_LOG_LEVEL", "INFO").upper()
    default_currency = os.getenv("LEDGER_DEFAULT_CURRENCY", "EUR").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        log_level=log_level,
        default_currency=default_currency,
    )
