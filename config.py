import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        invalidation_delay_ms: int,
        rate_limit_window_secs: int,
        rate_limit_max: int,
        counter_purge_minutes: int,
        remote_timeout_secs: float,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.invalidation_delay_ms = invalidation_delay_ms
        self.rate_limit_window_secs = rate_limit_window_secs
        self.rate_limit_max = rate_limit_max
        self.counter_purge_minutes = counter_purge_minutes
        self.remote_timeout_secs = remote_timeout_secs


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
    invalidation_delay_ms = int(os.getenv("LEDGER_INVALIDATION_DELAY_MS", "150"))
    rate_limit_window_secs = int(os.getenv("LEDGER_RATE_LIMIT_WINDOW_SECS", "900"))
    rate_limit_max = int(os.getenv("LEDGER_RATE_LIMIT_MAX", "100"))
    counter_purge_minutes = int(os.getenv("LEDGER_COUNTER_PURGE_MINUTES", "10"))
    remote_timeout_secs = float(os.getenv("LEDGER_REMOTE_TIMEOUT_SECS", "10"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        invalidation_delay_ms=invalidation_delay_ms,
        rate_limit_window_secs=rate_limit_window_secs,
        rate_limit_max=rate_limit_max,
        counter_purge_minutes=counter_purge_minutes,
        remote_timeout_secs=remote_timeout_secs,
    )
