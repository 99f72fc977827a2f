import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        secret_key: str,
        token_max_age_hours: int,
        log_level: str,
        max_occurrences: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.secret_key = secret_key
        self.token_max_age_hours = token_max_age_hours
        self.log_level = log_level
        self.max_occurrences = max_occurrences


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "America/Sao_Paulo")
    secret_key = os.getenv(
        "FINANCE_SECRET_KEY",
        "5f0c8d2a9e3b47c1a6d4e8f2b7c9a1d3e5f7a9b2c4d6e8f0a1b3c5d7e9f1a2b4",
    )
    token_max_age_hours = int(os.getenv("FINANCE_TOKEN_MAX_AGE_HOURS", "168"))
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    max_occurrences = int(os.getenv("FINANCE_MAX_OCCURRENCES", "420"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        secret_key=secret_key,
        token_max_age_hours=token_max_age_hours,
        log_level=log_level,
        max_occurrences=max_occurrences,
    )
