import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        import_future_window_days: int,
        max_description_installments: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.import_future_window_days = import_future_window_days
        self.max_description_installments = max_description_installments
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "America/Sao_Paulo")
    csrf_secret = os.getenv(
        "LEDGER_CSRF_SECRET",
        "5f0d7c1b9a3e48e2a61c2d94b07e3f15c8a9d2e4b6f1037a8c5e9d2b4f6a1c03",
    )
    import_future_window_days = int(
        os.getenv("LEDGER_IMPORT_FUTURE_WINDOW_DAYS", "180")
    )
    max_description_installments = int(
        os.getenv("LEDGER_MAX_DESCRIPTION_INSTALLMENTS", "60")
    )
    log_level = os.getenv("LEDGER_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        import_future_window_days=import_future_window_days,
        max_description_installments=max_description_installments,
        log_level=log_level,
    )
