import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        session_secret: str,
        session_max_age_hours: int,
        conceal_foreign_records: bool,
        seed_demo_user: bool,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.session_secret = session_secret
        self.session_max_age_hours = session_max_age_hours
        self.conceal_foreign_records = conceal_foreign_records
        self.seed_demo_user = seed_demo_user
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "UTC")
    session_secret = os.getenv(
        "FINANCE_SESSION_SECRET",
        "3f1c9a0d6be24e8f9d52c07a51e6b4d8a0c3e97f12b84d6e5a9f0c1d2e3b4a57",
    )
    session_max_age_hours = int(os.getenv("FINANCE_SESSION_MAX_AGE_HOURS", "168"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        session_secret=session_secret,
        session_max_age_hours=session_max_age_hours,
        conceal_foreign_records=_env_flag("FINANCE_CONCEAL_FOREIGN_RECORDS"),
        seed_demo_user=_env_flag("FINANCE_SEED_DEMO_USER"),
        log_level=os.getenv("FINANCE_LOG_LEVEL", "INFO").upper(),
    )
