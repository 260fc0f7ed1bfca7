import os
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        csrf_secret: str,
        default_usd_to_etb: Decimal,
        default_eur_to_etb: Decimal,
        max_upload_bytes: int,
        isolation_level: Optional[str],
        quarter_calendar_fallback: bool,
        expose_debug_errors: bool,
    ) -> None:
        self.database_url = database_url
        self.csrf_secret = csrf_secret
        self.default_usd_to_etb = default_usd_to_etb
        self.default_eur_to_etb = default_eur_to_etb
        self.max_upload_bytes = max_upload_bytes
        self.isolation_level = isolation_level
        self.quarter_calendar_fallback = quarter_calendar_fallback
        self.expose_debug_errors = expose_debug_errors


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGET_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budget.db"
    database_url = os.getenv("BUDGET_DATABASE_URL", f"sqlite:///{default_db}")
    csrf_secret = os.getenv(
        "BUDGET_CSRF_SECRET",
        "5d0c3b8f2e41a7c96b1f0e8d4a2c7b3950e6f1a8d2c4b7e9013f5a6c8d2e4b71",
    )
    default_usd_to_etb = Decimal(os.getenv("BUDGET_DEFAULT_USD_TO_ETB", "55.0"))
    default_eur_to_etb = Decimal(os.getenv("BUDGET_DEFAULT_EUR_TO_ETB", "60.0"))
    max_upload_bytes = int(os.getenv("BUDGET_MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))
    isolation_level = os.getenv("BUDGET_ISOLATION_LEVEL") or None
    return Settings(
        database_url=database_url,
        csrf_secret=csrf_secret,
        default_usd_to_etb=default_usd_to_etb,
        default_eur_to_etb=default_eur_to_etb,
        max_upload_bytes=max_upload_bytes,
        isolation_level=isolation_level,
        quarter_calendar_fallback=_env_flag("BUDGET_QUARTER_CALENDAR_FALLBACK"),
        expose_debug_errors=_env_flag("BUDGET_EXPOSE_DEBUG_ERRORS"),
    )
