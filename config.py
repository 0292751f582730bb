import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        confirm_secret: str,
        confirm_max_age_secs: int,
        digest_ttl_secs: float,
        default_currency: str,
        default_user_id: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.confirm_secret = confirm_secret
        self.confirm_max_age_secs = confirm_max_age_secs
        self.digest_ttl_secs = digest_ttl_secs
        self.default_currency = default_currency
        self.default_user_id = default_user_id


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("HEMATWOI_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "hematwoi.db"
    database_url = os.getenv("HEMATWOI_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("HEMATWOI_TIMEZONE", "Asia/Jakarta")
    confirm_secret = os.getenv(
        "HEMATWOI_CONFIRM_SECRET",
        "5b0c2f7e9a41d36c8e1f04a7b2d95c3e6f18a0b4c7d2e9f3a6b1c8d5e0f7a2b4",
    )
    confirm_max_age_secs = int(os.getenv("HEMATWOI_CONFIRM_MAX_AGE_SECS", "600"))
    digest_ttl_secs = float(os.getenv("HEMATWOI_DIGEST_TTL_SECS", "90"))
    default_currency = os.getenv("HEMATWOI_DEFAULT_CURRENCY", "IDR")
    default_user_id = int(os.getenv("HEMATWOI_DEFAULT_USER_ID", "1"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        confirm_secret=confirm_secret,
        confirm_max_age_secs=confirm_max_age_secs,
        digest_ttl_secs=digest_ttl_secs,
        default_currency=default_currency,
        default_user_id=default_user_id,
    )
