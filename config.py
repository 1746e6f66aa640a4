import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        redis_url: str,
        cache_ttl_secs: int,
        cache_timeout_secs: float,
        auth_secret: str,
        token_max_age_hours: int,
        default_categories: list[str],
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.redis_url = redis_url
        self.cache_ttl_secs = cache_ttl_secs
        self.cache_timeout_secs = cache_timeout_secs
        self.auth_secret = auth_secret
        self.token_max_age_hours = token_max_age_hours
        self.default_categories = default_categories


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _split_names(raw: str) -> list[str]:
    return [name.strip() for name in raw.split(",") if name.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "expenses.db"
    database_url = os.getenv("EXPENSES_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("EXPENSES_TIMEZONE", "Europe/Berlin")
    redis_url = os.getenv("EXPENSES_REDIS_URL", "redis://localhost:6379/0")
    cache_ttl_secs = int(os.getenv("EXPENSES_CACHE_TTL_SECS", "300"))
    cache_timeout_secs = float(os.getenv("EXPENSES_CACHE_TIMEOUT_SECS", "0.5"))
    auth_secret = os.getenv(
        "EXPENSES_AUTH_SECRET",
        "3f0c9a51d2b64e7f8a1c0d9e6b5a4f3e2d1c0b9a8f7e6d5c4b3a29180f7e6d5c",
    )
    token_max_age_hours = int(os.getenv("EXPENSES_TOKEN_MAX_AGE_HOURS", "24"))
    default_categories = _split_names(
        os.getenv("EXPENSES_DEFAULT_CATEGORIES", "Food,Transport")
    )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        redis_url=redis_url,
        cache_ttl_secs=cache_ttl_secs,
        cache_timeout_secs=cache_timeout_secs,
        auth_secret=auth_secret,
        token_max_age_hours=token_max_age_hours,
        default_categories=default_categories,
    )
