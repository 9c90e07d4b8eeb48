import os
from typing import List


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def __init__(self) -> None:
        self.env = os.getenv("APP_ENV", "local")
        self.db_url = os.getenv("DATABASE_URL", "postgresql://localhost/cashbox")
        # Pool sizing defaults are conservative for local/dev.
        self.db_pool_min = _env_int("DB_POOL_MIN_SIZE", 1)
        self.db_pool_max = _env_int("DB_POOL_MAX_SIZE", 10)
        # Comma-separated list of allowed CORS origins for the browser client.
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"
        self.session_days = _env_int("SESSION_DAYS", 7)
        self.due_grace_days = _env_int("DUE_GRACE_DAYS", 7)
        self.superkey_attempts = _env_int("SUPERKEY_ATTEMPTS", 5)

    @property
    def exposes_errors(self) -> bool:
        return self.env in {"local", "dev"}


settings = Settings()
