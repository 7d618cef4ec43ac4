# trainhub/config.py

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    # ===== Remote store =====
    remote_backend: Literal["sql", "http"] = "sql"
    database_url: str = "sqlite:///./trainhub.db"
    remote_url: Optional[str] = None
    remote_api_key: Optional[str] = None
    remote_timeout_seconds: float = 10.0

    # ===== Local cache =====
    cache_backend: Literal["memory", "file", "redis"] = "file"
    cache_dir: Path = BASE_DIR / ".cache"
    cache_ttl_seconds: int = 60
    redis_url: Optional[str] = None

    # ===== Aggregation policy =====
    session_policy: Literal["strict", "flexible"] = "flexible"
    min_students: Optional[int] = None
    max_students: Optional[int] = 10
    require_identity: bool = True

    # ===== Sync loop =====
    sync_interval_seconds: float = 30.0
    sync_trainer_ids: list[str] = []

    # ===== Meetings / payments =====
    meeting_base_url: str = "https://meet.jit.si"
    checkout_url: str = "http://localhost:54321/functions/v1/stripe-checkout"
    public_base_url: str = "http://localhost:5173"
    price_map: dict[str, str] = {}

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        extra="ignore",
    )

    @property
    def resolved_database_url(self) -> str:
        url = self.database_url
        if url.startswith("sqlite:///./"):
            relative_path = url.replace("sqlite:///./", "")
            absolute_path = BASE_DIR / relative_path
            return f"sqlite:///{absolute_path}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get application settings (singleton)."""
    return Settings()
