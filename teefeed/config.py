"""
Configuration management using Pydantic BaseSettings.
All values can be overridden via environment variables or a .env file.
"""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── TiDB (MySQL-protocol compatible) ───────────────────────────────────
    tidb_host: str = "tidb"
    tidb_port: int = 4000
    tidb_user: str = "root"
    tidb_password: str = ""
    tidb_database: str = "teefeed"

    # Full SQLAlchemy async URL; wins over the tidb_* fields when set
    # (e.g. sqlite+aiosqlite:///./teefeed.db for local runs).
    database_url: Optional[str] = None

    @property
    def db_url(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"mysql+aiomysql://{self.tidb_user}:{self.tidb_password}"
            f"@{self.tidb_host}:{self.tidb_port}/{self.tidb_database}"
        )

    # ── Redis ──────────────────────────────────────────────────────────────
    redis_host: str = "redis"
    redis_port: int = 6379
    feed_changes_channel: str = "feed:changes"
    feed_cache_key: str = "feed:global:last"
    feed_cache_ttl: int = 86400          # last-known-good feed kept for 24h

    # ── Feed ───────────────────────────────────────────────────────────────
    promo_interval: int = 4              # one promotional slot after every Nth post

    # ── Like count reconciler ─────────────────────────────────────────────
    reconcile_interval_seconds: float = 300.0

    # ── API client ─────────────────────────────────────────────────────────
    api_base_url: str = "http://teefeed-api:8000"
    api_timeout: float = 5.0

    # ── Observability ──────────────────────────────────────────────────────
    tracing_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"
    service_name: str = "teefeed-api"
    environment: str = "development"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
