"""Application configuration loaded from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration, read from the environment or a .env file."""

    # Hosted data backend (Supabase REST)
    supabase_url: str = ""
    supabase_key: str = ""
    tickets_table: str = "chamados"

    # Persistent local store
    redis_url: str = "redis://localhost:6379"
    snapshot_key: str = "napje:chamados_recentes_cache"

    # Ticket cache windows (seconds)
    cache_memory_ttl_seconds: int = 3600        # 1 hour
    cache_snapshot_ttl_seconds: int = 86400     # 24 hours
    cache_min_batch_size: int = 30

    # Remote calls
    remote_timeout_seconds: float = 10
    remote_max_retries: int = 2
    remote_retry_backoff_seconds: float = 0.5

    # Similarity engine
    similarity_threshold: float = 0.3
    similarity_max_matches: int = 5
    similarity_min_text_length: int = 10
    similarity_recent_days: int = 30
    similarity_working_set_size: int = 100
    similarity_debounce_seconds: float = 1.0
    similarity_settle_seconds: float = 0.8

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    allowed_origins: str = "*"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def has_remote(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    @property
    def cors_origins(self) -> list[str]:
        if self.allowed_origins == "*":
            return ["*"]
        return [o.strip() for o in self.allowed_origins.split(",")]


settings = Settings()
