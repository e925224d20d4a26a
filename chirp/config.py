"""
Configuration management using Pydantic BaseSettings.
All values can be overridden via environment variables or a .env file.
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── Database (MySQL-protocol compatible) ───────────────────────────────
    db_host: str = "mysql"
    db_port: int = 3306
    db_user: str = "root"
    db_password: str = ""
    db_name: str = "chirp"
    # Full SQLAlchemy URL; takes precedence over the individual fields
    database_url_override: str = ""

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return (
            f"mysql+aiomysql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    # ── Redis ──────────────────────────────────────────────────────────────
    redis_host: str = "redis"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: str = ""
    redis_key_prefix: str = "chirp:"

    # ── Cache TTLs (seconds) ───────────────────────────────────────────────
    cache_ttl_default: int = 3600
    cache_ttl_tweet: int = 3600          # single tweet detail
    cache_ttl_tweets: int = 30           # global tweet list pages
    cache_ttl_user: int = 1800           # user profile rows
    cache_ttl_timeline: int = 30         # feed pages change constantly
    cache_ttl_search: int = 60

    # ── Kafka ──────────────────────────────────────────────────────────────
    kafka_enabled: bool = True
    kafka_bootstrap_servers: str = "kafka:9092"
    kafka_topic_tweet_events: str = "tweet-events"
    kafka_consumer_group: str = "fanout-worker"

    # ── Auth (tokens are issued by the external auth service) ──────────────
    jwt_access_secret: str = "change-me"
    jwt_algorithm: str = "HS256"

    # ── Realtime ───────────────────────────────────────────────────────────
    realtime_send_timeout: float = 5.0  # seconds before a stalled socket is dropped

    # ── Behaviour switches ─────────────────────────────────────────────────
    # Remap 401/403 responses to HTTP 200 with the error envelope, for
    # clients built against the legacy API.
    legacy_error_status: bool = False
    allow_self_follow: bool = True
    default_page_size: int = 10
    max_page_size: int = 100
    search_result_limit: int = 20

    # ── Observability ──────────────────────────────────────────────────────
    otel_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"
    service_name: str = "chirp-api"
    environment: str = "development"
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
