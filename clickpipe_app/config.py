from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Loading priority (highest to lowest):
    1. Environment variables
    2. .env file
    3. Default values below

    Components receive a Settings instance at construction time;
    the module-level ``settings`` is only used by the app wiring.
    """

    # Environment
    environment: str = "development"
    debug: bool = True

    # Application
    app_name: str = "Clickpipe"
    app_version: str = "1.0.0"

    # Link database (transactional)
    database_url: str = "sqlite:///./clickpipe.db"

    # Key allocation
    key_length: int = 6  # 62^6 ~ 5.6e10 possible keys
    key_max_attempts: int = 5

    # Links
    temporary_link_ttl_hours: int = 24
    link_purge_interval: float = 3600  # Seconds between expired-link purges, 0 disables

    # Cache settings
    cache_backend: str = "memory"  # Options: "redis", "memory", "null"
    redis_url: str = "redis://localhost:6379/0"
    cache_ttl: int = 60  # Short TTL, link snapshots only

    # Queue settings
    queue_backend: str = "memory"  # Options: "memory", "redis_streams"
    queue_name: str = "click_events"
    queue_consumer_group: str = "click_workers"
    queue_capacity: int = 10000  # Events beyond this are dropped
    queue_batch_size: int = 100
    queue_poll_interval: float = 0.2  # Seconds a worker sleeps on an empty queue
    queue_claim_idle_ms: int = 60000  # Pending entries idle this long are reclaimed from dead consumers

    # Consumer settings
    consumer_workers: int = 2
    persist_timeout: float = 2.0
    persist_max_attempts: int = 3
    persist_backoff_min: float = 0.1
    persist_backoff_max: float = 2.0
    shutdown_grace_period: float = 5.0
    unhealthy_after_failures: int = 20

    # Click fact storage (analytics database)
    click_storage_backend: str = "sqlite"  # Options: "sqlite", "memory"
    click_storage_sqlite_path: str = "analytics.db"

    # GeoIP
    geoip_city_db_path: str = "misc/GeoLite2-City.mmdb"

    # Analytics
    analytics_timezone: str = "UTC"
    analytics_max_days: int = 365

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# Create settings instance
settings = Settings()
