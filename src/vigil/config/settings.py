"""
Vigil Configuration Management
Handles all application settings and environment variables
"""

from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    API_KEY: str
    ENVIRONMENT: str = 'development'
    LOG_LEVEL: str = 'INFO'

    # Anomaly detection
    MAX_EVENTS_PER_HOUR: int = 50
    VELOCITY_WINDOW_SECONDS: int = 3600
    BLACKLIST_DURATION_MINUTES: int = 60

    # In-memory bounds
    RECENT_EVENTS_CAPACITY: int = 1000
    TOP_SUSPICIOUS_IPS: int = 10
    MAX_TRACKED_IPS: int = 100_000
    MAX_BLACKLIST_ENTRIES: int = 100_000
    SWEEP_INTERVAL_SECONDS: float = 300.0

    # Telemetry sink: Elasticsearch takes precedence over the webhook
    ELASTICSEARCH_URL: str | None = None
    ELASTICSEARCH_USERNAME: str | None = None
    ELASTICSEARCH_PASSWORD: str | None = None
    ELASTICSEARCH_VERIFY_CERTS: bool = True
    ELASTICSEARCH_CA_CERTS: str | None = None
    SECURITY_EVENTS_INDEX: str = 'vigil-security-events'
    TELEMETRY_WEBHOOK_URL: str | None = None
    TELEMETRY_QUEUE_SIZE: int = 1000
    TELEMETRY_TIMEOUT_SECONDS: float = 5.0

    # Keys checked by the security audit
    DATABASE_URL: str | None = None
    SERVICE_ROLE_KEY: str | None = None
    CSRF_SECRET: str | None = None
    ENCRYPTION_KEY: str | None = None

    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == 'production'

settings = Settings()
