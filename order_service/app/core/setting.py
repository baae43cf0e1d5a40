"""
Order Service configuration
"""

from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

# Get the order service directory path
ORDER_SERVICE_DIR = Path(__file__).parent.parent.parent
ENV_FILE = ORDER_SERVICE_DIR / ".env"


class OrderSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "Order Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    SERVICE_NAME: str = "order-service"

    # Database
    ORDER_DATABASE_URL: str = "sqlite+aiosqlite:///./orders.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40

    # Order listing without filters is bounded by this page size
    ORDER_LIST_LIMIT: int = 100

    # Event log
    ORDER_EVENTS_TTL_SECONDS: int = 300
    ORDER_EVENTS_PURGE_INTERVAL_SECONDS: int = 60
    ORDER_EVENTS_PAGE_SIZE: int = 100

    # Fan-out publisher
    PUBLISHER_MAX_ATTEMPTS: int = 3
    PUBLISHER_RETRY_DELAY_SECONDS: float = 1.0
    PUBLISHER_MAX_RETRY_DELAY_SECONDS: float = 30.0
    DEAD_LETTER_RETENTION_DAYS: int = 10

    # Email notifications
    EMAIL_BATCH_SIZE: int = 5
    EMAIL_MAX_BATCHING_WINDOW_SECONDS: float = 60.0
    EMAIL_MAX_CONCURRENT_BATCHES: int = 2
    SENDGRID_API_KEY: str = ""
    FROM_EMAIL: str = ""
    FROM_NAME: str = "ECommerce"

    # Audit bus
    AUDIT_ARCHIVE_RETENTION_DAYS: int = 10
    AUDIT_INVOICE_TIMEOUT_ALARM_THRESHOLD: int = 5
    AUDIT_ARCHIVE_MAX_EVENTS: int = 10000
    AUDIT_TARGET_MAX_EVENTS: int = 1000

    # Kafka bridge for other services
    KAFKA_ENABLED: bool = False
    KAFKA_BOOTSTRAP_SERVERS: str = "localhost:9092"
    KAFKA_TOPIC_ORDER_EVENTS: str = "order.events"

    # CORS
    CORS_ORIGINS: List[str] = ["*"]
    CORS_CREDENTIALS: bool = True
    CORS_METHODS: List[str] = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
    CORS_HEADERS: List[str] = ["*"]

    # Request limits
    MAX_REQUEST_SIZE: int = 1024 * 1024


# Create a singleton instance
_settings_instance = None


def get_settings() -> OrderSettings:
    """Get settings singleton instance"""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = OrderSettings()
    return _settings_instance
