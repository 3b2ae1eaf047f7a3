# config/settings.py
"""
Centralized application configuration using Pydantic Settings.
Values are loaded from the .env file.
"""

from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application configuration"""

    # Database
    DATABASE_URL: str

    # CORS
    CORS_ALLOW_ORIGINS: List[str] = ["http://localhost:3000"]

    # Celery / Redis
    REDIS_URL: str | None = None

    # Timezone used for every persisted timestamp and for "today"
    APP_TIMEZONE: str = "Asia/Dhaka"

    # Logging
    LOG_LEVEL: str = "INFO"

    # Pricing (recorded on every SaleMetrics row at computation time)
    FEED_PRICE_PER_BAG: float = 3220.0
    DOC_PRICE_PER_BIRD: float = 41.5

    # Stock ledger
    MAX_STOCK_CHANGE_BAGS: float = 1000.0  # Upper bound for a single manual restock, deduction or transfer

    # Notifications to organization managers (best-effort)
    NOTIFICATIONS_ENABLED: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
