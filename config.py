"""Configuration for the sensor-ingest service."""
import os
import json
from pydantic_settings import BaseSettings
from typing import Any, Dict, List

class Settings(BaseSettings):
    # MongoDB connection
    MONGO_URI: str = os.getenv("MONGO_URI", "mongodb://localhost:27017")
    DB_NAME: str = os.getenv("DB_NAME", "sensor_data")
    RECORDS_COLLECTION: str = os.getenv("RECORDS_COLLECTION", "records")

    # Application settings
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "5000"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    ALLOWED_ORIGINS: List[str] = json.loads(
        os.getenv("ALLOWED_ORIGINS", '["http://localhost:5173"]')
    )

    # Database connection settings
    DB_MAX_POOL_SIZE: int = int(os.getenv("DB_MAX_POOL_SIZE", "10"))
    DB_MIN_POOL_SIZE: int = int(os.getenv("DB_MIN_POOL_SIZE", "2"))
    DB_SERVER_SELECTION_TIMEOUT_MS: int = int(os.getenv("DB_SERVER_SELECTION_TIMEOUT_MS", "5000"))
    DB_CONNECT_TIMEOUT_MS: int = int(os.getenv("DB_CONNECT_TIMEOUT_MS", "5000"))
    DB_SOCKET_TIMEOUT_MS: int = int(os.getenv("DB_SOCKET_TIMEOUT_MS", "45000"))
    DB_MAX_RETRIES: int = int(os.getenv("DB_MAX_RETRIES", "5"))
    DB_RETRY_BASE_DELAY: float = float(os.getenv("DB_RETRY_BASE_DELAY", "1.0"))
    DB_RETRY_MAX_DELAY: float = float(os.getenv("DB_RETRY_MAX_DELAY", "10.0"))

    # Admission control (fixed window, per client address)
    RATE_LIMIT_WINDOW_SECONDS: float = float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
    RATE_LIMIT_GENERAL: int = int(os.getenv("RATE_LIMIT_GENERAL", "100"))
    RATE_LIMIT_STRICT: int = int(os.getenv("RATE_LIMIT_STRICT", "10"))
    RATE_LIMIT_SWEEP_INTERVAL: float = float(os.getenv("RATE_LIMIT_SWEEP_INTERVAL", "60"))

    # Ingestion
    INGEST_MAX_BATCH: int = int(os.getenv("INGEST_MAX_BATCH", "1000"))

    # Seconds allowed for in-flight requests to drain on shutdown
    SHUTDOWN_TIMEOUT: float = float(os.getenv("SHUTDOWN_TIMEOUT", "10"))

    class Config:
        env_file = ".env"
        case_sensitive = True

    def validate_settings(self):
        """Validate critical settings."""
        if self.DB_MAX_RETRIES < 1:
            raise ValueError("DB_MAX_RETRIES must be at least 1")

        if self.DB_RETRY_BASE_DELAY < 0 or self.DB_RETRY_MAX_DELAY < self.DB_RETRY_BASE_DELAY:
            raise ValueError("DB_RETRY_MAX_DELAY must be >= DB_RETRY_BASE_DELAY >= 0")

        if self.RATE_LIMIT_WINDOW_SECONDS <= 0:
            raise ValueError("RATE_LIMIT_WINDOW_SECONDS must be positive")

        if self.RATE_LIMIT_GENERAL < 1 or self.RATE_LIMIT_STRICT < 1:
            raise ValueError("Rate limits must be at least 1")

        if self.RATE_LIMIT_SWEEP_INTERVAL <= 0:
            raise ValueError("RATE_LIMIT_SWEEP_INTERVAL must be positive")

        if self.INGEST_MAX_BATCH < 1:
            raise ValueError("INGEST_MAX_BATCH must be at least 1")

settings = Settings()

# Validate settings on import
try:
    settings.validate_settings()
except ValueError as e:
    if not settings.DEBUG:
        raise e
    else:
        print(f"⚠️  Configuration warning: {e}")

# Helper function to get environment info
def get_environment_info() -> Dict[str, Any]:
    """Get environment information for the health endpoint."""
    return {
        "kubernetes": bool(os.environ.get("KUBERNETES_SERVICE_HOST")),
        "debug": settings.DEBUG,
        "database_configured": bool(settings.MONGO_URI),
        "db_name": settings.DB_NAME,
        "rate_limit_window_seconds": settings.RATE_LIMIT_WINDOW_SECONDS,
        "rate_limit_general": settings.RATE_LIMIT_GENERAL,
        "rate_limit_strict": settings.RATE_LIMIT_STRICT,
    }
