from pydantic_settings import BaseSettings
from dotenv import load_dotenv
from typing import Optional
from pathlib import Path
import logging

root_dir = Path(__file__).parent.parent
env_path = root_dir / ".env"
load_dotenv(env_path)

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "School Sync API"
    DEBUG: bool = False

    # Base de données
    DATABASE_URL: str = "sqlite:///./school_sync.db"
    POSTGRES_USER: Optional[str] = None
    POSTGRES_PASSWORD: Optional[str] = None
    POSTGRES_HOST: Optional[str] = None
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: Optional[str] = None
    AUTO_CREATE_TABLES: bool = True

    # Security (JWT)
    SECRET_KEY: str = "your-secret-key-change-this-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 600

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    # Synchronisation
    SYNC_HTTP_TIMEOUT_SECONDS: float = 15.0
    SYNC_DEFAULT_MAX_ATTEMPTS: int = 3
    SYNC_DEFAULT_PRIORITY: int = 5
    SYNC_BACKOFF_BASE_SECONDS: int = 30
    SYNC_BACKOFF_MAX_SECONDS: int = 3600
    SYNC_CLAIM_TIMEOUT_SECONDS: int = 900

    # Worker
    SYNC_WORKER_ENABLED: bool = True
    SYNC_WORKER_INTERVAL_SECONDS: int = 60
    SYNC_WORKER_BATCH_SIZE: int = 20

    # Database URL
    @property
    def database_url(self) -> str:
        if self.POSTGRES_HOST:
            return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        return self.DATABASE_URL

    class Config:
        env_file = ".env"
        env_file_encoding = 'utf-8'
        extra = "ignore"
        case_sensitive = True


try:
    settings = Settings()
except Exception as e:
    logger.error(f"❌ Création des settings impossible: {e}")
    raise
