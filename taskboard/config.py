"""
Configuration management for Taskboard
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Taskboard"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    APP_BASE_URL: str = "http://localhost:8000"

    # Database
    DATABASE_URL: str = "sqlite:///./taskboard.db"
    TRANSACTION_TIMEOUT_SECONDS: float = 10.0

    # Default admin seeded on startup when no admin exists
    DEFAULT_ADMIN_USERNAME: str = "admin"
    DEFAULT_ADMIN_EMAIL: str = ""

    # Attachments
    UPLOAD_DIR: str = "uploads/tasks"
    MAX_FILE_SIZE: int = 50 * 1024 * 1024  # 50 MB
    MAX_FILES_PER_UPDATE: int = 20

    # Email (SMTP). Sending is skipped when SMTP_HOST is empty.
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    MAIL_FROM: str = "no-reply@taskboard.local"

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    return Settings()
