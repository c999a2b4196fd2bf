import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_key: str = os.getenv("API_KEY", "super-secret-key")

    # Database
    db_file: Optional[str] = os.getenv("LIBRARY_DB_FILE")

    # Google Books API
    google_books_api_key: Optional[str] = os.getenv("GOOGLE_BOOKS_API_KEY")
    google_books_daily_limit: int = int(os.getenv("GOOGLE_BOOKS_DAILY_LIMIT", "1000"))
    google_books_timeout: float = float(os.getenv("GOOGLE_BOOKS_TIMEOUT", "10"))
    google_books_language: str = os.getenv("GOOGLE_BOOKS_LANGUAGE", "es")
    enable_google_books: bool = _env_flag("ENABLE_GOOGLE_BOOKS", "True")

    # Security
    secret_key: str = os.getenv("SECRET_KEY", "your-secret-key-change-this-in-production")
    jwt_secret_key: str = os.getenv("JWT_SECRET_KEY", secret_key)
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")
    jwt_expiration_minutes: int = int(os.getenv("JWT_EXPIRATION_MINUTES", "10080"))  # 7 days
    min_password_length: int = int(os.getenv("MIN_PASSWORD_LENGTH", "6"))

    # Loan rules
    loan_period_days: int = int(os.getenv("LOAN_PERIOD_DAYS", "5"))
    max_active_loans: int = int(os.getenv("MAX_ACTIVE_LOANS", "5"))

    # Application
    app_name: str = os.getenv("APP_NAME", "Campus Library")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = _env_flag("DEBUG", "False")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
