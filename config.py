import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_key: str = os.getenv("API_KEY", "super-secret-key")

    # Database settings
    database_file: str = os.getenv("LIBRARY_DB_FILE", "library.db")
    database_timeout: float = float(os.getenv("DATABASE_TIMEOUT", "10"))

    # Borrowing policy
    max_borrow_days: int = int(os.getenv("MAX_BORROW_DAYS", "14"))
    fine_per_day: int = int(os.getenv("FINE_PER_DAY", "1000"))
    max_active_borrowings: int = int(os.getenv("MAX_ACTIVE_BORROWINGS", "5"))
    fine_currency: str = os.getenv("FINE_CURRENCY", "IDR")

    # Activity log retention (days)
    activity_log_retention_days: int = int(os.getenv("ACTIVITY_LOG_RETENTION_DAYS", "90"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Library Desk")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = _env_flag("DEBUG")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Pagination
    default_page_size: int = int(os.getenv("DEFAULT_PAGE_SIZE", "100"))
    max_page_size: int = int(os.getenv("MAX_PAGE_SIZE", "500"))


settings = Settings()
