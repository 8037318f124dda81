import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API Ayarları
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))

    # Veritabanı Ayarları
    database_file: str = os.getenv("LIBRARY_DB_FILE", "library.db")
    database_pool_size: int = int(os.getenv("DATABASE_POOL_SIZE", "5"))
    database_busy_timeout: float = float(os.getenv("DATABASE_BUSY_TIMEOUT", "10"))

    # Ödünç Verme Kuralları
    loan_period_days: int = int(os.getenv("LOAN_PERIOD_DAYS", "14"))
    max_active_loans: int = int(os.getenv("MAX_ACTIVE_LOANS", "3"))
    low_stock_threshold: int = int(os.getenv("LOW_STOCK_THRESHOLD", "5"))
    due_soon_window_days: int = int(os.getenv("DUE_SOON_WINDOW_DAYS", "3"))

    # Zamanlayıcı Ayarları
    enable_scheduler: bool = _env_bool("ENABLE_SCHEDULER", "True")
    due_soon_interval_seconds: int = int(os.getenv("DUE_SOON_INTERVAL_SECONDS", "86400"))  # 24 saat
    low_stock_interval_seconds: int = int(os.getenv("LOW_STOCK_INTERVAL_SECONDS", "43200"))  # 12 saat
    overdue_interval_seconds: int = int(os.getenv("OVERDUE_INTERVAL_SECONDS", "86400"))
    sweep_initial_delay_seconds: float = float(os.getenv("SWEEP_INITIAL_DELAY_SECONDS", "0"))  # başlangıçta hemen tara

    # Uygulama Ayarları
    app_name: str = os.getenv("APP_NAME", "Kütüphane Ödünç Yönetimi")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Sayfalama Ayarları
    default_page_size: int = int(os.getenv("DEFAULT_PAGE_SIZE", "10"))
    max_page_size: int = int(os.getenv("MAX_PAGE_SIZE", "100"))


settings = Settings()
