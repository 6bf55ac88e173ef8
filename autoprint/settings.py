from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    PROJECT_NAME: str = "AutoPrint Orchestrator"
    SQLALCHEMY_DATABASE_URI: str = "sqlite+aiosqlite:///./data/autoprint.db"
    UPLOAD_DIR: str = "./uploads"

    # Pricing / quoting
    PRICE_PER_PAGE: float = 5.0
    CURRENCY: str = "INR"
    MINUTES_PER_PAGE: float = 1.2
    MIN_ESTIMATED_MINUTES: int = 2

    # Printer
    DEFAULT_PRINTER_NAME: str = ""
    PRINT_PROGRESS_STEPS: int = 5
    # Real seconds per estimated minute of printing. 0 disables pacing.
    PRINT_PROGRESS_SECONDS_PER_MINUTE: float = 60.0

    # Worker pools
    PROCESS_FILE_CONCURRENCY: int = 5
    PRINT_JOB_CONCURRENCY: int = 1
    NOTIFY_USER_CONCURRENCY: int = 10

    PROCESS_FILE_PRIORITY: int = 10
    PRINT_JOB_PRIORITY: int = 5
    NOTIFY_USER_PRIORITY: int = 1

    # Retry policy
    TASK_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 2.0
    RETRY_MAX_DELAY_SECONDS: float = 300.0
    RETRY_JITTER: bool = False
    TASK_EXECUTION_TIMEOUT_SECONDS: Optional[float] = 900.0
    FAILED_TASK_RETENTION: int = 5
    QUEUE_POLL_INTERVAL_SECONDS: float = 0.5

    EVENT_SUBSCRIBER_BUFFER: int = 100

    # Messaging gateway
    MESSAGING_API_URL: str = ""
    MESSAGING_API_TOKEN: str = ""


settings = Settings()
