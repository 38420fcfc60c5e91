from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path


class Settings(BaseSettings):
    APP_NAME: str = "Expense AI Backend"
    ENV: str = "dev"

    # 기본 SQLite 파일 DB
    # apps/backend/db.sqlite3를 절대경로로 지정하여 CWD에 따른 경로 문제 방지
    _default_db_path = Path(__file__).resolve().parents[2] / "db.sqlite3"
    DATABASE_URL: str = f"sqlite:///{_default_db_path}"

    CORS_ORIGINS: list[str] = ["*"]

    # Recurring scheduler defaults
    APP_TIMEZONE: str = "Asia/Ho_Chi_Minh"
    DEFAULT_TIME_OF_DAY: str = "07:00"
    DEFAULT_CURRENCY: str = "VND"

    RECURRING_WORKER_ENABLED: bool = True
    RECURRING_TICK_SECONDS: int = 300
    RECURRING_BUDGET_TICK_SECONDS: int = 300
    RECURRING_TRANSACTIONS_TICK_SECONDS: int = 60
    RECURRING_BATCH_LIMIT: int = 50
    RECURRING_MAX_CATCH_UP: int = 24

    LOG_LEVEL: str = "INFO"
    LOG_PATH: str | None = None

    model_config = SettingsConfigDict(env_file=(".env",), env_prefix="EXPENSE_", case_sensitive=False)


settings = Settings()
