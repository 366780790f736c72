from pathlib import Path
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

# Load .env from repo root for local development and scripts.
ENV_PATH = Path(__file__).resolve().parents[1] / ".env"
load_dotenv(dotenv_path=ENV_PATH)

class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=True)
    db_path: str = Field(default="./data/cryptohub.db", alias="DB_PATH")
    local_tz: str = Field(default="America/Sao_Paulo", alias="LOCAL_TZ")
    api_base_url: str = Field(default="http://localhost:8000/api/v1", alias="API_BASE_URL")
    api_token: str | None = Field(default=None, alias="API_TOKEN")
    http_timeout_seconds: float = Field(default=30.0, alias="HTTP_TIMEOUT_SECONDS")
    secondary_currency: str = Field(default="BRL", alias="SECONDARY_CURRENCY")
    secondary_rate: float = Field(default=5.5, alias="SECONDARY_RATE")
    snapshot_retention_days: int = Field(default=365, alias="SNAPSHOT_RETENTION_DAYS")
    scheduler_check_interval_seconds: int = Field(default=60, alias="SCHEDULER_CHECK_INTERVAL_SECONDS")
    scheduler_max_retries: int = Field(default=3, alias="SCHEDULER_MAX_RETRIES")
    scheduler_retry_delay_seconds: float = Field(default=300.0, alias="SCHEDULER_RETRY_DELAY_SECONDS")
    sync_retry_delay_seconds: float = Field(default=30.0, alias="SYNC_RETRY_DELAY_SECONDS")
    pnl_window_days: int = Field(default=3, alias="PNL_WINDOW_DAYS")
    default_user_id: str | None = Field(default=None, alias="DEFAULT_USER_ID")

settings = Settings()
