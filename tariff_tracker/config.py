from pathlib import Path
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

# Load .env from repo root for local development and scripts.
ENV_PATH = Path(__file__).resolve().parents[1] / ".env"
load_dotenv(dotenv_path=ENV_PATH)

FISCAL_DTS_URL = (
    "https://api.fiscaldata.treasury.gov/services/api/fiscal_service"
    "/v1/accounting/dts/deposits_withdrawals_operating_cash"
)

class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=True)
    db_path: str = Field(default="./data/tariffs.db", alias="DB_PATH")
    db_connect_timeout_seconds: float = Field(default=10.0, alias="DB_CONNECT_TIMEOUT_SECONDS")
    fiscal_base_url: str = Field(default=FISCAL_DTS_URL, alias="FISCAL_BASE_URL")
    fiscal_page_size: int = Field(default=500, alias="FISCAL_PAGE_SIZE")
    backfill_page_size: int = Field(default=1000, alias="BACKFILL_PAGE_SIZE")
    fiscal_request_delay_seconds: float = Field(default=0.5, alias="FISCAL_REQUEST_DELAY_SECONDS")
    http_timeout_seconds: float = Field(default=20.0, alias="HTTP_TIMEOUT_SECONDS")
    backfill_http_timeout_seconds: float = Field(default=30.0, alias="BACKFILL_HTTP_TIMEOUT_SECONDS")
    local_tz: str = Field(default="Europe/Ljubljana", alias="LOCAL_TZ")
    raw_dir: str = Field(default="./raw-responses", alias="RAW_DIR")
    backfill_default_start: str = Field(default="2025-01-01", alias="BACKFILL_DEFAULT_START")
    classifier_rules_path: str | None = Field(default=None, alias="CLASSIFIER_RULES_PATH")
    allowed_origin: str = Field(default="*", alias="ALLOWED_ORIGIN")
    scheduler_enabled: int = Field(default=0, alias="SCHEDULER_ENABLED")
    daily_fetch_hour: int = Field(default=7, alias="DAILY_FETCH_HOUR")
    daily_fetch_minute: int = Field(default=0, alias="DAILY_FETCH_MINUTE")
    ingest_lock_ttl_seconds: int = Field(default=7200, alias="INGEST_LOCK_TTL_SECONDS")

settings = Settings()
