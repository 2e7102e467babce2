# sfsync/core/config.py
import os
from pydantic import AnyHttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional, Union
from dotenv import load_dotenv

# Load .env file
load_dotenv()

class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", env_file_encoding="utf-8")

    APP_NAME: str = "SalesforceSyncService"
    APP_VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"
    DEBUG_MODE: bool = os.getenv("DEBUG_MODE", "False").lower() == "true"

    # Salesforce Configuration
    SALESFORCE_CLIENT_ID: str
    SALESFORCE_CLIENT_SECRET: str
    SALESFORCE_USERNAME: str
    SALESFORCE_PASSWORD: str # Includes the security token if the org requires one
    SALESFORCE_TOKEN_URL: AnyHttpUrl = "https://login.salesforce.com/services/oauth2/token"
    SALESFORCE_API_VERSION: str = "v58.0"
    SALESFORCE_TOKEN_REFRESH_BUFFER: int = 300 # Seconds before expiry to refresh token
    SALESFORCE_REQUEST_TIMEOUT_SECONDS: float = 60.0
    SALESFORCE_UPLOAD_TIMEOUT_SECONDS: float = 300.0

    # Bulk API 2.0 engine
    BULK_BATCH_SIZE: int = 5000
    BULK_MAX_BATCH_SIZE: int = 10000 # Hard ceiling imposed by the ingest API per job
    BULK_MAX_CONCURRENT_JOBS: int = 2
    BULK_POLL_INTERVAL_SECONDS: float = 2.0
    BULK_POLL_BACKOFF: float = 1.0
    BULK_POLL_MAX_INTERVAL_SECONDS: float = 30.0
    BULK_MAX_POLL_WAIT_SECONDS: float = 600.0
    BULK_RETRY_ATTEMPTS: int = 3
    BULK_RETRY_INITIAL_DELAY_SECONDS: float = 1.0
    BULK_RETRY_MAX_DELAY_SECONDS: float = 30.0
    BULK_ABORT_ON_TIMEOUT: bool = True

    # Logging Configuration
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_FILENAME: Optional[str] = os.getenv("LOG_FILENAME") # None for console only
    LOG_MAX_BYTES: int = 10 * 1024 * 1024  # 10 MB
    LOG_BACKUP_COUNT: int = 5

    # CORS
    BACKEND_CORS_ORIGINS: List[AnyHttpUrl] = []

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    @field_validator("BULK_BATCH_SIZE", "BULK_MAX_BATCH_SIZE", "BULK_MAX_CONCURRENT_JOBS", "BULK_RETRY_ATTEMPTS")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

settings = Settings()
