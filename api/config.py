from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    APP_NAME: str = "Bidflow"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    PORT: int = 8000

    DATABASE_URL: str = "postgresql+asyncpg://localhost/bidflow"
    DATABASE_SYNC_URL: str = ""
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_RECYCLE: int = 300
    DB_SSL_REQUIRED: bool = False
    DB_STATEMENT_TIMEOUT_MS: int = 15_000

    JWT_PUBLIC_KEY_PATH: Optional[str] = "keys/public.pem"
    JWT_ALGORITHM: str = "RS256"

    BID_PORTAL_SECRET: str = ""  # HMAC key for link tokens; required to issue or verify links
    APP_URL: str = "http://localhost:3000"

    PIN_MAX_ATTEMPTS: int = 5
    PIN_LOCKOUT_MINUTES: int = 15
    PIN_SESSION_TTL_MINUTES: int = 720

    BREVO_API_KEY: Optional[str] = None
    EMAIL_FROM_ADDRESS: str = "noreply@bidflow.example.com"

    COMMITMENTS_API_URL: Optional[str] = None
    COMMITMENTS_API_TOKEN: Optional[str] = None

    SUBMISSION_RETRY_ATTEMPTS: int = 3

    CORS_ORIGINS: str = "http://localhost:3000"
    CORS_ORIGIN_REGEX: Optional[str] = None

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def portal_base_url(self) -> str:
        url = self.APP_URL.strip()
        if url and not url.startswith("http"):
            url = f"https://{url}"
        return url.rstrip("/")

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
