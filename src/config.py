from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    # Database
    DATABASE_URL: Optional[str] = None
    PGHOST: Optional[str] = None
    PGDATABASE: Optional[str] = None
    PGUSER: Optional[str] = None
    PGPASSWORD: Optional[str] = None
    PGSSLMODE: str = "require"

    # Security
    SECRET_KEY: str = "change-me-in-production"
    ALGORITHM: str = "HS256"

    # Application
    PROJECT_NAME: str = "Border Control Ticketing System"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Ticketing rules
    TICKET_PREFIX: str = "J"  # "J" immigration, "C" customs
    SCAN_LOCK_MINUTES: int = 2
    LEGAL_STAY_LIMIT_DAYS: int = 90
    NATIONAL_NATIONALITY: str = "Haitian"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        if self.PGHOST and self.PGDATABASE:
            return f"postgresql://{self.PGUSER}:{self.PGPASSWORD}@{self.PGHOST}/{self.PGDATABASE}?sslmode={self.PGSSLMODE}"
        return "sqlite:///./border_control.db"

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
