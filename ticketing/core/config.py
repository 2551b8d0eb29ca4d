import re

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    PROJECT_NAME: str = "Ticketing Discounts"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./ticketing.db"
    DATABASE_ECHO: bool = False

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def convert_postgres_url(cls, v: str) -> str:
        """Convert postgres:// URLs to postgresql+asyncpg:// for SQLAlchemy async"""
        if v.startswith("postgres://"):
            v = v.replace("postgres://", "postgresql+asyncpg://", 1)
        elif v.startswith("postgresql://") and "+asyncpg" not in v:
            v = v.replace("postgresql://", "postgresql+asyncpg://", 1)
        # asyncpg doesn't support sslmode parameter, remove it
        if "sslmode=" in v:
            v = re.sub(r'[?&]sslmode=[^&]*', '', v)
            v = v.rstrip('?&')
        return v

    # Pricing
    DEFAULT_CURRENCY: str = "CLP"

    # Promo codes
    PROMO_CODE_PREFIX: str = "SP"
    PROMO_CODE_LENGTH: int = 8

    # Courtesy codes
    COURTESY_CODE_TTL_DAYS: int = 30

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
