from typing import List
from pydantic_settings import BaseSettings
from pydantic import Field, validator


class Settings(BaseSettings):
    """Application settings with automatic loading from .env file"""

    # Database configuration
    mongo_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongo_db_name: str = Field(default="wallet_ledger", alias="MONGO_DB_NAME")
    mongo_timeout_ms: int = Field(default=5000, alias="MONGO_TIMEOUT_MS")

    # Application settings
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    cors_origins: str = Field(default="http://localhost:3000", alias="CORS_ORIGINS")

    # Ledger settings
    max_bundle_size: int = Field(default=10000, alias="MAX_BUNDLE_SIZE")
    default_page_limit: int = Field(default=100, alias="DEFAULT_PAGE_LIMIT")

    @validator("log_level")
    def validate_log_level(cls, v):
        """Only accept level names the logging module knows about"""
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"LOG_LEVEL must be a standard logging level, got {v}")
        return level

    @validator("max_bundle_size", "default_page_limit")
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("must be a positive integer")
        return v

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        if isinstance(self.cors_origins, str):
            if "," in self.cors_origins:
                return [origin.strip() for origin in self.cors_origins.split(",")]
            return [self.cors_origins.strip()]
        return self.cors_origins

    class Config:
        env_file = [".env"]
        env_file_encoding = 'utf-8'
        case_sensitive = False


# Create a singleton instance
settings = Settings()
