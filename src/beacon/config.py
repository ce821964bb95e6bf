"""
Beacon Configuration Module

Centralized configuration management using Pydantic Settings.
Supports environment variables and .env files.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="BEACON_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    env: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    log_json: bool = True


class EncryptionSettings(BaseSettings):
    """Field encryption settings."""

    model_config = SettingsConfigDict(
        env_prefix="BEACON_ENCRYPTION_",
        env_file=".env",
        extra="ignore",
    )

    # Per-category Fernet keys are derived from this value
    master_key: SecretStr = Field(default=SecretStr("dev-master-key-change-me"))
    key_version: str = "v1"


class PostgresSettings(BaseSettings):
    """PostgreSQL settings for the asyncpg-backed store."""

    model_config = SettingsConfigDict(
        env_prefix="POSTGRES_",
        env_file=".env",
        extra="ignore",
    )

    host: str = "localhost"
    port: int = 5432
    user: str = "beacon"
    password: SecretStr = Field(default=SecretStr("beacon_dev_password"))
    database: str = "beacon"
    min_pool_size: int = 2
    max_pool_size: int = 10
    command_timeout: float = 10.0

    @property
    def connection_url(self) -> str:
        """Get the PostgreSQL connection URL."""
        pwd = self.password.get_secret_value()
        return f"postgresql://{self.user}:{pwd}@{self.host}:{self.port}/{self.database}"


class LLMSettings(BaseSettings):
    """LLM (Bedrock/Mock) settings."""

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    # Provider selection: mock, bedrock
    llm_provider: Literal["mock", "bedrock"] = "mock"

    # AWS Bedrock settings
    aws_region: str = "us-east-1"
    aws_access_key_id: str | None = None
    aws_secret_access_key: SecretStr | None = None
    bedrock_model_id: str = "amazon.nova-pro-v1:0"

    max_tokens: int = 1024
    temperature: float = 0.2

    # Timeouts (seconds); on expiry callers degrade to keyword fallbacks
    intent_timeout: float = 5.0
    format_timeout: float = 5.0


class ComplianceSettings(BaseSettings):
    """Consent, SUD access and query limits."""

    model_config = SettingsConfigDict(
        env_prefix="BEACON_COMPLIANCE_",
        env_file=".env",
        extra="ignore",
    )

    min_documented_need_length: int = 10
    expiry_notice_days: int = 30
    query_list_limit: int = 50
    detail_assessment_limit: int = 5
    trend_window_months: int = 6
    comparison_change_threshold: float = 5.0


class Settings:
    """
    Aggregated settings container.

    Usage:
        from beacon.config import get_settings
        settings = get_settings()
        print(settings.compliance.min_documented_need_length)
    """

    def __init__(self):
        self.app = AppSettings()
        self.encryption = EncryptionSettings()
        self.postgres = PostgresSettings()
        self.llm = LLMSettings()
        self.compliance = ComplianceSettings()

    @property
    def is_production(self) -> bool:
        return self.app.env == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: The application settings
    """
    return Settings()
