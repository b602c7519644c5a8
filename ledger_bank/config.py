"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class BankConfig(BaseSettings):
    """Ledger bank service configuration"""

    # Database configuration
    database_url: str = "sqlite:///bank.db"  # memory://, sqlite:///path or postgresql://...
    database_pool_size: int = 10
    lock_timeout_seconds: float = 10.0  # Bounds every row lock wait

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Token configuration
    token_type: str = "jwt"  # jwt or fernet
    token_secret_key: str = "change-me-in-production-32chars!"
    token_audience: str = "bank-service"
    token_issuer: str = "bank-service"
    access_token_duration_minutes: int = 15

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    class Config:
        env_prefix = "BANK_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = BankConfig()


def get_config() -> BankConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> BankConfig:
    """Reload configuration from environment"""
    global config
    config = BankConfig()
    return config
