"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class VestingConfig(BaseSettings):
    """Token vesting ledger configuration"""
    
    # Storage configuration
    database_url: str = "sqlite:///vesting.db"  # memory:// for in-process only
    
    # Ledger bootstrap (used when no persisted state exists yet)
    owner_address: str = "0x0000000000000000000000000000000000000001"
    fee_recipient: str = "0x0000000000000000000000000000000000000002"
    setup_fee_percentage: int = 100  # basis points, 1%
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8095
    
    # Security configuration
    auth_enabled: bool = True
    jwt_secret: str = "change-me-in-production"
    jwt_expiry_hours: int = 24
    jwt_algorithm: str = "HS256"
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout
    
    # Feature flags
    enable_audit_logging: bool = True
    
    # Read-side schedule cache
    cache_ttl_seconds: int = 15
    
    class Config:
        env_prefix = "VESTING_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = VestingConfig()


def get_config() -> VestingConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> VestingConfig:
    """Reload configuration from environment"""
    global config
    config = VestingConfig()
    return config
