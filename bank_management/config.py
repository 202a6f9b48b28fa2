"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class BankConfig(BaseSettings):
    """Bank management system configuration"""
    
    # Database configuration
    database_url: str = "sqlite:///bank.db"  # memory://, sqlite:///path or postgresql://...
    database_timeout: float = 5.0  # Seconds to wait for a database lock
    
    # Logging configuration
    log_level: str = "WARNING"  # Console app: keep stderr quiet by default
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stderr
    
    # Security configuration
    pin_length: int = 4
    admin_password: str = "admin123"
    
    # Identifier formats
    account_number_prefix: str = "ACC"
    account_number_width: int = 3
    transaction_number_prefix: str = "TXN"
    transaction_number_width: int = 6
    
    # Console defaults
    default_history_limit: int = 10
    default_admin_history_limit: int = 20
    
    # Feature flags
    seed_demo_data: bool = True
    enable_audit_logging: bool = True
    
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
