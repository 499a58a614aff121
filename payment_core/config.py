"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class PaymentCoreConfig(BaseSettings):
    """Payment core configuration"""
    
    # Storage configuration
    storage_backend: str = "sqlite"  # memory or sqlite
    sqlite_path: str = "payment_core.db"
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    api_workers: int = 1
    
    # Security configuration
    jwt_secret: str = "change-me-in-production"
    jwt_expiry_hours: int = 48
    jwt_algorithm: str = "HS256"
    password_min_length: int = 10
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    
    # Wallet and card rules
    default_currency: str = "PHP"
    card_issuer_digit: str = "4"
    card_validity_years: int = 3
    card_daily_limit: str = "50000.00"
    
    # API key rules
    max_api_keys_per_business: int = 5
    api_key_live_prefix: str = "scb_live_"
    api_key_test_prefix: str = "scb_test_"
    api_key_requests_per_minute: int = 60
    api_key_requests_per_day: int = 10000
    api_key_max_amount_per_transaction: str = "100000.00"
    api_key_daily_transaction_limit: str = "500000.00"
    
    # Bank reserve
    reserve_initial_balance: str = "0.00"
    
    # Encryption configuration
    encryption_master_key: str = ""  # PAYCORE_ENCRYPTION_MASTER_KEY env var
    encryption_provider: str = "fernet"  # fernet or aesgcm
    fingerprint_key: str = "change-me-fingerprint-key"
    
    # Feature flags
    enable_audit_logging: bool = True
    
    class Config:
        env_prefix = "PAYCORE_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = PaymentCoreConfig()


def get_config() -> PaymentCoreConfig:
    """Get global configuration instance"""
    return config
