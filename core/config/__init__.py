#!/usr/bin/env python3
"""Modular configuration system for the checkout service

Configuration hierarchy:
- infra_config: Infrastructure services (PostgreSQL, NATS)
- logging_config: Logging configuration
- checkout_config: Payment gateway and settlement settings
"""
import os
from dotenv import load_dotenv
from .logging_config import LoggingConfig
from .infra_config import InfraConfig
from .checkout_config import CheckoutConfig, RazorpayConfig

# Load environment file based on ENV
env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
env_files = {
    "development": "deployment/environments/dev.env",
    "dev": "deployment/environments/dev.env",
    "testing": "deployment/environments/test.env",
    "test": "deployment/environments/test.env",
    "staging": "deployment/environments/staging.env",
    "production": "deployment/environments/production.env",
}
env_file = env_files.get(env, "deployment/environments/dev.env")
load_dotenv(env_file, override=False)

# Create global settings instance
settings = CheckoutConfig.from_env()

def get_settings() -> CheckoutConfig:
    """Get global settings instance"""
    return settings

def reload_settings() -> CheckoutConfig:
    """Reload settings from environment"""
    global settings
    settings = CheckoutConfig.from_env()
    return settings

__all__ = [
    # Main config
    'CheckoutConfig',
    'get_settings',
    'reload_settings',
    'settings',
    # Sub-configs
    'LoggingConfig',
    'InfraConfig',
    'RazorpayConfig',
]
