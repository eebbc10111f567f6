#!/usr/bin/env python3
"""
Core Module for the Checkout Service

Shared infrastructure components:
    - config/: dataclass configuration loaded from the environment
    - logger.py: service logging setup
    - postgres_client.py: asyncpg pool wrapper with transaction scopes
    - nats_client.py: NATS JetStream event bus
    - auth_dependencies.py: FastAPI identity dependencies

USAGE:
    from core.config import get_settings
    from core.postgres_client import get_postgres_client
"""

__version__ = "2.0.0"
