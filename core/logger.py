"""
Service Logger Setup

Configures the standard library logging tree once per service process from
LoggingConfig. Modules keep using logging.getLogger(__name__).

Usage:
    from core.logger import setup_service_logger
    logger = setup_service_logger("checkout_service")
"""

import logging
import sys
from typing import Optional

from core.config import LoggingConfig

_configured_services = set()


def setup_service_logger(
    service_name: str,
    config: Optional[LoggingConfig] = None,
) -> logging.Logger:
    """
    Configure root handlers for a service and return its named logger.

    Args:
        service_name: Service name used as the logger name
        config: Logging configuration (defaults to LoggingConfig.from_env())

    Returns:
        Logger for the service
    """
    if config is None:
        config = LoggingConfig.from_env()

    logger = logging.getLogger(service_name)
    if service_name in _configured_services:
        return logger

    level = getattr(logging, config.log_level.upper(), logging.INFO)
    formatter = logging.Formatter(config.log_format)

    root = logging.getLogger()
    root.setLevel(level)

    if config.enable_console:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(formatter)
        root.addHandler(console)

    if config.log_file:
        file_handler = logging.FileHandler(config.log_file)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # asyncpg and httpx are chatty at DEBUG
    logging.getLogger("httpx").setLevel(max(level, logging.INFO))
    logging.getLogger("asyncpg").setLevel(max(level, logging.INFO))

    _configured_services.add(service_name)
    logger.info(f"Logging configured for {service_name} (level={config.log_level}, env={config.environment})")
    return logger
