"""
Configuration module for copilot-catalog.

Exports the main components for convenient imports.
"""

from .loader import load_config
from .schema import (
    AppConfig,
    CatalogConfig,
    LoggingConfig,
    RateLimitConfig,
    RemoteConfig,
)

__all__ = [
    "load_config",
    "AppConfig",
    "CatalogConfig",
    "LoggingConfig",
    "RateLimitConfig",
    "RemoteConfig",
]
