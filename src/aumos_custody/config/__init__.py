"""YAML configuration for aumos-custody."""
from __future__ import annotations

from aumos_custody.config.loader import (
    DEFAULT_CONFIG_FILE,
    ApiConfig,
    AuditConfig,
    ConfigLoader,
    CustodyConfig,
    LoggingConfig,
    StorageConfig,
)

__all__ = [
    "DEFAULT_CONFIG_FILE",
    "ApiConfig",
    "AuditConfig",
    "ConfigLoader",
    "CustodyConfig",
    "LoggingConfig",
    "StorageConfig",
]
