"""Configuration management module for the ledger sync service."""

from config.models import (
    Config,
    NetworkConfig,
    LedgerConfig,
    SyncConfig,
    EnrichmentConfig,
    ClassifierRules,
    RegistryConfig,
    StoreConfig,
    AppConfig,
    LoggingConfig,
    CORSConfig,
)
from config.loader import ConfigurationManager

__all__ = [
    "Config",
    "NetworkConfig",
    "LedgerConfig",
    "SyncConfig",
    "EnrichmentConfig",
    "ClassifierRules",
    "RegistryConfig",
    "StoreConfig",
    "AppConfig",
    "LoggingConfig",
    "CORSConfig",
    "ConfigurationManager",
]
