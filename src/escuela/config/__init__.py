"""Configuration package for the school backend."""

from escuela.config.app_config import (
    AppConfig,
    GradingDefaults,
    HomeConfig,
    LeadsConfig,
    StorageConfig,
    UnlockConfig,
    clear_config_cache,
    load_app_config,
)

__all__ = [
    "AppConfig",
    "GradingDefaults",
    "HomeConfig",
    "LeadsConfig",
    "StorageConfig",
    "UnlockConfig",
    "clear_config_cache",
    "load_app_config",
]
