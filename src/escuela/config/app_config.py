"""Application configuration loader.

Loads centralized configuration from data/config/app_config_v1.yaml
with fallback to built-in defaults.

Usage:
    from escuela.config.app_config import load_app_config

    config = load_app_config()
    ttl = config.unlock.cache_ttl_seconds
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

logger = structlog.get_logger(__name__)

# Config file path (relative to project root)
CONFIG_FILE = Path("data/config/app_config_v1.yaml")

DATA_DIR_ENV = "ESCUELA_DATA_DIR"
LEADS_WEBHOOK_ENV = "ESCUELA_LEADS_WEBHOOK_URL"


@dataclass
class StorageConfig:
    """Where the document store keeps its collections."""

    data_dir: str = "data"

    @property
    def db_path(self) -> Path:
        return Path(self.data_dir) / "db"


@dataclass
class GradingDefaults:
    """Defaults offered when a course has no grade configuration yet."""

    ponderacion_tareas: float = 25
    ponderacion_examenes: float = 25
    ponderacion_examen_final: float = 25
    ponderacion_asistencia: float = 25
    nota_minima: float = 70
    excelente: float = 90
    bueno: float = 75
    regular: float = 60


@dataclass
class UnlockConfig:
    """Section unlock engine settings."""

    default_min_percentage: float = 70
    cache_ttl_seconds: int = 300


@dataclass
class HomeConfig:
    """Home page configuration cache."""

    cache_ttl_seconds: int = 2 * 60 * 60


@dataclass
class LeadsConfig:
    """Contact-form webhook."""

    webhook_url: str | None = None
    timeout_seconds: float = 20.0


@dataclass
class AppConfig:
    """Application-wide configuration."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    grading: GradingDefaults = field(default_factory=GradingDefaults)
    unlock: UnlockConfig = field(default_factory=UnlockConfig)
    home: HomeConfig = field(default_factory=HomeConfig)
    leads: LeadsConfig = field(default_factory=LeadsConfig)


# Module-level cache
_cached_config: AppConfig | None = None


def _get_defaults() -> dict[str, Any]:
    """Get default configuration values."""
    return {
        "storage": {"data_dir": "data"},
        "grading": {
            "ponderacion_tareas": 25,
            "ponderacion_examenes": 25,
            "ponderacion_examen_final": 25,
            "ponderacion_asistencia": 25,
            "nota_minima": 70,
            "excelente": 90,
            "bueno": 75,
            "regular": 60,
        },
        "unlock": {
            "default_min_percentage": 70,
            "cache_ttl_seconds": 300,
        },
        "home": {"cache_ttl_seconds": 7200},
        "leads": {"webhook_url": None, "timeout_seconds": 20.0},
    }


def _parse_config(data: dict[str, Any]) -> AppConfig:
    """Parse configuration dictionary into AppConfig object."""
    defaults = _get_defaults()

    def section(name: str) -> dict[str, Any]:
        merged = dict(defaults[name])
        merged.update(data.get(name) or {})
        return merged

    storage = section("storage")
    grading = section("grading")
    unlock = section("unlock")
    home = section("home")
    leads = section("leads")

    # Environment overrides
    if os.environ.get(DATA_DIR_ENV):
        storage["data_dir"] = os.environ[DATA_DIR_ENV]
    if os.environ.get(LEADS_WEBHOOK_ENV):
        leads["webhook_url"] = os.environ[LEADS_WEBHOOK_ENV]

    return AppConfig(
        storage=StorageConfig(data_dir=str(storage["data_dir"])),
        grading=GradingDefaults(**{k: float(v) for k, v in grading.items()}),
        unlock=UnlockConfig(
            default_min_percentage=float(unlock["default_min_percentage"]),
            cache_ttl_seconds=int(unlock["cache_ttl_seconds"]),
        ),
        home=HomeConfig(cache_ttl_seconds=int(home["cache_ttl_seconds"])),
        leads=LeadsConfig(
            webhook_url=leads.get("webhook_url") or None,
            timeout_seconds=float(leads["timeout_seconds"]),
        ),
    )


def load_app_config(force_reload: bool = False) -> AppConfig:
    """Load application config, falling back to defaults.

    Args:
        force_reload: If True, ignore cached config and reload from file.

    Returns:
        AppConfig object with all settings.
    """
    global _cached_config

    if _cached_config is not None and not force_reload:
        return _cached_config

    data: dict[str, Any]

    if CONFIG_FILE.exists():
        logger.debug("loading_app_config", source=str(CONFIG_FILE))
        data = yaml.safe_load(CONFIG_FILE.read_text(encoding="utf-8")) or {}
    else:
        logger.info("using_default_config")
        data = _get_defaults()

    _cached_config = _parse_config(data)
    return _cached_config


def clear_config_cache() -> None:
    """Clear the configuration cache.

    Useful for testing or when config is modified at runtime.
    """
    global _cached_config
    _cached_config = None
