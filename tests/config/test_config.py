"""Tests for the application config loader."""

import pytest

from escuela.config.app_config import (
    DATA_DIR_ENV,
    LEADS_WEBHOOK_ENV,
    clear_config_cache,
    load_app_config,
)


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    """Run each test from an empty directory with a clean cache."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv(DATA_DIR_ENV, raising=False)
    monkeypatch.delenv(LEADS_WEBHOOK_ENV, raising=False)
    clear_config_cache()
    yield
    clear_config_cache()


def write_config(tmp_path, text: str) -> None:
    config_dir = tmp_path / "data" / "config"
    config_dir.mkdir(parents=True)
    (config_dir / "app_config_v1.yaml").write_text(text, encoding="utf-8")


class TestLoadAppConfig:
    """Tests for load_app_config."""

    def test_defaults_without_file(self):
        config = load_app_config()
        assert config.storage.data_dir == "data"
        assert config.unlock.cache_ttl_seconds == 300
        assert config.home.cache_ttl_seconds == 7200
        assert config.grading.nota_minima == 70
        assert config.leads.webhook_url is None

    def test_file_values_override_defaults(self, tmp_path):
        write_config(
            tmp_path,
            "grading:\n  nota_minima: 65\nunlock:\n  cache_ttl_seconds: 60\n",
        )
        config = load_app_config()
        assert config.grading.nota_minima == 65
        assert config.grading.ponderacion_tareas == 25
        assert config.unlock.cache_ttl_seconds == 60

    def test_empty_file_uses_defaults(self, tmp_path):
        write_config(tmp_path, "")
        assert load_app_config().storage.data_dir == "data"

    def test_environment_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv(DATA_DIR_ENV, str(tmp_path / "otro"))
        monkeypatch.setenv(LEADS_WEBHOOK_ENV, "https://hooks.example.org/leads")
        config = load_app_config()
        assert config.storage.db_path == tmp_path / "otro" / "db"
        assert config.leads.webhook_url == "https://hooks.example.org/leads"

    def test_config_is_cached(self, tmp_path):
        first = load_app_config()
        write_config(tmp_path, "grading:\n  nota_minima: 50\n")
        assert load_app_config() is first
        assert load_app_config(force_reload=True).grading.nota_minima == 50
