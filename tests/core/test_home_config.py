"""Tests for the cached home page configuration."""

import pytest

from escuela.core.home_config import (
    DEFAULT_HOME,
    HOME_DOC_ID,
    SYSTEM_USER,
    InvalidHomeConfigError,
)
from escuela.db import collections

HERO = {
    "subtitulo1": "¡Bienvenidos!",
    "subtitulo2": "Clases los sábados",
    "titulo": "ESCUELA BÍBLICA",
    "boton_texto": "Inscríbete",
    "boton_link": "#contacto",
}


@pytest.fixture
def home_docs(store):
    return store.collection(collections.HOME_CONFIG)


class TestHomeConfigService:
    """Tests for HomeConfigService."""

    def test_missing_document_is_created(self, services, home_docs):
        config = services.home.get_config()

        assert config["hero"] == DEFAULT_HOME["hero"]
        assert config["actualizado_por"] == SYSTEM_USER
        assert home_docs.exists(HOME_DOC_ID)

    def test_reads_are_cached_for_two_hours(self, services, home_docs, clock):
        services.home.get_config()
        home_docs.update(HOME_DOC_ID, {"hero": HERO})

        clock.advance(hours=2)
        assert services.home.get_config()["hero"] == DEFAULT_HOME["hero"]

        clock.advance(seconds=1)
        assert services.home.get_config()["hero"] == HERO

    def test_cached_copy_is_not_shared(self, services):
        first = services.home.get_config()
        first["hero"]["titulo"] = "cambiado"
        assert services.home.get_config()["hero"]["titulo"] == DEFAULT_HOME["hero"]["titulo"]

    def test_update_hero_invalidates_cache(self, services, admin):
        services.home.get_config()
        updated = services.home.update_hero(HERO, admin.id)

        assert updated["hero"] == HERO
        assert updated["actualizado_por"] == admin.id
        assert updated["seccion_cursos"] == DEFAULT_HOME["seccion_cursos"]

    def test_incomplete_hero_rejected(self, services, admin):
        with pytest.raises(InvalidHomeConfigError):
            services.home.update_hero({"titulo": "Solo título"}, admin.id)

    def test_invalid_subject_state(self, services, admin):
        section = {
            "visible": True,
            "titulo": "Cursos",
            "subtitulo": "",
            "cursos": [{"titulo": "Básico", "materias": [{"nombre": "Homilética", "estado": "cerrado"}]}],
        }
        with pytest.raises(InvalidHomeConfigError):
            services.home.update_courses_section(section, admin.id)

    def test_update_courses_section(self, services, admin):
        section = {
            "visible": False,
            "titulo": "Programas",
            "subtitulo": "Tres niveles",
            "cursos": [{"titulo": "Básico", "materias": [{"nombre": "Homilética", "estado": "proximamente"}]}],
        }
        updated = services.home.update_courses_section(section, admin.id)
        assert updated["seccion_cursos"]["titulo"] == "Programas"

    def test_reset_to_default(self, services, admin):
        services.home.update_hero(HERO, admin.id)
        reset = services.home.reset_to_default(admin.id)

        assert reset["hero"] == DEFAULT_HOME["hero"]
        assert reset["actualizado_por"] == admin.id
