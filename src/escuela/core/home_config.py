"""Home page configuration (configuracion-home/principal).

Reads go through an in-process cache that expires after two hours by
default; every write invalidates it.
"""

from __future__ import annotations

import copy
from datetime import datetime, timedelta
from typing import Any

import structlog

from escuela.config.app_config import HomeConfig
from escuela.db import collections
from escuela.db.document_store import DocumentStore
from escuela.errors import ValidationError
from escuela.utils.dates import Clock, utc_now

logger = structlog.get_logger(__name__)

HOME_DOC_ID = "principal"
SYSTEM_USER = "sistema"

MATERIA_STATES = ("en-curso", "proximamente", "completado", None)

DEFAULT_HOME: dict[str, Any] = {
    "hero": {
        "subtitulo1": "¡Desarrolla tu fe!",
        "subtitulo2": "CLASES TODOS LOS DOMINGOS A LAS 18:00PM",
        "titulo": "ESCUELA BÍBLICA CAVEVID",
        "boton_texto": "Ver cursos",
        "boton_link": "#services",
    },
    "seccion_cursos": {
        "visible": True,
        "titulo": "Cursos",
        "subtitulo": "Dos niveles para elegir.",
        "cursos": [
            {
                "titulo": "Básico",
                "subtitulo": "Estudio Bíblico Fundamental",
                "icono": "fa-book-reader",
                "descripcion": (
                    "Este curso introduce los principios básicos del estudio de la Biblia. "
                    "Ideal para quienes desean establecer una base sólida en su camino de fe "
                    "y servicio cristiano."
                ),
                "materias": [
                    {"nombre": "Evangelismo Personal", "estado": "en-curso"},
                    {"nombre": "Vida Cristiana", "estado": None},
                    {"nombre": "Síntesis del Antiguo Testamento", "estado": None},
                    {"nombre": "Síntesis del Nuevo Testamento", "estado": None},
                    {"nombre": "Servicio Ministerial", "estado": None},
                ],
            },
            {
                "titulo": "Avanzado",
                "subtitulo": "Teología y Evangelismo Profesional",
                "icono": "fa-graduation-cap",
                "descripcion": (
                    "Este curso profundiza en el estudio avanzado de la Biblia y la teología "
                    "cristiana. Está diseñado para aquellos que buscan un conocimiento más "
                    "profundo para ejercer un liderazgo efectivo en la iglesia y en la misión "
                    "cristiana."
                ),
                "materias": [
                    {"nombre": "Métodos de Evangelismo General", "estado": "en-curso"},
                    {"nombre": "Introducción a la Teología Sistemática", "estado": None},
                    {"nombre": "Bibliología", "estado": None},
                    {"nombre": "Homilética", "estado": None},
                    {"nombre": "Misiología", "estado": None},
                ],
            },
        ],
    },
}

_HERO_FIELDS = ("subtitulo1", "subtitulo2", "titulo", "boton_texto", "boton_link")


class InvalidHomeConfigError(ValidationError):
    pass


def _check_hero(hero: dict[str, Any]) -> None:
    missing = [name for name in _HERO_FIELDS if name not in hero]
    if missing:
        raise InvalidHomeConfigError(f"Faltan campos del hero: {', '.join(missing)}")


def _check_courses_section(section: dict[str, Any]) -> None:
    for curso in section.get("cursos", []):
        for materia in curso.get("materias", []):
            if materia.get("estado") not in MATERIA_STATES:
                raise InvalidHomeConfigError(f"Estado de materia inválido: {materia.get('estado')}")


class HomeConfigService:
    """Cached access to the home page document."""

    def __init__(
        self,
        store: DocumentStore,
        config: HomeConfig | None = None,
        clock: Clock = utc_now,
    ):
        self._docs = store.collection(collections.HOME_CONFIG)
        self._ttl = timedelta(seconds=(config or HomeConfig()).cache_ttl_seconds)
        self._clock = clock
        self._cached: dict[str, Any] | None = None
        self._cached_at: datetime | None = None

    def get_config(self) -> dict[str, Any]:
        """Return the home configuration, creating the default one if missing."""
        if self._cached is not None and self._cached_at is not None:
            if self._clock() - self._cached_at <= self._ttl:
                return copy.deepcopy(self._cached)
            self.clear_cache()

        doc = self._docs.get(HOME_DOC_ID)
        if doc is None:
            logger.warning("home_config_missing_creating_default")
            doc = self._write_default(SYSTEM_USER)

        self._cached = doc
        self._cached_at = self._clock()
        return copy.deepcopy(doc)

    def update_config(self, changes: dict[str, Any], admin_id: str) -> dict[str, Any]:
        """Merge top-level sections into the document."""
        if "hero" in changes:
            _check_hero(changes["hero"])
        if "seccion_cursos" in changes:
            _check_courses_section(changes["seccion_cursos"])

        if not self._docs.exists(HOME_DOC_ID):
            self._write_default(admin_id)

        payload = dict(changes)
        payload["ultima_actualizacion"] = self._clock()
        payload["actualizado_por"] = admin_id
        self._docs.update(HOME_DOC_ID, payload)
        self.clear_cache()

        logger.info("home_config_updated", admin_id=admin_id, sections=sorted(changes))
        return self.get_config()

    def update_hero(self, hero: dict[str, Any], admin_id: str) -> dict[str, Any]:
        return self.update_config({"hero": hero}, admin_id)

    def update_courses_section(self, section: dict[str, Any], admin_id: str) -> dict[str, Any]:
        return self.update_config({"seccion_cursos": section}, admin_id)

    def initialize(self, admin_id: str) -> dict[str, Any]:
        """Write the default configuration, replacing any existing one."""
        doc = self._write_default(admin_id)
        self.clear_cache()
        logger.info("home_config_initialized", admin_id=admin_id)
        return doc

    def reset_to_default(self, admin_id: str) -> dict[str, Any]:
        self.initialize(admin_id)
        return self.get_config()

    def clear_cache(self) -> None:
        self._cached = None
        self._cached_at = None

    def _write_default(self, admin_id: str) -> dict[str, Any]:
        doc = copy.deepcopy(DEFAULT_HOME)
        doc["ultima_actualizacion"] = self._clock()
        doc["actualizado_por"] = admin_id
        self._docs.set(HOME_DOC_ID, doc)
        return self._docs.get(HOME_DOC_ID) or doc
