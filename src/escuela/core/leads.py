"""Contact-form leads forwarded to the spreadsheet webhook."""

from __future__ import annotations

from dataclasses import asdict, dataclass

import httpx
import structlog

from escuela.config.app_config import LeadsConfig
from escuela.errors import EscuelaError, ValidationError

logger = structlog.get_logger(__name__)


@dataclass
class Lead:
    """A contact-form submission from the public home page."""

    nombre: str
    curso: str
    celular: str
    observacion: str = ""


class LeadForwardingError(EscuelaError):
    """Raised when the webhook is unreachable or rejects the lead."""

    pass


class LeadsDisabledError(EscuelaError):
    """Raised when no webhook URL is configured."""

    pass


class LeadForwarder:
    """Posts leads as JSON to the configured webhook."""

    def __init__(self, config: LeadsConfig | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self._config = config or LeadsConfig()
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self._config.webhook_url)

    async def forward(self, lead: Lead) -> None:
        """Send one lead.

        Raises:
            ValidationError: Missing name or phone
            LeadsDisabledError: No webhook configured
            LeadForwardingError: Network error or non-2xx response
        """
        if not lead.nombre.strip() or not lead.celular.strip():
            raise ValidationError("Nombre y celular son obligatorios")
        if not self.enabled:
            raise LeadsDisabledError("El formulario de contacto no está configurado")

        try:
            async with httpx.AsyncClient(
                timeout=self._config.timeout_seconds,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                response = await client.post(self._config.webhook_url, json=asdict(lead))
        except httpx.HTTPError as e:
            logger.error("lead_forward_failed", error=str(e))
            raise LeadForwardingError(f"No se pudo enviar el formulario: {e}") from e

        if response.is_error:
            logger.error("lead_forward_rejected", status_code=response.status_code)
            raise LeadForwardingError(f"El servicio de formularios respondió {response.status_code}")

        logger.info("lead_forwarded", curso=lead.curso)
