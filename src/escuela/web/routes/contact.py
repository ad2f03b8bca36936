"""Public contact form."""

from fastapi import APIRouter, Depends

from escuela.core.leads import Lead
from escuela.core.services import Services
from escuela.web.dependencies import get_services
from escuela.web.schemas import ContactForm, ContactResponse

router = APIRouter(prefix="/api/contact", tags=["contact"])


@router.post("", response_model=ContactResponse)
async def send_contact(
    body: ContactForm,
    services: Services = Depends(get_services),
) -> ContactResponse:
    """Forward the form to the leads spreadsheet."""
    await services.leads.forward(Lead(**body.model_dump()))
    return ContactResponse(enviado=True, mensaje="¡Gracias! Nos pondremos en contacto contigo pronto.")
