"""Base exception hierarchy.

Every service module derives its errors from one of these bases so the web
layer can map them to HTTP status codes without knowing each module.
"""


class EscuelaError(Exception):
    """Base class for all domain errors."""

    pass


class NotFoundError(EscuelaError):
    """A referenced document does not exist."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} no encontrado: {entity_id}")


class ValidationError(EscuelaError):
    """Input rejected by a domain rule."""

    pass


class ConflictError(EscuelaError):
    """Operation conflicts with the current state of a document."""

    pass
