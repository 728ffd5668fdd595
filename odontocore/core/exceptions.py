"""
Excepciones HTTP personalizadas para la API.
"""

import enum

from fastapi import HTTPException, status


class CredentialsException(HTTPException):
    """Error de credenciales inválidas (401)."""

    def __init__(self, detail: str = "Credenciales inválidas"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class ForbiddenException(HTTPException):
    """Error de permisos insuficientes (403)."""

    def __init__(self, detail: str = "No tiene permisos para realizar esta acción"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
        )


class NotFoundException(HTTPException):
    """Recurso no encontrado (404)."""

    def __init__(self, resource: str = "Recurso", detail: str | None = None):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail or f"{resource} no encontrado",
        )


class ConflictException(HTTPException):
    """Conflicto de datos (409)."""

    def __init__(self, detail: str | dict = "El recurso ya existe", headers: dict | None = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            headers=headers,
        )


class ValidationException(HTTPException):
    """Error de validación de negocio (422)."""

    def __init__(self, detail: str = "Error de validación"):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
        )


# ── Conflictos de estado (historia / odontograma) ────

class ConflictReason(str, enum.Enum):
    """Motivo de un conflicto de estado. Cada uno requiere una acción distinta del usuario."""
    RECORD_CLOSED = "record_closed"
    ALREADY_CLOSED = "already_closed"
    STALE_TOKEN = "stale_token"
    DRAFT_EXISTS = "draft_exists"
    NOT_A_DRAFT = "not_a_draft"


CONFLICT_MESSAGES: dict[ConflictReason, str] = {
    ConflictReason.RECORD_CLOSED: "La historia está cerrada y no admite nuevas ediciones.",
    ConflictReason.ALREADY_CLOSED: "La historia ya está cerrada.",
    ConflictReason.STALE_TOKEN: (
        "Tu vista del odontograma estaba desactualizada; se ha refrescado. "
        "Vuelve a aplicar tu cambio."
    ),
    ConflictReason.DRAFT_EXISTS: "Ya existe un borrador abierto para esta historia.",
    ConflictReason.NOT_A_DRAFT: "El odontograma no es un borrador editable.",
}


class StateConflictException(ConflictException):
    """
    Conflicto de estado (409): historia cerrada, borrador inexistente o
    duplicado, o version_token desactualizado.
    Es el único error elegible para la recuperación automática.
    """

    def __init__(self, reason: ConflictReason, message: str | None = None):
        self.reason = reason
        self.message = message or CONFLICT_MESSAGES[reason]
        super().__init__(
            detail={"code": reason.value, "message": self.message},
            headers={"X-Conflict-Reason": reason.value},
        )
