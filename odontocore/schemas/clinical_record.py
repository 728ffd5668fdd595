"""
Schemas para ClinicalRecord — Historia clínica y su ciclo de vida.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from odontocore.models.clinical_record import RecordStatus


class ClinicalRecordOpen(BaseModel):
    """Abre una historia a partir de una cita."""
    appointment_id: UUID
    reason: str | None = Field(None, max_length=500, description="Motivo de consulta")


class ClinicalRecordClose(BaseModel):
    reason: str | None = Field(None, max_length=500, description="Motivo de cierre (opcional)")

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return v.strip() or None


class ClinicalRecordResponse(BaseModel):
    id: UUID
    clinic_id: UUID
    patient_id: UUID
    appointment_id: UUID | None = None
    opened_by: UUID
    reason: str | None = None
    status: RecordStatus
    is_editable: bool
    closure_reason: str | None = None
    closed_at: datetime | None = None
    closed_by: UUID | None = None
    patient_name: str | None = None
    opened_by_name: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ClinicalRecordListResponse(BaseModel):
    """Respuesta paginada de historias de un paciente."""
    items: list[ClinicalRecordResponse]
    total: int
    page: int
    size: int
    pages: int
