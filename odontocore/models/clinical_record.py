"""
Modelo ClinicalRecord — Historia clínica de una atención.

Ciclo de vida:
    open → closed   (terminal, no existe reapertura)

Una historia cerrada no admite más ediciones de su odontograma.
Nunca se elimina.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from odontocore.database import Base, utcnow


class RecordStatus(str, enum.Enum):
    """Estados de una historia clínica."""
    OPEN = "open"
    CLOSED = "closed"


class ClinicalRecord(Base):
    __tablename__ = "clinical_records"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("clinics.id"), nullable=False
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("patients.id"), nullable=False
    )
    appointment_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("appointments.id"),
        comment="Cita desde la que se abrió la historia (referencia débil)"
    )
    opened_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    reason: Mapped[str | None] = mapped_column(
        String(500), comment="Motivo de consulta"
    )

    # ── Ciclo de vida ────────────────────────────────
    status: Mapped[RecordStatus] = mapped_column(
        Enum(RecordStatus), nullable=False, default=RecordStatus.OPEN
    )
    closure_reason: Mapped[str | None] = mapped_column(String(500))
    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        comment="Timestamp de cierre. Una vez cerrada, la historia es INMUTABLE"
    )
    closed_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id")
    )

    # ── Timestamps ───────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    # ── Relaciones ───────────────────────────────────
    patient: Mapped["Patient"] = relationship("Patient")  # noqa: F821
    opener: Mapped["User"] = relationship("User", foreign_keys=[opened_by])  # noqa: F821

    __table_args__ = (
        Index("idx_clinical_record_patient", "clinic_id", "patient_id"),
        Index("idx_clinical_record_appointment", "appointment_id"),
    )

    @property
    def is_closed(self) -> bool:
        return self.status == RecordStatus.CLOSED

    def __repr__(self) -> str:
        return f"<ClinicalRecord {self.id} [{self.status.value}]>"
