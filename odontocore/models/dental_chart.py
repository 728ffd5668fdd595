"""
Modelo DentalChart — Odontograma versionado con sistema FDI.

Cada historia clínica tiene una cadena de versiones (append-only):
    - a lo sumo UN borrador (is_draft=true) a la vez
    - N versiones consolidadas, inmutables

Jerarquía: DentalChart -> ToothState (pieza) -> SurfaceFinding (superficie).
El version_token cambia con cada mutación aceptada (concurrencia optimista).
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from odontocore.database import Base, JSONVariant, utcnow


class ToothCondition(str, enum.Enum):
    """Códigos de condición de una pieza o hallazgo de superficie."""
    SOUND = "SANO"
    ABSENT = "AUSENTE"
    EXTRACTION_INDICATED = "EXTRACCION_INDICADA"
    CARIES = "CARIES"
    FILLED = "OBTURADO"
    ROOT_CANAL = "ENDODONCIA"
    CROWN = "CORONA"
    IMPLANT = "IMPLANTE"
    FIXED_PROSTHESIS = "PROTESIS_FIJA"
    REMOVABLE_PROSTHESIS = "PROTESIS_REMOVIBLE"
    FRACTURE = "FRACTURA"
    MOBILITY = "MOVILIDAD"


class ToothSurface(str, enum.Enum):
    """Superficies dentales."""
    OCCLUSAL_INCISAL = "OCLUSAL_INCISAL"
    MESIAL = "MESIAL"
    DISTAL = "DISTAL"
    VESTIBULAR_BUCAL = "VESTIBULAR_BUCAL"
    PALATINO_LINGUAL = "PALATINO_LINGUAL"


class ChartEventType(str, enum.Enum):
    """Tipos de evento en la línea de tiempo de un odontograma."""
    TOOTH_STATE = "tooth_state"
    SURFACE_FINDING = "surface_finding"
    CONSOLIDATED = "consolidated"


class DentalChart(Base):
    __tablename__ = "dental_charts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("clinics.id"), nullable=False
    )
    record_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("clinical_records.id"), nullable=False
    )
    appointment_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("appointments.id"),
        comment="Cita para la que se abrió el borrador (opcional)"
    )
    based_on_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("dental_charts.id"),
        comment="Versión consolidada usada como base (null = borrador vacío)"
    )

    # ── Versionado ───────────────────────────────────
    is_draft: Mapped[bool] = mapped_column(nullable=False, default=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    version_token: Mapped[str] = mapped_column(
        String(64), nullable=False,
        comment="Token opaco; cambia con cada mutación aceptada"
    )

    created_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    updated_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id")
    )

    # ── Timestamps ───────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    # ── Índices ──────────────────────────────────────
    __table_args__ = (
        Index("idx_dental_chart_record_version", "record_id", "version"),
        # Un único borrador por historia
        Index(
            "uq_dental_chart_record_draft",
            "record_id",
            unique=True,
            postgresql_where=text("is_draft"),
            sqlite_where=text("is_draft = 1"),
        ),
    )

    def __repr__(self) -> str:
        kind = "DRAFT" if self.is_draft else "CONSOLIDATED"
        return f"<DentalChart record={self.record_id} v{self.version} [{kind}]>"


class ToothState(Base):
    """Estado de una pieza (FDI) dentro de una versión del odontograma."""

    __tablename__ = "tooth_states"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    chart_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("dental_charts.id", ondelete="CASCADE"), nullable=False
    )
    fdi_number: Mapped[int] = mapped_column(
        SmallInteger, nullable=False,
        comment="Número FDI: 11-18, 21-28, 31-38, 41-48 (adulto) / 51-55, 61-65, 71-75, 81-85 (deciduo)"
    )
    is_present: Mapped[bool] = mapped_column(nullable=False, default=True)
    condition: Mapped[ToothCondition] = mapped_column(
        Enum(ToothCondition), nullable=False, default=ToothCondition.SOUND
    )
    notes: Mapped[str | None] = mapped_column(Text)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    surfaces: Mapped[list["SurfaceFinding"]] = relationship(
        "SurfaceFinding",
        lazy="selectin",
        order_by="SurfaceFinding.created_at",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("chart_id", "fdi_number", name="uq_tooth_state_chart_fdi"),
    )

    def __repr__(self) -> str:
        presence = "present" if self.is_present else "absent"
        return f"<ToothState {self.fdi_number} [{self.condition.value}, {presence}]>"


class SurfaceFinding(Base):
    """Hallazgo registrado sobre una superficie de una pieza."""

    __tablename__ = "surface_findings"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tooth_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tooth_states.id", ondelete="CASCADE"), nullable=False
    )
    surface: Mapped[ToothSurface] = mapped_column(Enum(ToothSurface), nullable=False)
    finding: Mapped[ToothCondition | None] = mapped_column(Enum(ToothCondition))
    detail: Mapped[str | None] = mapped_column(Text)
    suggested_treatment: Mapped[str | None] = mapped_column(
        String(100), comment="Código del tratamiento sugerido"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    __table_args__ = (
        Index("idx_surface_finding_tooth", "tooth_id", "surface"),
    )

    def __repr__(self) -> str:
        finding = self.finding.value if self.finding else "-"
        return f"<SurfaceFinding {self.surface.value} [{finding}]>"


class ChartEvent(Base):
    """Evento de la línea de tiempo de un odontograma (INSERT-only)."""

    __tablename__ = "dental_chart_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    chart_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("dental_charts.id", ondelete="CASCADE"), nullable=False
    )
    record_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("clinical_records.id"), nullable=False
    )
    fdi_number: Mapped[int | None] = mapped_column(SmallInteger)
    event_type: Mapped[ChartEventType] = mapped_column(Enum(ChartEventType), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONVariant, nullable=False, default=dict)
    created_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_dental_chart_event_chart", "chart_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<ChartEvent {self.event_type.value} fdi={self.fdi_number}>"
