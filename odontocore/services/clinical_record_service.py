"""
Servicio de Historia Clínica: apertura desde cita, consulta y cierre.

    open ──close()──▶ closed   (terminal)

El cierre no es idempotente: cerrar dos veces es un conflicto.
Toda mutación del odontograma consulta `is_editable` antes de aplicarse.
"""

import logging
import math
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from odontocore.auth.rbac import check_permission
from odontocore.config import get_settings
from odontocore.core.exceptions import (
    ConflictReason,
    NotFoundException,
    StateConflictException,
    ValidationException,
)
from odontocore.database import utcnow
from odontocore.models.appointment import NON_ATTENDED_STATUSES, Appointment
from odontocore.models.clinical_record import ClinicalRecord, RecordStatus
from odontocore.models.user import User
from odontocore.schemas.clinical_record import (
    ClinicalRecordListResponse,
    ClinicalRecordOpen,
    ClinicalRecordResponse,
)
from odontocore.services.audit_service import log_action

logger = logging.getLogger(__name__)
settings = get_settings()


# ── Predicados de estado ─────────────────────────────

def is_editable(record: ClinicalRecord) -> bool:
    """True si la historia admite ediciones (estado open)."""
    return record.status == RecordStatus.OPEN


def ensure_editable(record: ClinicalRecord) -> None:
    """Lanza StateConflictException si la historia está cerrada."""
    if not is_editable(record):
        raise StateConflictException(ConflictReason.RECORD_CLOSED)


# ── Helpers ──────────────────────────────────────────

def _load_options():
    return [
        joinedload(ClinicalRecord.patient),
        joinedload(ClinicalRecord.opener),
    ]


def _record_to_response(record: ClinicalRecord) -> ClinicalRecordResponse:
    """Convierte un modelo ClinicalRecord a su schema de respuesta."""
    return ClinicalRecordResponse(
        id=record.id,
        clinic_id=record.clinic_id,
        patient_id=record.patient_id,
        appointment_id=record.appointment_id,
        opened_by=record.opened_by,
        reason=record.reason,
        status=record.status,
        is_editable=is_editable(record),
        closure_reason=record.closure_reason,
        closed_at=record.closed_at,
        closed_by=record.closed_by,
        patient_name=record.patient.full_name if record.patient else None,
        opened_by_name=record.opener.full_name if record.opener else None,
        created_at=record.created_at,
    )


async def _reload(db: AsyncSession, record_id: UUID) -> ClinicalRecord:
    result = await db.execute(
        select(ClinicalRecord)
        .options(*_load_options())
        .where(ClinicalRecord.id == record_id)
    )
    return result.scalar_one()


async def get_record_for_update(
    db: AsyncSession,
    record_id: UUID,
    clinic_id: UUID,
) -> ClinicalRecord:
    """
    Carga la historia bloqueando la fila (SELECT ... FOR UPDATE).
    Serializa el cierre contra las mutaciones del odontograma.
    """
    result = await db.execute(
        select(ClinicalRecord)
        .where(
            ClinicalRecord.id == record_id,
            ClinicalRecord.clinic_id == clinic_id,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    record = result.scalar_one_or_none()
    if not record:
        raise NotFoundException("Historia clínica", detail="Historia clínica no encontrada")
    return record


# ── Abrir historia desde una cita ────────────────────

async def open_record(
    db: AsyncSession,
    user: User,
    data: ClinicalRecordOpen,
    ip_address: str | None = None,
) -> ClinicalRecordResponse:
    """
    Abre una historia en estado open ligada a la cita.
    No es idempotente: dos llamadas para la misma cita crean dos historias.
    """
    check_permission(user.role, "clinical_record", "open")

    result = await db.execute(
        select(Appointment).where(
            Appointment.id == data.appointment_id,
            Appointment.clinic_id == user.clinic_id,
        )
    )
    appointment = result.scalar_one_or_none()
    if not appointment:
        raise NotFoundException("Cita", detail="Cita no encontrada")

    if appointment.status in NON_ATTENDED_STATUSES:
        raise ValidationException(
            f"No se puede abrir una historia para una cita en estado '{appointment.status.value}'"
        )

    record = ClinicalRecord(
        clinic_id=user.clinic_id,
        patient_id=appointment.patient_id,
        appointment_id=appointment.id,
        opened_by=user.id,
        reason=data.reason,
        status=RecordStatus.OPEN,
    )
    db.add(record)
    await db.flush()

    await log_action(
        db,
        clinic_id=user.clinic_id,
        user_id=user.id,
        entity="clinical_record",
        entity_id=str(record.id),
        action="open",
        new_data={
            "appointment_id": appointment.id,
            "patient_id": appointment.patient_id,
            "status": RecordStatus.OPEN,
        },
        ip_address=ip_address,
    )
    logger.info(f"Historia abierta: record={record.id} appointment={appointment.id}")

    record = await _reload(db, record.id)
    return _record_to_response(record)


# ── Obtener historia ─────────────────────────────────

async def get_record(
    db: AsyncSession,
    record_id: UUID,
    user: User,
) -> ClinicalRecordResponse:
    """Obtiene una historia por ID. Receptionist NO tiene acceso."""
    check_permission(user.role, "clinical_record", "read")

    result = await db.execute(
        select(ClinicalRecord)
        .options(*_load_options())
        .where(
            ClinicalRecord.id == record_id,
            ClinicalRecord.clinic_id == user.clinic_id,
        )
    )
    record = result.scalar_one_or_none()
    if not record:
        raise NotFoundException("Historia clínica", detail="Historia clínica no encontrada")

    return _record_to_response(record)


# ── Historias del paciente ───────────────────────────

async def list_patient_records(
    db: AsyncSession,
    user: User,
    patient_id: UUID,
    *,
    page: int = 1,
    size: int = 20,
    status: RecordStatus | None = None,
) -> ClinicalRecordListResponse:
    """Lista las historias de un paciente, más recientes primero."""
    check_permission(user.role, "clinical_record", "read")

    filters = [
        ClinicalRecord.patient_id == patient_id,
        ClinicalRecord.clinic_id == user.clinic_id,
    ]
    if status:
        filters.append(ClinicalRecord.status == status)

    count_query = select(func.count()).select_from(ClinicalRecord).where(*filters)
    total_result = await db.execute(count_query)
    total = total_result.scalar() or 0

    offset = (page - 1) * size
    query = (
        select(ClinicalRecord)
        .options(*_load_options())
        .where(*filters)
        .order_by(ClinicalRecord.created_at.desc())
        .offset(offset)
        .limit(size)
    )

    result = await db.execute(query)
    records = result.scalars().unique().all()

    return ClinicalRecordListResponse(
        items=[_record_to_response(r) for r in records],
        total=total,
        page=page,
        size=size,
        pages=math.ceil(total / size) if total > 0 else 0,
    )


# ── Cerrar historia ──────────────────────────────────

async def close_record(
    db: AsyncSession,
    record_id: UUID,
    user: User,
    reason: str | None = None,
    ip_address: str | None = None,
) -> ClinicalRecordResponse:
    """
    Cierra la historia. **Transición terminal**: no hay reapertura.
    Un segundo cierre lanza StateConflictException (ALREADY_CLOSED).
    """
    check_permission(user.role, "clinical_record", "close")

    record = await get_record_for_update(db, record_id, user.clinic_id)
    if record.is_closed:
        raise StateConflictException(ConflictReason.ALREADY_CLOSED)

    record.status = RecordStatus.CLOSED
    record.closure_reason = reason or settings.DEFAULT_CLOSURE_REASON
    record.closed_at = utcnow()
    record.closed_by = user.id
    await db.flush()

    await log_action(
        db,
        clinic_id=user.clinic_id,
        user_id=user.id,
        entity="clinical_record",
        entity_id=str(record.id),
        action="close",
        old_data={"status": RecordStatus.OPEN},
        new_data={
            "status": RecordStatus.CLOSED,
            "closure_reason": record.closure_reason,
            "closed_at": record.closed_at,
        },
        ip_address=ip_address,
    )
    logger.info(f"Historia cerrada: record={record.id} by={user.id}")

    record = await _reload(db, record.id)
    return _record_to_response(record)
