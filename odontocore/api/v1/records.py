"""
Endpoints de Historia Clínica y de su odontograma.
Solo doctores y super_admin pueden abrir historias y editar odontogramas.
Receptionist NO puede ver historias.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from odontocore.auth.dependencies import require_role
from odontocore.database import get_db
from odontocore.models.clinical_record import RecordStatus
from odontocore.models.user import User, UserRole
from odontocore.schemas.clinical_record import (
    ClinicalRecordClose,
    ClinicalRecordListResponse,
    ClinicalRecordOpen,
    ClinicalRecordResponse,
)
from odontocore.schemas.dental_chart import (
    DentalChartResponse,
    DentalChartView,
    DraftOpenRequest,
)
from odontocore.services import clinical_record_service, dental_chart_service

router = APIRouter()

CLINICAL_READERS = (UserRole.SUPER_ADMIN, UserRole.CLINIC_ADMIN, UserRole.DOCTOR)
CLINICAL_EDITORS = (UserRole.SUPER_ADMIN, UserRole.DOCTOR)


def _get_client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


@router.post("", response_model=ClinicalRecordResponse, status_code=201)
async def open_record(
    data: ClinicalRecordOpen,
    request: Request,
    user: User = Depends(require_role(*CLINICAL_EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    """
    Abre una historia clínica desde una cita atendida.
    Solo doctores y super_admin.
    """
    return await clinical_record_service.open_record(
        db, user=user, data=data, ip_address=_get_client_ip(request)
    )


@router.get("", response_model=ClinicalRecordListResponse)
async def list_patient_records(
    patient_id: UUID = Query(..., description="ID del paciente"),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    status: RecordStatus | None = Query(None, description="Filtrar por estado"),
    user: User = Depends(require_role(*CLINICAL_READERS)),
    db: AsyncSession = Depends(get_db),
):
    """Historias de un paciente (paginado)."""
    return await clinical_record_service.list_patient_records(
        db,
        user=user,
        patient_id=patient_id,
        page=page,
        size=size,
        status=status,
    )


@router.get("/{record_id}", response_model=ClinicalRecordResponse)
async def get_record(
    record_id: UUID,
    user: User = Depends(require_role(*CLINICAL_READERS)),
    db: AsyncSession = Depends(get_db),
):
    return await clinical_record_service.get_record(db, record_id=record_id, user=user)


@router.post("/{record_id}/close", response_model=ClinicalRecordResponse)
async def close_record(
    record_id: UUID,
    request: Request,
    data: ClinicalRecordClose | None = None,
    user: User = Depends(require_role(*CLINICAL_READERS)),
    db: AsyncSession = Depends(get_db),
):
    """
    Cierra la historia. Transición terminal: a partir de aquí el
    odontograma no admite borradores ni cambios.
    """
    return await clinical_record_service.close_record(
        db,
        record_id=record_id,
        user=user,
        reason=data.reason if data else None,
        ip_address=_get_client_ip(request),
    )


# ── Odontograma de la historia ───────────────────────

@router.get("/{record_id}/dental-chart", response_model=DentalChartView)
async def get_dental_chart(
    record_id: UUID,
    include_draft: bool = Query(True, description="Devolver el borrador si existe"),
    user: User = Depends(require_role(*CLINICAL_READERS)),
    db: AsyncSession = Depends(get_db),
):
    """
    Odontograma vigente: borrador (si se pide y existe) o última versión
    consolidada, con todas sus piezas y superficies.
    """
    return await dental_chart_service.get_chart(
        db, record_id=record_id, user=user, include_draft=include_draft
    )


@router.get("/{record_id}/dental-chart/versions", response_model=list[DentalChartResponse])
async def list_dental_chart_versions(
    record_id: UUID,
    user: User = Depends(require_role(*CLINICAL_READERS)),
    db: AsyncSession = Depends(get_db),
):
    """Versiones del odontograma, la más reciente primero."""
    return await dental_chart_service.list_versions(db, record_id=record_id, user=user)


@router.post("/{record_id}/dental-chart/draft", response_model=DentalChartResponse, status_code=201)
async def open_dental_chart_draft(
    record_id: UUID,
    request: Request,
    data: DraftOpenRequest | None = None,
    user: User = Depends(require_role(*CLINICAL_EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    """
    Abre un borrador del odontograma. Historia cerrada o borrador
    existente → 409.
    """
    data = data or DraftOpenRequest()
    return await dental_chart_service.open_draft(
        db,
        record_id=record_id,
        user=user,
        baseline=data.baseline,
        appointment_id=data.appointment_id,
        ip_address=_get_client_ip(request),
    )
