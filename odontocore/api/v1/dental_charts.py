"""
Endpoints sobre una versión concreta del odontograma:
consolidar, descartar, parchar piezas y línea de tiempo.

`auto_recover` (query) decide si ante un conflicto de estado se reabre
el borrador y se reintenta una vez. Si no se envía, se usa
DENTAL_CHART_AUTO_RECOVER.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from odontocore.auth.dependencies import require_role
from odontocore.config import get_settings
from odontocore.database import get_db
from odontocore.models.user import User, UserRole
from odontocore.schemas.dental_chart import (
    ChartEventResponse,
    ChartOperationResult,
    ToothPatchRequest,
    VersionTokenRequest,
)
from odontocore.services import dental_chart_service

router = APIRouter()
settings = get_settings()


def _get_client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def _auto_recover(value: bool | None) -> bool:
    return settings.DENTAL_CHART_AUTO_RECOVER if value is None else value


@router.post("/{chart_id}/consolidate", response_model=ChartOperationResult)
async def consolidate_chart(
    chart_id: UUID,
    data: VersionTokenRequest,
    request: Request,
    auto_recover: bool | None = Query(None, description="Reabrir y reintentar ante conflicto"),
    user: User = Depends(require_role(UserRole.SUPER_ADMIN, UserRole.DOCTOR)),
    db: AsyncSession = Depends(get_db),
):
    """
    Publica el borrador como nueva versión consolidada.
    Requiere el version_token vigente.
    """
    ip_address = _get_client_ip(request)
    if _auto_recover(auto_recover):
        return await dental_chart_service.consolidate_with_recovery(
            db, chart_id=chart_id, user=user,
            expected_token=data.version_token, ip_address=ip_address,
        )

    chart = await dental_chart_service.consolidate(
        db, chart_id=chart_id, user=user,
        expected_token=data.version_token, ip_address=ip_address,
    )
    return ChartOperationResult(chart=chart, message="Odontograma publicado.")


@router.post("/{chart_id}/discard", response_model=ChartOperationResult)
async def discard_chart(
    chart_id: UUID,
    data: VersionTokenRequest,
    request: Request,
    auto_recover: bool | None = Query(None, description="Reabrir y reintentar ante conflicto"),
    user: User = Depends(require_role(UserRole.SUPER_ADMIN, UserRole.DOCTOR)),
    db: AsyncSession = Depends(get_db),
):
    """Descarta el borrador. La última versión consolidada sigue vigente."""
    ip_address = _get_client_ip(request)
    if _auto_recover(auto_recover):
        return await dental_chart_service.discard_with_recovery(
            db, chart_id=chart_id, user=user,
            expected_token=data.version_token, ip_address=ip_address,
        )

    await dental_chart_service.discard(
        db, chart_id=chart_id, user=user,
        expected_token=data.version_token, ip_address=ip_address,
    )
    return ChartOperationResult(message="Borrador descartado.")


@router.patch("/{chart_id}/teeth/{fdi}", response_model=ChartOperationResult)
async def patch_tooth(
    chart_id: UUID,
    fdi: int,
    data: ToothPatchRequest,
    auto_recover: bool | None = Query(None, description="Reabrir y reintentar ante conflicto"),
    user: User = Depends(require_role(UserRole.SUPER_ADMIN, UserRole.DOCTOR)),
    db: AsyncSession = Depends(get_db),
):
    """
    Aplica un parche (presencia, condición, notas, superficie) sobre una
    pieza del borrador. La respuesta trae el nuevo version_token.
    """
    if _auto_recover(auto_recover):
        return await dental_chart_service.mutate_tooth_with_recovery(
            db, chart_id=chart_id, fdi=fdi, patch=data, user=user
        )
    return await dental_chart_service.mutate_tooth(
        db, chart_id=chart_id, fdi=fdi, patch=data, user=user
    )


@router.get("/{chart_id}/events", response_model=list[ChartEventResponse])
async def list_chart_events(
    chart_id: UUID,
    user: User = Depends(require_role(UserRole.SUPER_ADMIN, UserRole.CLINIC_ADMIN, UserRole.DOCTOR)),
    db: AsyncSession = Depends(get_db),
):
    """Línea de tiempo de cambios de la versión, la más antigua primero."""
    return await dental_chart_service.list_events(db, chart_id=chart_id, user=user)
