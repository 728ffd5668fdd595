"""
Servicio de odontograma versionado: borrador / consolidado / descarte.

Cada historia tiene una cadena de versiones. A lo sumo un borrador
a la vez; las versiones consolidadas son inmutables. Consolidar y
descartar exigen el version_token vigente (concurrencia optimista) y
revalidan el estado de la historia en el momento del commit: otra sesión
puede cerrarla mientras hay un borrador abierto.
"""

import logging
import uuid
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from odontocore.auth.rbac import check_permission
from odontocore.core.exceptions import (
    ConflictReason,
    NotFoundException,
    StateConflictException,
)
from odontocore.database import utcnow
from odontocore.models.clinical_record import ClinicalRecord
from odontocore.models.dental_chart import (
    ChartEvent,
    ChartEventType,
    DentalChart,
    SurfaceFinding,
    ToothState,
)
from odontocore.models.user import User
from odontocore.schemas.dental_chart import (
    ChartEventResponse,
    ChartOperationResult,
    DentalChartResponse,
    DentalChartView,
    DraftBaseline,
    ToothPatchRequest,
    ToothStateResponse,
)
from odontocore.services import tooth_state_store
from odontocore.services.audit_service import log_action
from odontocore.services.clinical_record_service import (
    ensure_editable,
    get_record_for_update,
    is_editable,
)
from odontocore.services.conflict_recovery import ChartHandle, ConflictRecovery

logger = logging.getLogger(__name__)

RECOVERED_SUFFIX = " El borrador se refrescó y el cambio se reintentó."


# ── Helpers ──────────────────────────────────────────

def _new_token() -> str:
    return uuid.uuid4().hex


def _chart_to_response(chart: DentalChart) -> DentalChartResponse:
    return DentalChartResponse.model_validate(chart)


async def _get_record(db: AsyncSession, record_id: UUID, user: User) -> ClinicalRecord:
    result = await db.execute(
        select(ClinicalRecord)
        .where(
            ClinicalRecord.id == record_id,
            ClinicalRecord.clinic_id == user.clinic_id,
        )
        .execution_options(populate_existing=True)
    )
    record = result.scalar_one_or_none()
    if not record:
        raise NotFoundException("Historia clínica", detail="Historia clínica no encontrada")
    return record


async def _get_chart(
    db: AsyncSession,
    chart_id: UUID,
    user: User,
    *,
    for_update: bool = False,
) -> DentalChart:
    query = (
        select(DentalChart)
        .where(
            DentalChart.id == chart_id,
            DentalChart.clinic_id == user.clinic_id,
        )
        .execution_options(populate_existing=True)
    )
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    chart = result.scalar_one_or_none()
    if not chart:
        raise NotFoundException("Odontograma")
    return chart


async def _current_draft(db: AsyncSession, record_id: UUID) -> DentalChart | None:
    result = await db.execute(
        select(DentalChart)
        .where(
            DentalChart.record_id == record_id,
            DentalChart.is_draft.is_(True),
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _latest_consolidated(db: AsyncSession, record_id: UUID) -> DentalChart | None:
    result = await db.execute(
        select(DentalChart)
        .where(
            DentalChart.record_id == record_id,
            DentalChart.is_draft.is_(False),
        )
        .order_by(DentalChart.version.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _load_draft_for_commit(
    db: AsyncSession,
    chart_id: UUID,
    user: User,
) -> tuple[DentalChart, ClinicalRecord]:
    """
    Precondiciones comunes a consolidar, descartar y parchar:
    el odontograma existe, es borrador y su historia sigue abierta
    (fila de la historia bloqueada hasta el commit).
    """
    chart = await _get_chart(db, chart_id, user)
    record = await get_record_for_update(db, chart.record_id, user.clinic_id)
    # Orden de bloqueo: historia, luego odontograma
    chart = await _get_chart(db, chart_id, user, for_update=True)
    if not chart.is_draft:
        raise StateConflictException(ConflictReason.NOT_A_DRAFT)

    ensure_editable(record)
    return chart, record


def _check_token(chart: DentalChart, expected_token: str | None) -> None:
    if chart.version_token != expected_token:
        raise StateConflictException(ConflictReason.STALE_TOKEN)


async def _compare_and_swap(
    db: AsyncSession,
    chart: DentalChart,
    expected_token: str,
    **values,
) -> None:
    """
    Avanza versión y token solo si el token no cambió desde la lectura.
    Cero filas afectadas = otra sesión ganó la carrera.
    """
    result = await db.execute(
        update(DentalChart)
        .where(
            DentalChart.id == chart.id,
            DentalChart.version_token == expected_token,
            DentalChart.is_draft.is_(True),
        )
        .values(
            version=DentalChart.version + 1,
            version_token=_new_token(),
            updated_at=utcnow(),
            **values,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise StateConflictException(ConflictReason.STALE_TOKEN)
    await db.refresh(chart)


# ── Lectura ──────────────────────────────────────────

async def get_chart(
    db: AsyncSession,
    record_id: UUID,
    user: User,
    *,
    include_draft: bool = True,
) -> DentalChartView:
    """
    Odontograma vigente de la historia: el borrador si se pide y existe,
    si no la última versión consolidada. Sin versiones → vista vacía.
    """
    check_permission(user.role, "dental_chart", "read")
    record = await _get_record(db, record_id, user)

    chart = await _current_draft(db, record.id) if include_draft else None
    if chart is None:
        chart = await _latest_consolidated(db, record.id)

    if chart is None:
        return DentalChartView(record_id=record.id, is_editable=is_editable(record))

    teeth = await tooth_state_store.load_teeth(db, chart.id)
    return DentalChartView(
        record_id=record.id,
        is_editable=is_editable(record),
        chart=_chart_to_response(chart),
        teeth=[ToothStateResponse.model_validate(t) for t in teeth],
    )


async def list_versions(
    db: AsyncSession,
    record_id: UUID,
    user: User,
) -> list[DentalChartResponse]:
    """Cadena de versiones de la historia, la más reciente primero."""
    check_permission(user.role, "dental_chart", "read")
    record = await _get_record(db, record_id, user)

    result = await db.execute(
        select(DentalChart)
        .where(DentalChart.record_id == record.id)
        .order_by(DentalChart.version.desc())
    )
    return [_chart_to_response(c) for c in result.scalars().all()]


async def list_events(
    db: AsyncSession,
    chart_id: UUID,
    user: User,
) -> list[ChartEventResponse]:
    """Línea de tiempo de cambios de una versión, la más antigua primero."""
    check_permission(user.role, "dental_chart", "read")
    chart = await _get_chart(db, chart_id, user)

    result = await db.execute(
        select(ChartEvent)
        .where(ChartEvent.chart_id == chart.id)
        .order_by(ChartEvent.created_at)
    )
    return [ChartEventResponse.model_validate(e) for e in result.scalars().all()]


# ── Abrir borrador ───────────────────────────────────

async def _open_draft(
    db: AsyncSession,
    record: ClinicalRecord,
    user: User,
    baseline: DraftBaseline,
    appointment_id: UUID | None = None,
    ip_address: str | None = None,
) -> DentalChart:
    ensure_editable(record)
    if await _current_draft(db, record.id) is not None:
        raise StateConflictException(ConflictReason.DRAFT_EXISTS)

    base = None
    if baseline == DraftBaseline.FROM_LAST:
        base = await _latest_consolidated(db, record.id)

    max_result = await db.execute(
        select(func.max(DentalChart.version)).where(DentalChart.record_id == record.id)
    )
    last_version = max_result.scalar() or 0

    chart = DentalChart(
        id=uuid.uuid4(),
        clinic_id=record.clinic_id,
        record_id=record.id,
        appointment_id=appointment_id or record.appointment_id,
        based_on_id=base.id if base else None,
        is_draft=True,
        version=last_version + 1,
        version_token=_new_token(),
        created_by=user.id,
    )
    db.add(chart)
    try:
        await db.flush()
    except IntegrityError:
        # Índice parcial: otra sesión abrió un borrador en paralelo
        raise StateConflictException(ConflictReason.DRAFT_EXISTS)

    copied = 0
    if base is not None:
        copied = await tooth_state_store.copy_teeth(db, base.id, chart.id)

    await log_action(
        db,
        clinic_id=record.clinic_id,
        user_id=user.id,
        entity="dental_chart",
        entity_id=str(chart.id),
        action="draft",
        new_data={
            "record_id": record.id,
            "baseline": baseline,
            "based_on_id": chart.based_on_id,
            "version": chart.version,
            "teeth_copied": copied,
        },
        ip_address=ip_address,
    )
    logger.info(
        f"Borrador abierto: record={record.id} chart={chart.id} "
        f"v{chart.version} baseline={baseline.value} piezas={copied}"
    )
    return chart


async def open_draft(
    db: AsyncSession,
    record_id: UUID,
    user: User,
    baseline: DraftBaseline = DraftBaseline.FROM_LAST,
    appointment_id: UUID | None = None,
    ip_address: str | None = None,
) -> DentalChartResponse:
    """
    Abre un borrador. `from_last` copia la última versión consolidada
    (que solo se lee); `empty` parte de cero.
    Falla con StateConflictException si la historia está cerrada o ya
    hay un borrador.
    """
    check_permission(user.role, "dental_chart", "edit")
    record = await get_record_for_update(db, record_id, user.clinic_id)
    chart = await _open_draft(db, record, user, baseline, appointment_id, ip_address)
    return _chart_to_response(chart)


async def reopen_draft(
    db: AsyncSession,
    record_id: UUID,
    user: User,
) -> ChartHandle:
    """
    Paso de recuperación: abre un borrador nuevo `from_last`.

    Si la historia ya tiene un borrador, la referencia del cliente quedó
    desactualizada frente a otra sesión → STALE_TOKEN. Nunca se entrega
    el token vigente de ese borrador: el cliente debe refrescar y
    volver a aplicar su cambio.
    """
    check_permission(user.role, "dental_chart", "edit")
    record = await get_record_for_update(db, record_id, user.clinic_id)
    ensure_editable(record)

    if await _current_draft(db, record.id) is not None:
        raise StateConflictException(ConflictReason.STALE_TOKEN)

    draft = await _open_draft(db, record, user, DraftBaseline.FROM_LAST)
    return ChartHandle(chart_id=draft.id, version_token=draft.version_token, reopened=True)


# ── Consolidar ───────────────────────────────────────

async def _consolidate(
    db: AsyncSession,
    chart_id: UUID,
    user: User,
    expected_token: str | None,
    ip_address: str | None = None,
) -> DentalChart:
    chart, record = await _load_draft_for_commit(db, chart_id, user)
    _check_token(chart, expected_token)

    await _compare_and_swap(db, chart, expected_token, is_draft=False, updated_by=user.id)

    db.add(ChartEvent(
        chart_id=chart.id,
        record_id=record.id,
        event_type=ChartEventType.CONSOLIDATED,
        payload={"version": chart.version},
        created_by=user.id,
    ))
    await log_action(
        db,
        clinic_id=record.clinic_id,
        user_id=user.id,
        entity="dental_chart",
        entity_id=str(chart.id),
        action="consolidate",
        old_data={"is_draft": True},
        new_data={"is_draft": False, "version": chart.version},
        ip_address=ip_address,
    )
    logger.info(f"Odontograma consolidado: record={record.id} chart={chart.id} v{chart.version}")
    return chart


async def consolidate(
    db: AsyncSession,
    chart_id: UUID,
    user: User,
    expected_token: str,
    ip_address: str | None = None,
) -> DentalChartResponse:
    """
    Publica el borrador como nueva versión consolidada (versión +1, token nuevo).
    Token desactualizado o historia cerrada → StateConflictException,
    sin modificar nada.
    """
    check_permission(user.role, "dental_chart", "edit")
    chart = await _consolidate(db, chart_id, user, expected_token, ip_address)
    return _chart_to_response(chart)


# ── Descartar ────────────────────────────────────────

async def _discard(
    db: AsyncSession,
    chart_id: UUID,
    user: User,
    expected_token: str | None,
    ip_address: str | None = None,
) -> None:
    chart, record = await _load_draft_for_commit(db, chart_id, user)
    _check_token(chart, expected_token)
    version = chart.version

    # Se reclama la fila antes de borrar nada
    claimed = await db.execute(
        update(DentalChart)
        .where(
            DentalChart.id == chart.id,
            DentalChart.version_token == expected_token,
            DentalChart.is_draft.is_(True),
        )
        .values(version_token=_new_token())
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        raise StateConflictException(ConflictReason.STALE_TOKEN)

    tooth_ids = select(ToothState.id).where(ToothState.chart_id == chart.id)
    await db.execute(delete(SurfaceFinding).where(SurfaceFinding.tooth_id.in_(tooth_ids)))
    await db.execute(delete(ToothState).where(ToothState.chart_id == chart.id))
    await db.execute(delete(ChartEvent).where(ChartEvent.chart_id == chart.id))
    await db.execute(delete(DentalChart).where(DentalChart.id == chart.id))

    await log_action(
        db,
        clinic_id=record.clinic_id,
        user_id=user.id,
        entity="dental_chart",
        entity_id=str(chart_id),
        action="discard",
        old_data={"is_draft": True, "version": version},
        ip_address=ip_address,
    )
    logger.info(f"Borrador descartado: record={record.id} chart={chart_id} v{version}")


async def discard(
    db: AsyncSession,
    chart_id: UUID,
    user: User,
    expected_token: str,
    ip_address: str | None = None,
) -> None:
    """
    Elimina el borrador sin publicarlo; la última consolidada sigue vigente.
    No es idempotente: un segundo descarte falla.
    """
    check_permission(user.role, "dental_chart", "edit")
    await _discard(db, chart_id, user, expected_token, ip_address)


# ── Parchar pieza ────────────────────────────────────

async def _mutate_tooth(
    db: AsyncSession,
    chart_id: UUID,
    fdi: int,
    patch: ToothPatchRequest,
    user: User,
) -> tuple[DentalChart, ToothState]:
    tooth_state_store.validate_fdi(fdi)
    chart, _record = await _load_draft_for_commit(db, chart_id, user)
    if patch.expected_token is not None:
        _check_token(chart, patch.expected_token)

    observed_token = chart.version_token
    await tooth_state_store.apply_patch(db, chart, fdi, patch.changes, user)
    await _compare_and_swap(db, chart, observed_token, updated_by=user.id)

    tooth = await tooth_state_store.load_tooth(db, chart.id, fdi)
    return chart, tooth


async def mutate_tooth(
    db: AsyncSession,
    chart_id: UUID,
    fdi: int,
    patch: ToothPatchRequest,
    user: User,
) -> ChartOperationResult:
    """
    Aplica un parche sobre una pieza del borrador y avanza el token.
    FDI inválido → ValidationException; no borrador o historia cerrada →
    StateConflictException.
    """
    check_permission(user.role, "dental_chart", "edit")
    chart, tooth = await _mutate_tooth(db, chart_id, fdi, patch, user)
    return ChartOperationResult(
        chart=_chart_to_response(chart),
        tooth=ToothStateResponse.model_validate(tooth),
        message=f"Pieza {fdi} actualizada",
    )


# ── Variantes con recuperación automática ────────────
#
# Cada intento corre en un SAVEPOINT: si falla, sus escrituras parciales
# se deshacen antes de recuperar y reintentar en la misma transacción.

def _recover_for(db: AsyncSession, record_id: UUID, user: User):
    async def _recover() -> ChartHandle:
        return await reopen_draft(db, record_id, user)
    return _recover


def _refuse_reopened(handle: ChartHandle) -> None:
    # Un borrador recién reabierto no tiene los cambios del cliente:
    # publicarlo o descartarlo actuaría sobre una versión que no vio.
    if handle.reopened:
        raise StateConflictException(ConflictReason.STALE_TOKEN)


def _message(base: str, recovered: bool) -> str:
    return base + RECOVERED_SUFFIX if recovered else base


async def consolidate_with_recovery(
    db: AsyncSession,
    chart_id: UUID,
    user: User,
    expected_token: str,
    ip_address: str | None = None,
) -> ChartOperationResult:
    check_permission(user.role, "dental_chart", "edit")
    chart = await _get_chart(db, chart_id, user)

    async def _attempt(handle: ChartHandle) -> DentalChart:
        _refuse_reopened(handle)
        async with db.begin_nested():
            return await _consolidate(db, handle.chart_id, user, handle.version_token, ip_address)

    outcome = await ConflictRecovery(_attempt, _recover_for(db, chart.record_id, user)).run(
        ChartHandle(chart_id=chart.id, version_token=expected_token)
    )
    return ChartOperationResult(
        chart=_chart_to_response(outcome.result),
        recovered=outcome.recovered,
        message=_message("Odontograma publicado.", outcome.recovered),
    )


async def discard_with_recovery(
    db: AsyncSession,
    chart_id: UUID,
    user: User,
    expected_token: str,
    ip_address: str | None = None,
) -> ChartOperationResult:
    check_permission(user.role, "dental_chart", "edit")
    chart = await _get_chart(db, chart_id, user)

    async def _attempt(handle: ChartHandle) -> None:
        _refuse_reopened(handle)
        async with db.begin_nested():
            await _discard(db, handle.chart_id, user, handle.version_token, ip_address)

    outcome = await ConflictRecovery(_attempt, _recover_for(db, chart.record_id, user)).run(
        ChartHandle(chart_id=chart.id, version_token=expected_token)
    )
    return ChartOperationResult(
        recovered=outcome.recovered,
        message=_message("Borrador descartado.", outcome.recovered),
    )


async def mutate_tooth_with_recovery(
    db: AsyncSession,
    chart_id: UUID,
    fdi: int,
    patch: ToothPatchRequest,
    user: User,
) -> ChartOperationResult:
    """
    El parche es autocontenido: sobre un borrador reabierto se vuelve a
    aplicar tal cual.
    """
    check_permission(user.role, "dental_chart", "edit")
    tooth_state_store.validate_fdi(fdi)
    chart = await _get_chart(db, chart_id, user)

    async def _attempt(handle: ChartHandle) -> tuple[DentalChart, ToothState]:
        scoped = patch.model_copy(update={"expected_token": handle.version_token})
        async with db.begin_nested():
            return await _mutate_tooth(db, handle.chart_id, fdi, scoped, user)

    outcome = await ConflictRecovery(_attempt, _recover_for(db, chart.record_id, user)).run(
        ChartHandle(chart_id=chart.id, version_token=patch.expected_token)
    )
    updated_chart, tooth = outcome.result
    return ChartOperationResult(
        chart=_chart_to_response(updated_chart),
        tooth=ToothStateResponse.model_validate(tooth),
        recovered=outcome.recovered,
        message=_message(f"Pieza {fdi} actualizada.", outcome.recovered),
    )
