"""
Estado por pieza y por superficie dentro de UNA versión del odontograma.

No tiene ciclo de vida propio: se usa desde dental_chart_service
(copia de la base al abrir un borrador y parches sobre el borrador).

Reglas:
    - Cada campo se resuelve por última escritura; no hay merge.
    - Marcar una pieza como ausente NO borra sus hallazgos de superficie;
      se conservan para el historial y la vista expone `is_present`.
    - Un upsert de superficie actualiza el hallazgo más reciente de esa
      superficie o crea uno nuevo.
"""

import uuid
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from odontocore.core.exceptions import ValidationException
from odontocore.models.dental_chart import (
    ChartEvent,
    ChartEventType,
    DentalChart,
    SurfaceFinding,
    ToothCondition,
    ToothState,
)
from odontocore.models.user import User
from odontocore.schemas.dental_chart import (
    VALID_TEETH,
    ConditionChange,
    NotesChange,
    PresenceChange,
    SurfaceUpsert,
    ToothChange,
)


def validate_fdi(fdi: int) -> None:
    if fdi not in VALID_TEETH:
        raise ValidationException(
            f"Número de diente FDI inválido: {fdi}. "
            "Adultos: 11-18, 21-28, 31-38, 41-48. "
            "Deciduos: 51-55, 61-65, 71-75, 81-85."
        )


# ── Lectura ──────────────────────────────────────────

async def load_teeth(db: AsyncSession, chart_id: UUID) -> list[ToothState]:
    """Piezas de una versión con sus superficies, ordenadas por FDI."""
    result = await db.execute(
        select(ToothState)
        .options(selectinload(ToothState.surfaces))
        .where(ToothState.chart_id == chart_id)
        .order_by(ToothState.fdi_number)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def load_tooth(db: AsyncSession, chart_id: UUID, fdi: int) -> ToothState | None:
    result = await db.execute(
        select(ToothState)
        .options(selectinload(ToothState.surfaces))
        .where(
            ToothState.chart_id == chart_id,
            ToothState.fdi_number == fdi,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


# ── Copia de la versión base ─────────────────────────

async def copy_teeth(
    db: AsyncSession,
    source_chart_id: UUID,
    target_chart_id: UUID,
) -> int:
    """
    Copia piezas y superficies de una versión consolidada a un borrador.
    La versión origen solo se lee. Retorna la cantidad de piezas copiadas.
    """
    teeth = await load_teeth(db, source_chart_id)
    for tooth in teeth:
        copy = ToothState(
            id=uuid.uuid4(),
            chart_id=target_chart_id,
            fdi_number=tooth.fdi_number,
            is_present=tooth.is_present,
            condition=tooth.condition,
            notes=tooth.notes,
        )
        db.add(copy)
        for finding in tooth.surfaces:
            db.add(SurfaceFinding(
                tooth_id=copy.id,
                surface=finding.surface,
                finding=finding.finding,
                detail=finding.detail,
                suggested_treatment=finding.suggested_treatment,
                created_at=finding.created_at,
            ))
    await db.flush()
    return len(teeth)


# ── Parches ──────────────────────────────────────────

async def _upsert_surface(
    db: AsyncSession,
    tooth: ToothState,
    change: SurfaceUpsert,
) -> SurfaceFinding:
    result = await db.execute(
        select(SurfaceFinding)
        .where(
            SurfaceFinding.tooth_id == tooth.id,
            SurfaceFinding.surface == change.surface,
        )
        .order_by(SurfaceFinding.created_at.desc())
        .limit(1)
    )
    finding = result.scalar_one_or_none()

    fields = change.model_dump(include={"finding", "detail", "suggested_treatment"} & change.model_fields_set)
    if finding is None:
        finding = SurfaceFinding(tooth_id=tooth.id, surface=change.surface, **fields)
        db.add(finding)
    else:
        for name, value in fields.items():
            setattr(finding, name, value)
    return finding


def _event(chart: DentalChart, fdi: int, event_type: ChartEventType, payload: dict, user: User) -> ChartEvent:
    return ChartEvent(
        chart_id=chart.id,
        record_id=chart.record_id,
        fdi_number=fdi,
        event_type=event_type,
        payload=payload,
        created_by=user.id,
    )


async def apply_patch(
    db: AsyncSession,
    chart: DentalChart,
    fdi: int,
    changes: list[ToothChange],
    user: User,
) -> tuple[ToothState, list[ChartEvent]]:
    """
    Aplica los cambios sobre la pieza `fdi` del borrador.
    Si la pieza aún no existe en la versión, se crea presente y sana.
    """
    validate_fdi(fdi)

    tooth = await load_tooth(db, chart.id, fdi)
    if tooth is None:
        tooth = ToothState(
            id=uuid.uuid4(),
            chart_id=chart.id,
            fdi_number=fdi,
            is_present=True,
            condition=ToothCondition.SOUND,
        )
        db.add(tooth)
        await db.flush()

    tooth_payload: dict = {}
    events: list[ChartEvent] = []
    for change in changes:
        if isinstance(change, PresenceChange):
            tooth.is_present = change.present
            tooth_payload["present"] = change.present
        elif isinstance(change, ConditionChange):
            tooth.condition = change.condition
            tooth_payload["condition"] = change.condition.value
        elif isinstance(change, NotesChange):
            tooth.notes = change.notes
            tooth_payload["notes"] = change.notes
        elif isinstance(change, SurfaceUpsert):
            await _upsert_surface(db, tooth, change)
            events.append(_event(
                chart, fdi, ChartEventType.SURFACE_FINDING,
                change.model_dump(mode="json", exclude={"kind"}), user,
            ))
        else:
            raise ValidationException(f"Tipo de cambio no soportado: {type(change).__name__}")

    if tooth_payload:
        events.insert(0, _event(chart, fdi, ChartEventType.TOOTH_STATE, tooth_payload, user))

    db.add_all(events)
    await db.flush()
    return tooth, events
