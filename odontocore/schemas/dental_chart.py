"""
Schemas para DentalChart — Odontograma versionado con sistema FDI.

Los parches de pieza son una unión etiquetada (campo `kind`):
presence | condition | notes | surface.
"""

import enum
from datetime import datetime
from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from odontocore.models.dental_chart import ChartEventType, ToothCondition, ToothSurface

# Dientes válidos FDI: adultos (11-18, 21-28, 31-38, 41-48)
# y deciduos (51-55, 61-65, 71-75, 81-85)
VALID_ADULT_TEETH = set(
    list(range(11, 19)) + list(range(21, 29)) +
    list(range(31, 39)) + list(range(41, 49))
)
VALID_DECIDUOUS_TEETH = set(
    list(range(51, 56)) + list(range(61, 66)) +
    list(range(71, 76)) + list(range(81, 86))
)
VALID_TEETH = VALID_ADULT_TEETH | VALID_DECIDUOUS_TEETH


class DraftBaseline(str, enum.Enum):
    """Punto de partida de un borrador nuevo."""
    FROM_LAST = "from_last"
    EMPTY = "empty"


# ── Requests ─────────────────────────────────────────

class DraftOpenRequest(BaseModel):
    baseline: DraftBaseline = DraftBaseline.FROM_LAST
    appointment_id: UUID | None = Field(None, description="Cita a la que se liga el borrador")


class VersionTokenRequest(BaseModel):
    """Token observado por el cliente; debe coincidir con el vigente."""
    version_token: str = Field(..., min_length=1, max_length=64)


class PresenceChange(BaseModel):
    kind: Literal["presence"] = "presence"
    present: bool


class ConditionChange(BaseModel):
    kind: Literal["condition"] = "condition"
    condition: ToothCondition


class NotesChange(BaseModel):
    kind: Literal["notes"] = "notes"
    notes: str | None = Field(None, max_length=2000)


class SurfaceUpsert(BaseModel):
    kind: Literal["surface"] = "surface"
    surface: ToothSurface
    finding: ToothCondition | None = None
    detail: str | None = Field(None, max_length=2000)
    suggested_treatment: str | None = Field(None, max_length=100)


ToothChange = Annotated[
    Union[PresenceChange, ConditionChange, NotesChange, SurfaceUpsert],
    Field(discriminator="kind"),
]


class ToothPatchRequest(BaseModel):
    """
    Parche sobre una pieza del borrador.
    A lo sumo un cambio por tipo (por tanto, una sola superficie por parche).
    """
    changes: list[ToothChange] = Field(..., min_length=1, max_length=4)
    expected_token: str | None = Field(
        None, max_length=64,
        description="Si se envía, debe coincidir con el version_token vigente",
    )

    @field_validator("changes")
    @classmethod
    def validate_unique_kinds(cls, v: list) -> list:
        kinds = [change.kind for change in v]
        duplicated = {k for k in kinds if kinds.count(k) > 1}
        if duplicated:
            raise ValueError(
                f"Cambios repetidos en el parche: {', '.join(sorted(duplicated))}. "
                "Se admite un cambio por tipo."
            )
        return v


# ── Responses ────────────────────────────────────────

class SurfaceFindingResponse(BaseModel):
    id: UUID
    tooth_id: UUID
    surface: ToothSurface
    finding: ToothCondition | None = None
    detail: str | None = None
    suggested_treatment: str | None = None
    updated_at: datetime

    model_config = {"from_attributes": True}


class ToothStateResponse(BaseModel):
    id: UUID
    chart_id: UUID
    fdi_number: int
    is_present: bool
    condition: ToothCondition
    notes: str | None = None
    surfaces: list[SurfaceFindingResponse] = []

    model_config = {"from_attributes": True}


class DentalChartResponse(BaseModel):
    id: UUID
    record_id: UUID
    appointment_id: UUID | None = None
    based_on_id: UUID | None = None
    is_draft: bool
    version: int
    version_token: str
    created_by: UUID
    updated_by: UUID | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class DentalChartView(BaseModel):
    """Odontograma completo: versión + piezas con sus superficies."""
    record_id: UUID
    is_editable: bool
    chart: DentalChartResponse | None = None
    teeth: list[ToothStateResponse] = []


class ChartOperationResult(BaseModel):
    """Resultado de consolidar, descartar o parchar un borrador."""
    chart: DentalChartResponse | None = None
    tooth: ToothStateResponse | None = None
    recovered: bool = Field(
        False, description="True si hubo que reabrir el borrador y reintentar"
    )
    message: str


class ChartEventResponse(BaseModel):
    id: UUID
    chart_id: UUID
    fdi_number: int | None = None
    event_type: ChartEventType
    payload: dict
    created_by: UUID
    created_at: datetime

    model_config = {"from_attributes": True}
