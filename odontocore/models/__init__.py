"""
Modelos SQLAlchemy — exportar todos para que Alembic los detecte.
"""

from odontocore.models.clinic import Clinic
from odontocore.models.user import User
from odontocore.models.patient import Patient
from odontocore.models.audit_log import AuditLog
from odontocore.models.appointment import Appointment
from odontocore.models.clinical_record import ClinicalRecord, RecordStatus
from odontocore.models.dental_chart import (
    ChartEvent,
    DentalChart,
    SurfaceFinding,
    ToothState,
)

__all__ = [
    "Clinic",
    "User",
    "Patient",
    "AuditLog",
    "Appointment",
    "ClinicalRecord",
    "RecordStatus",
    "DentalChart",
    "ToothState",
    "SurfaceFinding",
    "ChartEvent",
]
