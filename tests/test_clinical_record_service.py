"""
Tests del ciclo de vida de la historia clínica: apertura, consulta y cierre.
"""

from uuid import uuid4

import pytest
from sqlalchemy import select

from odontocore.config import get_settings
from odontocore.core.exceptions import (
    ConflictReason,
    ForbiddenException,
    NotFoundException,
    StateConflictException,
    ValidationException,
)
from odontocore.models.audit_log import AuditLog
from odontocore.models.clinical_record import ClinicalRecord, RecordStatus
from odontocore.schemas.clinical_record import ClinicalRecordOpen
from odontocore.services import clinical_record_service

settings = get_settings()


class TestEditablePredicate:
    """is_editable / ensure_editable son puros sobre el estado."""

    def test_open_record_is_editable(self):
        record = ClinicalRecord(status=RecordStatus.OPEN)
        assert clinical_record_service.is_editable(record) is True
        clinical_record_service.ensure_editable(record)

    def test_closed_record_is_not_editable(self):
        record = ClinicalRecord(status=RecordStatus.CLOSED)
        assert clinical_record_service.is_editable(record) is False

        with pytest.raises(StateConflictException) as exc_info:
            clinical_record_service.ensure_editable(record)
        assert exc_info.value.reason == ConflictReason.RECORD_CLOSED
        assert exc_info.value.status_code == 409
        assert exc_info.value.message == "La historia está cerrada y no admite nuevas ediciones."


class TestOpenRecord:

    @pytest.mark.asyncio
    async def test_open_from_attended_appointment(self, db_session, test_doctor, test_appointment):
        record = await clinical_record_service.open_record(
            db_session,
            test_doctor,
            ClinicalRecordOpen(appointment_id=test_appointment.id, reason="Dolor en molar"),
        )

        assert record.status == RecordStatus.OPEN
        assert record.is_editable is True
        assert record.patient_id == test_appointment.patient_id
        assert record.appointment_id == test_appointment.id
        assert record.opened_by == test_doctor.id
        assert record.patient_name == "Ana Quispe"
        assert record.opened_by_name == "Doctor Test"

    @pytest.mark.asyncio
    async def test_open_is_not_idempotent(self, db_session, test_doctor, test_appointment):
        data = ClinicalRecordOpen(appointment_id=test_appointment.id)
        first = await clinical_record_service.open_record(db_session, test_doctor, data)
        second = await clinical_record_service.open_record(db_session, test_doctor, data)

        assert first.id != second.id

    @pytest.mark.asyncio
    async def test_open_writes_audit_entry(self, db_session, test_doctor, test_appointment):
        record = await clinical_record_service.open_record(
            db_session, test_doctor, ClinicalRecordOpen(appointment_id=test_appointment.id),
            ip_address="10.0.0.5",
        )

        result = await db_session.execute(
            select(AuditLog).where(AuditLog.entity_id == str(record.id))
        )
        entry = result.scalar_one()
        assert entry.entity == "clinical_record"
        assert entry.action == "open"
        assert entry.ip_address == "10.0.0.5"
        assert entry.new_data["status"] == "open"

    @pytest.mark.asyncio
    async def test_cancelled_appointment_rejected(self, db_session, test_doctor, cancelled_appointment):
        with pytest.raises(ValidationException):
            await clinical_record_service.open_record(
                db_session, test_doctor, ClinicalRecordOpen(appointment_id=cancelled_appointment.id)
            )

    @pytest.mark.asyncio
    async def test_unknown_appointment(self, db_session, test_doctor):
        with pytest.raises(NotFoundException):
            await clinical_record_service.open_record(
                db_session, test_doctor, ClinicalRecordOpen(appointment_id=uuid4())
            )

    @pytest.mark.asyncio
    async def test_receptionist_cannot_open(self, db_session, test_receptionist, test_appointment):
        with pytest.raises(ForbiddenException):
            await clinical_record_service.open_record(
                db_session, test_receptionist, ClinicalRecordOpen(appointment_id=test_appointment.id)
            )

    @pytest.mark.asyncio
    async def test_clinic_admin_cannot_open(self, db_session, test_clinic_admin, test_appointment):
        with pytest.raises(ForbiddenException):
            await clinical_record_service.open_record(
                db_session, test_clinic_admin, ClinicalRecordOpen(appointment_id=test_appointment.id)
            )


class TestCloseRecord:

    @pytest.mark.asyncio
    async def test_close_stamps_closure(self, db_session, test_doctor, open_record):
        record = await clinical_record_service.close_record(
            db_session, open_record.id, test_doctor, reason="Tratamiento finalizado"
        )

        assert record.status == RecordStatus.CLOSED
        assert record.is_editable is False
        assert record.closure_reason == "Tratamiento finalizado"
        assert record.closed_by == test_doctor.id
        assert record.closed_at is not None

    @pytest.mark.asyncio
    async def test_close_uses_default_reason(self, db_session, test_doctor, open_record):
        record = await clinical_record_service.close_record(db_session, open_record.id, test_doctor)
        assert record.closure_reason == settings.DEFAULT_CLOSURE_REASON

    @pytest.mark.asyncio
    async def test_second_close_conflicts(self, db_session, test_doctor, open_record):
        await clinical_record_service.close_record(db_session, open_record.id, test_doctor)

        with pytest.raises(StateConflictException) as exc_info:
            await clinical_record_service.close_record(db_session, open_record.id, test_doctor)
        assert exc_info.value.reason == ConflictReason.ALREADY_CLOSED
        assert exc_info.value.headers["X-Conflict-Reason"] == "already_closed"

    @pytest.mark.asyncio
    async def test_close_unknown_record(self, db_session, test_doctor):
        with pytest.raises(NotFoundException):
            await clinical_record_service.close_record(db_session, uuid4(), test_doctor)

    @pytest.mark.asyncio
    async def test_receptionist_cannot_close(self, db_session, test_receptionist, open_record):
        with pytest.raises(ForbiddenException):
            await clinical_record_service.close_record(db_session, open_record.id, test_receptionist)

    @pytest.mark.asyncio
    async def test_clinic_admin_can_close(self, db_session, test_clinic_admin, open_record):
        record = await clinical_record_service.close_record(db_session, open_record.id, test_clinic_admin)
        assert record.status == RecordStatus.CLOSED


class TestReadRecords:

    @pytest.mark.asyncio
    async def test_get_record(self, db_session, test_doctor, open_record):
        record = await clinical_record_service.get_record(db_session, open_record.id, test_doctor)
        assert record.id == open_record.id
        assert record.reason == "Control semestral"

    @pytest.mark.asyncio
    async def test_receptionist_cannot_read(self, db_session, test_receptionist, open_record):
        with pytest.raises(ForbiddenException):
            await clinical_record_service.get_record(db_session, open_record.id, test_receptionist)

    @pytest.mark.asyncio
    async def test_list_patient_records_paginated(
        self, db_session, test_doctor, test_patient, test_appointment
    ):
        data = ClinicalRecordOpen(appointment_id=test_appointment.id)
        opened = [
            await clinical_record_service.open_record(db_session, test_doctor, data)
            for _ in range(3)
        ]
        await clinical_record_service.close_record(db_session, opened[0].id, test_doctor)

        page = await clinical_record_service.list_patient_records(
            db_session, test_doctor, test_patient.id, page=1, size=2
        )
        assert page.total == 3
        assert page.pages == 2
        assert len(page.items) == 2

        closed = await clinical_record_service.list_patient_records(
            db_session, test_doctor, test_patient.id, status=RecordStatus.CLOSED
        )
        assert closed.total == 1
        assert closed.items[0].id == opened[0].id

    @pytest.mark.asyncio
    async def test_list_for_patient_without_records(self, db_session, test_doctor):
        page = await clinical_record_service.list_patient_records(db_session, test_doctor, uuid4())
        assert page.total == 0
        assert page.pages == 0
        assert page.items == []
