"""
Fixtures compartidas para Pytest.
Configura base de datos de test, datos base de la clínica y clientes HTTP.
"""

from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from uuid import uuid4

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from odontocore.auth.dependencies import get_current_user
from odontocore.config import get_settings
from odontocore.database import Base, get_db
from odontocore.main import app
from odontocore.models.appointment import Appointment, AppointmentStatus
from odontocore.models.clinic import Clinic
from odontocore.models.clinical_record import ClinicalRecord, RecordStatus
from odontocore.models.patient import Patient
from odontocore.models.user import User, UserRole

settings = get_settings()

# ── Engine de test (SQLite async) ─────────────────────
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"

test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)
test_session_factory = async_sessionmaker(
    test_engine, class_=AsyncSession, expire_on_commit=False
)


@pytest_asyncio.fixture(autouse=True)
async def setup_database():
    """Crea y destruye las tablas para cada test."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Provee una sesión de DB de test."""
    async with test_session_factory() as session:
        yield session


async def _get_test_db() -> AsyncGenerator[AsyncSession, None]:
    """Igual que get_db pero sobre la DB de test: un request = una transacción."""
    async with test_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Datos base ───────────────────────────────────────

@pytest_asyncio.fixture
async def test_clinic(db_session: AsyncSession) -> Clinic:
    """Crea una clínica dental de test."""
    clinic = Clinic(
        id=uuid4(),
        name="Clínica Dental Test",
        ruc="20123456789",
        specialty_type="dental",
    )
    db_session.add(clinic)
    await db_session.commit()
    await db_session.refresh(clinic)
    return clinic


async def _make_user(
    db: AsyncSession, clinic: Clinic, role: UserRole, email: str, first_name: str
) -> User:
    user = User(
        id=uuid4(),
        clinic_id=clinic.id,
        email=email,
        role=role,
        first_name=first_name,
        last_name="Test",
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_doctor(db_session: AsyncSession, test_clinic: Clinic) -> User:
    return await _make_user(db_session, test_clinic, UserRole.DOCTOR, "doctor@test.com", "Doctor")


@pytest_asyncio.fixture
async def test_clinic_admin(db_session: AsyncSession, test_clinic: Clinic) -> User:
    return await _make_user(db_session, test_clinic, UserRole.CLINIC_ADMIN, "admin@test.com", "Admin")


@pytest_asyncio.fixture
async def test_receptionist(db_session: AsyncSession, test_clinic: Clinic) -> User:
    return await _make_user(
        db_session, test_clinic, UserRole.RECEPTIONIST, "recepcion@test.com", "Recepción"
    )


@pytest_asyncio.fixture
async def test_patient(db_session: AsyncSession, test_clinic: Clinic) -> Patient:
    patient = Patient(
        id=uuid4(),
        clinic_id=test_clinic.id,
        first_name="Ana",
        last_name="Quispe",
    )
    db_session.add(patient)
    await db_session.commit()
    await db_session.refresh(patient)
    return patient


async def _make_appointment(
    db: AsyncSession, patient: Patient, doctor: User, status: AppointmentStatus
) -> Appointment:
    appointment = Appointment(
        id=uuid4(),
        clinic_id=patient.clinic_id,
        patient_id=patient.id,
        doctor_id=doctor.id,
        start_time=datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc),
        status=status,
    )
    db.add(appointment)
    await db.commit()
    await db.refresh(appointment)
    return appointment


@pytest_asyncio.fixture
async def test_appointment(
    db_session: AsyncSession, test_patient: Patient, test_doctor: User
) -> Appointment:
    """Cita atendida desde la que se puede abrir una historia."""
    return await _make_appointment(db_session, test_patient, test_doctor, AppointmentStatus.COMPLETED)


@pytest_asyncio.fixture
async def cancelled_appointment(
    db_session: AsyncSession, test_patient: Patient, test_doctor: User
) -> Appointment:
    return await _make_appointment(db_session, test_patient, test_doctor, AppointmentStatus.CANCELLED)


@pytest_asyncio.fixture
async def open_record(
    db_session: AsyncSession, test_appointment: Appointment, test_doctor: User
) -> ClinicalRecord:
    """Historia en estado open, sin odontograma."""
    record = ClinicalRecord(
        id=uuid4(),
        clinic_id=test_appointment.clinic_id,
        patient_id=test_appointment.patient_id,
        appointment_id=test_appointment.id,
        opened_by=test_doctor.id,
        reason="Control semestral",
        status=RecordStatus.OPEN,
    )
    db_session.add(record)
    await db_session.commit()
    await db_session.refresh(record)
    return record


# ── Clientes HTTP ────────────────────────────────────

@pytest_asyncio.fixture
async def client(test_doctor: User) -> AsyncGenerator[AsyncClient, None]:
    """
    Cliente HTTP de test que usa la DB de test.
    El actor por defecto es el doctor; `login_as` lo cambia.
    """
    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_current_user] = lambda: test_doctor

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def login_as():
    """Cambia el usuario autenticado del cliente HTTP."""

    def _login(user: User) -> None:
        app.dependency_overrides[get_current_user] = lambda: user

    return _login


@pytest_asyncio.fixture
async def raw_client() -> AsyncGenerator[AsyncClient, None]:
    """Cliente HTTP sin actor fijo: la autenticación pasa por el JWT real."""
    app.dependency_overrides[get_db] = _get_test_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def rsa_keys(tmp_path, monkeypatch):
    """Par de claves RS256 temporal, apuntado desde la configuración."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_path = tmp_path / "private.pem"
    public_path = tmp_path / "public.pem"
    private_path.write_bytes(private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ))
    public_path.write_bytes(private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ))

    monkeypatch.setattr(settings, "JWT_PRIVATE_KEY_PATH", str(private_path))
    monkeypatch.setattr(settings, "JWT_PUBLIC_KEY_PATH", str(public_path))
    return private_path, public_path
