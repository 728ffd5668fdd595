"""
Modelo Clinic — Tenant principal del sistema multi-tenant.
"""

import uuid
from datetime import datetime

from sqlalchemy import String, DateTime, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from odontocore.database import Base, utcnow


class Clinic(Base):
    __tablename__ = "clinics"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    branch_name: Mapped[str | None] = mapped_column(
        String(100), comment="Nombre de la sede/sucursal (ej: Sede Lima Norte)"
    )
    ruc: Mapped[str] = mapped_column(
        String(11), nullable=False, index=True
    )
    specialty_type: Mapped[str | None] = mapped_column(
        String(100), comment="general, dental, etc."
    )
    is_active: Mapped[bool] = mapped_column(default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    @property
    def display_name(self) -> str:
        """Nombre completo con sucursal si aplica."""
        if self.branch_name:
            return f"{self.name} - {self.branch_name}"
        return self.name

    def __repr__(self) -> str:
        return f"<Clinic {self.display_name}>"
