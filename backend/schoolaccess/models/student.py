"""
Modèle SQLAlchemy pour la table students.
Le QR code imprimé sur la carte de l'élève est stocké tel quel (qr_code, unique).
"""

import uuid
from sqlalchemy import Boolean, Column, DateTime, String, func
from sqlalchemy.dialects.postgresql import UUID

from schoolaccess.database import Base


class Student(Base):
    __tablename__ = "students"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    admission_number = Column(String(50), unique=True, nullable=False, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    grade_class = Column(String(50), nullable=False)
    qr_code = Column(String(255), unique=True, nullable=False, index=True)
    is_active = Column(Boolean, default=True)

    # Responsable légal
    guardian_name = Column(String(200), nullable=True)
    guardian_phone = Column(String(20), nullable=True)
    guardian_email = Column(String(100), nullable=True)

    # Abonnements aux services
    transport_enabled = Column(Boolean, default=False)
    lunch_enabled = Column(Boolean, default=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
