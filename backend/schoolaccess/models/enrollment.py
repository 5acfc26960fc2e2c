"""
Modèles SQLAlchemy pour les inscriptions aux services (transport, cantine).
Un élève a au plus une ligne par service (student_id unique).
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from schoolaccess.database import Base


class TransportDetail(Base):
    """Affectation d'un élève à un bus avec ses points de montée / descente."""
    __tablename__ = "transport_details"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(
        UUID(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    bus_id = Column(Integer, ForeignKey("buses.id"), nullable=False)
    pickup_point = Column(String(255), nullable=False)
    dropoff_point = Column(String(255), nullable=False)
    pickup_time = Column(String(5), nullable=True)    # HH:MM
    dropoff_time = Column(String(5), nullable=True)   # HH:MM
    payment_status = Column(String(20), nullable=False, default="active")  # active, pending, expired
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class LunchDetail(Base):
    """Configuration cantine d'un élève : régime, allergies, exigences particulières."""
    __tablename__ = "lunch_details"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(
        UUID(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    diet_type = Column(String(20), nullable=False, default="normal")  # normal, special
    diet_notes = Column(Text, nullable=True)
    allergies = Column(JSON, nullable=False, default=list)  # ["peanuts", "gluten"]
    preferences = Column(Text, nullable=True)
    payment_status = Column(String(20), nullable=False, default="active")
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
