"""
Modèle SQLAlchemy du registre des présences (append-only).

Une ligne = une tentative de scan (montée, descente ou passage cantine),
accordée ou refusée. Jamais modifiée après insertion : les contrôles de
doublon et d'alternance montée/descente lisent les seuls scans accordés.
"""

import uuid
from sqlalchemy import JSON, Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.dialects.postgresql import UUID

from schoolaccess.database import Base


class ScanEvent(Base):
    """Scan QR : transport (boarding / alighting) ou cantine (entry)."""
    __tablename__ = "scan_events"
    __table_args__ = (
        Index("ix_scan_events_student_service_day", "student_id", "service_type", "scan_date"),
        Index("ix_scan_events_bus_day", "bus_id", "scan_date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    qr_token = Column(String(255), nullable=False)
    student_id = Column(UUID(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=True)

    service_type = Column(String(20), nullable=False)   # transport, lunch
    scan_subtype = Column(String(20), nullable=False)   # boarding, alighting, entry
    bus_id = Column(Integer, nullable=True)             # Bus déclaré par le scanner (inconnu possible si refus)
    location = Column(String(255), nullable=True)
    scanned_by = Column(String(100), nullable=True)     # Identifiant de l'opérateur

    scanned_at = Column(DateTime(timezone=True), nullable=False)
    scan_date = Column(Date, nullable=False)            # Jour logique (doublons cantine, alternance bus)
    access_granted = Column(Boolean, nullable=False, default=True)
    deny_reason = Column(String(50), nullable=True)      # student_not_found, wrong_bus, ...
    warnings = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime, server_default=func.now())
