"""
Modèle SQLAlchemy pour les jobs d'import Excel / CSV.

Cycle de vie : pending → processing → completed | failed,
plus cancelled (atteint uniquement depuis processing).
Un job failed peut être relancé (retour en pending) tant que son fichier
source est conservé.
"""

import uuid
from sqlalchemy import JSON, Column, DateTime, Integer, LargeBinary, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import deferred

from schoolaccess.database import Base

IMPORT_TYPES = ("students", "buses", "transport_details", "lunch_details")

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"

TERMINAL_STATUSES = {STATUS_COMPLETED, STATUS_FAILED, STATUS_CANCELLED}


class ImportJob(Base):
    __tablename__ = "import_jobs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    import_type = Column(String(30), nullable=False, index=True)
    filename = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=STATUS_PENDING, index=True)
    source_file = deferred(Column(LargeBinary, nullable=True))  # Contenu téléversé, pour la relance

    total_rows = Column(Integer, nullable=False, default=0)
    processed_rows = Column(Integer, nullable=False, default=0)
    successful_rows = Column(Integer, nullable=False, default=0)
    failed_rows = Column(Integer, nullable=False, default=0)

    errors = Column(JSON, nullable=False, default=list)    # [{row, column, message, value}]
    warnings = Column(JSON, nullable=False, default=list)

    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def progress_percentage(self) -> float:
        if not self.total_rows:
            return 0.0
        return round(self.processed_rows / self.total_rows * 100, 2)

    @property
    def success_rate(self) -> float:
        if not self.total_rows:
            return 0.0
        return round(self.successful_rows / self.total_rows * 100, 2)

    @property
    def remaining_rows(self) -> int:
        return max(0, self.total_rows - self.processed_rows)
