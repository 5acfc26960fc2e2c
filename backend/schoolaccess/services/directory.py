"""
Annuaire des élèves : QR code → élève, élève → inscription à un service.

StudentDirectory est l'interface consommée par la session de scan ;
SqlStudentDirectory en est l'implémentation SQLAlchemy. Toute erreur SQL
(connexion, statement_timeout) devient DirectoryUnavailableError : le scan
doit être rejoué, l'élève n'est pas refusé.
"""

import logging
import uuid
from typing import Optional, Protocol, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from schoolaccess.models.bus import Bus
from schoolaccess.models.enrollment import LunchDetail, TransportDetail
from schoolaccess.models.student import Student
from schoolaccess.schemas.scan import LunchEnrollment, StudentSnapshot, TransportEnrollment
from schoolaccess.services.errors import DirectoryUnavailableError

logger = logging.getLogger(__name__)


class StudentDirectory(Protocol):
    def resolve(self, qr_token: str) -> Optional[StudentSnapshot]:
        ...

    def get_enrollment(
        self, student_id: uuid.UUID, service_type: str
    ) -> Optional[Union[TransportEnrollment, LunchEnrollment]]:
        ...


class SqlStudentDirectory:
    def __init__(self, db: Session):
        self.db = db

    def resolve(self, qr_token: str) -> Optional[StudentSnapshot]:
        try:
            student = self.db.execute(
                select(Student).where(Student.qr_code == qr_token)
            ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.error("Annuaire indisponible (résolution QR) : %s", exc)
            raise DirectoryUnavailableError(str(exc)) from exc

        if student is None:
            return None

        return StudentSnapshot(
            id=student.id,
            admission_number=student.admission_number,
            full_name=student.full_name,
            grade_class=student.grade_class,
            is_active=bool(student.is_active),
        )

    def get_enrollment(self, student_id, service_type):
        try:
            if service_type == "transport":
                return self._transport_enrollment(student_id)
            if service_type == "lunch":
                return self._lunch_enrollment(student_id)
        except SQLAlchemyError as exc:
            logger.error("Annuaire indisponible (inscription %s) : %s", service_type, exc)
            raise DirectoryUnavailableError(str(exc)) from exc
        raise ValueError(f"Service inconnu : {service_type}")

    def _transport_enrollment(self, student_id) -> Optional[TransportEnrollment]:
        row = self.db.execute(
            select(TransportDetail, Bus.bus_number, Student.transport_enabled)
            .join(Bus, Bus.id == TransportDetail.bus_id)
            .join(Student, Student.id == TransportDetail.student_id)
            .where(TransportDetail.student_id == student_id)
        ).first()
        if row is None:
            return None

        detail, bus_number, transport_enabled = row
        return TransportEnrollment(
            enrolled=bool(transport_enabled and detail.is_active),
            payment_status=detail.payment_status,
            bus_id=detail.bus_id,
            bus_number=bus_number,
            pickup_point=detail.pickup_point,
            dropoff_point=detail.dropoff_point,
            pickup_time=detail.pickup_time,
            dropoff_time=detail.dropoff_time,
        )

    def _lunch_enrollment(self, student_id) -> Optional[LunchEnrollment]:
        row = self.db.execute(
            select(LunchDetail, Student.lunch_enabled)
            .join(Student, Student.id == LunchDetail.student_id)
            .where(LunchDetail.student_id == student_id)
        ).first()
        if row is None:
            return None

        detail, lunch_enabled = row
        requirements = ". ".join(
            part.strip() for part in (detail.diet_notes, detail.preferences) if part and part.strip()
        )
        return LunchEnrollment(
            enrolled=bool(lunch_enabled and detail.is_active),
            payment_status=detail.payment_status,
            diet_type=detail.diet_type,
            allergies=list(detail.allergies or []),
            special_requirements=requirements or None,
        )
