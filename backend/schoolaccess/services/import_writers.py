"""
Écriture en base d'une ligne d'import validée (création ou mise à jour).

Chaque writer reçoit la session et la ligne typée, applique un "upsert" sur
la clé métier (numéro d'admission, numéro de bus) et lève RowIngestError
quand la ligne référence une entité inconnue. Le commit est à la charge du
moteur d'import (un savepoint par ligne).
"""

from typing import Callable, Dict

from sqlalchemy import select
from sqlalchemy.orm import Session

from schoolaccess.models.bus import Bus
from schoolaccess.models.enrollment import LunchDetail, TransportDetail
from schoolaccess.models.student import Student
from schoolaccess.schemas.import_job import (
    BusImportRow,
    LunchDetailImportRow,
    StudentImportRow,
    TransportDetailImportRow,
)
from schoolaccess.services.errors import RowIngestError
from schoolaccess.services.qr_service import generate_token, normalize_token


def _find_student(db: Session, admission_number: str) -> Student:
    student = db.execute(
        select(Student).where(Student.admission_number == admission_number)
    ).scalar_one_or_none()
    if student is None:
        raise RowIngestError(
            f"Élève introuvable : {admission_number}", column="admission_number", value=admission_number
        )
    return student


def _find_bus(db: Session, bus_number: str) -> Bus:
    bus = db.execute(select(Bus).where(Bus.bus_number == bus_number)).scalar_one_or_none()
    if bus is None:
        raise RowIngestError(f"Bus introuvable : {bus_number}", column="bus_number", value=bus_number)
    return bus


def write_student(db: Session, row: StudentImportRow) -> Student:
    student = db.execute(
        select(Student).where(Student.admission_number == row.admission_number)
    ).scalar_one_or_none()
    if student is None:
        student = Student(admission_number=row.admission_number)
        db.add(student)

    student.first_name = row.first_name
    student.last_name = row.last_name
    student.grade_class = row.grade_class
    student.qr_code = normalize_token(row.qr_code) if row.qr_code else generate_token(row.admission_number)
    student.is_active = row.is_active
    student.guardian_name = row.guardian_name
    student.guardian_phone = row.guardian_phone
    student.guardian_email = str(row.guardian_email) if row.guardian_email else None
    student.transport_enabled = row.transport_enabled
    student.lunch_enabled = row.lunch_enabled
    db.flush()
    return student


def write_bus(db: Session, row: BusImportRow) -> Bus:
    bus = db.execute(select(Bus).where(Bus.bus_number == row.bus_number)).scalar_one_or_none()
    if bus is None:
        bus = Bus(bus_number=row.bus_number, current_occupancy=0)
        db.add(bus)

    capacity = row.capacity if row.capacity is not None else (bus.capacity or 40)
    if (bus.current_occupancy or 0) > capacity:
        raise RowIngestError(
            f"Capacité {capacity} inférieure à l'occupation actuelle ({bus.current_occupancy})",
            column="capacity", value=str(capacity),
        )

    bus.bus_name = row.bus_name
    bus.capacity = capacity
    bus.driver_name = row.driver_name
    bus.driver_phone = row.driver_phone
    bus.route_description = row.route_description
    bus.status = row.status
    db.flush()
    return bus


def write_transport_detail(db: Session, row: TransportDetailImportRow) -> TransportDetail:
    student = _find_student(db, row.admission_number)
    bus = _find_bus(db, row.bus_number)

    detail = db.execute(
        select(TransportDetail).where(TransportDetail.student_id == student.id)
    ).scalar_one_or_none()
    if detail is None:
        detail = TransportDetail(student_id=student.id)
        db.add(detail)

    detail.bus_id = bus.id
    detail.pickup_point = row.pickup_point
    detail.dropoff_point = row.dropoff_point
    detail.pickup_time = row.pickup_time
    detail.dropoff_time = row.dropoff_time
    detail.payment_status = row.payment_status
    detail.notes = row.notes
    detail.is_active = True
    student.transport_enabled = True
    db.flush()
    return detail


def write_lunch_detail(db: Session, row: LunchDetailImportRow) -> LunchDetail:
    student = _find_student(db, row.admission_number)

    detail = db.execute(
        select(LunchDetail).where(LunchDetail.student_id == student.id)
    ).scalar_one_or_none()
    if detail is None:
        detail = LunchDetail(student_id=student.id)
        db.add(detail)

    detail.diet_type = row.diet_type
    detail.diet_notes = row.diet_notes
    detail.allergies = list(row.allergies)
    detail.preferences = row.preferences
    detail.payment_status = row.payment_status
    detail.is_active = True
    student.lunch_enabled = True
    db.flush()
    return detail


ROW_WRITERS: Dict[str, Callable] = {
    "students": write_student,
    "buses": write_bus,
    "transport_details": write_transport_detail,
    "lunch_details": write_lunch_detail,
}
