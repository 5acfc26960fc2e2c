"""
Registre des présences (append-only).

Sert de référence pour :
- la détection des passages cantine déjà enregistrés aujourd'hui,
- l'alternance montée / descente par élève, bus et jour,
- le recalage nocturne de l'occupation des bus.
"""

import logging
import uuid
from datetime import date
from typing import Dict, Optional, Protocol

from sqlalchemy import exists, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from schoolaccess.models.attendance import ScanEvent
from schoolaccess.schemas.scan import ScanEventRecord
from schoolaccess.services.errors import LedgerUnavailableError, LedgerWriteError

logger = logging.getLogger(__name__)


class AttendanceLedger(Protocol):
    def has_entry_today(self, student_id: uuid.UUID, service_type: str, day: date) -> bool:
        ...

    def last_transport_state(self, student_id: uuid.UUID, bus_id: int, day: date) -> Optional[str]:
        ...

    def append(self, event: ScanEventRecord) -> None:
        ...


class SqlAttendanceLedger:
    def __init__(self, db: Session):
        self.db = db

    def has_entry_today(self, student_id, service_type, day) -> bool:
        try:
            return bool(self.db.execute(
                select(exists().where(
                    ScanEvent.student_id == student_id,
                    ScanEvent.service_type == service_type,
                    ScanEvent.scan_date == day,
                    ScanEvent.access_granted.is_(True),
                ))
            ).scalar())
        except SQLAlchemyError as exc:
            raise LedgerUnavailableError(str(exc)) from exc

    def last_transport_state(self, student_id, bus_id, day) -> Optional[str]:
        """Dernier sous-type de scan transport (boarding / alighting) du jour, ou None."""
        try:
            return self.db.execute(
                select(ScanEvent.scan_subtype)
                .where(
                    ScanEvent.student_id == student_id,
                    ScanEvent.service_type == "transport",
                    ScanEvent.bus_id == bus_id,
                    ScanEvent.scan_date == day,
                    ScanEvent.access_granted.is_(True),
                )
                .order_by(ScanEvent.scanned_at.desc())
                .limit(1)
            ).scalar()
        except SQLAlchemyError as exc:
            raise LedgerUnavailableError(str(exc)) from exc

    def append(self, event: ScanEventRecord) -> None:
        self.db.add(ScanEvent(
            id=event.id,
            qr_token=event.qr_token,
            student_id=event.student_id,
            service_type=event.service_type,
            scan_subtype=event.scan_subtype,
            bus_id=event.bus_id,
            location=event.location,
            scanned_by=event.scanned_by,
            scanned_at=event.scanned_at,
            scan_date=event.scan_date,
            access_granted=event.access_granted,
            deny_reason=event.deny_reason,
            warnings=list(event.warnings),
        ))
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Écriture registre impossible (scan %s) : %s", event.id, exc)
            raise LedgerWriteError(str(exc)) from exc

    def boarded_counts(self, day: date) -> Dict[int, int]:
        """
        Nombre d'élèves actuellement à bord, par bus : élèves dont le dernier
        scan transport du jour sur ce bus est une montée.
        """
        ranked = (
            select(
                ScanEvent.bus_id,
                ScanEvent.scan_subtype,
                func.row_number().over(
                    partition_by=(ScanEvent.student_id, ScanEvent.bus_id),
                    order_by=ScanEvent.scanned_at.desc(),
                ).label("rank"),
            )
            .where(
                ScanEvent.service_type == "transport",
                ScanEvent.scan_date == day,
                ScanEvent.access_granted.is_(True),
            )
            .subquery()
        )
        rows = self.db.execute(
            select(ranked.c.bus_id, func.count())
            .where(ranked.c.rank == 1, ranked.c.scan_subtype == "boarding")
            .group_by(ranked.c.bus_id)
        ).all()
        return {bus_id: count for bus_id, count in rows}
