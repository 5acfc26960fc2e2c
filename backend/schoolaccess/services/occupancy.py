"""
Compteur d'occupation des bus.

L'occupation n'est jamais recalculée à partir d'une liste : elle est portée
par buses.current_occupancy et modifiée par un UPDATE conditionnel atomique.
Deux montées simultanées sur le même bus ne peuvent pas dépasser la capacité.
"""

import logging
from datetime import date
from typing import Dict, Optional, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from schoolaccess.models.bus import Bus
from schoolaccess.schemas.scan import BusSnapshot
from schoolaccess.services.errors import ScanInfrastructureError

logger = logging.getLogger(__name__)


class BusOccupancy(Protocol):
    def get(self, bus_id: int) -> Optional[BusSnapshot]:
        ...

    def try_increment(self, bus_id: int) -> bool:
        """Réserve une place si current_occupancy < capacity. Retourne False sinon."""
        ...

    def release(self, bus_id: int) -> None:
        ...


class SqlBusOccupancy:
    def __init__(self, db: Session):
        self.db = db

    def get(self, bus_id: int) -> Optional[BusSnapshot]:
        try:
            bus = self.db.get(Bus, bus_id)
        except SQLAlchemyError as exc:
            raise ScanInfrastructureError(str(exc)) from exc
        if bus is None:
            return None
        return BusSnapshot.model_validate(bus)

    def try_increment(self, bus_id: int) -> bool:
        try:
            result = self.db.execute(
                update(Bus)
                .where(Bus.id == bus_id, Bus.current_occupancy < Bus.capacity)
                .values(current_occupancy=Bus.current_occupancy + 1)
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise ScanInfrastructureError(str(exc)) from exc
        return result.rowcount == 1

    def release(self, bus_id: int) -> None:
        try:
            self.db.execute(
                update(Bus)
                .where(Bus.id == bus_id, Bus.current_occupancy > 0)
                .values(current_occupancy=Bus.current_occupancy - 1)
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise ScanInfrastructureError(str(exc)) from exc


def reconcile_occupancy(db: Session, boarded: Dict[int, int], day: date) -> int:
    """
    Recale current_occupancy de chaque bus sur le nombre d'élèves à bord
    d'après le registre (boarded = {bus_id: nombre}). Retourne le nombre de
    bus corrigés.
    """
    corrected = 0
    buses = db.execute(select(Bus)).scalars().all()

    for bus in buses:
        expected = min(boarded.get(bus.id, 0), bus.capacity)
        if bus.current_occupancy != expected:
            logger.warning(
                "Occupation bus %s recalée au %s : %d → %d",
                bus.bus_number, day, bus.current_occupancy, expected,
            )
            bus.current_occupancy = expected
            corrected += 1

    db.commit()
    return corrected
