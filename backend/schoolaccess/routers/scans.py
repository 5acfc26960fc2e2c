"""
Router des scans QR (transport et cantine).

200 : accès accordé (avec éventuels avertissements)
403 : accès refusé, deny_reason + message lisible dans le corps
503 : panne de l'annuaire ou du registre, le scan doit être rejoué
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.orm import Session

from schoolaccess.database import get_db
from schoolaccess.schemas.scan import BusSnapshot, LunchScanRequest, ScanResult, TransportScanRequest
from schoolaccess.services.directory import SqlStudentDirectory
from schoolaccess.services.errors import ScanInfrastructureError
from schoolaccess.services.ledger import SqlAttendanceLedger
from schoolaccess.services.locks import KeyedLock
from schoolaccess.services.occupancy import BusOccupancy, SqlBusOccupancy
from schoolaccess.services.scan_session import ScanSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Scans"])

RETRY_MESSAGE = "Scan non résolu (service indisponible). Veuillez scanner à nouveau."

# Partagé par toutes les requêtes du processus
_scan_locks = KeyedLock()


def get_scan_session(db: Session = Depends(get_db)) -> ScanSession:
    return ScanSession(
        directory=SqlStudentDirectory(db),
        ledger=SqlAttendanceLedger(db),
        occupancy=SqlBusOccupancy(db),
        locks=_scan_locks,
    )


def get_bus_occupancy(db: Session = Depends(get_db)) -> BusOccupancy:
    return SqlBusOccupancy(db)


def _run_scan(session: ScanSession, data, response: Response) -> ScanResult:
    try:
        result = session.evaluate(data.qr_code, data.to_action(), operator_id=data.operator_id)
    except ScanInfrastructureError as e:
        logger.error("Scan non résolu : %s", e)
        raise HTTPException(status_code=503, detail=RETRY_MESSAGE)
    if not result.access_granted:
        response.status_code = 403
    return result


@router.post("/scans/transport", response_model=ScanResult, summary="Scanner un élève à la montée / descente du bus")
def scan_transport(
    data: TransportScanRequest,
    response: Response,
    session: ScanSession = Depends(get_scan_session),
):
    """
    Montée (`boarding`) : réserve une place si le bus n'est pas complet.
    Descente (`alighting`) : exige une montée préalable sur ce bus aujourd'hui.
    """
    return _run_scan(session, data, response)


@router.post("/scans/lunch", response_model=ScanResult, summary="Scanner un élève à l'entrée de la cantine")
def scan_lunch(
    data: LunchScanRequest,
    response: Response,
    session: ScanSession = Depends(get_scan_session),
):
    """Un second passage le même jour est accepté avec l'avertissement `already_scanned_today`."""
    return _run_scan(session, data, response)


@router.get("/buses/{bus_id}/occupancy", response_model=BusSnapshot, summary="Occupation actuelle d'un bus")
def get_occupancy(bus_id: int, occupancy: BusOccupancy = Depends(get_bus_occupancy)):
    try:
        bus = occupancy.get(bus_id)
    except ScanInfrastructureError as e:
        logger.error("Lecture de l'occupation impossible : %s", e)
        raise HTTPException(status_code=503, detail="Service indisponible, réessayer.")
    if bus is None:
        raise HTTPException(status_code=404, detail="Bus introuvable.")
    return bus
