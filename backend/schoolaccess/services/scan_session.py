"""
Session de scan QR : un QR code décodé + une action → une décision.

Flux :
  1. Résoudre le QR code via l'annuaire (introuvable / inactif → refus terminal)
  2. Charger l'inscription au service demandé (absente → not_enrolled)
  3. Évaluer l'éligibilité (fonction pure, cf. eligibility.py)
  4. Transport : bus affecté, bus en service, alternance montée / descente,
     réservation atomique d'une place à la montée
     Cantine : passage déjà enregistré aujourd'hui → avertissement, pas de refus
  5. Écrire l'évènement dans le registre puis retourner le ScanResult

Chaque tentative est inscrite au registre, refus compris (student_id vide
si le QR code est inconnu) ; seuls les scans accordés comptent pour les
contrôles de doublon et d'alternance.

Les étapes 4 et 5 s'exécutent sous un verrou (élève, service) : la séquence
"lire le registre → décider → écrire" est atomique pour un même élève.

Les refus sont des résultats ; seules les pannes d'annuaire ou de registre
lèvent une exception (ScanInfrastructureError) : le scan n'est alors ni
accordé ni refusé et doit être rejoué.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional, Union

from schoolaccess.config import school_now
from schoolaccess.schemas.scan import (
    DENY_MESSAGES,
    LunchAction,
    LunchEnrollment,
    ScanEventRecord,
    ScanResult,
    ScanWarning,
    StudentSnapshot,
    TransportAction,
    TransportEnrollment,
)
from schoolaccess.services import eligibility
from schoolaccess.services.directory import StudentDirectory
from schoolaccess.services.errors import LedgerWriteError, ScanInfrastructureError
from schoolaccess.services.ledger import AttendanceLedger
from schoolaccess.services.locks import KeyedLock
from schoolaccess.services.occupancy import BusOccupancy
from schoolaccess.services.qr_service import normalize_token

logger = logging.getLogger(__name__)

GRANTED_MESSAGES = {
    "boarding": "Montée autorisée.",
    "alighting": "Descente enregistrée.",
    "entry": "Repas autorisé.",
}


class ScanSession:
    def __init__(
        self,
        directory: StudentDirectory,
        ledger: AttendanceLedger,
        occupancy: BusOccupancy,
        locks: Optional[KeyedLock] = None,
        clock: Callable[[], datetime] = school_now,
    ):
        self.directory = directory
        self.ledger = ledger
        self.occupancy = occupancy
        self.locks = locks if locks is not None else KeyedLock()
        self.clock = clock

    def evaluate(
        self,
        token: str,
        action: Union[TransportAction, LunchAction],
        operator_id: Optional[str] = None,
    ) -> ScanResult:
        """Évalue un scan et retourne la décision (accordé / refusé + avertissements)."""
        now = self.clock()
        token = normalize_token(token)
        ctx = _ScanContext(token=token, action=action, operator_id=operator_id, now=now)

        student = self.directory.resolve(token)
        if student is None:
            return self._deny(ctx, "student_not_found")
        ctx.student = student
        if not student.is_active:
            return self._deny(ctx, "student_inactive")

        enrollment = self.directory.get_enrollment(student.id, action.service_type)
        if enrollment is None:
            return self._deny(ctx, "not_enrolled")
        ctx.enrollment = enrollment

        decision = eligibility.evaluate(enrollment, action)
        if not decision.granted:
            return self._deny(ctx, decision.deny_reason)
        ctx.warnings.extend(decision.warnings)

        with self.locks.hold((student.id, action.service_type)):
            if isinstance(action, TransportAction):
                return self._transport(ctx, action, enrollment)
            return self._lunch(ctx)

    def _transport(
        self, ctx: "_ScanContext", action: TransportAction, enrollment: TransportEnrollment
    ) -> ScanResult:
        if enrollment.bus_id != action.bus_id:
            return self._deny(ctx, "wrong_bus")

        bus = self.occupancy.get(action.bus_id)
        if bus is None or bus.status != "active":
            return self._deny(ctx, "bus_not_in_service")

        last_state = self.ledger.last_transport_state(ctx.student.id, action.bus_id, ctx.day)

        if action.scan_subtype == "boarding":
            if last_state == "boarding":
                return self._deny(ctx, "invalid_scan_sequence")
            if not self.occupancy.try_increment(action.bus_id):
                return self._deny(ctx, "bus_at_capacity")
            try:
                return self._record(ctx)
            except LedgerWriteError:
                # Place réservée mais montée non enregistrée : on la rend
                self.occupancy.release(action.bus_id)
                raise

        if last_state != "boarding":
            return self._deny(ctx, "invalid_scan_sequence")
        result = self._record(ctx)
        try:
            self.occupancy.release(action.bus_id)
        except ScanInfrastructureError:
            # Descente déjà enregistrée ; le recalage nocturne corrigera le compteur
            logger.error(
                "Libération de place impossible : bus %s, élève %s",
                action.bus_id, ctx.student.admission_number, exc_info=True,
            )
        return result

    def _lunch(self, ctx: "_ScanContext") -> ScanResult:
        if self.ledger.has_entry_today(ctx.student.id, "lunch", ctx.day):
            ctx.warnings.append(ScanWarning(
                code="already_scanned_today",
                message="Repas déjà servi aujourd'hui.",
            ))
        return self._record(ctx)

    def _record(self, ctx: "_ScanContext") -> ScanResult:
        event = ctx.event(access_granted=True)
        self.ledger.append(event)

        logger.info(
            "Scan %s/%s accordé : élève %s (%d avertissement(s))",
            event.service_type, event.scan_subtype,
            ctx.student.admission_number, len(ctx.warnings),
        )
        return ctx.result(
            access_granted=True,
            message=GRANTED_MESSAGES[event.scan_subtype],
            event_id=event.id,
        )

    def _deny(self, ctx: "_ScanContext", reason: str) -> ScanResult:
        event = ctx.event(access_granted=False, deny_reason=reason)
        self.ledger.append(event)

        logger.warning(
            "Scan %s/%s refusé (%s) : QR %s",
            event.service_type, event.scan_subtype, reason, ctx.token,
        )
        return ctx.result(
            access_granted=False,
            message=DENY_MESSAGES[reason],
            deny_reason=reason,
            event_id=event.id,
        )


class _ScanContext:
    """État accumulé pendant l'évaluation d'un scan."""

    def __init__(self, token, action, operator_id, now):
        self.token = token
        self.action = action
        self.operator_id = operator_id
        self.now = now
        self.day = now.date()
        self.student: Optional[StudentSnapshot] = None
        self.enrollment: Optional[Union[TransportEnrollment, LunchEnrollment]] = None
        self.warnings: List[ScanWarning] = []

    def event(self, access_granted: bool, deny_reason: Optional[str] = None) -> ScanEventRecord:
        return ScanEventRecord(
            qr_token=self.token,
            student_id=self.student.id if self.student else None,
            service_type=self.action.service_type,
            scan_subtype=self.action.scan_subtype,
            bus_id=getattr(self.action, "bus_id", None),
            location=self.action.location,
            scanned_by=self.operator_id,
            scanned_at=self.now,
            scan_date=self.day,
            access_granted=access_granted,
            deny_reason=deny_reason,
            warnings=[w.code for w in self.warnings] if access_granted else [],
        )

    def result(self, access_granted, message, deny_reason=None, event_id=None) -> ScanResult:
        return ScanResult(
            access_granted=access_granted,
            deny_reason=deny_reason,
            message=message,
            service_type=self.action.service_type,
            scan_subtype=self.action.scan_subtype,
            bus_id=getattr(self.action, "bus_id", None),
            location=self.action.location,
            scanned_by=self.operator_id,
            student=self.student,
            service=self.enrollment,
            warnings=list(self.warnings) if access_granted else [],
            event_id=event_id,
            timestamp=self.now,
        )
