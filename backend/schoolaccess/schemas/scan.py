"""
Schémas Pydantic du pipeline de scan QR (transport + cantine).

Les actions et les inscriptions sont des unions fermées discriminées par
`service_type` : l'évaluateur et la session de scan n'ont jamais à sonder
des champs optionnels pour savoir à quel service ils ont affaire.
"""

import uuid
from datetime import date, datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

ServiceType = Literal["transport", "lunch"]
PaymentStatus = Literal["active", "pending", "expired"]
TransportSubtype = Literal["boarding", "alighting"]

# Refus "métier" : résultats structurés, jamais des exceptions
DENY_MESSAGES = {
    "student_not_found": "Élève introuvable pour ce QR code.",
    "student_inactive": "Élève inactif.",
    "not_enrolled": "Élève non inscrit à ce service.",
    "subscription_expired": "Abonnement expiré.",
    "wrong_bus": "Mauvais bus : l'élève est affecté à un autre bus.",
    "bus_not_in_service": "Ce bus n'est pas en service.",
    "bus_at_capacity": "Bus complet.",
    "invalid_scan_sequence": "Séquence de scan invalide (montée / descente).",
}
DENY_REASONS = set(DENY_MESSAGES)

MAX_QR_LENGTH = 100


class StudentSnapshot(BaseModel):
    """Copie figée de l'élève au moment du scan (jamais modifiée par le pipeline)."""
    id: uuid.UUID
    admission_number: str
    full_name: str
    grade_class: str
    is_active: bool = True

    model_config = {"frozen": True, "from_attributes": True}


class TransportEnrollment(BaseModel):
    service_type: Literal["transport"] = "transport"
    enrolled: bool
    payment_status: PaymentStatus = "active"
    bus_id: int
    bus_number: Optional[str] = None
    pickup_point: str
    dropoff_point: str
    pickup_time: Optional[str] = None
    dropoff_time: Optional[str] = None

    model_config = {"frozen": True}


class LunchEnrollment(BaseModel):
    service_type: Literal["lunch"] = "lunch"
    enrolled: bool
    payment_status: PaymentStatus = "active"
    diet_type: Literal["normal", "special"] = "normal"
    allergies: List[str] = Field(default_factory=list)
    special_requirements: Optional[str] = None

    model_config = {"frozen": True}


ServiceEnrollment = Annotated[
    Union[TransportEnrollment, LunchEnrollment], Field(discriminator="service_type")
]


class TransportAction(BaseModel):
    """Scan à la porte d'un bus."""
    service_type: Literal["transport"] = "transport"
    scan_subtype: TransportSubtype
    bus_id: int
    location: Optional[str] = None


class LunchAction(BaseModel):
    """Scan à l'entrée de la cantine."""
    service_type: Literal["lunch"] = "lunch"
    scan_subtype: Literal["entry"] = "entry"
    location: Optional[str] = None


ScanAction = Annotated[Union[TransportAction, LunchAction], Field(discriminator="service_type")]


class ScanWarning(BaseModel):
    """Avertissement non bloquant affiché à l'opérateur avec un accès autorisé."""
    code: str  # payment_pending, already_scanned_today, special_diet, allergy_notice
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class Eligibility(BaseModel):
    """Décision de l'évaluateur d'éligibilité (fonction pure)."""
    granted: bool
    deny_reason: Optional[str] = None
    warnings: List[ScanWarning] = Field(default_factory=list)


class BusSnapshot(BaseModel):
    id: int
    bus_number: str
    capacity: int
    current_occupancy: int
    status: str

    model_config = {"from_attributes": True}


class ScanEventRecord(BaseModel):
    """Tentative de scan immuable (accordée ou refusée), ajoutée telle quelle au registre des présences."""
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    qr_token: str
    student_id: Optional[uuid.UUID] = None  # vide si le QR code est inconnu
    service_type: ServiceType
    scan_subtype: str
    bus_id: Optional[int] = None
    location: Optional[str] = None
    scanned_by: Optional[str] = None
    scanned_at: datetime
    scan_date: date
    access_granted: bool = True
    deny_reason: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)  # codes uniquement

    model_config = {"frozen": True}


class ScanResult(BaseModel):
    """Résultat d'un scan retourné à l'écran de l'opérateur."""
    access_granted: bool
    deny_reason: Optional[str] = None
    message: str
    service_type: ServiceType
    scan_subtype: str
    bus_id: Optional[int] = None
    location: Optional[str] = None
    scanned_by: Optional[str] = None
    student: Optional[StudentSnapshot] = None
    service: Optional[ServiceEnrollment] = None
    warnings: List[ScanWarning] = Field(default_factory=list)
    event_id: Optional[uuid.UUID] = None
    timestamp: datetime

    @property
    def warning_codes(self) -> List[str]:
        return [w.code for w in self.warnings]


# --- Corps de requête HTTP ---

class _ScanRequestBase(BaseModel):
    qr_code: str
    location: Optional[str] = None
    operator_id: Optional[str] = None

    @field_validator("qr_code")
    @classmethod
    def qr_code_valid(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Le QR code ne peut pas être vide.")
        if len(v) > MAX_QR_LENGTH:
            raise ValueError(f"QR code trop long (maximum {MAX_QR_LENGTH} caractères).")
        return v


class TransportScanRequest(_ScanRequestBase):
    """Corps de requête POST /api/v1/scans/transport."""
    bus_id: int
    scan_type: TransportSubtype

    def to_action(self) -> TransportAction:
        return TransportAction(scan_subtype=self.scan_type, bus_id=self.bus_id, location=self.location)


class LunchScanRequest(_ScanRequestBase):
    """Corps de requête POST /api/v1/scans/lunch."""

    def to_action(self) -> LunchAction:
        return LunchAction(location=self.location)
