"""
Schémas Pydantic pour les imports Excel / CSV (élèves, bus, transport, cantine).
"""

import uuid
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, EmailStr, Field

ImportType = Literal["students", "buses", "transport_details", "lunch_details"]
ColumnType = Literal["string", "number", "date", "boolean", "email", "phone"]


class ImportColumn(BaseModel):
    """Déclaration d'une colonne du fichier d'import (format attendu)."""
    name: str
    type: ColumnType = "string"
    required: bool = False
    description: str = ""
    validation: Optional[str] = None       # Expression régulière appliquée à la valeur
    choices: Optional[List[str]] = None    # Valeurs autorisées (insensibles à la casse)
    max_length: Optional[int] = None
    example: Optional[str] = None


class ImportRowIssue(BaseModel):
    """Erreur ou avertissement rattaché à une ligne (row=0 : niveau fichier)."""
    row: int
    column: Optional[str] = None
    message: str
    value: Optional[str] = None


class ImportValidation(BaseModel):
    """Résultat de la validation à blanc d'un fichier (aucun job créé)."""
    valid: bool
    error_code: Optional[str] = None   # unreadable_file, missing_columns, too_many_rows
    errors: List[ImportRowIssue]
    warnings: List[ImportRowIssue]
    total_rows: int
    sample_data: List[Dict[str, Any]]


class ImportTemplate(BaseModel):
    type: ImportType
    name: str
    description: str
    columns: List[ImportColumn]
    sample_data: List[Dict[str, str]]


class ImportJobResponse(BaseModel):
    """État d'un job d'import (GET /api/v1/imports/jobs/{id})."""
    id: uuid.UUID
    import_type: str
    filename: str
    status: str
    total_rows: int
    processed_rows: int
    successful_rows: int
    failed_rows: int
    remaining_rows: int
    progress_percentage: float
    success_rate: float
    errors: List[ImportRowIssue]
    warnings: List[ImportRowIssue]
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ImportStats(BaseModel):
    total_jobs: int
    pending: int
    processing: int
    completed: int
    failed: int
    cancelled: int
    total_records_processed: int
    success_rate: float


# --- Lignes typées, une fois la validation de schéma passée ---

class StudentImportRow(BaseModel):
    type: Literal["students"] = "students"
    row_number: int
    admission_number: str
    first_name: str
    last_name: str
    grade_class: str
    qr_code: Optional[str] = None
    is_active: bool = True
    guardian_name: Optional[str] = None
    guardian_phone: Optional[str] = None
    guardian_email: Optional[EmailStr] = None
    transport_enabled: bool = False
    lunch_enabled: bool = False


class BusImportRow(BaseModel):
    type: Literal["buses"] = "buses"
    row_number: int
    bus_number: str
    bus_name: Optional[str] = None
    capacity: Optional[int] = None
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    route_description: Optional[str] = None
    status: str = "active"


class TransportDetailImportRow(BaseModel):
    type: Literal["transport_details"] = "transport_details"
    row_number: int
    admission_number: str
    bus_number: str
    pickup_point: str
    dropoff_point: str
    pickup_time: Optional[str] = None
    dropoff_time: Optional[str] = None
    payment_status: str = "active"
    notes: Optional[str] = None


class LunchDetailImportRow(BaseModel):
    type: Literal["lunch_details"] = "lunch_details"
    row_number: int
    admission_number: str
    diet_type: str
    diet_notes: Optional[str] = None
    allergies: List[str] = Field(default_factory=list)
    preferences: Optional[str] = None
    payment_status: str = "active"


ImportRow = Annotated[
    Union[StudentImportRow, BusImportRow, TransportDetailImportRow, LunchDetailImportRow],
    Field(discriminator="type"),
]
