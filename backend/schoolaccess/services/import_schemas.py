"""
Schéma des fichiers d'import par type et validation ligne par ligne.

Ce schéma est le format "fil" accepté par l'import : chaque colonne déclare
son nom, son caractère obligatoire, son type (string, number, date, boolean,
email, phone) et éventuellement un motif ou une liste de valeurs.

- Colonne obligatoire absente de l'en-tête → erreur niveau fichier
- Colonne présente mais cellule vide → erreur sur la ligne concernée
- Colonnes inconnues → ignorées (signalées en avertissement)
"""

import csv
import io
import re
from datetime import date
from typing import Dict, List, Optional, Set, Tuple

from pydantic import ValidationError

from schoolaccess.schemas.import_job import (
    BusImportRow,
    ImportColumn,
    ImportRowIssue,
    ImportTemplate,
    LunchDetailImportRow,
    StudentImportRow,
    TransportDetailImportRow,
)
from schoolaccess.services.errors import MissingColumnsError

EMAIL_REGEX = re.compile(r"^[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}$")
PHONE_REGEX = re.compile(r"^\+?[0-9]{7,15}$")
TIME_PATTERN = r"^([01]?\d|2[0-3]):[0-5]\d$"
BOOLEAN_TRUE = {"yes", "y", "1", "true", "on", "oui"}
BOOLEAN_FALSE = {"no", "n", "0", "false", "off", "non"}
PAYMENT_STATUSES = ["active", "pending", "expired"]

_YES_NO = "Yes / No"

IMPORT_SCHEMAS: Dict[str, List[ImportColumn]] = {
    "students": [
        ImportColumn(name="admission_number", required=True, max_length=50,
                     validation=r"^[A-Za-z0-9\-]+$", description="Numéro d'admission unique", example="2024001"),
        ImportColumn(name="first_name", required=True, max_length=100, description="Prénom", example="John"),
        ImportColumn(name="last_name", required=True, max_length=100, description="Nom", example="Doe"),
        ImportColumn(name="grade_class", required=True, max_length=50, description="Classe", example="Grade 5A"),
        ImportColumn(name="qr_code", max_length=100, description="QR code (généré si absent)", example="QR2024001"),
        ImportColumn(name="is_active", type="boolean", description=_YES_NO, example="Yes"),
        ImportColumn(name="guardian_name", max_length=200, description="Responsable légal", example="Jane Doe"),
        ImportColumn(name="guardian_phone", type="phone", description="Téléphone du responsable",
                     example="+254712345678"),
        ImportColumn(name="guardian_email", type="email", max_length=100, description="Email du responsable",
                     example="jane@example.com"),
        ImportColumn(name="transport_enabled", type="boolean", description=_YES_NO, example="Yes"),
        ImportColumn(name="lunch_enabled", type="boolean", description=_YES_NO, example="Yes"),
    ],
    "buses": [
        ImportColumn(name="bus_number", required=True, max_length=50, description="Numéro du bus",
                     example="BUS-001"),
        ImportColumn(name="bus_name", max_length=100, description="Nom / ligne", example="Route A - Morning"),
        ImportColumn(name="capacity", type="number", validation=r"^([1-9]\d?|100)$",
                     description="Nombre de places (1 à 100)", example="40"),
        ImportColumn(name="driver_name", max_length=100, description="Chauffeur", example="Michael Driver"),
        ImportColumn(name="driver_phone", type="phone", description="Téléphone du chauffeur",
                     example="+254722111222"),
        ImportColumn(name="route_description", description="Itinéraire", example="Main Gate → Estate A"),
        ImportColumn(name="status", choices=["active", "inactive", "maintenance", "out_of_service"],
                     description="Statut du bus", example="active"),
    ],
    "transport_details": [
        ImportColumn(name="admission_number", required=True, description="Numéro d'admission de l'élève",
                     example="2024001"),
        ImportColumn(name="bus_number", required=True, description="Numéro du bus affecté", example="BUS-001"),
        ImportColumn(name="pickup_point", required=True, max_length=255, description="Point de montée",
                     example="Main Gate"),
        ImportColumn(name="dropoff_point", required=True, max_length=255, description="Point de descente",
                     example="Estate A, Block 5"),
        ImportColumn(name="pickup_time", validation=TIME_PATTERN, description="HH:MM", example="07:00"),
        ImportColumn(name="dropoff_time", validation=TIME_PATTERN, description="HH:MM", example="15:30"),
        ImportColumn(name="payment_status", choices=PAYMENT_STATUSES, description="Statut de l'abonnement",
                     example="active"),
        ImportColumn(name="notes", description="Remarques", example="First stop"),
    ],
    "lunch_details": [
        ImportColumn(name="admission_number", required=True, description="Numéro d'admission de l'élève",
                     example="2024001"),
        ImportColumn(name="diet_type", required=True, choices=["normal", "special"], description="Régime",
                     example="special"),
        ImportColumn(name="diet_notes", description="Exigences particulières", example="Gluten-free diet required"),
        ImportColumn(name="allergies", description="Allergies séparées par des virgules", example="Gluten, Nuts"),
        ImportColumn(name="preferences", description="Préférences", example="No dairy products"),
        ImportColumn(name="payment_status", choices=PAYMENT_STATUSES, description="Statut de l'abonnement",
                     example="active"),
    ],
}

# Colonne dont la valeur doit être unique dans un même fichier
UNIQUE_KEYS = {
    "students": "admission_number",
    "buses": "bus_number",
    "transport_details": "admission_number",
    "lunch_details": "admission_number",
}

ROW_MODELS = {
    "students": StudentImportRow,
    "buses": BusImportRow,
    "transport_details": TransportDetailImportRow,
    "lunch_details": LunchDetailImportRow,
}


def get_schema(import_type: str) -> List[ImportColumn]:
    if import_type not in IMPORT_SCHEMAS:
        raise ValueError(f"Type d'import inconnu : {import_type}")
    return IMPORT_SCHEMAS[import_type]


def check_header(import_type: str, headers: List[str]) -> List[ImportRowIssue]:
    """
    Vérifie l'en-tête du fichier. Lève MissingColumnsError si une colonne
    obligatoire est absente ; retourne les avertissements (colonnes inconnues).
    """
    schema = get_schema(import_type)
    present = {h for h in headers if h}
    missing = {c.name for c in schema if c.required} - present
    if missing:
        raise MissingColumnsError(missing)

    known = {c.name for c in schema}
    return [
        ImportRowIssue(row=1, column=name, message="Colonne inconnue ignorée.")
        for name in headers
        if name and name not in known
    ]


def format_phone_number(raw: str) -> str:
    """Retire tout sauf les chiffres et le + ; ajoute + devant un indicatif pays."""
    phone = re.sub(r"[^0-9+]", "", raw)
    if len(phone) > 10 and not phone.startswith("+"):
        phone = "+" + phone
    return phone


def parse_boolean(raw: str) -> Optional[bool]:
    value = raw.strip().lower()
    if value in BOOLEAN_TRUE:
        return True
    if value in BOOLEAN_FALSE:
        return False
    return None


def _parse_allergies(raw: str) -> List[str]:
    if not raw or raw.strip().lower() in {"none", "aucune", "n/a", "-"}:
        return []
    return [a.strip() for a in re.split(r"[,;]", raw) if a.strip()]


def _convert(column: ImportColumn, raw: str):
    """Convertit une cellule selon le type déclaré. Lève ValueError avec un message lisible."""
    if column.max_length and len(raw) > column.max_length:
        raise ValueError(f"{column.max_length} caractères maximum")

    if column.choices:
        value = raw.lower()
        if value not in column.choices:
            raise ValueError(f"Valeur invalide, attendu : {', '.join(column.choices)}")
        return value

    if column.validation and not re.match(column.validation, raw):
        raise ValueError("Format invalide")

    if column.type == "number":
        try:
            number = float(raw.replace(",", "."))
        except ValueError:
            raise ValueError("Nombre attendu") from None
        return int(number) if number.is_integer() else number
    if column.type == "boolean":
        value = parse_boolean(raw)
        if value is None:
            raise ValueError("Valeur booléenne attendue (Yes / No)")
        return value
    if column.type == "date":
        try:
            return date.fromisoformat(raw[:10])
        except ValueError:
            raise ValueError("Date attendue (AAAA-MM-JJ)") from None
    if column.type == "email":
        if not EMAIL_REGEX.match(raw):
            raise ValueError("Format email invalide")
        return raw
    if column.type == "phone":
        phone = format_phone_number(raw)
        if not PHONE_REGEX.match(phone):
            raise ValueError("Numéro de téléphone invalide")
        return phone
    return raw


def validate_row(
    import_type: str,
    row_number: int,
    raw: Dict[str, str],
    seen_keys: Set[str],
) -> Tuple[Optional[object], List[ImportRowIssue]]:
    """
    Valide une ligne contre le schéma du type d'import.

    Retourne (ligne typée, []) si la ligne est valide, (None, erreurs) sinon.
    seen_keys est mis à jour avec la clé unique de la ligne (doublons intra-fichier).
    """
    schema = get_schema(import_type)
    errors: List[ImportRowIssue] = []
    values = {}

    for column in schema:
        cell = (raw.get(column.name) or "").strip()
        if not cell:
            if column.required:
                errors.append(ImportRowIssue(row=row_number, column=column.name, message="Champ obligatoire"))
            continue
        try:
            values[column.name] = _convert(column, cell)
        except ValueError as exc:
            errors.append(ImportRowIssue(row=row_number, column=column.name, message=str(exc), value=cell))

    key_column = UNIQUE_KEYS[import_type]
    key = str(values.get(key_column, "")).upper()
    if key:
        if key in seen_keys:
            errors.append(ImportRowIssue(
                row=row_number, column=key_column, message="Doublon dans le fichier", value=raw.get(key_column),
            ))
        else:
            seen_keys.add(key)

    if errors:
        return None, errors

    if "allergies" in values:
        values["allergies"] = _parse_allergies(values["allergies"])

    try:
        return ROW_MODELS[import_type](row_number=row_number, **values), []
    except ValidationError as exc:
        return None, [
            ImportRowIssue(
                row=row_number,
                column=str(err["loc"][0]) if err["loc"] else None,
                message=err["msg"],
            )
            for err in exc.errors()
        ]


# --- Modèles de fichiers téléchargeables ---

TEMPLATE_INFO = {
    "students": ("Élèves", "Création ou mise à jour des élèves et de leur responsable légal."),
    "buses": ("Bus", "Flotte de bus : capacité, chauffeur, itinéraire."),
    "transport_details": ("Transport", "Affectation des élèves aux bus avec points de montée / descente."),
    "lunch_details": ("Cantine", "Régime alimentaire et allergies des élèves inscrits à la cantine."),
}

SAMPLE_DATA: Dict[str, List[Dict[str, str]]] = {
    "students": [
        {
            "admission_number": "2024001", "first_name": "John", "last_name": "Doe",
            "grade_class": "Grade 5A", "is_active": "Yes", "guardian_name": "Jane Doe",
            "guardian_phone": "+254712345678", "guardian_email": "jane@example.com",
            "transport_enabled": "Yes", "lunch_enabled": "Yes",
        },
        {
            "admission_number": "2024002", "first_name": "Mary", "last_name": "Smith",
            "grade_class": "Grade 6B", "is_active": "Yes", "guardian_name": "Robert Smith",
            "guardian_phone": "+254798765432", "guardian_email": "robert@example.com",
            "transport_enabled": "No", "lunch_enabled": "Yes",
        },
    ],
    "buses": [
        {
            "bus_number": "BUS-001", "bus_name": "Route A - Morning", "capacity": "40",
            "driver_name": "Michael Driver", "driver_phone": "+254722111222",
            "route_description": "Main Gate → Estate A → Estate B", "status": "active",
        },
        {
            "bus_number": "BUS-002", "bus_name": "Route B - Morning", "capacity": "35",
            "driver_name": "Sarah Driver", "driver_phone": "+254733444555",
            "route_description": "Main Gate → Downtown → City Center", "status": "active",
        },
    ],
    "transport_details": [
        {
            "admission_number": "2024001", "bus_number": "BUS-001", "pickup_point": "Main Gate",
            "dropoff_point": "Estate A, Block 5", "pickup_time": "07:00", "dropoff_time": "15:30",
            "payment_status": "active", "notes": "First stop",
        },
        {
            "admission_number": "2024002", "bus_number": "BUS-001", "pickup_point": "Estate A, Block 5",
            "dropoff_point": "Estate B, Gate 2", "pickup_time": "07:15", "dropoff_time": "15:45",
            "payment_status": "pending", "notes": "",
        },
    ],
    "lunch_details": [
        {
            "admission_number": "2024001", "diet_type": "normal", "diet_notes": "",
            "allergies": "None", "preferences": "", "payment_status": "active",
        },
        {
            "admission_number": "2024002", "diet_type": "special", "diet_notes": "Gluten-free diet required",
            "allergies": "Gluten, Nuts", "preferences": "No dairy products", "payment_status": "active",
        },
    ],
}


def get_template(import_type: str) -> ImportTemplate:
    name, description = TEMPLATE_INFO[import_type]
    return ImportTemplate(
        type=import_type,
        name=name,
        description=description,
        columns=get_schema(import_type),
        sample_data=SAMPLE_DATA[import_type],
    )


def list_templates() -> List[ImportTemplate]:
    return [get_template(t) for t in IMPORT_SCHEMAS]


def template_csv(import_type: str) -> str:
    """Rendu CSV du modèle : en-tête complet + lignes d'exemple (séparateur virgule)."""
    columns = [c.name for c in get_schema(import_type)]
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=columns, extrasaction="ignore", lineterminator="\n")
    writer.writeheader()
    for sample in SAMPLE_DATA[import_type]:
        writer.writerow({c: sample.get(c, "") for c in columns})
    return buf.getvalue()
