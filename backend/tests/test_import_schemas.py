"""
Tests du schéma des fichiers d'import et de la validation ligne par ligne.
"""

import csv
import io

import pytest

from schoolaccess.schemas.import_job import BusImportRow, LunchDetailImportRow, StudentImportRow
from schoolaccess.services.errors import MissingColumnsError
from schoolaccess.services.import_schemas import (
    IMPORT_SCHEMAS,
    check_header,
    format_phone_number,
    list_templates,
    parse_boolean,
    template_csv,
    validate_row,
)

STUDENT = {
    "admission_number": "2024001",
    "first_name": "John",
    "last_name": "Doe",
    "grade_class": "Grade 5A",
}


# --- En-tête ---

def test_entete_complet_sans_avertissement():
    assert check_header("buses", ["bus_number", "capacity"]) == []


def test_colonne_obligatoire_absente():
    with pytest.raises(MissingColumnsError) as exc:
        check_header("students", ["admission_number", "first_name"])

    assert exc.value.missing == ["grade_class", "last_name"]
    assert exc.value.code == "missing_columns"


def test_colonne_inconnue_en_avertissement():
    warnings = check_header("buses", ["bus_number", "couleur"])

    assert len(warnings) == 1
    assert warnings[0].column == "couleur"


def test_type_inconnu():
    with pytest.raises(ValueError):
        check_header("teachers", ["name"])


# --- Lignes ---

def test_ligne_eleve_valide():
    row, errors = validate_row("students", 2, {
        **STUDENT, "is_active": "Yes", "transport_enabled": "1", "lunch_enabled": "no",
        "guardian_phone": "254 712-345-678", "guardian_email": "jane@example.com",
    }, set())

    assert errors == []
    assert isinstance(row, StudentImportRow)
    assert row.row_number == 2
    assert row.is_active is True
    assert row.transport_enabled is True
    assert row.lunch_enabled is False
    assert row.guardian_phone == "+254712345678"


def test_champ_obligatoire_vide():
    row, errors = validate_row("students", 7, {**STUDENT, "last_name": "  "}, set())

    assert row is None
    assert [(e.row, e.column) for e in errors] == [(7, "last_name")]


def test_email_invalide():
    _, errors = validate_row("students", 3, {**STUDENT, "guardian_email": "pas-un-email"}, set())

    assert errors[0].column == "guardian_email"
    assert errors[0].value == "pas-un-email"


def test_booleen_invalide():
    _, errors = validate_row("students", 3, {**STUDENT, "is_active": "peut-être"}, set())

    assert errors[0].column == "is_active"


def test_doublon_numero_admission_dans_le_fichier():
    seen = set()
    validate_row("students", 2, STUDENT, seen)

    row, errors = validate_row("students", 3, {**STUDENT, "first_name": "Jane"}, seen)

    assert row is None
    assert errors[0].message == "Doublon dans le fichier"


def test_capacite_hors_bornes():
    _, errors = validate_row("buses", 2, {"bus_number": "BUS-001", "capacity": "150"}, set())

    assert errors[0].column == "capacity"


def test_bus_statut_normalise():
    row, errors = validate_row("buses", 2, {"bus_number": "BUS-001", "capacity": "40", "status": "Maintenance"}, set())

    assert errors == []
    assert isinstance(row, BusImportRow)
    assert row.capacity == 40
    assert row.status == "maintenance"


def test_transport_heure_invalide():
    _, errors = validate_row("transport_details", 2, {
        "admission_number": "2024001", "bus_number": "BUS-001",
        "pickup_point": "Main Gate", "dropoff_point": "Estate A", "pickup_time": "7h00",
    }, set())

    assert errors[0].column == "pickup_time"


def test_transport_paiement_inconnu():
    _, errors = validate_row("transport_details", 2, {
        "admission_number": "2024001", "bus_number": "BUS-001",
        "pickup_point": "Main Gate", "dropoff_point": "Estate A", "payment_status": "paid",
    }, set())

    assert errors[0].column == "payment_status"


@pytest.mark.parametrize("raw, expected", [
    ("Gluten, Nuts", ["Gluten", "Nuts"]),
    ("peanuts; milk", ["peanuts", "milk"]),
    ("None", []),
])
def test_cantine_allergies(raw, expected):
    row, errors = validate_row("lunch_details", 2, {
        "admission_number": "2024001", "diet_type": "special", "allergies": raw,
    }, set())

    assert errors == []
    assert isinstance(row, LunchDetailImportRow)
    assert row.allergies == expected


def test_cantine_regime_inconnu():
    _, errors = validate_row("lunch_details", 2, {"admission_number": "2024001", "diet_type": "vegan"}, set())

    assert errors[0].column == "diet_type"


def test_plusieurs_erreurs_sur_une_ligne():
    _, errors = validate_row("students", 4, {"admission_number": "2024001"}, set())

    assert {e.column for e in errors} == {"first_name", "last_name", "grade_class"}
    assert all(e.row == 4 for e in errors)


# --- Utilitaires ---

@pytest.mark.parametrize("raw, expected", [
    ("+254 712 345 678", "+254712345678"),
    ("254712345678", "+254712345678"),
    ("0712345678", "0712345678"),
])
def test_format_phone_number(raw, expected):
    assert format_phone_number(raw) == expected


@pytest.mark.parametrize("raw, expected", [("Yes", True), ("on", True), ("N", False), ("0", False), ("?", None)])
def test_parse_boolean(raw, expected):
    assert parse_boolean(raw) is expected


# --- Modèles ---

def test_modeles_pour_chaque_type():
    templates = list_templates()

    assert [t.type for t in templates] == list(IMPORT_SCHEMAS)
    assert all(len(t.sample_data) == 2 for t in templates)


@pytest.mark.parametrize("import_type", list(IMPORT_SCHEMAS))
def test_modele_csv_lignes_exemple_valides(import_type):
    """Les lignes d'exemple du modèle passent la validation de leur propre schéma."""
    reader = csv.DictReader(io.StringIO(template_csv(import_type)))

    assert reader.fieldnames == [c.name for c in IMPORT_SCHEMAS[import_type]]
    seen = set()
    for number, raw in enumerate(reader, start=2):
        row, errors = validate_row(import_type, number, raw, seen)
        assert errors == [], errors
