"""
Lecture des fichiers d'import tabulaires (CSV ou Excel .xlsx).

- CSV : UTF-8 avec ou sans BOM (export Excel), séparateur virgule ou point-virgule
- XLSX : première feuille, lecture seule, valeurs calculées (openpyxl)

Les en-têtes sont normalisés (minuscules, espaces → underscores). Les lignes
entièrement vides sont ignorées ; les numéros de ligne sont ceux du fichier
(ligne 1 = en-tête). Un fichier illisible lève UnreadableFileError : jamais
de parsing partiel.
"""

import csv
import io
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Dict, List, Tuple

from openpyxl import load_workbook

from schoolaccess.services.errors import UnreadableFileError

XLSX_EXTENSIONS = (".xlsx", ".xlsm")
CSV_EXTENSIONS = (".csv", ".txt")


@dataclass
class Table:
    headers: List[str]
    rows: List[Tuple[int, Dict[str, str]]] = field(default_factory=list)  # (n° de ligne, valeurs)

    @property
    def total_rows(self) -> int:
        return len(self.rows)


def normalize_header(raw) -> str:
    """Normalise un nom de colonne : minuscules, sans espaces autour, espaces → _."""
    return ("" if raw is None else str(raw)).strip().lower().replace(" ", "_")


def _detect_separator(sample: str) -> str:
    """Détecte le séparateur CSV (virgule ou point-virgule)."""
    if sample.count(";") >= sample.count(","):
        return ";"
    return ","


def _cell_to_str(value) -> str:
    """Convertit une cellule Excel en texte (dates ISO, heures HH:MM, entiers sans .0)."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, datetime):
        return value.date().isoformat() if value.time() == time(0, 0) else value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, time):
        return value.strftime("%H:%M")
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _build_table(header_cells, data_rows) -> Table:
    headers = [normalize_header(h) for h in header_cells]
    if not any(headers):
        raise UnreadableFileError("En-tête vide : aucune colonne détectée.")

    table = Table(headers=headers)
    for row_number, cells in data_rows:
        values = [_cell_to_str(c) for c in cells]
        if not any(values):
            continue
        row = {}
        for index, name in enumerate(headers):
            if name and name not in row:
                row[name] = values[index] if index < len(values) else ""
        table.rows.append((row_number, row))
    return table


def _read_csv(content: bytes) -> Table:
    try:
        text = content.decode("utf-8-sig")  # utf-8-sig gère le BOM Excel
    except UnicodeDecodeError as exc:
        raise UnreadableFileError("Fichier CSV illisible : encodage UTF-8 attendu.") from exc
    if "\x00" in text:
        raise UnreadableFileError("Fichier binaire : CSV ou XLSX attendu.")

    lines = text.splitlines()
    if not lines:
        raise UnreadableFileError("Fichier vide.")

    reader = csv.reader(io.StringIO(text), delimiter=_detect_separator(lines[0]))
    try:
        header = next(reader, None)
        if header is None:
            raise UnreadableFileError("Fichier vide.")
        return _build_table(header, ((reader.line_num, cells) for cells in reader))
    except csv.Error as exc:
        raise UnreadableFileError(f"CSV mal formé : {exc}") from exc


def _read_xlsx(content: bytes) -> Table:
    try:
        wb = load_workbook(filename=io.BytesIO(content), read_only=True, data_only=True)
    except (zipfile.BadZipFile, KeyError, OSError, ValueError) as exc:
        raise UnreadableFileError(f"Fichier Excel invalide : {exc}") from exc

    try:
        ws = wb.active
        if ws is None:
            raise UnreadableFileError("Le classeur Excel ne contient aucune feuille active.")
        rows_iter = ws.iter_rows(values_only=True)
        header = next(rows_iter, None)
        if not header:
            raise UnreadableFileError("Le fichier Excel n'a pas de ligne d'en-tête.")
        return _build_table(header, enumerate(rows_iter, start=2))
    finally:
        wb.close()


def read_table(content: bytes, filename: str = "") -> Table:
    """Parse un fichier CSV ou XLSX. Lève UnreadableFileError si illisible."""
    if not content:
        raise UnreadableFileError("Fichier vide.")

    name = (filename or "").lower()
    if name.endswith(".xls"):
        raise UnreadableFileError("Format .xls non supporté : enregistrer le fichier en .xlsx ou .csv.")
    if name.endswith(XLSX_EXTENSIONS) or content[:4] == b"PK\x03\x04":
        return _read_xlsx(content)
    if name.endswith(CSV_EXTENSIONS) or not name:
        return _read_csv(content)
    raise UnreadableFileError(f"Extension non supportée : {filename}. Formats acceptés : .csv, .xlsx")
