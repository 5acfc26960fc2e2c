"""
Exceptions d'infrastructure du pipeline de scan et de l'import.

Les refus métier (élève introuvable, abonnement expiré, bus complet...) ne
passent jamais par ici : ce sont des ScanResult structurés. Une
ScanInfrastructureError signifie "scan non résolu, à rejouer".
"""

from typing import Optional


class ScanInfrastructureError(Exception):
    """Échec technique pendant un scan : ni accordé, ni refusé."""


class DirectoryUnavailableError(ScanInfrastructureError):
    """L'annuaire des élèves n'a pas répondu (réseau, délai dépassé)."""


class LedgerUnavailableError(ScanInfrastructureError):
    """Lecture du registre des présences impossible."""


class LedgerWriteError(ScanInfrastructureError):
    """Écriture d'un évènement dans le registre des présences impossible."""


class ImportFileError(Exception):
    """Erreur bloquante au niveau du fichier d'import (le job passe en failed)."""

    code = "invalid_file"


class UnreadableFileError(ImportFileError):
    """Fichier non tabulaire, corrompu ou dans un encodage non supporté."""

    code = "unreadable_file"


class MissingColumnsError(ImportFileError):
    """Colonnes obligatoires absentes de l'en-tête."""

    code = "missing_columns"

    def __init__(self, missing):
        self.missing = sorted(missing)
        super().__init__(f"Colonnes manquantes : {', '.join(self.missing)}")


class TooManyRowsError(ImportFileError):
    code = "too_many_rows"


class RowIngestError(Exception):
    """Échec d'une ligne lors de l'écriture (bus inconnu, élève inconnu...)."""

    def __init__(self, message: str, column: Optional[str] = None, value: Optional[str] = None):
        super().__init__(message)
        self.column = column
        self.value = value


class JobStateError(ValueError):
    """Opération impossible dans l'état courant du job (suppression d'un job en cours...)."""
