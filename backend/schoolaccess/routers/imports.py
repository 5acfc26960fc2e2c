"""
Router des imports Excel / CSV.

Validation à blanc, soumission d'un job (exécuté en arrière-plan), suivi par
polling ou par flux server-sent events, annulation, relance, suppression,
statistiques et modèles de fichiers téléchargeables.
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from schoolaccess.config import settings
from schoolaccess.database import get_db
from schoolaccess.schemas.import_job import (
    ImportJobResponse,
    ImportStats,
    ImportTemplate,
    ImportType,
    ImportValidation,
)
from schoolaccess.services import import_engine, import_schemas
from schoolaccess.services.errors import JobStateError
from schoolaccess.services.import_engine import ImportJobEngine

router = APIRouter(prefix="/api/v1/imports", tags=["Imports"])

ALLOWED_EXTENSIONS = (".csv", ".txt", ".xlsx", ".xlsm")

_engine = ImportJobEngine()


def get_import_engine() -> ImportJobEngine:
    return _engine


async def _read_upload(file: UploadFile) -> bytes:
    """Contrôles communs : extension, taille, fichier non vide."""
    filename = (file.filename or "").lower()
    if not filename.endswith(ALLOWED_EXTENSIONS):
        raise HTTPException(
            status_code=400,
            detail="Format invalide. Seuls les fichiers CSV et Excel (.xlsx) sont acceptés.",
        )

    content = await file.read()

    if len(content) > settings.IMPORT_MAX_FILE_SIZE_MB * 1024 * 1024:
        raise HTTPException(
            status_code=413,
            detail=f"Fichier trop volumineux. Taille maximale : {settings.IMPORT_MAX_FILE_SIZE_MB} Mo.",
        )
    if not content:
        raise HTTPException(status_code=400, detail="Le fichier est vide.")
    return content


@router.post("/validate", response_model=ImportValidation, summary="Valider un fichier sans l'importer")
async def validate_import(
    file: UploadFile = File(...),
    import_type: ImportType = Form(...),
    engine: ImportJobEngine = Depends(get_import_engine),
):
    """
    Vérifie l'en-tête et chaque ligne contre le schéma du type d'import.
    Aucun job n'est créé ; retourne les erreurs, les avertissements et un aperçu des lignes.
    """
    content = await _read_upload(file)
    return engine.validate(content, file.filename, import_type)


@router.post("", response_model=ImportJobResponse, status_code=202, summary="Lancer un import")
async def submit_import(
    file: UploadFile = File(...),
    import_type: ImportType = Form(...),
    created_by: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    engine: ImportJobEngine = Depends(get_import_engine),
):
    """
    Crée un job d'import (statut `pending`) et le confie au planificateur.
    Suivre l'avancement via `GET /jobs/{id}` ou `GET /jobs/{id}/events`.
    """
    content = await _read_upload(file)
    return engine.submit(db, content, file.filename, import_type, created_by=created_by)


@router.get("/jobs", response_model=List[ImportJobResponse], summary="Lister les jobs d'import")
def list_import_jobs(
    import_type: Optional[ImportType] = None,
    status: Optional[str] = None,
    days: Optional[int] = None,
    db: Session = Depends(get_db),
):
    return import_engine.list_jobs(db, import_type=import_type, status=status, days=days)


@router.get("/jobs/{job_id}", response_model=ImportJobResponse, summary="État d'un job d'import")
def get_import_job(job_id: uuid.UUID, db: Session = Depends(get_db)):
    try:
        return import_engine.get_job(db, job_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/jobs/{job_id}/cancel", response_model=ImportJobResponse, summary="Annuler un job d'import")
def cancel_import_job(
    job_id: uuid.UUID,
    db: Session = Depends(get_db),
    engine: ImportJobEngine = Depends(get_import_engine),
):
    """Sans effet sur un job déjà terminé. Les lignes déjà importées sont conservées."""
    try:
        return engine.cancel(db, job_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/jobs/{job_id}/retry", response_model=ImportJobResponse, status_code=202, summary="Relancer un job en échec")
def retry_import_job(
    job_id: uuid.UUID,
    db: Session = Depends(get_db),
    engine: ImportJobEngine = Depends(get_import_engine),
):
    """Remet le job en pending et relance l'import à partir du fichier conservé."""
    try:
        return engine.retry(db, job_id)
    except JobStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/jobs/{job_id}", status_code=204, summary="Supprimer un job d'import")
def delete_import_job(job_id: uuid.UUID, db: Session = Depends(get_db)):
    """Seuls les jobs terminés peuvent être supprimés ; les données importées sont conservées."""
    try:
        import_engine.delete_job(db, job_id)
    except JobStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/jobs/{job_id}/events", summary="Flux d'avancement d'un job (server-sent events)")
def stream_import_job(
    job_id: uuid.UUID,
    db: Session = Depends(get_db),
    engine: ImportJobEngine = Depends(get_import_engine),
):
    try:
        frames = engine.reporter.open_stream(job_id, lambda: import_engine.get_job(db, job_id))
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return StreamingResponse(
        frames,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


@router.get("/stats", response_model=ImportStats, summary="Statistiques des imports")
def import_statistics(db: Session = Depends(get_db)):
    return import_engine.get_statistics(db)


@router.get("/templates", response_model=List[ImportTemplate], summary="Modèles de fichiers d'import")
def list_import_templates():
    return import_schemas.list_templates()


@router.get("/templates/{import_type}/download", summary="Télécharger un modèle CSV")
def download_import_template(import_type: ImportType):
    csv_content = import_schemas.template_csv(import_type)
    return StreamingResponse(
        iter([csv_content]),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f"attachment; filename=modele_{import_type}.csv"},
    )
