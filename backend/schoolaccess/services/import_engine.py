"""
Moteur des imports Excel / CSV (élèves, bus, transport, cantine).

Cycle de vie d'un job :
  pending → processing → completed | failed
                       → cancelled (demande d'annulation, vue entre deux lignes)
  failed → pending (relance, fichier source conservé en base)

- Une ligne invalide (schéma) ou refusée par le writer (élève / bus inconnu)
  incrémente failed_rows et ajoute une erreur ; le lot continue.
- Un fichier illisible ou une colonne obligatoire absente → failed avec une
  seule erreur de niveau fichier (row = 0). Toute autre erreur hors ligne
  (base de données, bug) → failed également, jamais bloqué en processing.
- "completed" signifie "toutes les lignes parcourues", pas "zéro erreur" :
  success_rate donne la qualité de l'import.
- Les lignes déjà importées ne sont jamais annulées (un savepoint par ligne).

Le drapeau d'annulation (threading.Event) est propre au processus : une
annulation doit atteindre le worker qui exécute le job.
"""

import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from schoolaccess.config import settings
from schoolaccess.database import SessionLocal
from schoolaccess.models.import_job import (
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PROCESSING,
    ImportJob,
)
from schoolaccess.schemas.import_job import ImportRowIssue, ImportStats, ImportValidation
from schoolaccess.scheduler import run_in_background
from schoolaccess.services.errors import ImportFileError, JobStateError, RowIngestError, TooManyRowsError
from schoolaccess.services.import_schemas import check_header, get_schema, validate_row
from schoolaccess.services.import_writers import ROW_WRITERS
from schoolaccess.services.job_progress import JobProgressReporter
from schoolaccess.services.tabular import Table, read_table

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImportJobEngine:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        writers: Optional[Dict[str, Callable]] = None,
        reporter: Optional[JobProgressReporter] = None,
        dispatch: Callable = run_in_background,
    ):
        self.session_factory = session_factory
        self.writers = writers if writers is not None else ROW_WRITERS
        self.reporter = reporter if reporter is not None else JobProgressReporter()
        self.dispatch = dispatch
        self._flags_lock = threading.Lock()
        self._cancel_flags: Dict[str, threading.Event] = {}

    # --- Validation à blanc ---

    def validate(self, content: bytes, filename: str, import_type: str) -> ImportValidation:
        """Valide un fichier sans créer de job ni écrire en base."""
        get_schema(import_type)
        try:
            table, warnings = self._load(content, filename, import_type)
        except ImportFileError as exc:
            return ImportValidation(
                valid=False,
                error_code=exc.code,
                errors=[ImportRowIssue(row=0, message=str(exc))],
                warnings=[],
                total_rows=0,
                sample_data=[],
            )

        errors: List[ImportRowIssue] = []
        sample = []
        seen = set()
        for row_number, raw in table.rows:
            row, issues = validate_row(import_type, row_number, raw, seen)
            errors.extend(issues)
            if row is not None and len(sample) < settings.IMPORT_SAMPLE_SIZE:
                sample.append(row.model_dump(mode="json", exclude={"type"}))

        logger.info(
            "Validation import %s (%s) : %d lignes, %d erreur(s)",
            import_type, filename, table.total_rows, len(errors),
        )
        return ImportValidation(
            valid=not errors,
            errors=errors,
            warnings=warnings,
            total_rows=table.total_rows,
            sample_data=sample,
        )

    # --- Exécution ---

    def create_job(
        self,
        db: Session,
        filename: str,
        import_type: str,
        created_by: Optional[str] = None,
        content: Optional[bytes] = None,
    ) -> ImportJob:
        get_schema(import_type)
        job = ImportJob(
            id=uuid.uuid4(),
            import_type=import_type,
            filename=filename,
            status=STATUS_PENDING,
            source_file=content,
            total_rows=0,
            processed_rows=0,
            successful_rows=0,
            failed_rows=0,
            errors=[],
            warnings=[],
            created_by=created_by,
        )
        db.add(job)
        db.commit()
        self._flag(job.id)
        logger.info("Job d'import %s créé (%s, %s)", job.id, import_type, filename)
        return job

    def start(
        self,
        db: Session,
        content: bytes,
        filename: str,
        import_type: str,
        created_by: Optional[str] = None,
    ) -> ImportJob:
        """Crée le job et importe toutes les lignes dans le thread appelant."""
        job = self.create_job(db, filename, import_type, created_by, content=content)
        return self._process(db, job, content)

    def submit(
        self,
        db: Session,
        content: bytes,
        filename: str,
        import_type: str,
        created_by: Optional[str] = None,
    ) -> ImportJob:
        """Crée le job et confie l'import au planificateur. Retourne le job en pending."""
        job = self.create_job(db, filename, import_type, created_by, content=content)
        self.reporter.publish(job)
        self.dispatch(self._run_in_background, job.id, content)
        return job

    def retry(self, db: Session, job_id) -> ImportJob:
        """
        Relance un job en échec à partir du fichier conservé : compteurs, erreurs
        et avertissements remis à zéro, statut pending, exécution en arrière-plan.
        Les lignes importées lors de la première tentative sont mises à jour (upsert).

        Lève ValueError si le job n'existe pas, JobStateError s'il n'est pas en
        échec ou si son fichier n'est plus disponible.
        """
        job = get_job(db, job_id)
        if job.status != STATUS_FAILED:
            raise JobStateError(f"Seul un job en échec peut être relancé (statut : {job.status}).")
        content = job.source_file
        if not content:
            raise JobStateError("Fichier source indisponible : soumettre le fichier à nouveau.")

        job.status = STATUS_PENDING
        job.total_rows = 0
        job.processed_rows = 0
        job.successful_rows = 0
        job.failed_rows = 0
        job.errors = []
        job.warnings = []
        job.started_at = None
        job.completed_at = None
        db.commit()
        self._flag(job.id)
        logger.info("Relance du job d'import %s (%s)", job.id, job.filename)

        self.reporter.publish(job)
        self.dispatch(self._run_in_background, job.id, content)
        return job

    def cancel(self, db: Session, job_id) -> ImportJob:
        """
        Demande l'annulation d'un job. Idempotent ; sans effet sur un job terminé
        ou sur un job qui ne s'exécute pas dans ce processus.
        Lève ValueError si le job n'existe pas.
        """
        job = db.get(ImportJob, job_id)
        if job is None:
            raise ValueError(f"Job d'import {job_id} introuvable.")
        if job.is_terminal:
            return job
        with self._flags_lock:
            cancel_flag = self._cancel_flags.get(str(job.id))
        if cancel_flag is None:
            logger.warning("Annulation ignorée : job %s non exécuté par ce processus", job.id)
            return job
        cancel_flag.set()
        logger.info("Annulation demandée : job %s", job.id)
        return job

    def _run_in_background(self, job_id, content: bytes) -> None:
        db = self.session_factory()
        try:
            job = db.get(ImportJob, job_id)
            if job is None:
                logger.error("Job d'import %s introuvable au démarrage du worker", job_id)
                return
            self._process(db, job, content)
        finally:
            db.close()

    def _process(self, db: Session, job: ImportJob, content: bytes) -> ImportJob:
        cancel_flag = self._flag(job.id)
        try:
            self._ingest_file(db, job, content, cancel_flag)
        except SQLAlchemyError:
            db.rollback()
            logger.error("Import %s interrompu : erreur base de données", job.id, exc_info=True)
            self._finish(
                db, job, STATUS_FAILED,
                error=ImportRowIssue(row=0, message="Erreur base de données : import interrompu."),
            )
        except Exception:
            db.rollback()
            logger.error("Import %s interrompu : erreur inattendue", job.id, exc_info=True)
            self._finish(
                db, job, STATUS_FAILED,
                error=ImportRowIssue(row=0, message="Erreur interne : import interrompu."),
            )
        finally:
            self._drop_flag(job.id)
        return job

    def _ingest_file(self, db: Session, job: ImportJob, content: bytes, cancel_flag: threading.Event) -> None:
        job.status = STATUS_PROCESSING
        job.started_at = _utcnow()
        db.commit()
        self.reporter.publish(job)

        try:
            table, warnings = self._load(content, job.filename, job.import_type)
        except ImportFileError as exc:
            logger.warning("Import %s (%s) en échec : %s", job.id, job.filename, exc)
            self._finish(db, job, STATUS_FAILED, error=ImportRowIssue(row=0, message=str(exc)))
            return

        job.total_rows = table.total_rows
        job.warnings = [w.model_dump() for w in warnings]
        db.commit()
        self.reporter.publish(job)

        writer = self.writers[job.import_type]
        seen = set()
        for row_number, raw in table.rows:
            if cancel_flag.is_set():
                self._finish(db, job, STATUS_CANCELLED)
                logger.info(
                    "Import %s annulé après %d/%d lignes", job.id, job.processed_rows, job.total_rows,
                )
                return

            issues = self._ingest_row(db, writer, job.import_type, row_number, raw, seen)
            job.processed_rows += 1
            if issues:
                job.failed_rows += 1
                # Réassignation : la colonne JSON n'est pas suivie en mutation
                job.errors = list(job.errors) + [i.model_dump() for i in issues]
            else:
                job.successful_rows += 1
            db.commit()
            self.reporter.publish(job)

        self._finish(db, job, STATUS_COMPLETED)
        logger.info(
            "Import %s terminé : %d/%d lignes importées, %d en erreur",
            job.id, job.successful_rows, job.total_rows, job.failed_rows,
        )

    def _ingest_row(self, db: Session, writer, import_type, row_number, raw, seen) -> List[ImportRowIssue]:
        row, issues = validate_row(import_type, row_number, raw, seen)
        if issues:
            return issues

        savepoint = db.begin_nested()
        try:
            writer(db, row)
        except RowIngestError as exc:
            savepoint.rollback()
            return [ImportRowIssue(row=row_number, column=exc.column, message=str(exc), value=exc.value)]
        except IntegrityError:
            savepoint.rollback()
            logger.warning("Ligne %d rejetée : contrainte d'unicité", row_number, exc_info=True)
            return [ImportRowIssue(row=row_number, message="Conflit avec une donnée existante (valeur déjà utilisée).")]
        savepoint.commit()
        return []

    def _load(self, content: bytes, filename: str, import_type: str):
        table: Table = read_table(content, filename)
        warnings = check_header(import_type, table.headers)
        if table.total_rows > settings.IMPORT_MAX_ROWS:
            raise TooManyRowsError(
                f"Fichier trop volumineux : {table.total_rows} lignes (maximum {settings.IMPORT_MAX_ROWS})."
            )
        return table, warnings

    def _finish(self, db: Session, job: ImportJob, status: str, error: Optional[ImportRowIssue] = None) -> None:
        if error is not None:
            job.errors = list(job.errors or []) + [error.model_dump()]
        job.status = status
        job.completed_at = _utcnow()
        if status != STATUS_FAILED:
            # Fichier conservé uniquement pour une relance
            job.source_file = None
        db.commit()
        self.reporter.publish(job)

    def _flag(self, job_id) -> threading.Event:
        with self._flags_lock:
            return self._cancel_flags.setdefault(str(job_id), threading.Event())

    def _drop_flag(self, job_id) -> None:
        with self._flags_lock:
            self._cancel_flags.pop(str(job_id), None)


# --- Consultation et suppression ---

def get_job(db: Session, job_id) -> ImportJob:
    job = db.get(ImportJob, job_id)
    if job is None:
        raise ValueError(f"Job d'import {job_id} introuvable.")
    return job


def delete_job(db: Session, job_id) -> None:
    """Supprime un job terminé. Lève JobStateError si le job est encore en attente ou en cours."""
    job = get_job(db, job_id)
    if not job.is_terminal:
        raise JobStateError(f"Impossible de supprimer un job {job.status} : l'annuler d'abord.")
    db.delete(job)
    db.commit()
    logger.info("Job d'import %s supprimé (%s)", job.id, job.filename)


def list_jobs(
    db: Session,
    import_type: Optional[str] = None,
    status: Optional[str] = None,
    days: Optional[int] = None,
    limit: int = 100,
) -> List[ImportJob]:
    """Jobs les plus récents d'abord, filtrés par type, statut et ancienneté (jours)."""
    stmt = select(ImportJob)
    if import_type:
        stmt = stmt.where(ImportJob.import_type == import_type)
    if status:
        stmt = stmt.where(ImportJob.status == status)
    if days:
        stmt = stmt.where(ImportJob.created_at >= _utcnow() - timedelta(days=days))
    stmt = stmt.order_by(ImportJob.created_at.desc()).limit(limit)
    return list(db.execute(stmt).scalars().all())


def get_statistics(db: Session) -> ImportStats:
    rows = db.execute(
        select(
            ImportJob.status,
            func.count(ImportJob.id),
            func.coalesce(func.sum(ImportJob.processed_rows), 0),
            func.coalesce(func.sum(ImportJob.successful_rows), 0),
            func.coalesce(func.sum(ImportJob.total_rows), 0),
        ).group_by(ImportJob.status)
    ).all()

    by_status = {s: 0 for s in (STATUS_PENDING, STATUS_PROCESSING, STATUS_COMPLETED, STATUS_FAILED, STATUS_CANCELLED)}
    processed = successful = total = 0
    for status, count, job_processed, job_successful, job_total in rows:
        by_status[status] = count
        processed += job_processed
        successful += job_successful
        total += job_total

    return ImportStats(
        total_jobs=sum(by_status.values()),
        pending=by_status[STATUS_PENDING],
        processing=by_status[STATUS_PROCESSING],
        completed=by_status[STATUS_COMPLETED],
        failed=by_status[STATUS_FAILED],
        cancelled=by_status[STATUS_CANCELLED],
        total_records_processed=processed,
        success_rate=round(successful / total * 100, 2) if total else 0.0,
    )
