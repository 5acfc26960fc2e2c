"""
Planificateur APScheduler de l'API.

- Exécute les jobs d'import soumis via l'API (pool de IMPORT_WORKERS threads)
- Recale chaque nuit l'occupation des bus sur le registre des présences
"""

import logging
import uuid

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler

from schoolaccess.config import school_now, school_timezone, settings
from schoolaccess.database import SessionLocal

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(
    executors={"default": ThreadPoolExecutor(settings.IMPORT_WORKERS)},
    timezone=school_timezone(),
)


def run_in_background(func, *args) -> str:
    """Planifie une exécution immédiate et unique de func(*args). Retourne l'id du job APScheduler."""
    job_id = f"oneshot-{uuid.uuid4()}"
    scheduler.add_job(func, args=args, id=job_id, misfire_grace_time=None)
    return job_id


def _reconcile_occupancy_scheduled() -> None:
    """
    Tâche planifiée : remet current_occupancy de chaque bus au nombre d'élèves
    dont le dernier scan transport du jour est une montée.
    Import local pour éviter les imports circulaires.
    """
    from schoolaccess.services.ledger import SqlAttendanceLedger
    from schoolaccess.services.occupancy import reconcile_occupancy

    day = school_now().date()
    db = SessionLocal()
    try:
        boarded = SqlAttendanceLedger(db).boarded_counts(day)
        corrected = reconcile_occupancy(db, boarded, day)
        logger.info("Recalage de l'occupation des bus : %d bus corrigé(s)", corrected)
    except Exception as exc:
        logger.error("Erreur lors du recalage de l'occupation des bus : %s", exc, exc_info=True)
    finally:
        db.close()


def start_scheduler() -> None:
    """Démarre le planificateur en arrière-plan (appelé au démarrage de l'API)."""
    scheduler.add_job(
        _reconcile_occupancy_scheduled,
        trigger="cron",
        hour=settings.OCCUPANCY_RECONCILE_HOUR,
        minute=5,
        id="bus_occupancy_reconcile",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        "Scheduler démarré : %d worker(s) d'import, recalage des bus à %02d:05 (%s).",
        settings.IMPORT_WORKERS, settings.OCCUPANCY_RECONCILE_HOUR, settings.SCHOOL_TIMEZONE,
    )


def stop_scheduler() -> None:
    """Arrête le planificateur proprement (appelé à l'arrêt de l'API)."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler arrêté.")
