"""
Tests de la diffusion de l'avancement des jobs d'import (abonnement, flux SSE).
"""

import json
import threading
import uuid

import pytest

from schoolaccess.models.import_job import ImportJob
from schoolaccess.schemas.import_job import ImportJobResponse
from schoolaccess.services.job_progress import JobProgressReporter, format_event


def make_job(status="processing", processed=0, total=10):
    return ImportJob(
        id=uuid.uuid4(),
        import_type="students",
        filename="eleves.csv",
        status=status,
        total_rows=total,
        processed_rows=processed,
        successful_rows=processed,
        failed_rows=0,
        errors=[],
        warnings=[],
    )


def test_abonne_recoit_les_instantanes():
    reporter = JobProgressReporter()
    job = make_job()
    subscription = reporter.subscribe(job.id)

    job.processed_rows = 4
    reporter.publish(job)

    snapshot = subscription.get_nowait()
    assert snapshot.processed_rows == 4
    assert snapshot.progress_percentage == 40.0
    assert snapshot.remaining_rows == 6


def test_publication_sans_abonne():
    reporter = JobProgressReporter()

    snapshot = reporter.publish(make_job())

    assert snapshot.status == "processing"


def test_desabonnement():
    reporter = JobProgressReporter()
    job = make_job()
    subscription = reporter.subscribe(job.id)

    reporter.unsubscribe(job.id, subscription)

    assert reporter.subscriber_count(job.id) == 0


def test_flux_job_deja_termine():
    reporter = JobProgressReporter()
    job = make_job(status="completed", processed=10)

    frames = list(reporter.open_stream(job.id, lambda: job))

    assert len(frames) == 1
    assert frames[0].startswith("event: progress\ndata: ")
    assert reporter.subscriber_count(job.id) == 0


def test_flux_jusqu_a_la_fin_du_job():
    reporter = JobProgressReporter()
    job = make_job()
    stream = reporter.open_stream(job.id, lambda: job, heartbeat=0.05)
    first = next(stream)

    def run():
        for processed in (5, 10):
            job.processed_rows = processed
            reporter.publish(job)
        job.status = "completed"
        reporter.publish(job)

    worker = threading.Thread(target=run)
    worker.start()
    frames = [first] + [f for f in stream if not f.startswith(":")]
    worker.join()

    payloads = [json.loads(f.split("data: ", 1)[1]) for f in frames]
    assert [p["processed_rows"] for p in payloads] == [0, 5, 10, 10]
    assert payloads[-1]["status"] == "completed"


def test_fin_du_job_publiee_avant_le_premier_envoi():
    reporter = JobProgressReporter()
    job = make_job(processed=9)
    stream = reporter.open_stream(job.id, lambda: job, heartbeat=0.05)

    # Le worker termine avant que la réponse HTTP ne commence à itérer
    job.processed_rows = 10
    job.status = "completed"
    reporter.publish(job)

    frames = list(stream)

    assert len(frames) == 2
    last = json.loads(frames[-1].split("data: ", 1)[1])
    assert last["status"] == "completed"
    assert reporter.subscriber_count(job.id) == 0


def test_instantane_anterieur_a_la_lecture_ignore():
    reporter = JobProgressReporter()
    job = make_job(processed=3)

    def load():
        # Publication concurrente entre l'abonnement et la lecture
        reporter.publish(job)
        job.processed_rows = 4
        return job

    stream = reporter.open_stream(job.id, load, heartbeat=0.05)
    job.status = "completed"
    job.processed_rows = 10
    reporter.publish(job)

    payloads = [json.loads(f.split("data: ", 1)[1]) for f in stream]

    assert [p["processed_rows"] for p in payloads] == [4, 10]


def test_job_introuvable_pas_d_abonne_residuel():
    reporter = JobProgressReporter()
    job_id = uuid.uuid4()

    def load():
        raise ValueError("introuvable")

    with pytest.raises(ValueError):
        reporter.open_stream(job_id, load)

    assert reporter.subscriber_count(job_id) == 0


def test_keep_alive_sans_changement():
    reporter = JobProgressReporter()
    job = make_job()
    stream = reporter.open_stream(job.id, lambda: job, heartbeat=0.01)

    next(stream)
    assert next(stream) == ": keep-alive\n\n"
    stream.close()
    assert reporter.subscriber_count(job.id) == 0


def test_format_event():
    snapshot = ImportJobResponse.model_validate(make_job())

    frame = format_event(snapshot)

    assert frame.endswith("\n\n")
    assert json.loads(frame.split("data: ", 1)[1])["filename"] == "eleves.csv"
