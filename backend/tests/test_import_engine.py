"""
Tests unitaires du moteur d'import (cycle de vie des jobs, échecs partiels,
annulation). La session SQLAlchemy est un MagicMock ; les writers sont
remplacés par des fonctions de test.
"""

import threading
import uuid
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from schoolaccess.config import settings
from schoolaccess.models.import_job import ImportJob
from schoolaccess.services.errors import JobStateError, RowIngestError
from schoolaccess.services.import_engine import (
    ImportJobEngine,
    delete_job,
    get_job,
    get_statistics,
    list_jobs,
)


def make_db_mock():
    """Session mockée : db.get retrouve les jobs passés à db.add."""
    db = MagicMock()
    added = {}
    db.add.side_effect = lambda obj: added.__setitem__(obj.id, obj)
    db.get.side_effect = lambda model, key: added.get(key)
    return db


def bus_csv(count, bad_lines=()):
    """CSV de `count` bus ; les lignes listées (n° de ligne fichier) n'ont pas de bus_number."""
    lines = ["bus_number,capacity"]
    for line_number in range(2, count + 2):
        bus_number = "" if line_number in bad_lines else f"BUS-{line_number:03d}"
        lines.append(f"{bus_number},40")
    return ("\n".join(lines) + "\n").encode()


def recording_writer(calls):
    def writer(db, row):
        calls.append(row.row_number)
    return writer


def make_engine(writer, **kwargs):
    return ImportJobEngine(session_factory=MagicMock(), writers={"buses": writer}, **kwargs)


# --- Cycle de vie ---

def test_import_complet_avec_deux_lignes_invalides():
    calls = []
    engine = make_engine(recording_writer(calls))

    job = engine.start(make_db_mock(), bus_csv(100, bad_lines={5, 42}), "buses.csv", "buses")

    assert job.status == "completed"
    assert job.total_rows == 100
    assert job.processed_rows == 100
    assert job.successful_rows == 98
    assert job.failed_rows == 2
    assert [e["row"] for e in job.errors] == [5, 42]
    assert len(calls) == 98
    assert job.started_at is not None
    assert job.completed_at is not None
    assert job.success_rate == 98.0
    assert job.progress_percentage == 100.0


def test_compteurs_coherents():
    engine = make_engine(recording_writer([]))

    job = engine.start(make_db_mock(), bus_csv(10, bad_lines={3}), "buses.csv", "buses")

    assert job.processed_rows == job.successful_rows + job.failed_rows == job.total_rows


def test_writer_rejette_la_ligne():
    def writer(db, row):
        if row.bus_number == "BUS-003":
            raise RowIngestError("Bus introuvable : BUS-003", column="bus_number", value="BUS-003")

    db = make_db_mock()
    job = make_engine(writer).start(db, bus_csv(4), "buses.csv", "buses")

    assert job.status == "completed"
    assert job.successful_rows == 3
    assert job.failed_rows == 1
    assert job.errors == [{"row": 3, "column": "bus_number", "message": "Bus introuvable : BUS-003", "value": "BUS-003"}]
    db.begin_nested.return_value.rollback.assert_called_once()


def test_conflit_unicite_compte_comme_ligne_en_erreur():
    def writer(db, row):
        if row.row_number == 2:
            raise IntegrityError("INSERT", {}, Exception("duplicate key"))

    job = make_engine(writer).start(make_db_mock(), bus_csv(3), "buses.csv", "buses")

    assert job.status == "completed"
    assert job.failed_rows == 1
    assert job.errors[0]["row"] == 2


def test_panne_base_pendant_import():
    def writer(db, row):
        raise OperationalError("UPDATE", {}, Exception("connection lost"))

    db = make_db_mock()
    job = make_engine(writer).start(db, bus_csv(3), "buses.csv", "buses")

    assert job.status == "failed"
    assert job.errors[-1]["row"] == 0
    db.rollback.assert_called()


def test_erreur_inattendue_job_en_echec():
    def writer(db, row):
        raise RuntimeError("bug writer")

    db = make_db_mock()
    engine = make_engine(writer)
    job = engine.start(db, bus_csv(3), "buses.csv", "buses")

    assert job.status == "failed"
    assert job.completed_at is not None
    assert job.errors[-1]["row"] == 0
    db.rollback.assert_called()
    assert engine._cancel_flags == {}


def test_echec_de_publication_job_en_echec():
    reporter = MagicMock()
    reporter.publish.side_effect = RuntimeError("abonné cassé")
    db = make_db_mock()
    engine = make_engine(recording_writer([]), reporter=reporter)

    with pytest.raises(RuntimeError):
        engine.start(db, bus_csv(3), "buses.csv", "buses")

    job = db.add.call_args[0][0]
    assert job.status == "failed"
    assert job.completed_at is not None


def test_fichier_illisible_job_en_echec():
    job = make_engine(recording_writer([])).start(make_db_mock(), b"\x00\x01\x02", "buses.csv", "buses")

    assert job.status == "failed"
    assert job.total_rows == 0
    assert len(job.errors) == 1
    assert job.errors[0]["row"] == 0


def test_colonne_obligatoire_absente_job_en_echec():
    job = make_engine(recording_writer([])).start(make_db_mock(), b"capacity\n40\n", "buses.csv", "buses")

    assert job.status == "failed"
    assert "bus_number" in job.errors[0]["message"]
    assert job.processed_rows == 0


def test_colonne_inconnue_en_avertissement():
    job = make_engine(recording_writer([])).start(
        make_db_mock(), b"bus_number,couleur\nBUS-001,bleu\n", "buses.csv", "buses",
    )

    assert job.status == "completed"
    assert job.warnings[0]["column"] == "couleur"


def test_trop_de_lignes(monkeypatch):
    monkeypatch.setattr(settings, "IMPORT_MAX_ROWS", 3)

    job = make_engine(recording_writer([])).start(make_db_mock(), bus_csv(4), "buses.csv", "buses")

    assert job.status == "failed"
    assert "maximum 3" in job.errors[0]["message"]


def test_progression_publiee_a_chaque_ligne():
    reporter = MagicMock()
    engine = make_engine(recording_writer([]), reporter=reporter)

    job = engine.start(make_db_mock(), bus_csv(5), "buses.csv", "buses")

    # processing, total connu, 5 lignes, fin
    assert reporter.publish.call_count == 8
    reporter.publish.assert_called_with(job)


def test_type_inconnu_refuse_avant_creation():
    db = make_db_mock()

    with pytest.raises(ValueError):
        make_engine(recording_writer([])).start(db, bus_csv(1), "f.csv", "teachers")

    db.add.assert_not_called()


# --- Soumission et annulation ---

def test_submit_retourne_un_job_en_attente():
    dispatched = []
    engine = make_engine(recording_writer([]), dispatch=lambda func, *args: dispatched.append((func, args)))

    job = engine.submit(make_db_mock(), bus_csv(2), "buses.csv", "buses", created_by="secretariat")

    assert job.status == "pending"
    assert job.created_by == "secretariat"
    assert len(dispatched) == 1


def test_annulation_apres_ligne_30():
    calls = []
    reached = threading.Event()
    resume = threading.Event()

    def writer(db, row):
        calls.append(row.row_number)
        if len(calls) == 30:
            reached.set()
            resume.wait(timeout=5)

    threads = []

    def dispatch(func, *args):
        thread = threading.Thread(target=func, args=args)
        threads.append(thread)
        thread.start()

    db = make_db_mock()
    engine = ImportJobEngine(session_factory=lambda: db, writers={"buses": writer}, dispatch=dispatch)

    job = engine.submit(db, bus_csv(100), "buses.csv", "buses")
    assert reached.wait(timeout=5)
    engine.cancel(db, job.id)
    resume.set()
    threads[0].join(timeout=5)

    assert job.status == "cancelled"
    assert job.processed_rows == 30
    assert len(calls) == 30
    assert job.total_rows == 100
    assert job.completed_at is not None


def test_annulation_avant_demarrage():
    dispatched = []
    db = make_db_mock()
    engine = ImportJobEngine(
        session_factory=lambda: db,
        writers={"buses": recording_writer([])},
        dispatch=lambda func, *args: dispatched.append((func, args)),
    )

    job = engine.submit(db, bus_csv(10), "buses.csv", "buses")
    engine.cancel(db, job.id)
    func, args = dispatched[0]
    func(*args)

    assert job.status == "cancelled"
    assert job.processed_rows == 0
    assert job.started_at is not None


def test_annulation_job_termine_sans_effet():
    db = make_db_mock()
    engine = make_engine(recording_writer([]))
    job = engine.start(db, bus_csv(3), "buses.csv", "buses")

    result = engine.cancel(db, job.id)

    assert result.status == "completed"
    assert engine.cancel(db, job.id).status == "completed"


def test_annulation_job_inconnu():
    with pytest.raises(ValueError):
        make_engine(recording_writer([])).cancel(make_db_mock(), uuid.uuid4())


def test_annulation_job_d_un_autre_processus_sans_drapeau():
    db = make_db_mock()
    engine = make_engine(recording_writer([]))
    foreign = ImportJob(id=uuid.uuid4(), import_type="buses", filename="buses.csv", status="processing")
    db.add(foreign)

    result = engine.cancel(db, foreign.id)

    assert result.status == "processing"
    assert engine._cancel_flags == {}


def test_annulation_apres_fin_du_worker_sans_drapeau_residuel():
    db = make_db_mock()
    engine = make_engine(recording_writer([]))
    job = engine.start(db, bus_csv(3), "buses.csv", "buses")
    # État lu avant la fin du worker
    job.status = "processing"

    engine.cancel(db, job.id)

    assert engine._cancel_flags == {}


# --- Relance et suppression ---

def test_relance_job_en_echec():
    attempts = []

    def writer(db, row):
        attempts.append(row.row_number)
        if len(attempts) == 2:
            raise OperationalError("INSERT", {}, Exception("connection lost"))

    dispatched = []
    db = make_db_mock()
    engine = ImportJobEngine(
        session_factory=lambda: db,
        writers={"buses": writer},
        dispatch=lambda func, *args: dispatched.append((func, args)),
    )
    failed = engine.start(db, bus_csv(3), "buses.csv", "buses")
    assert failed.status == "failed"
    assert failed.source_file is not None

    job = engine.retry(db, failed.id)

    assert job.status == "pending"
    assert job.processed_rows == job.failed_rows == job.successful_rows == 0
    assert job.errors == []
    assert job.completed_at is None

    func, args = dispatched[0]
    func(*args)

    assert job.status == "completed"
    assert job.successful_rows == 3
    assert job.errors == []
    assert job.source_file is None


def test_relance_job_non_en_echec_refusee():
    db = make_db_mock()
    engine = make_engine(recording_writer([]))
    job = engine.start(db, bus_csv(2), "buses.csv", "buses")

    with pytest.raises(JobStateError):
        engine.retry(db, job.id)


def test_relance_sans_fichier_conserve():
    db = make_db_mock()
    job = ImportJob(id=uuid.uuid4(), import_type="buses", filename="buses.csv", status="failed", source_file=None)
    db.add(job)

    with pytest.raises(JobStateError):
        make_engine(recording_writer([])).retry(db, job.id)


def test_relance_job_inconnu():
    with pytest.raises(ValueError):
        make_engine(recording_writer([])).retry(make_db_mock(), uuid.uuid4())


def test_suppression_job_termine():
    db = make_db_mock()
    job = ImportJob(id=uuid.uuid4(), import_type="buses", filename="buses.csv", status="completed")
    db.add(job)

    delete_job(db, job.id)

    db.delete.assert_called_once_with(job)
    db.commit.assert_called_once()


def test_suppression_job_en_cours_refusee():
    db = make_db_mock()
    job = ImportJob(id=uuid.uuid4(), import_type="buses", filename="buses.csv", status="processing")
    db.add(job)

    with pytest.raises(JobStateError):
        delete_job(db, job.id)
    db.delete.assert_not_called()


# --- Validation à blanc ---

def test_validation_sans_creer_de_job(monkeypatch):
    monkeypatch.setattr(settings, "IMPORT_SAMPLE_SIZE", 5)
    db = make_db_mock()
    engine = make_engine(recording_writer([]))

    result = engine.validate(bus_csv(8, bad_lines={4}), "buses.csv", "buses")

    assert result.valid is False
    assert result.total_rows == 8
    assert [e.row for e in result.errors] == [4]
    assert len(result.sample_data) == 5
    assert result.sample_data[0] == {
        "row_number": 2, "bus_number": "BUS-002", "bus_name": None, "capacity": 40,
        "driver_name": None, "driver_phone": None, "route_description": None, "status": "active",
    }
    db.add.assert_not_called()


def test_validation_fichier_illisible():
    result = make_engine(recording_writer([])).validate(b"%PDF-1.4", "scan.pdf", "buses")

    assert result.valid is False
    assert result.error_code == "unreadable_file"
    assert result.sample_data == []


def test_validation_colonnes_manquantes():
    result = make_engine(recording_writer([])).validate(b"first_name\nJohn\n", "eleves.csv", "students")

    assert result.error_code == "missing_columns"


# --- Consultation ---

def test_get_job_introuvable():
    db = MagicMock()
    db.get.return_value = None

    with pytest.raises(ValueError):
        get_job(db, uuid.uuid4())


def test_list_jobs():
    db = MagicMock()
    job = ImportJob(id=uuid.uuid4(), import_type="buses", filename="buses.csv", status="completed")
    db.execute.return_value.scalars.return_value.all.return_value = [job]

    assert list_jobs(db, import_type="buses", status="completed", days=7) == [job]


def test_statistiques():
    db = MagicMock()
    db.execute.return_value.all.return_value = [
        ("completed", 3, 250, 240, 250),
        ("failed", 1, 0, 0, 0),
    ]

    stats = get_statistics(db)

    assert stats.total_jobs == 4
    assert stats.completed == 3
    assert stats.failed == 1
    assert stats.pending == 0
    assert stats.total_records_processed == 250
    assert stats.success_rate == 96.0
