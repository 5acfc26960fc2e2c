"""
Diffusion de l'avancement des jobs d'import.

Le moteur publie un instantané (ImportJobResponse) après chaque changement
d'état ; chaque abonné reçoit les instantanés du job suivi dans sa propre
file. Le flux SSE (GET /api/v1/imports/jobs/{id}/events) et le polling
(GET /api/v1/imports/jobs/{id}) reposent sur le même état.
"""

import logging
import queue
import threading
from typing import Callable, Dict, Iterator, List

from schoolaccess.models.import_job import TERMINAL_STATUSES
from schoolaccess.schemas.import_job import ImportJobResponse

logger = logging.getLogger(__name__)

HEARTBEAT_SECONDS = 15.0


class JobProgressReporter:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: Dict[str, List[queue.Queue]] = {}

    def subscribe(self, job_id) -> queue.Queue:
        subscription: queue.Queue = queue.Queue()
        with self._lock:
            self._subscribers.setdefault(str(job_id), []).append(subscription)
        return subscription

    def unsubscribe(self, job_id, subscription: queue.Queue) -> None:
        key = str(job_id)
        with self._lock:
            queues = self._subscribers.get(key, [])
            if subscription in queues:
                queues.remove(subscription)
            if not queues:
                self._subscribers.pop(key, None)

    def subscriber_count(self, job_id) -> int:
        with self._lock:
            return len(self._subscribers.get(str(job_id), []))

    def publish(self, job) -> ImportJobResponse:
        """Publie l'état courant du job à tous ses abonnés."""
        snapshot = ImportJobResponse.model_validate(job)
        with self._lock:
            queues = list(self._subscribers.get(str(snapshot.id), []))
        for subscription in queues:
            subscription.put(snapshot)
        return snapshot

    def open_stream(
        self,
        job_id,
        load: Callable[[], object],
        heartbeat: float = HEARTBEAT_SECONDS,
    ) -> Iterator[str]:
        """
        S'abonne au job puis lit son état courant via `load` (erreurs propagées).
        Toute publication postérieure à l'abonnement est ainsi reçue, même si
        elle précède la lecture.
        """
        subscription = self.subscribe(job_id)
        try:
            initial = ImportJobResponse.model_validate(load())
        except Exception:
            self.unsubscribe(job_id, subscription)
            raise
        return self._frames(job_id, subscription, initial, heartbeat)

    def _frames(
        self,
        job_id,
        subscription: queue.Queue,
        initial: ImportJobResponse,
        heartbeat: float,
    ) -> Iterator[str]:
        """
        Génère des trames server-sent events jusqu'à ce que le job soit terminé.
        Un commentaire keep-alive est émis si aucun changement pendant `heartbeat` secondes.
        """
        try:
            yield format_event(initial)
            if initial.status in TERMINAL_STATUSES:
                return
            last = initial
            while True:
                try:
                    snapshot = subscription.get(timeout=heartbeat)
                except queue.Empty:
                    yield ": keep-alive\n\n"
                    continue
                # Instantané publié avant la lecture initiale : déjà dépassé
                if snapshot.status == last.status and snapshot.processed_rows < last.processed_rows:
                    continue
                last = snapshot
                yield format_event(snapshot)
                if snapshot.status in TERMINAL_STATUSES:
                    return
        finally:
            self.unsubscribe(job_id, subscription)
            logger.debug("Flux de progression fermé : job %s", job_id)


def format_event(snapshot: ImportJobResponse) -> str:
    return f"event: progress\ndata: {snapshot.model_dump_json()}\n\n"
