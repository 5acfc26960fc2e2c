"""
Tests des verrous par clé.
"""

import threading
import time

from schoolaccess.services.locks import KeyedLock


def test_meme_cle_serialisee():
    locks = KeyedLock()
    inside = []
    overlap = []

    def work():
        with locks.hold(("eleve", "transport")):
            inside.append(1)
            if len(inside) > 1:
                overlap.append(True)
            time.sleep(0.01)
            inside.pop()

    threads = [threading.Thread(target=work) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert overlap == []
    assert len(locks) == 0


def test_cles_differentes_independantes():
    locks = KeyedLock()
    other_done = threading.Event()

    def other():
        with locks.hold("b"):
            other_done.set()

    with locks.hold("a"):
        thread = threading.Thread(target=other)
        thread.start()
        assert other_done.wait(timeout=1)
        thread.join()

    assert len(locks) == 0


def test_entree_liberee_apres_exception():
    locks = KeyedLock()

    try:
        with locks.hold("a"):
            raise RuntimeError("échec")
    except RuntimeError:
        pass

    assert len(locks) == 0
