"""
Verrous par clé pour sérialiser les scans d'un même élève sur un même service.

Deux élèves différents ne partagent jamais de verrou ; le verrou global ne
protège que le dictionnaire (accès en O(1)), jamais la section critique.
Les entrées sont supprimées dès que plus personne ne les détient.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, List


class KeyedLock:
    def __init__(self):
        self._guard = threading.Lock()
        self._entries: Dict[Hashable, List] = {}  # clé → [Lock, nombre d'utilisateurs]

    @contextmanager
    def hold(self, key: Hashable):
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = [threading.Lock(), 0]
            entry[1] += 1

        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._entries[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
