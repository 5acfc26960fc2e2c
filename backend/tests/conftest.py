"""
Configuration partagée pour tous les tests.
Override la dépendance get_db pour éviter toute connexion réelle à PostgreSQL.
"""

import pytest
from fastapi.testclient import TestClient
from unittest.mock import MagicMock

from fakes import FIXED_NOW, FakeDirectory, FakeLedger, FakeOccupancy
from schoolaccess.database import get_db
from schoolaccess.main import app
from schoolaccess.services.scan_session import ScanSession


@pytest.fixture
def client():
    """Client HTTP de test avec la BDD mockée."""
    mock_db = MagicMock()
    app.dependency_overrides[get_db] = lambda: mock_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def directory():
    return FakeDirectory()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def occupancy():
    return FakeOccupancy()


@pytest.fixture
def session(directory, ledger, occupancy):
    """Session de scan sur les fakes, horloge figée."""
    return ScanSession(directory, ledger, occupancy, clock=lambda: FIXED_NOW)
