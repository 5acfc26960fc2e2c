"""
Tests du planificateur : fuseau horaire du recalage nocturne.
"""

from datetime import date, datetime
from unittest.mock import MagicMock, patch
from zoneinfo import ZoneInfo

from schoolaccess import scheduler
from schoolaccess.config import settings


def test_planificateur_dans_le_fuseau_ecole():
    assert str(scheduler.scheduler.timezone) == settings.SCHOOL_TIMEZONE


def test_recalage_sur_le_jour_de_l_ecole():
    # 00:05 à Nairobi = 21:05 UTC la veille
    local_midnight = datetime(2026, 3, 3, 0, 5, tzinfo=ZoneInfo("Africa/Nairobi"))
    ledger = MagicMock()
    ledger.boarded_counts.return_value = {1: 3}

    with patch("schoolaccess.scheduler.school_now", return_value=local_midnight), \
         patch("schoolaccess.scheduler.SessionLocal") as session_factory, \
         patch("schoolaccess.services.ledger.SqlAttendanceLedger", return_value=ledger), \
         patch("schoolaccess.services.occupancy.reconcile_occupancy", return_value=0) as reconcile:
        scheduler._reconcile_occupancy_scheduled()

    ledger.boarded_counts.assert_called_once_with(date(2026, 3, 3))
    reconcile.assert_called_once_with(session_factory.return_value, {1: 3}, date(2026, 3, 3))
    session_factory.return_value.close.assert_called_once()
