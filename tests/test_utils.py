"""
Tests for the date, serialization and lock helpers.
"""
import threading
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from caseload.domain.imports.models import SessionStatus
from caseload.utils.date import format_iso_date, is_valid_date, parse_flexible_date
from caseload.utils.locks import HistoryLockManager
from caseload.utils.serialization import _make_json_safe


class TestDates:
    @pytest.mark.parametrize("value,expected", [
        ("2024-01-15", "2024-01-15T00:00:00Z"),
        ("15/01/2024", "2024-01-15T00:00:00Z"),
        ("01/15/2024", "2024-01-15T00:00:00Z"),
        ("2024-01-15T10:30:00Z", "2024-01-15T10:30:00Z"),
    ])
    def test_parse_flexible_date(self, value, expected):
        assert parse_flexible_date(value) == expected

    @pytest.mark.parametrize("value", [None, "", "   ", float("nan"), "not a date"])
    def test_unparseable_values(self, value):
        assert parse_flexible_date(value) is None

    def test_ambiguous_dates_follow_default_order(self):
        # Month first unless DATE_DEFAULT_DAYFIRST is set
        assert format_iso_date("03/04/2024") == "2024-03-04"

    def test_is_valid_date(self):
        assert is_valid_date("2024-02-29")
        assert not is_valid_date("2023-02-30")


class TestJsonSafe:
    def test_nested_values(self):
        payload = {
            "status": SessionStatus.COMPLETED,
            "when": datetime(2024, 1, 15, tzinfo=timezone.utc),
            "counts": (Decimal("3"), Decimal("2.5")),
            "missing": float("nan"),
        }
        assert _make_json_safe(payload) == {
            "status": "completed",
            "when": "2024-01-15T00:00:00+00:00",
            "counts": [3, "2.5"],
            "missing": None,
        }


class TestHistoryLockManager:
    def test_same_namespace_shares_a_lock(self):
        assert HistoryLockManager.get_lock("ns-lock") is HistoryLockManager.get_lock("ns-lock")
        assert HistoryLockManager.get_lock("ns-lock") is not HistoryLockManager.get_lock("ns-other")

    def test_lock_is_reentrant(self):
        with HistoryLockManager.acquire("ns-reentrant"):
            with HistoryLockManager.acquire("ns-reentrant"):
                pass

    def test_lock_excludes_other_threads(self):
        acquired = []

        def worker():
            acquired.append(HistoryLockManager.get_lock("ns-threads").acquire(blocking=False))

        with HistoryLockManager.acquire("ns-threads"):
            thread = threading.Thread(target=worker)
            thread.start()
            thread.join()

        assert acquired == [False]
