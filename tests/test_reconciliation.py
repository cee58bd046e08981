"""Tests for closing a day against the snapshot."""
from datetime import date

import pytest

from stockledger.models import SourceType
from stockledger.services.ledger_service import GRADE, STRATEGY, ActivityLedger, LedgerDelta
from stockledger.services.reconciliation_service import ReconciliationService
from tests.helpers import make_snapshot

DAY = date(2024, 3, 2)


def opened(grades, strategies):
    start = make_snapshot(grades=grades, strategies=strategies)
    return ActivityLedger.initialize(7, start, DAY, policy="snapshot")


class TestClose:
    """Tests for regrade discrepancy recording."""

    def test_discrepancy_is_snapshot_minus_computed(self):
        ledger = opened({"GRADEA": 500.0}, {"S1": 500.0})
        dispatch = LedgerDelta(SourceType.GDI)
        dispatch.add("GRADEA", "S1", "outbound_qty", 20)
        ledger.apply(dispatch)
        closing = make_snapshot(grades={"GRADEA": 500.0}, strategies={"S1": 500.0})

        result = ReconciliationService.close(ledger, closing)

        entry = result.discrepancy_for(GRADE, "GRADEA")
        assert entry.computed_closing == 480
        assert entry.regrade_discrepancy == 20
        assert ledger.grades["GRADEA"].xbs_closing_stock == 500
        assert ledger.grades["GRADEA"].regrade_discrepancy == 20
        assert result.total_discrepancy == 20
        # Within the default tolerance, so no warning
        assert result.warnings == []

    def test_large_discrepancy_warns_but_still_closes(self):
        ledger = opened({"GRADEA": 500.0}, {"S1": 500.0})
        closing = make_snapshot(grades={"GRADEA": 300.0}, strategies={"S1": 300.0})

        result = ReconciliationService.close(ledger, closing, tolerance_qty=10, tolerance_ratio=0.0)

        assert len(result.warnings) == 2
        assert {w.dimension for w in result.warnings} == {GRADE, STRATEGY}
        assert result.warnings[0].discrepancy == -200
        assert ledger.strategies["S1"].xbs_closing_stock == 300

    def test_ratio_tolerance_scales_with_volume(self):
        ledger = opened({"GRADEA": 10000.0}, {"S1": 10000.0})
        closing = make_snapshot(grades={"GRADEA": 9960.0}, strategies={"S1": 9960.0})

        result = ReconciliationService.close(ledger, closing, tolerance_qty=10, tolerance_ratio=0.005)

        assert result.discrepancy_for(GRADE, "GRADEA").tolerance == pytest.approx(50.0)
        assert result.warnings == []

    def test_keys_only_in_snapshot_are_added(self):
        ledger = opened({"GRADEA": 100.0}, {"S1": 100.0})
        closing = make_snapshot(grades={"GRADEA": 100.0, "GRADEN": 40.0}, strategies={"S1": 140.0})

        result = ReconciliationService.close(ledger, closing)

        assert result.added_keys == ["grade:GRADEN"]
        assert ledger.grades["GRADEN"].opening_qty == 0
        assert ledger.grades["GRADEN"].regrade_discrepancy == 40

    def test_keys_missing_from_snapshot_close_at_zero(self):
        ledger = opened({"GRADEA": 100.0, "GRADEB": 30.0}, {"S1": 130.0})
        closing = make_snapshot(grades={"GRADEA": 100.0}, strategies={"S1": 100.0})

        result = ReconciliationService.close(ledger, closing)

        assert result.discrepancy_for(GRADE, "GRADEB").xbs_closing_stock == 0
        assert result.discrepancy_for(GRADE, "GRADEB").regrade_discrepancy == -30
