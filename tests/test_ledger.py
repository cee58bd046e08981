"""Tests for the in-memory activity ledger and staged deltas."""
from datetime import date

import pytest

from stockledger.core.exceptions import (
    ConcurrentUpdateError, ConservationError, SourceAlreadyAppliedError, UnknownGradeOrStrategy,
)
from stockledger.models import SourceType
from stockledger.services.ledger_service import (
    GRADE, STRATEGY, ActivityLedger, ActivityState, LedgerDelta,
)

DAY = date(2024, 3, 2)


def adjustment(grade, strategy, qty):
    delta = LedgerDelta(SourceType.STA)
    delta.add(grade, strategy, "stock_adjustment_qty", qty)
    return delta


class TestInitialize:
    """Tests for seeding a day's records."""

    def test_previous_close_policy(self, snapshot):
        previous = {
            GRADE: {"GRADEA": 450.0, "GRADEC": 20.0, "GRADED": 0.0},
            STRATEGY: {"S1": 470.0},
        }

        ledger = ActivityLedger.initialize(1, snapshot, DAY, previous_closing=previous, policy="previous_close")

        assert ledger.grades["GRADEA"].opening_qty == 450.0
        assert ledger.grades["GRADEB"].opening_qty == 0.0
        # Carried because the prior day closed with stock
        assert ledger.grades["GRADEC"].opening_qty == 20.0
        assert "GRADED" not in ledger.grades
        assert ledger.strategies["S1"].opening_qty == 470.0
        assert ledger.strategies["S2"].opening_qty == 0.0

    def test_snapshot_policy(self, snapshot):
        previous = {GRADE: {"GRADEA": 450.0, "GRADEC": 20.0}, STRATEGY: {}}

        ledger = ActivityLedger.initialize(1, snapshot, DAY, previous_closing=previous, policy="snapshot")

        assert ledger.grades["GRADEA"].opening_qty == 500.0
        assert "GRADEC" not in ledger.grades
        assert ledger.totals(GRADE)["opening_qty"] == 800.0
        assert ledger.totals(STRATEGY)["opening_qty"] == 800.0

    def test_every_flow_starts_at_zero(self, snapshot):
        ledger = ActivityLedger.initialize(1, snapshot, DAY, policy="snapshot")

        totals = ledger.totals(GRADE)
        assert all(qty == 0.0 for field, qty in totals.items() if field != "opening_qty")

    def test_unknown_policy(self, snapshot):
        with pytest.raises(ValueError):
            ActivityLedger.initialize(1, snapshot, DAY, policy="yesterday")


class TestApply:
    """Tests for folding staged deltas into the records."""

    def test_adjustment_lands_on_both_views(self, snapshot):
        ledger = ActivityLedger.initialize(1, snapshot, DAY, policy="snapshot")

        ledger.apply(adjustment("GRADEA", "S1", -50))

        assert ledger.grades["GRADEA"].stock_adjustment_qty == -50
        assert ledger.strategies["S1"].stock_adjustment_qty == -50
        assert SourceType.STA in ledger.applied_sources

    def test_second_application_is_rejected(self, snapshot):
        ledger = ActivityLedger.initialize(1, snapshot, DAY, policy="snapshot")
        ledger.apply(adjustment("GRADEA", "S1", -50))

        with pytest.raises(SourceAlreadyAppliedError) as excinfo:
            ledger.apply(adjustment("GRADEA", "S1", -50))

        assert isinstance(excinfo.value, ConcurrentUpdateError)
        assert ledger.grades["GRADEA"].stock_adjustment_qty == -50

    def test_forced_application_replaces_source_fields(self, snapshot):
        ledger = ActivityLedger.initialize(1, snapshot, DAY, policy="snapshot")
        ledger.apply(adjustment("GRADEA", "S1", -50))

        ledger.apply(adjustment("GRADEB", "S2", 15), force=True)

        assert ledger.grades["GRADEA"].stock_adjustment_qty == 0
        assert ledger.grades["GRADEB"].stock_adjustment_qty == 15
        assert ledger.strategies["S1"].stock_adjustment_qty == 0

    def test_unknown_key_leaves_ledger_untouched(self, snapshot):
        ledger = ActivityLedger.initialize(1, snapshot, DAY, policy="snapshot")
        delta = adjustment("GRADEA", "S1", -10)
        delta.add("GRADEZ", "S9", "stock_adjustment_qty", 5)

        with pytest.raises(UnknownGradeOrStrategy) as excinfo:
            ledger.apply(delta)

        assert excinfo.value.grades == ["GRADEZ"]
        assert excinfo.value.strategies == ["S9"]
        assert ledger.grades["GRADEA"].stock_adjustment_qty == 0
        assert SourceType.STA not in ledger.applied_sources

    def test_other_sources_are_independent(self, snapshot):
        ledger = ActivityLedger.initialize(1, snapshot, DAY, policy="snapshot")
        dispatch = LedgerDelta(SourceType.GDI)
        dispatch.add("GRADEA", "S1", "outbound_qty", 40)

        ledger.apply(adjustment("GRADEA", "S1", -50))
        ledger.apply(dispatch)

        state = ledger.grades["GRADEA"]
        assert state.computed_closing == 500 - 40 - 50


class TestLedgerDelta:
    """Tests for staged mutations."""

    def test_source_cannot_move_foreign_field(self):
        delta = LedgerDelta(SourceType.GDI)

        with pytest.raises(ConservationError):
            delta.add("GRADEA", "S1", "inbound_qty", 10)

    def test_unbalanced_views_fail_validation(self):
        delta = LedgerDelta(SourceType.GDI)
        delta.add("GRADEA", "S1", "outbound_qty", 10)
        delta.grades["GRADEA"]["outbound_qty"] += 5

        with pytest.raises(ConservationError):
            delta.validate(epsilon=0.01)

    def test_non_finite_quantity_fails_validation(self):
        delta = LedgerDelta(SourceType.GDI)
        delta.add("GRADEA", "S1", "outbound_qty", float("nan"))

        with pytest.raises(ConservationError) as exc_info:
            delta.validate(epsilon=0.01)

        assert "non-finite" in str(exc_info.value)

    def test_zero_quantities_are_not_staged(self):
        delta = LedgerDelta(SourceType.STA)
        delta.add("GRADEA", "S1", "stock_adjustment_qty", 0)

        assert delta.is_empty


class TestActivityState:
    """Tests for the closing formula."""

    def test_computed_closing(self):
        state = ActivityState(
            key="GRADEA", opening_qty=100, inbound_qty=50, from_processing_qty=30,
            to_processing_qty=40, outbound_qty=20, stock_adjustment_qty=-5, loss_gain_qty=-2,
        )

        assert state.computed_closing == 113
