"""Tests for the per-feed direction rules."""
from datetime import date

import pytest

from stockledger.core.exceptions import ConservationError
from stockledger.feeds import AdjustmentLine, DispatchLine, ProcessLine, ProcessRun, TransferLine
from stockledger.models import SourceType
from stockledger.services.debit_credit_service import DebitCreditService, allocate_losses


def run(number, inputs, outputs, milling=0.0, loss=0.0):
    return ProcessRun(
        process_number=number,
        inputs=[ProcessLine(*line) for line in inputs],
        outputs=[ProcessLine(*line) for line in outputs],
        milling_loss=milling,
        processing_loss=loss,
    )


class TestProcessing:
    """Tests for PA staging."""

    def test_run_debits_inputs_and_credits_outputs(self):
        runs = [run("1001", [("B100", "GRADEA", "S1", 100)], [("B200", "GRADEB", "S1", 90)], milling=10)]

        staged = DebitCreditService().stage(SourceType.PA, runs)

        assert staged.delta.strategies["S1"]["to_processing_qty"] == 100
        assert staged.delta.strategies["S1"]["from_processing_qty"] == 90
        assert staged.delta.strategies["S1"]["milling_loss_qty"] == 10
        assert staged.delta.grades["GRADEA"]["to_processing_qty"] == 100
        assert staged.delta.grades["GRADEB"]["from_processing_qty"] == 90
        assert staged.accepted == runs

    def test_losses_follow_input_share(self):
        process = run(
            "1002",
            [("B100", "GRADEA", "S1", 75), ("B300", "GRADEB", "S2", 25)],
            [("B200", "GRADEA", "S1", 88)],
            milling=8, loss=4,
        )

        allocation = allocate_losses(process)

        assert allocation[("B100", "GRADEA")] == pytest.approx((6.0, 3.0))
        assert allocation[("B300", "GRADEB")] == pytest.approx((2.0, 1.0))

    def test_unbalanced_run_is_rejected_whole(self):
        good = run("1003", [("B100", "GRADEA", "S1", 50)], [("B200", "GRADEA", "S1", 50)])
        bad = run("1004", [("B100", "GRADEA", "S1", 100)], [("B200", "GRADEB", "S1", 80)])

        staged = DebitCreditService().stage(SourceType.PA, [good, bad])

        assert staged.accepted == [good]
        assert staged.rejected == [bad]
        assert "1004" in staged.warnings[0]
        assert staged.delta.grades["GRADEA"]["to_processing_qty"] == 50
        assert "GRADEB" not in staged.delta.grades


class TestTransfers:
    """Tests for STI staging."""

    def test_inbound_and_transit_loss(self):
        line = TransferLine("STI-1", "B100", "GRADEA", "S1", instructed_qty=100, delivered_qty=98, loss_gain_qty=-2)

        staged = DebitCreditService().stage(SourceType.STI, [line])

        assert staged.delta.grades["GRADEA"]["inbound_qty"] == 100
        assert staged.delta.grades["GRADEA"]["loss_gain_qty"] == -2
        assert staged.total == 98


class TestAdjustmentsAndDispatches:
    """Tests for STA and GDI staging."""

    def test_signed_adjustment(self):
        line = AdjustmentLine(date(2024, 3, 2), "B100", "GRADEA", "S1", -50, "spoilage")

        staged = DebitCreditService().stage(SourceType.STA, [line])

        assert staged.delta.strategies["S1"]["stock_adjustment_qty"] == -50

    def test_dispatch_debits_outbound(self):
        line = DispatchLine(date(2024, 3, 2), "TK1", "GDI1", "DC1", "GRADEA", "B100", "S1", 40)

        staged = DebitCreditService().stage(SourceType.GDI, [line])

        assert staged.delta.grades["GRADEA"]["outbound_qty"] == 40
        assert staged.delta.strategies["S1"]["outbound_qty"] == 40

    def test_foreign_field_is_a_conservation_error(self):
        processor = DebitCreditService()
        staged = processor.stage(SourceType.GDI, [])

        with pytest.raises(ConservationError):
            staged.delta.add("GRADEA", "S1", "stock_adjustment_qty", 5)
