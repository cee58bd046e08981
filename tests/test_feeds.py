"""Tests for the source normalizers and the snapshot parser."""
from datetime import date, datetime

import pytest

from stockledger.core.exceptions import SchemaError
from stockledger.feeds import (
    AdjustmentNormalizer, AllocationParser, DispatchNormalizer, ProcessingNormalizer,
    ResolutionTable, SnapshotParser, TransferNormalizer, parse_date, parse_qty, normalize_key,
)
from stockledger.models import BatchTransferStatus, SourceType
from tests.helpers import gdi_file, pa_file, snapshot_file, sta_file, sti_file, sti_row, xlsx

SINCE = date(2024, 3, 1)
TABLE = ResolutionTable({"B100": "S1", "B200": "S1", "B300": "S2"})


class TestCellParsing:
    """Tests for the date, quantity and key helpers."""

    def test_excel_serial_dates(self):
        assert parse_date(44927) == date(2023, 1, 1)
        assert parse_date(45000.0) == date(2023, 3, 15)
        assert parse_date("44927") == date(2023, 1, 1)

    def test_string_and_datetime_dates(self):
        assert parse_date("2024-03-05") == date(2024, 3, 5)
        assert parse_date(datetime(2024, 3, 5, 14, 30)) == date(2024, 3, 5)
        assert parse_date(date(2024, 3, 5)) == date(2024, 3, 5)

    def test_unreadable_dates(self):
        assert parse_date("not a date") is None
        assert parse_date("") is None
        assert parse_date(None) is None

    def test_quantities(self):
        assert parse_qty("1,250.5") == 1250.5
        assert parse_qty(" ", default=0.0) == 0.0
        assert parse_qty("n/a") is None

    def test_non_finite_quantities_read_as_default(self):
        assert parse_qty("nan") is None
        assert parse_qty("inf", default=0.0) == 0.0
        assert parse_qty(float("nan"), default=0.0) == 0.0

    def test_keys_are_trimmed_and_upper_cased(self):
        assert normalize_key(" gradeA ") == "GRADEA"
        assert normalize_key(1001.0) == "1001"
        assert normalize_key("   ") is None


class TestAdjustmentNormalizer:
    """Tests for the STA feed."""

    def test_spoilage_resolves_to_strategy(self):
        raw = sta_file([
            [date(2024, 3, 2), "B100", "GradeA", -50, "spoilage"],
            [date(2024, 2, 28), "B100", "GradeA", -10, "before window"],
        ])

        result = AdjustmentNormalizer(TABLE).load(raw, SINCE)

        assert result.source_type == SourceType.STA
        assert len(result.lines) == 1
        line = result.lines[0]
        assert line.strategy == "S1"
        assert line.quantity == -50
        assert line.reason == "spoilage"
        assert result.by_strategy == {"S1": -50}
        assert result.by_grade == {"GRADEA": -50}

    def test_window_is_strictly_after_since_date(self):
        raw = sta_file([[SINCE, "B100", "GradeA", -5, "same day"]])

        result = AdjustmentNormalizer(TABLE).load(raw, SINCE)

        assert result.lines == []

    def test_no_rows_in_window_is_an_empty_aggregate(self):
        raw = sta_file([[date(2024, 1, 15), "B100", "GradeA", 20, "old"]])

        result = AdjustmentNormalizer(TABLE).load(raw, SINCE)

        assert result.is_empty
        assert result.by_grade == {}
        assert result.by_strategy == {}
        assert result.total == 0
        assert result.warnings == []

    def test_unreadable_date_skips_row_with_warning(self):
        raw = sta_file([
            ["someday", "B100", "GradeA", 20, "bad date"],
            [date(2024, 3, 3), "B200", "GradeA", 20, "ok"],
        ])

        result = AdjustmentNormalizer(TABLE).load(raw, SINCE)

        assert [line.batch_number for line in result.lines] == ["B200"]
        assert len(result.warnings) == 1
        assert result.warnings[0].row == 2
        assert "SA Date" in str(result.warnings[0])

    def test_missing_field_skips_row_with_warning(self):
        raw = sta_file([[date(2024, 3, 3), None, "GradeA", 20, "no batch"]])

        result = AdjustmentNormalizer(TABLE).load(raw, SINCE)

        assert result.lines == []
        assert "Batch No." in result.warning_messages[0]

    def test_zero_adjustment_is_dropped(self):
        raw = sta_file([[date(2024, 3, 3), "B100", "GradeA", 0, "noop"]])

        assert AdjustmentNormalizer(TABLE).load(raw, SINCE).lines == []

    def test_missing_column_is_a_schema_error(self):
        raw = xlsx(["SA Date", "Batch No.", "Qty."], [[date(2024, 3, 3), "B100", 5]])

        with pytest.raises(SchemaError):
            AdjustmentNormalizer(TABLE).load(raw, SINCE)


class TestDispatchNormalizer:
    """Tests for the GDI feed."""

    def test_unresolved_batch_becomes_ghost_candidate(self):
        raw = gdi_file([
            [date(2024, 3, 2), "TK1", "GDI1", "DC1", "X1", "GradeA", 40, "B100"],
            [date(2024, 3, 2), "TK2", "GDI2", "DC2", "X1", "GradeA", 25, "B999"],
        ])

        result = DispatchNormalizer(TABLE).load(raw, SINCE)

        assert [line.batch_number for line in result.lines] == ["B100"]
        assert [c.batch_number for c in result.ghost_candidates] == ["B999"]
        assert result.ghost_candidates[0].quantity == 25
        assert result.by_grade == {"GRADEA": 40}
        assert result.by_strategy == {"S1": 40}

    def test_repeated_dispatch_line_counted_once(self):
        row = [date(2024, 3, 2), "TK1", "GDI1", "DC1", "X1", "GradeA", 40, "B100"]
        raw = gdi_file([row, row])

        result = DispatchNormalizer(TABLE).load(raw, SINCE)

        assert len(result.lines) == 1
        assert result.total == 40

    def test_non_positive_quantities_are_ignored(self):
        raw = gdi_file([[date(2024, 3, 2), "TK1", "GDI1", "DC1", "X1", "GradeA", 0, "B100"]])

        assert DispatchNormalizer(TABLE).load(raw, SINCE).lines == []


class TestProcessingNormalizer:
    """Tests for the PA feed."""

    def test_rows_are_grouped_per_process_not_parsed_singly(self):
        normalizer = ProcessingNormalizer(TABLE)

        assert "parse_row" not in vars(ProcessingNormalizer)
        with pytest.raises(NotImplementedError):
            normalizer.parse_row({}, SINCE)

    def test_run_is_built_from_all_of_its_rows(self):
        raw = pa_file([
            [date(2024, 3, 2), 1001, "Milling", date(2024, 3, 1), "GradeA", "B100", 60, "GradeB", "B200", 50, 0, 10],
            [date(2024, 3, 2), 1001, "Milling", date(2024, 3, 1), "GradeA", "B100", 40, "GradeB", "B200", 40, 0, 10],
        ])

        result = ProcessingNormalizer(TABLE).load(raw, SINCE)

        assert len(result.lines) == 1
        run = result.lines[0]
        assert run.process_number == "1001"
        assert run.process_type == "Milling"
        assert run.input_qty == 100
        assert run.output_qty == 90
        # Loss columns repeat per row and are read once
        assert run.milling_loss == 10
        assert run.conservation_gap == pytest.approx(0.0)
        assert result.by_strategy == {"S1": 100}

    def test_malformed_process_number_skips_run(self):
        raw = pa_file([
            [date(2024, 3, 2), "P-12", "Milling", None, "GradeA", "B100", 10, "GradeB", "B200", 10, 0, 0],
        ])

        result = ProcessingNormalizer(TABLE).load(raw, SINCE)

        assert result.lines == []
        assert "P-12" in result.warning_messages[0]

    def test_unresolved_lines_are_ghost_candidates(self):
        raw = pa_file([
            [date(2024, 3, 2), 1002, "Milling", None, "GradeA", "B777", 10, "GradeB", "B200", 10, 0, 0],
        ])

        result = ProcessingNormalizer(TABLE).load(raw, SINCE)

        assert [c.batch_number for c in result.ghost_candidates] == ["B777"]
        assert result.ghost_candidates[0].reference == "1002"
        assert result.by_grade == {}

    def test_missing_sheet_is_a_schema_error(self):
        raw = pa_file([], title="Sheet1")

        with pytest.raises(SchemaError):
            ProcessingNormalizer(TABLE).load(raw, SINCE)


class TestTransferNormalizer:
    """Tests for the STI feed."""

    def test_delivered_and_pending_lines(self):
        raw = sti_file([
            sti_row("STI-1", "B100", "GradeA", 100, 98, loss_gain=-2, arrival=date(2024, 3, 2)),
            sti_row("STI-1", "B200", "GradeA", 50, 0, status="Pending", transaction="T2", balance=50),
        ])

        result = TransferNormalizer(TABLE).load(raw, SINCE)

        assert len(result.lines) == 1
        line = result.lines[0]
        assert line.delivered_qty == 98
        assert line.loss_gain_qty == -2
        assert line.inbound_qty == 100
        assert line.status == BatchTransferStatus.COMPLETED.value
        assert [p.batch_number for p in result.pending_lines] == ["B200"]
        assert result.pending_lines[0].status == BatchTransferStatus.FULLY_PENDING.value
        assert result.file_statuses[("B100", "T1")] == "Completed"

    def test_partial_delivery_status(self):
        raw = sti_file([
            sti_row("STI-2", "B300", "GradeB", 100, 60, arrival=date(2024, 3, 2), status="Partially Pending", balance=40),
        ])

        line = TransferNormalizer(TABLE).load(raw, SINCE).lines[0]

        assert line.status == BatchTransferStatus.PARTIALLY_DELIVERED.value
        assert line.strategy == "S2"


class TestSnapshotParser:
    """Tests for the XBS current stock parser."""

    def test_balances_and_stock_types(self):
        raw = snapshot_file([
            ["B100", "GradeA", "S1", 300],
            ["B200", "GradeA", "S1", 200],
            ["B300", "GradeB", "S2", 120, "PIL"],
            ["B400", "GradeB", "S2", 80, "WIP"],
        ])

        snapshot = SnapshotParser().load(raw)

        assert snapshot.grade_balances == {"GRADEA": 500, "GRADEB": 200}
        assert snapshot.strategy_balances == {"S1": 500, "S2": 200}
        assert snapshot.total_closing_balance == 500
        assert snapshot.blocked_for_processing_qty == 120
        assert snapshot.work_in_progress_qty == 80
        assert snapshot.has_batch("b100")
        assert snapshot.resolution_table().resolve("B300") == "S2"

    def test_batch_split_across_strategies_is_unresolved(self):
        raw = snapshot_file([["B100", "GradeA", "S1", 10], ["B100", "GradeA", "S2", 10]])

        snapshot = SnapshotParser().load(raw)

        assert not snapshot.has_batch("B100")
        assert any("B100" in str(w) for w in snapshot.warnings)

    def test_trade_records_are_the_fallback(self):
        raw = snapshot_file([["B100", "GradeA", "S1", 10]])

        table = SnapshotParser().load(raw).resolution_table({"B100": "S9", "B500": "S3"})

        assert table.resolve("B100") == "S1"
        assert table.resolve("B500") == "S3"
        assert table.resolve("B999") is None


class TestAllocationParser:
    """Tests for the strategy allocation report."""

    def test_reads_allocations(self):
        raw = xlsx(
            ["Batch No.", "Grade", "POSITION STRATEGY ALLOCATION"],
            [["B999", "GradeA", "s4"], ["B998", "GradeA", None]],
            title="Test Details Summary Report",
        )

        report = AllocationParser().load(raw)

        assert report.table.mapping == {"B999": "S4"}
        assert len(report.warnings) == 1
