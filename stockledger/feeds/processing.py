"""
PA Normalizer - processing / milling runs
"""
from collections import OrderedDict, defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional
import logging

from stockledger.core.exceptions import ParseError
from stockledger.models.summary import SourceType
from .base import (
    FeedNormalizer, FeedResult, GhostCandidate, normalize_key, parse_date,
    parse_qty, sorted_totals,
)
from .tabular import Row

logger = logging.getLogger(__name__)


@dataclass
class ProcessLine:
    batch_number: str
    grade: str
    strategy: Optional[str]
    quantity: float


@dataclass
class ProcessRun:
    """One process with its batch lines, aggregated over every row of the process"""
    process_number: str
    process_type: str = "N/A"
    issue_date: Optional[date] = None
    processing_date: Optional[date] = None
    inputs: List[ProcessLine] = field(default_factory=list)
    outputs: List[ProcessLine] = field(default_factory=list)
    milling_loss: float = 0.0
    processing_loss: float = 0.0

    @property
    def input_qty(self) -> float:
        return sum(line.quantity for line in self.inputs)

    @property
    def output_qty(self) -> float:
        return sum(line.quantity for line in self.outputs)

    @property
    def conservation_gap(self) -> float:
        """inputs - (outputs + milling loss + processing loss); zero for a balanced run"""
        return self.input_qty - (self.output_qty + self.milling_loss + self.processing_loss)

    @property
    def input_item_names(self) -> Dict[str, float]:
        return _by_grade(self.inputs)

    @property
    def output_item_names(self) -> Dict[str, float]:
        return _by_grade(self.outputs)

    @property
    def input_batches(self) -> Dict[str, dict]:
        return _by_batch(self.inputs)

    @property
    def output_batches(self) -> Dict[str, dict]:
        return _by_batch(self.outputs)

    @property
    def unresolved_lines(self) -> List[ProcessLine]:
        return [line for line in self.inputs + self.outputs if line.strategy is None]


def _by_grade(lines: List[ProcessLine]) -> Dict[str, float]:
    totals = defaultdict(float)
    for line in lines:
        totals[line.grade] += line.quantity
    return sorted_totals(totals)


def _by_batch(lines: List[ProcessLine]) -> Dict[str, dict]:
    return {
        line.batch_number: {"grade": line.grade, "strategy": line.strategy, "quantity": line.quantity}
        for line in lines
    }


def _add_line(lines: "OrderedDict[tuple, ProcessLine]", batch: str, grade: str, strategy: Optional[str], qty: float):
    key = (batch, grade)
    if key in lines:
        lines[key].quantity += qty
    else:
        lines[key] = ProcessLine(batch_number=batch, grade=grade, strategy=strategy, quantity=qty)


class ProcessingNormalizer(FeedNormalizer):
    """
    Processing Analysis export: sheet "Processing Analysis", column names on the second row.

    Each row pairs one input batch (Item Name / Batch No. / Qty.) with one
    output batch (Item Name_1 / Batch No._1 / Qty._1). Loss columns are
    repeated per row and read from the first row of the process.
    """

    source_type = SourceType.PA
    sheet = "Processing Analysis"
    header_row = 1
    date_column = "Receipt Date"
    required_columns = (
        "Receipt Date", "Process No.", "Item Name", "Batch No.", "Qty.",
        "Item Name_1", "Batch No._1", "Qty._1",
    )

    def collect(self, rows: List[Row], since_date: Optional[date], result: FeedResult):
        groups: "OrderedDict[str, List[Row]]" = OrderedDict()
        in_window = set()
        malformed = set()

        for index, row in enumerate(rows):
            raw_number = row.get("Process No.")
            number = self._process_number(raw_number)
            if number is None:
                label = str(raw_number).strip() if raw_number is not None else ""
                if label and label not in malformed:
                    malformed.add(label)
                    result.warnings.append(
                        ParseError(f"malformed Process No. '{label}', run skipped", row=self.row_number(index), field="Process No.")
                    )
                elif not label:
                    result.warnings.append(ParseError("missing Process No.", row=self.row_number(index), field="Process No."))
                continue
            groups.setdefault(number, []).append(row)
            if self.in_window(row, index, since_date, result) is not None:
                in_window.add(number)

        for number, process_rows in groups.items():
            if number not in in_window:
                continue
            run = self._build_run(number, process_rows)
            result.lines.append(run)
            for line in run.unresolved_lines:
                result.ghost_candidates.append(
                    GhostCandidate(
                        batch_number=line.batch_number,
                        source=self.source_type.value,
                        grade=line.grade,
                        quantity=line.quantity,
                        reference=number,
                    )
                )

    @staticmethod
    def _process_number(value) -> Optional[str]:
        key = normalize_key(value)
        if key is None or not key.isdigit():
            return None
        return key

    def _build_run(self, number: str, rows: List[Row]) -> ProcessRun:
        first = rows[0]
        inputs: "OrderedDict[tuple, ProcessLine]" = OrderedDict()
        outputs: "OrderedDict[tuple, ProcessLine]" = OrderedDict()

        for row in rows:
            input_qty = parse_qty(row.get("Qty."), default=0.0)
            input_batch = normalize_key(row.get("Batch No."))
            input_grade = normalize_key(row.get("Item Name"))
            if input_qty > 0 and input_batch and input_grade:
                _add_line(inputs, input_batch, input_grade, self.resolution.resolve(input_batch), input_qty)

            output_qty = parse_qty(row.get("Qty._1"), default=0.0)
            output_batch = normalize_key(row.get("Batch No._1"))
            output_grade = normalize_key(row.get("Item Name_1"))
            if output_qty > 0 and output_batch and output_grade:
                _add_line(outputs, output_batch, output_grade, self.resolution.resolve(output_batch), output_qty)

        process_type = first.get("Process Name")
        return ProcessRun(
            process_number=number,
            process_type=str(process_type).strip() if process_type else "N/A",
            issue_date=parse_date(first.get("Issue Date")),
            processing_date=parse_date(first.get("Receipt Date")),
            inputs=list(inputs.values()),
            outputs=list(outputs.values()),
            milling_loss=parse_qty(first.get("Milling Loss"), default=0.0),
            processing_loss=parse_qty(first.get("Loss/Gain"), default=0.0),
        )

    def aggregate(self, result: FeedResult):
        """Aggregates resolved input quantities (what went to processing)"""
        by_grade = defaultdict(float)
        by_strategy = defaultdict(float)
        for run in result.lines:
            for line in run.inputs:
                if line.strategy is None:
                    continue
                by_grade[line.grade] += line.quantity
                by_strategy[line.strategy] += line.quantity
        result.by_grade = sorted_totals(by_grade)
        result.by_strategy = sorted_totals(by_strategy)
        result.total = sum(by_grade.values())
