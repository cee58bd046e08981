"""
Strategy Allocation Report - batch to strategy backfill for UNDEFINED records
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional
import logging

from stockledger.core.exceptions import SchemaError, ParseError, EmptySheetError
from .base import ResolutionTable, normalize_key
from .tabular import Row, read_rows

logger = logging.getLogger(__name__)


@dataclass
class AllocationReport:
    table: ResolutionTable
    rows_read: int = 0
    warnings: List[ParseError] = field(default_factory=list)


class AllocationParser:
    """
    Parser for the lab "Test Details Summary Report" sheet.

    Header on the first row; only 'Batch No.' and
    'POSITION STRATEGY ALLOCATION' are used.
    """

    sheet = "Test Details Summary Report"
    header_row = 0
    batch_column = "Batch No."
    strategy_column = "POSITION STRATEGY ALLOCATION"

    def load(self, raw: bytes, filename: Optional[str] = None) -> AllocationReport:
        try:
            rows = read_rows(raw, sheet=self.sheet, header_row=self.header_row, filename=filename)
        except EmptySheetError:
            logger.warning(f"Sheet '{self.sheet}' is empty, nothing to backfill")
            return AllocationReport(table=ResolutionTable())
        return self.parse(rows)

    def parse(self, rows: List[Row]) -> AllocationReport:
        if rows:
            present = set()
            for row in rows:
                present.update(row.keys())
            missing = [c for c in (self.batch_column, self.strategy_column) if c not in present]
            if missing:
                raise SchemaError(f"Sheet '{self.sheet}' is missing required columns: {', '.join(missing)}")

        allocations: Dict[str, str] = {}
        conflicting = set()
        warnings = []
        for index, row in enumerate(rows):
            batch = normalize_key(row.get(self.batch_column))
            strategy = normalize_key(row.get(self.strategy_column))
            if not batch or not strategy:
                warnings.append(ParseError("missing batch or strategy", row=index + self.header_row + 2))
                continue
            if allocations.get(batch, strategy) != strategy:
                conflicting.add(batch)
            allocations[batch] = strategy

        for batch in sorted(conflicting):
            allocations.pop(batch, None)
            warnings.append(ParseError(f"batch {batch} is allocated to more than one strategy"))

        logger.info(f"Allocation report: {len(allocations)} batches, {len(warnings)} warnings")
        return AllocationReport(table=ResolutionTable(allocations), rows_read=len(rows), warnings=warnings)
