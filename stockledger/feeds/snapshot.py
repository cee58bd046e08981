"""
XBS Current Stock Snapshot - authoritative closing balances and batch resolution
"""
from collections import defaultdict
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional
import logging

from stockledger.core.exceptions import SchemaError, ParseError, EmptySheetError
from .base import ResolutionTable, normalize_key, parse_qty, sorted_totals
from .tabular import Row, read_rows

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockSnapshot:
    """Point-in-time stock report. Rebuilt on every upload, never merged."""
    blocked_for_processing_qty: float = 0.0
    work_in_progress_qty: float = 0.0
    total_closing_balance: float = 0.0
    grade_balances: Mapping[str, float] = field(default_factory=dict)
    strategy_balances: Mapping[str, float] = field(default_factory=dict)
    batch_strategies: Mapping[str, str] = field(default_factory=dict)
    batch_grades: Mapping[str, str] = field(default_factory=dict)
    warnings: tuple = ()

    def resolution_table(self, trade_strategies: Optional[Mapping[str, str]] = None) -> ResolutionTable:
        """Snapshot batches first, then known trade records"""
        table = ResolutionTable(self.batch_strategies)
        if trade_strategies:
            table = table.merged_with(trade_strategies)
        return table

    def has_batch(self, batch_number: str) -> bool:
        return normalize_key(batch_number) in self.batch_strategies

    def to_dict(self) -> Dict[str, Any]:
        return {
            "blocked_for_processing": self.blocked_for_processing_qty,
            "work_in_progress": self.work_in_progress_qty,
            "total_closing_balance": self.total_closing_balance,
            "grades_closing_balances": dict(self.grade_balances),
            "strategies_closing_balances": dict(self.strategy_balances),
            "batch_count": len(self.batch_strategies),
            "warnings": [str(w) for w in self.warnings],
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "StockSnapshot":
        """Build from the JSON ``stock_data`` shape returned by to_dict"""
        grades = {normalize_key(k): float(v) for k, v in (payload.get("grades_closing_balances") or {}).items() if normalize_key(k)}
        strategies = {normalize_key(k): float(v) for k, v in (payload.get("strategies_closing_balances") or {}).items() if normalize_key(k)}
        batches = ResolutionTable(payload.get("batch_strategies") or {}).mapping
        return cls(
            blocked_for_processing_qty=float(payload.get("blocked_for_processing") or 0),
            work_in_progress_qty=float(payload.get("work_in_progress") or 0),
            total_closing_balance=float(payload.get("total_closing_balance") or 0),
            grade_balances=MappingProxyType(sorted_totals(grades)),
            strategy_balances=MappingProxyType(sorted_totals(strategies)),
            batch_strategies=batches,
        )


class SnapshotParser:
    """
    Parser for the XBS current stock export.

    Expected format (first sheet, header on the first row):
        - Qty.: batch quantity in kg
        - Type: PIL (blocked for processing), WIP (work in progress), WH (in warehouse)
        - Item Name: grade
        - Position Strategy Allocation: strategy
        - Batch No.: batch number (optional, feeds batch resolution)
    """

    sheet = 0
    header_row = 0
    required_columns = ("Qty.", "Type", "Item Name", "Position Strategy Allocation")

    def read(self, raw: bytes, filename: Optional[str] = None) -> List[Row]:
        try:
            return read_rows(raw, sheet=self.sheet, header_row=self.header_row, filename=filename)
        except EmptySheetError:
            logger.warning("Current stock file is empty, using an empty snapshot")
            return []

    def load(self, raw: bytes, filename: Optional[str] = None) -> StockSnapshot:
        return self.parse(self.read(raw, filename))

    def parse(self, rows: List[Row]) -> StockSnapshot:
        if rows:
            present = set()
            for row in rows:
                present.update(row.keys())
            missing = [c for c in self.required_columns if c not in present]
            if missing:
                raise SchemaError(f"Current stock file is missing required columns: {', '.join(missing)}")

        blocked = 0.0
        wip = 0.0
        closing = 0.0
        grades = defaultdict(float)
        strategies = defaultdict(float)
        batch_strategies: Dict[str, str] = {}
        batch_grades: Dict[str, str] = {}
        ambiguous = set()
        warnings: List[ParseError] = []

        for index, row in enumerate(rows):
            row_number = index + self.header_row + 2
            qty = parse_qty(row.get("Qty."))
            if qty is None:
                warnings.append(ParseError(f"unreadable Qty. '{row.get('Qty.')}'", row=row_number, field="Qty."))
                continue

            stock_type = normalize_key(row.get("Type"))
            if stock_type == "PIL":
                blocked += qty
            elif stock_type == "WIP":
                wip += qty
            elif stock_type == "WH":
                closing += qty

            grade = normalize_key(row.get("Item Name"))
            strategy = normalize_key(row.get("Position Strategy Allocation"))
            if grade:
                grades[grade] += qty
            if strategy:
                strategies[strategy] += qty
            else:
                warnings.append(ParseError("missing Position Strategy Allocation", row=row_number))

            batch = normalize_key(row.get("Batch No."))
            if batch and strategy:
                known = batch_strategies.get(batch)
                if known and known != strategy:
                    ambiguous.add(batch)
                batch_strategies[batch] = strategy
            if batch and grade:
                batch_grades[batch] = grade

        # A batch split across strategies has no single owner
        for batch in ambiguous:
            batch_strategies.pop(batch, None)
            warnings.append(ParseError(f"batch {batch} is allocated to more than one strategy"))

        snapshot = StockSnapshot(
            blocked_for_processing_qty=blocked,
            work_in_progress_qty=wip,
            total_closing_balance=closing,
            grade_balances=MappingProxyType(sorted_totals(grades)),
            strategy_balances=MappingProxyType(sorted_totals(strategies)),
            batch_strategies=MappingProxyType(batch_strategies),
            batch_grades=MappingProxyType(batch_grades),
            warnings=tuple(warnings),
        )
        logger.info(
            f"Snapshot: {len(snapshot.grade_balances)} grades, {len(snapshot.strategy_balances)} strategies, "
            f"closing={closing:.2f}, blocked={blocked:.2f}, wip={wip:.2f}"
        )
        return snapshot
