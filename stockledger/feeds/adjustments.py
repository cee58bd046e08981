"""
STA Normalizer - stock adjustments (signed)
"""
from dataclasses import dataclass
from datetime import date
from typing import Optional

from stockledger.models.summary import SourceType
from .base import FeedNormalizer, require_key, require_qty
from .tabular import Row


@dataclass
class AdjustmentLine:
    adjustment_date: date
    batch_number: str
    grade: str
    strategy: Optional[str]
    quantity: float
    reason: Optional[str] = None

    @property
    def natural_key(self):
        return (self.batch_number, self.grade, round(self.quantity, 4), self.adjustment_date)


class AdjustmentNormalizer(FeedNormalizer):
    """
    STA export: first sheet, header on the first row.

    Quantities keep their sign; zero lines carry no movement and are dropped.
    """

    source_type = SourceType.STA
    sheet = 0
    header_row = 0
    date_column = "SA Date"
    required_columns = ("SA Date", "Batch No.", "Item Name", "Qty.")

    def parse_row(self, row: Row, row_date: date) -> Optional[AdjustmentLine]:
        qty = require_qty(row, "Qty.")
        if qty == 0:
            return None
        batch = require_key(row, "Batch No.")
        reason = row.get("Reason")
        return AdjustmentLine(
            adjustment_date=row_date,
            batch_number=batch,
            grade=require_key(row, "Item Name"),
            strategy=self.resolution.resolve(batch),
            quantity=qty,
            reason=str(reason).strip() if reason is not None else None,
        )
