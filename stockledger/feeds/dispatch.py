"""
GDI Normalizer - goods dispatch (outbound)
"""
from dataclasses import dataclass
from datetime import date
from typing import Optional

from stockledger.models.summary import SourceType
from .base import FeedNormalizer, FeedResult, require_key, require_qty
from .tabular import Row


@dataclass
class DispatchLine:
    dispatch_date: date
    ticket_number: str
    dispatch_number: str
    dc_number: str
    grade: str
    batch_number: str
    strategy: Optional[str]
    quantity: float

    @property
    def natural_key(self):
        return (self.ticket_number, self.dispatch_number, self.dc_number, self.grade, self.batch_number)


class DispatchNormalizer(FeedNormalizer):
    """
    GDI export: first sheet, column names on the second row.

    The grade sits in the second ``Item Code`` column. A dispatch line repeated
    in the file is counted once.
    """

    source_type = SourceType.GDI
    sheet = 0
    header_row = 1
    date_column = "DC Date"
    required_columns = ("DC Date", "Ticket No.", "GDI No", "DC No.", "Item Code_1", "Qty.", "Batch No.")

    def parse_row(self, row: Row, row_date: date) -> Optional[DispatchLine]:
        qty = require_qty(row, "Qty.")
        if qty <= 0:
            return None
        batch = require_key(row, "Batch No.")
        return DispatchLine(
            dispatch_date=row_date,
            ticket_number=require_key(row, "Ticket No."),
            dispatch_number=require_key(row, "GDI No"),
            dc_number=require_key(row, "DC No."),
            grade=require_key(row, "Item Code_1"),
            batch_number=batch,
            strategy=self.resolution.resolve(batch),
            quantity=qty,
        )

    def collect(self, rows, since_date, result: FeedResult):
        super().collect(rows, since_date, result)
        seen = set()
        unique = []
        for line in result.lines:
            if line.natural_key in seen:
                continue
            seen.add(line.natural_key)
            unique.append(line)
        result.lines = unique

        ghosts = []
        for candidate in result.ghost_candidates:
            if candidate.line.natural_key in seen:
                continue
            seen.add(candidate.line.natural_key)
            ghosts.append(candidate)
        result.ghost_candidates = ghosts
