"""
STI Normalizer - stock transfer instructions (inbound)
"""
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Tuple
import logging

from stockledger.core.exceptions import ParseError
from stockledger.models.summary import SourceType
from stockledger.models.transfer import BatchTransferStatus, TransferStatus
from .base import (
    FeedNormalizer, FeedResult, normalize_key, parse_date, parse_qty,
    require_key, require_qty,
)
from .tabular import Row

logger = logging.getLogger(__name__)


@dataclass
class TransferLine:
    sti_number: str
    batch_number: str
    grade: str
    strategy: Optional[str]
    instructed_qty: float
    delivered_qty: float
    loss_gain_qty: float = 0.0
    balance_qty: float = 0.0
    file_status: str = TransferStatus.PENDING.value
    arrival_date: Optional[date] = None
    instructed_date: Optional[date] = None
    transaction_number: Optional[str] = None
    from_location: Optional[str] = None
    storage_due_date: Optional[date] = None

    @property
    def quantity(self) -> float:
        return self.delivered_qty

    @property
    def inbound_qty(self) -> float:
        """Gross quantity moved; adding the transit loss/gain gives what arrived"""
        return self.delivered_qty - self.loss_gain_qty

    @property
    def status(self) -> str:
        if self.file_status == TransferStatus.COMPLETED.value:
            return BatchTransferStatus.COMPLETED.value
        if self.delivered_qty > 0:
            return BatchTransferStatus.PARTIALLY_DELIVERED.value
        return BatchTransferStatus.FULLY_PENDING.value


@dataclass
class TransferFeedResult(FeedResult):
    # Lines instructed but not (yet) delivered inside the window
    pending_lines: List[TransferLine] = field(default_factory=list)
    # (batch, transaction) -> status column, over every row of the file
    file_statuses: Dict[Tuple[str, str], str] = field(default_factory=dict)

    def to_dict(self):
        data = super().to_dict()
        data["pending_lines"] = len(self.pending_lines)
        data["inbound_total"] = round(sum(line.inbound_qty for line in self.lines), 4)
        data["loss_gain_total"] = round(sum(line.loss_gain_qty for line in self.lines), 4)
        return data


class TransferNormalizer(FeedNormalizer):
    """
    STI export: first sheet, column names on the second row.

    A row is one delivery of one batch against an instruction. Arrival date
    (``Transaction Date_1``) scopes the window; undelivered rows have none.
    """

    source_type = SourceType.STI
    sheet = 0
    header_row = 1
    date_column = "Transaction Date_1"
    required_columns = (
        "Number", "Batch No.", "Item Name", "Qty.", "Qty._2", "Stock Transfer Status",
    )

    def normalize(self, rows: List[Row], since_date: Optional[date]) -> TransferFeedResult:
        self.check_columns(rows)
        result = TransferFeedResult(source_type=self.source_type, since_date=since_date, rows_read=len(rows))
        self.collect(rows, since_date, result)
        self.aggregate(result)
        logger.info(
            f"STI: {len(result.lines)} delivered lines after {since_date}, "
            f"{len(result.pending_lines)} pending, delivered={result.total:.2f}"
        )
        return result

    def collect(self, rows: List[Row], since_date: Optional[date], result: TransferFeedResult):
        for index, row in enumerate(rows):
            batch = normalize_key(row.get("Batch No."))
            transaction = normalize_key(row.get("Transaction No."))
            status = str(row.get("Stock Transfer Status") or "").strip()
            if batch and transaction:
                result.file_statuses[(batch, transaction)] = status

            delivered = parse_qty(row.get("Qty._2"), default=0.0)
            if not row.get(self.date_column) and delivered <= 0:
                # Nothing arrived yet
                try:
                    line = self.parse_row(row, None)
                except ParseError as e:
                    e.row = self.row_number(index)
                    result.warnings.append(e)
                    continue
                result.pending_lines.append(line)
                continue

            row_date = self.in_window(row, index, since_date, result)
            if row_date is None:
                continue
            try:
                line = self.parse_row(row, row_date)
            except ParseError as e:
                e.row = self.row_number(index)
                result.warnings.append(e)
                continue

            if line.delivered_qty <= 0:
                result.pending_lines.append(line)
            elif line.strategy is None:
                result.ghost_candidates.append(self.ghost_for(line))
            else:
                result.lines.append(line)

    def parse_row(self, row: Row, row_date: Optional[date]) -> TransferLine:
        batch = require_key(row, "Batch No.")
        transaction = normalize_key(row.get("Transaction No."))
        return TransferLine(
            sti_number=require_key(row, "Number"),
            batch_number=batch,
            grade=require_key(row, "Item Name"),
            strategy=self.resolution.resolve(batch),
            instructed_qty=require_qty(row, "Qty."),
            delivered_qty=parse_qty(row.get("Qty._2"), default=0.0),
            loss_gain_qty=parse_qty(row.get("Qty._3"), default=0.0),
            balance_qty=parse_qty(row.get("Qty._5"), default=0.0),
            file_status=str(row.get("Stock Transfer Status") or TransferStatus.PENDING.value).strip(),
            arrival_date=row_date,
            instructed_date=parse_date(row.get("Date")),
            transaction_number=transaction,
            from_location=str(row["From Warehouse - Zone"]).strip() if row.get("From Warehouse - Zone") else None,
            storage_due_date=parse_date(row.get("Storage Due Date")),
        )
