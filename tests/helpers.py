"""Spreadsheet builders for the upload feeds, written in memory with openpyxl."""
import io
from datetime import date
from types import MappingProxyType
from typing import Iterable, List, Optional, Sequence

from openpyxl import Workbook

from stockledger.feeds import StockSnapshot


def xlsx(header: Sequence, rows: Iterable[Sequence], title: str = "Sheet1", preamble: Optional[str] = None,
         extra_sheets: Sequence[str] = ()) -> bytes:
    """One-sheet workbook; ``preamble`` puts a report title above the header row"""
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = title
    if preamble is not None:
        sheet.append([preamble])
    sheet.append(list(header))
    for row in rows:
        sheet.append(list(row))
    for name in extra_sheets:
        workbook.create_sheet(name).append(["unused"])
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


SNAPSHOT_HEADER = ["Batch No.", "Item Name", "Position Strategy Allocation", "Qty.", "Type"]


def snapshot_file(entries: List[Sequence]) -> bytes:
    """entries: (batch, grade, strategy, qty[, type])"""
    rows = [list(e) + ["WH"] if len(e) == 4 else list(e) for e in entries]
    return xlsx(SNAPSHOT_HEADER, rows)


STA_HEADER = ["SA Date", "Batch No.", "Item Name", "Qty.", "Reason"]


def sta_file(rows: List[Sequence]) -> bytes:
    """rows: (date, batch, grade, qty, reason)"""
    return xlsx(STA_HEADER, rows)


GDI_HEADER = ["DC Date", "Ticket No.", "GDI No", "DC No.", "Item Code", "Item Code", "Qty.", "Batch No."]


def gdi_file(rows: List[Sequence]) -> bytes:
    """rows: (date, ticket, gdi, dc, item_code, grade, qty, batch)"""
    return xlsx(GDI_HEADER, rows, preamble="Goods Dispatch Report")


PA_HEADER = [
    "Receipt Date", "Process No.", "Process Name", "Issue Date",
    "Item Name", "Batch No.", "Qty.",
    "Item Name", "Batch No.", "Qty.",
    "Loss/Gain", "Milling Loss",
]


def pa_file(rows: List[Sequence], title: str = "Processing Analysis") -> bytes:
    """rows: (receipt, process_no, name, issue, in_grade, in_batch, in_qty, out_grade, out_batch, out_qty, loss, milling)"""
    return xlsx(PA_HEADER, rows, title=title, preamble="Processing Analysis Report")


STI_HEADER = [
    "Number", "Date", "Transaction Date", "Transaction Date",
    "Qty.", "Qty.", "Qty.", "Qty.", "Qty.", "Qty.",
    "Batch No.", "Transaction No.", "Item Name", "Stock Transfer Status",
    "From Warehouse - Zone", "Storage Due Date",
]


def sti_row(sti: str, batch: str, grade: str, instructed: float, delivered: float, loss_gain: float = 0.0,
            arrival: Optional[date] = None, status: str = "Completed", transaction: str = "T1",
            instructed_date: date = date(2024, 1, 1), balance: float = 0.0,
            due: Optional[date] = None, zone: str = "ZONE A") -> list:
    return [
        sti, instructed_date, instructed_date, arrival,
        instructed, 0, delivered, loss_gain, 0, balance,
        batch, transaction, grade, status,
        zone, due,
    ]


def sti_file(rows: List[list]) -> bytes:
    return xlsx(STI_HEADER, rows, preamble="Stock Transfer Instructions")


def make_snapshot(grades=None, strategies=None, batches=None, blocked=0.0, wip=0.0):
    grades = grades or {}
    return StockSnapshot(
        blocked_for_processing_qty=blocked,
        work_in_progress_qty=wip,
        total_closing_balance=sum(grades.values()),
        grade_balances=MappingProxyType(dict(grades)),
        strategy_balances=MappingProxyType(dict(strategies or {})),
        batch_strategies=MappingProxyType(dict(batches or {})),
    )
