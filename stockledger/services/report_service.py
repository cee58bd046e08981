"""
Report Service - read-only dashboards over closed and open summaries
"""
from collections import defaultdict
from datetime import date
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from stockledger.core.config import settings
from stockledger.models import (
    ACTIVITY_FIELDS, AdjustmentRecord, BatchTransferStatus, DailySummary, InstructedBatch,
    OutboundRecord, ProcessRecord, StockTransferInstruction,
)

logger = logging.getLogger(__name__)

# Flow fields summed over a range; balances come from the range ends
FLOW_FIELDS = tuple(f for f in ACTIVITY_FIELDS if f not in ("opening_qty", "xbs_closing_stock", "regrade_discrepancy"))


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


class ReportService:

    @staticmethod
    def overall_summary(db: Session, from_date: Optional[date] = None, to_date: Optional[date] = None) -> Dict[str, Any]:
        """
        Range view of the ledger: opening from the first summary in range,
        closing from the last, flows summed across every day.
        """
        query = db.query(DailySummary)
        if from_date:
            query = query.filter(DailySummary.date >= from_date)
        if to_date:
            query = query.filter(DailySummary.date <= to_date)
        summaries = query.order_by(DailySummary.date).all()

        if not summaries:
            return {
                "from_date": _iso(from_date),
                "to_date": _iso(to_date),
                "days": 0,
                "totals": {},
                "grades": [],
                "strategies": [],
            }

        first, last = summaries[0], summaries[-1]

        def breakdown(rows_of, key_name: str) -> List[Dict[str, Any]]:
            entries: Dict[str, Dict[str, float]] = defaultdict(lambda: {f: 0.0 for f in ACTIVITY_FIELDS})
            for summary in summaries:
                for row in rows_of(summary):
                    entry = entries[getattr(row, key_name)]
                    for f in FLOW_FIELDS:
                        entry[f] += getattr(row, f) or 0.0
                    entry["regrade_discrepancy"] += row.regrade_discrepancy or 0.0
                    if summary is first:
                        entry["opening_qty"] = row.opening_qty or 0.0
                    if summary is last:
                        entry["xbs_closing_stock"] = row.xbs_closing_stock or 0.0
            return [
                {key_name: key, **{f: round(v, 4) for f, v in values.items()}}
                for key, values in sorted(entries.items())
            ]

        totals = {f"total_{f}": 0.0 for f in FLOW_FIELDS}
        totals["total_regrade_discrepancy"] = 0.0
        for summary in summaries:
            for name in totals:
                totals[name] += getattr(summary, name) or 0.0
        totals["total_opening_qty"] = first.total_opening_qty
        totals["total_xbs_closing_stock"] = last.total_xbs_closing_stock
        totals["blocked_for_processing_qty"] = last.blocked_for_processing_qty
        totals["work_in_progress_qty"] = last.work_in_progress_qty

        return {
            "from_date": first.date.isoformat(),
            "to_date": last.date.isoformat(),
            "days": len(summaries),
            "open_days": [s.date.isoformat() for s in summaries if not s.is_closed],
            "totals": {k: round(v, 4) for k, v in totals.items()},
            "grades": breakdown(lambda s: s.grade_activities, "grade"),
            "strategies": breakdown(lambda s: s.strategy_activities, "strategy"),
        }

    # ========== Processes ==========

    @staticmethod
    def list_processes(db: Session, from_date: Optional[date] = None, to_date: Optional[date] = None) -> List[Dict[str, Any]]:
        query = db.query(ProcessRecord)
        if from_date:
            query = query.filter(ProcessRecord.processing_date >= from_date)
        if to_date:
            query = query.filter(ProcessRecord.processing_date <= to_date)
        return [
            ReportService.process_dict(record)
            for record in query.order_by(ProcessRecord.processing_date.desc(), ProcessRecord.process_number)
        ]

    @staticmethod
    def process_dict(record: ProcessRecord, with_lines: bool = False) -> Dict[str, Any]:
        data = {
            "id": record.id,
            "process_number": record.process_number,
            "process_type": record.process_type,
            "summary_id": record.summary_id,
            "issue_date": _iso(record.issue_date),
            "processing_date": _iso(record.processing_date),
            "input_qty": record.input_qty,
            "output_qty": record.output_qty,
            "milling_loss": record.milling_loss,
            "processing_loss": record.processing_loss,
        }
        if with_lines:
            data["grade_lines"] = [
                {
                    "grade": line.grade,
                    "input_qty": line.input_qty,
                    "output_qty": line.output_qty,
                    "milling_loss_qty": line.milling_loss_qty,
                    "processing_loss_qty": line.processing_loss_qty,
                }
                for line in record.grade_lines
            ]
            data["strategy_lines"] = [
                {
                    "batch_number": line.batch_number,
                    "grade": line.grade,
                    "strategy": line.strategy,
                    "input_qty": line.input_qty,
                    "output_qty": line.output_qty,
                    "milling_loss_qty": line.milling_loss_qty,
                    "processing_loss_qty": line.processing_loss_qty,
                }
                for line in record.strategy_lines
            ]
        return data

    @staticmethod
    def get_process(db: Session, process_id: int) -> Optional[Dict[str, Any]]:
        record = db.query(ProcessRecord).filter(ProcessRecord.id == process_id).first()
        if not record:
            return None
        return ReportService.process_dict(record, with_lines=True)

    # ========== Upload Windows ==========

    @staticmethod
    def last_update_dates(db: Session) -> Dict[str, Optional[str]]:
        """Latest recorded date per feed; the next upload's sinceDate"""
        return {
            "sti": _iso(db.query(func.max(InstructedBatch.arrival_date)).scalar()),
            "sta": _iso(db.query(func.max(AdjustmentRecord.adjustment_date)).scalar()),
            "pa": _iso(db.query(func.max(ProcessRecord.processing_date)).scalar()),
            "gdi": _iso(db.query(func.max(OutboundRecord.dispatch_date)).scalar()),
        }

    # ========== Pending Transfers ==========

    @staticmethod
    def rent_cost(batch: InstructedBatch, as_of: date) -> float:
        """Storage rent accrued past the due date, charged per bag per day"""
        if not batch.storage_due_date or not batch.balance_to_transfer:
            return 0.0
        days = max((as_of - batch.storage_due_date).days, 0)
        return days * (batch.balance_to_transfer / settings.BAG_WEIGHT_KG) * settings.STORAGE_RENT_RATE

    @staticmethod
    def pending_transfers(
        db: Session,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        as_of: Optional[date] = None,
    ) -> Dict[str, Any]:
        as_of = as_of or date.today()
        query = db.query(InstructedBatch).join(StockTransferInstruction).filter(
            InstructedBatch.status != BatchTransferStatus.COMPLETED.value
        )
        if from_date:
            query = query.filter(StockTransferInstruction.instructed_date >= from_date)
        if to_date:
            query = query.filter(StockTransferInstruction.instructed_date <= to_date)

        batches = []
        partially_pending = fully_pending = total_rent = 0.0
        for row in query.order_by(StockTransferInstruction.sti_number, InstructedBatch.batch_number):
            rent = ReportService.rent_cost(row, as_of)
            total_rent += rent
            if row.status == BatchTransferStatus.PARTIALLY_DELIVERED.value:
                partially_pending += row.balance_to_transfer
            else:
                fully_pending += row.balance_to_transfer
            batches.append({
                "sti_number": row.instruction.sti_number,
                "batch_number": row.batch_number,
                "grade": row.grade,
                "strategy": row.strategy,
                "status": row.status,
                "instructed_qty": row.instructed_qty,
                "delivered_qty": row.delivered_qty,
                "balance_to_transfer": row.balance_to_transfer,
                "from_location": row.from_location,
                "storage_due_date": _iso(row.storage_due_date),
                "rent_cost": round(rent, 2),
            })

        return {
            "as_of": as_of.isoformat(),
            "pending_batches": batches,
            "partially_pending_volume": round(partially_pending, 4),
            "fully_pending_volume": round(fully_pending, 4),
            "total_rent_costs": round(total_rent, 2),
        }
