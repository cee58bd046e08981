"""
Summary Service - daily summary rows and their serialized views
"""
from datetime import date
from typing import Any, Dict, List, Optional, Tuple
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockledger.core.exceptions import SummaryNotFoundError
from stockledger.core.locks import summary_lock
from stockledger.models import DailySummary, SourceApplication, ACTIVITY_FIELDS

logger = logging.getLogger(__name__)

SUMMARY_TOTAL_FIELDS = (
    "total_opening_qty",
    "total_to_processing_qty",
    "total_from_processing_qty",
    "total_loss_gain_qty",
    "total_milling_loss_qty",
    "total_processing_loss_qty",
    "total_inbound_qty",
    "total_outbound_qty",
    "total_stock_adjustment_qty",
    "total_xbs_closing_stock",
    "total_regrade_discrepancy",
    "blocked_for_processing_qty",
    "work_in_progress_qty",
)


class SummaryService:

    @staticmethod
    def get_or_create(db: Session, target_date: date) -> Tuple[DailySummary, bool]:
        """Fetch the summary of a date, creating it on first use"""
        summary = db.query(DailySummary).filter(DailySummary.date == target_date).first()
        if summary:
            return summary, False

        summary = DailySummary(date=target_date)
        db.add(summary)
        try:
            db.commit()
        except IntegrityError:
            # Created concurrently by another request
            db.rollback()
            summary = db.query(DailySummary).filter(DailySummary.date == target_date).first()
            return summary, False
        db.refresh(summary)
        logger.info(f"Created daily summary {summary.id} for {target_date}")
        return summary, True

    @staticmethod
    def get(db: Session, summary_id: int) -> DailySummary:
        summary = db.query(DailySummary).filter(DailySummary.id == summary_id).first()
        if not summary:
            raise SummaryNotFoundError(summary_id)
        return summary

    @staticmethod
    def get_by_date(db: Session, target_date: date) -> Optional[DailySummary]:
        return db.query(DailySummary).filter(DailySummary.date == target_date).first()

    @staticmethod
    def list_summaries(db: Session, from_date: Optional[date] = None, to_date: Optional[date] = None) -> List[DailySummary]:
        query = db.query(DailySummary)
        if from_date:
            query = query.filter(DailySummary.date >= from_date)
        if to_date:
            query = query.filter(DailySummary.date <= to_date)
        return query.order_by(DailySummary.date).all()

    @staticmethod
    def delete(db: Session, summary_id: int):
        """Explicit delete; cascades to every record scoped to the summary"""
        with summary_lock(db, summary_id) as summary:
            db.delete(summary)
            db.commit()
        logger.info(f"Deleted daily summary {summary_id}")

    # ========== Serialization ==========

    @staticmethod
    def activity_dict(row, key_name: str) -> Dict[str, Any]:
        data = {key_name: getattr(row, key_name)}
        data.update({field: round(getattr(row, field) or 0.0, 4) for field in ACTIVITY_FIELDS})
        return data

    @staticmethod
    def to_dict(db: Session, summary: DailySummary, include_activities: bool = False) -> Dict[str, Any]:
        data = {
            "id": summary.id,
            "date": summary.date.isoformat(),
            "status": summary.status,
            "closed_at": summary.closed_at.isoformat() if summary.closed_at else None,
        }
        data.update({field: round(getattr(summary, field) or 0.0, 4) for field in SUMMARY_TOTAL_FIELDS})

        applications = db.query(SourceApplication).filter(
            SourceApplication.summary_id == summary.id
        ).order_by(SourceApplication.applied_at).all()
        data["applied_sources"] = [
            {
                "source_type": app.source_type,
                "since_date": app.since_date.isoformat() if app.since_date else None,
                "row_count": app.row_count,
                "total_qty": app.total_qty,
                "warning_count": app.warning_count,
                "applied_at": app.applied_at.isoformat() if app.applied_at else None,
            }
            for app in applications
        ]

        if include_activities:
            data["grade_activities"] = [
                SummaryService.activity_dict(row, "grade")
                for row in sorted(summary.grade_activities, key=lambda r: r.grade)
            ]
            data["strategy_activities"] = [
                SummaryService.activity_dict(row, "strategy")
                for row in sorted(summary.strategy_activities, key=lambda r: r.strategy)
            ]
        return data
