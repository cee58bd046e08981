"""
Daily Run Service - normalize, apply and persist each source feed of a day
"""
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stockledger.core.config import settings
from stockledger.core.exceptions import (
    LedgerError, SourceAlreadyAppliedError, SummaryFinalizedError,
)
from stockledger.core.locks import summary_lock
from stockledger.feeds import (
    AdjustmentNormalizer, DispatchNormalizer, FeedResult, ProcessingNormalizer,
    ResolutionTable, StockSnapshot, TransferNormalizer,
)
from stockledger.models import (
    DailySummary, SourceApplication, SourceType, SummaryStatus, TradeBatch,
)
from .debit_credit_service import DebitCreditService, StagedApplication
from .ledger_service import ActivityLedger, LedgerService, GRADE, STRATEGY
from .reconciliation_service import ReconciliationResult, ReconciliationService
from .record_service import SourceRecordService

logger = logging.getLogger(__name__)

NORMALIZERS = {
    SourceType.STI: TransferNormalizer,
    SourceType.STA: AdjustmentNormalizer,
    SourceType.PA: ProcessingNormalizer,
    SourceType.GDI: DispatchNormalizer,
}


class DailyRunService:

    # ========== Normalization (no lock, read-only) ==========

    @staticmethod
    def resolution_table(db: Session, snapshot: StockSnapshot) -> ResolutionTable:
        """Snapshot batch allocations, falling back to known trade records"""
        trades = {batch: strategy for batch, strategy in db.query(TradeBatch.batch_number, TradeBatch.strategy)}
        return snapshot.resolution_table(trades)

    @staticmethod
    def normalize(
        db: Session,
        source_type: SourceType,
        raw: bytes,
        since_date: Optional[date],
        snapshot: StockSnapshot,
        filename: Optional[str] = None,
    ) -> FeedResult:
        normalizer = NORMALIZERS[source_type](DailyRunService.resolution_table(db, snapshot))
        return normalizer.load(raw, since_date, filename=filename)

    # ========== Ledger lifecycle ==========

    @staticmethod
    def initialize(db: Session, summary_id: int, snapshot: StockSnapshot, force: bool = False) -> Dict[str, Any]:
        """
        Seed the summary's activity records from the snapshot.

        A second initialization needs force and then rebuilds the ledger from
        the summary's persisted records.
        """
        with summary_lock(db, summary_id) as summary:
            try:
                if summary.grade_activities or summary.strategy_activities:
                    if not force:
                        raise SourceAlreadyAppliedError(summary_id, "INITIALIZE")
                    ledger = DailyRunService._rebuild(db, summary, snapshot)
                else:
                    ledger = ActivityLedger.initialize(
                        summary.id, snapshot, summary.date,
                        previous_closing=LedgerService.previous_closing(db, summary.date),
                    )
                    LedgerService.save(summary, ledger)
                    LedgerService.refresh_summary_totals(summary, ledger)
                summary.status = SummaryStatus.OPEN.value
                summary.closed_at = None
                DailyRunService._commit(db, summary)
            except LedgerError:
                db.rollback()
                raise

            return {
                "summary_id": summary.id,
                "date": summary.date.isoformat(),
                "policy": settings.OPENING_BALANCE_POLICY,
                "grades": len(ledger.grades),
                "strategies": len(ledger.strategies),
                "total_opening_qty": round(ledger.totals(GRADE)["opening_qty"], 4),
            }

    @staticmethod
    def apply_feed(db: Session, summary_id: int, result: FeedResult, force: bool = False) -> Dict[str, Any]:
        """
        Fold one normalized source into the summary, all or nothing.

        Staging, validation, record writes and ledger writes share one
        transaction; nothing is persisted when any step fails.
        """
        source = result.source_type
        processor = DebitCreditService()

        with summary_lock(db, summary_id) as summary:
            if summary.is_closed and not force:
                raise SummaryFinalizedError(summary_id)

            ledger = LedgerService.load(db, summary)
            if source in ledger.applied_sources and not force:
                raise SourceAlreadyAppliedError(summary_id, source.value)

            try:
                if force:
                    SourceRecordService.clear(db, summary, source)
                fresh, fresh_ghosts, duplicate_warnings = SourceRecordService.partition(db, summary, result)
                staged = processor.stage(source, fresh)
                ledger.apply(staged.delta, force=force)

                SourceRecordService.write(db, summary, staged, fresh_ghosts, result)
                LedgerService.save(summary, ledger)
                LedgerService.refresh_summary_totals(summary, ledger)
                warnings = result.warning_messages + duplicate_warnings + staged.warnings
                DailyRunService._mark_applied(db, summary, staged, result.since_date, len(warnings))
                if summary.is_closed:
                    # Forced re-application reopens the day until it is closed again
                    summary.status = SummaryStatus.OPEN.value
                    summary.closed_at = None
                DailyRunService._commit(db, summary)
            except LedgerError:
                db.rollback()
                raise

            logger.info(
                f"{source.value} applied to summary {summary_id}: {len(staged.accepted)} lines, "
                f"{len(result.ghost_candidates)} ghost candidates, {len(warnings)} warnings"
            )
            return {
                "summary_id": summary_id,
                "source_type": source.value,
                "forced": force,
                "applied_lines": len(staged.accepted),
                "rejected_lines": len(staged.rejected),
                "total": round(staged.total, 4),
                "delta": staged.delta.to_dict(),
                "ghost_candidates": sorted({c.batch_number for c in result.ghost_candidates}),
                "warnings": warnings,
            }

    @staticmethod
    def close_day(
        db: Session,
        summary_id: int,
        snapshot: StockSnapshot,
        tolerance_qty: Optional[float] = None,
        force: bool = False,
    ) -> ReconciliationResult:
        with summary_lock(db, summary_id) as summary:
            if summary.is_closed and not force:
                raise SummaryFinalizedError(summary_id)
            ledger = LedgerService.load(db, summary)
            result = ReconciliationService.close(ledger, snapshot, tolerance_qty=tolerance_qty)
            DailyRunService._finalize(summary, ledger, snapshot)
            DailyRunService._commit(db, summary)
            return result

    @staticmethod
    def recompute(
        db: Session,
        summary_id: int,
        snapshot: StockSnapshot,
        close: bool = True,
        tolerance_qty: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Rebuild the ledger from the summary's persisted records, then close it
        against the snapshot. Recovery path for NEEDS_RECOMPUTE summaries.
        """
        with summary_lock(db, summary_id) as summary:
            try:
                ledger = DailyRunService._rebuild(db, summary, snapshot)
                result = None
                if close:
                    result = ReconciliationService.close(ledger, snapshot, tolerance_qty=tolerance_qty)
                    DailyRunService._finalize(summary, ledger, snapshot)
                else:
                    summary.status = SummaryStatus.OPEN.value
                    summary.closed_at = None
                DailyRunService._commit(db, summary)
            except LedgerError:
                db.rollback()
                raise

            return {
                "summary_id": summary_id,
                "status": summary.status,
                "applied_sources": sorted(s.value for s in ledger.applied_sources),
                "reconciliation": result.to_dict() if result else None,
            }

    # ========== Internals ==========

    @staticmethod
    def _rebuild(db: Session, summary: DailySummary, snapshot: StockSnapshot) -> ActivityLedger:
        previous = LedgerService.previous_closing(db, summary.date)
        ledger = ActivityLedger.initialize(summary.id, snapshot, summary.date, previous_closing=previous)
        processor = DebitCreditService()
        undefined = settings.UNDEFINED_STRATEGY

        record_sets = {
            SourceType.STI: [r for r in summary.instructed_batches if r.delivered_qty > 0 and r.strategy != undefined],
            SourceType.STA: [r for r in summary.adjustments if r.strategy != undefined],
            SourceType.GDI: [r for r in summary.outbounds if r.strategy != undefined],
        }
        applied = {app.source_type for app in summary.applications}

        for source in SourceType:
            if source == SourceType.PA:
                lines = [
                    line for process in summary.processes for line in process.strategy_lines
                    if line.strategy != undefined
                ]
                staged = processor.stage_process_records(lines)
            else:
                staged = processor.stage(source, record_sets[source])
            if staged.delta.is_empty and source.value not in applied:
                continue
            for key in staged.delta.grades:
                ledger.ensure_key(GRADE, key, previous[GRADE].get(key, 0.0))
            for key in staged.delta.strategies:
                ledger.ensure_key(STRATEGY, key, previous[STRATEGY].get(key, 0.0))
            ledger.apply(staged.delta, force=True)
            DailyRunService._mark_applied(db, summary, staged, None, 0)

        LedgerService.save(summary, ledger)
        LedgerService.refresh_summary_totals(summary, ledger)
        logger.info(f"Rebuilt ledger of summary {summary.id} from persisted records")
        return ledger

    @staticmethod
    def _finalize(summary: DailySummary, ledger: ActivityLedger, snapshot: StockSnapshot):
        LedgerService.save(summary, ledger)
        LedgerService.refresh_summary_totals(summary, ledger)
        summary.blocked_for_processing_qty = snapshot.blocked_for_processing_qty
        summary.work_in_progress_qty = snapshot.work_in_progress_qty
        summary.status = SummaryStatus.CLOSED.value
        summary.closed_at = datetime.now(timezone.utc)

    @staticmethod
    def _mark_applied(db: Session, summary: DailySummary, staged: StagedApplication, since_date: Optional[date], warning_count: int):
        application = None
        for app in summary.applications:
            if app.source_type == staged.source_type.value:
                application = app
        if application is None:
            application = SourceApplication(source_type=staged.source_type.value)
            summary.applications.append(application)
        if since_date is not None:
            application.since_date = since_date
        application.row_count = len(staged.accepted)
        application.total_qty = round(staged.total, 6)
        application.warning_count = warning_count
        application.applied_at = datetime.now(timezone.utc)

    @staticmethod
    def _commit(db: Session, summary: DailySummary):
        summary_id = summary.id
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception(f"Write of summary {summary_id} failed, flagging for recompute")
            try:
                db.query(DailySummary).filter(DailySummary.id == summary_id).update(
                    {"status": SummaryStatus.NEEDS_RECOMPUTE.value}
                )
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                logger.exception(f"Could not flag summary {summary_id} for recompute")
            raise
