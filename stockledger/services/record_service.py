"""
Source Record Service - persists the normalized lines behind each ledger application
"""
from collections import defaultdict
from typing import Any, Dict, List, Tuple
import logging

from sqlalchemy.orm import Session

from stockledger.core.config import settings
from stockledger.feeds.base import FeedResult
from stockledger.feeds.transfers import TransferFeedResult
from stockledger.models import (
    AdjustmentRecord, BatchTransferStatus, DailySummary, GradeProcessing, InstructedBatch,
    OutboundRecord, ProcessRecord, SourceType, StockTransferInstruction, StrategyProcessing,
    SummaryStatus, TransferStatus,
)
from .debit_credit_service import StagedApplication, allocate_losses

logger = logging.getLogger(__name__)


def _chunks(values: List[Any], size: int = 500):
    for i in range(0, len(values), size):
        yield values[i:i + size]


class SourceRecordService:
    """
    Lines already recorded under an earlier summary are not counted again, so
    overlapping upload windows never double count a movement. Processes are
    the exception: a corrected process replaces the stored one.
    """

    # ========== Clear (forced re-application) ==========

    @staticmethod
    def clear(db: Session, summary: DailySummary, source_type: SourceType) -> int:
        collection = {
            SourceType.STI: summary.instructed_batches,
            SourceType.STA: summary.adjustments,
            SourceType.GDI: summary.outbounds,
            SourceType.PA: summary.processes,
        }[source_type]
        count = len(collection)
        for row in list(collection):
            collection.remove(row)
        db.flush()
        logger.info(f"Cleared {count} {source_type.value} records of summary {summary.id}")
        return count

    # ========== Partition into new / already recorded ==========

    @staticmethod
    def partition(db: Session, summary: DailySummary, result: FeedResult) -> Tuple[List[Any], List[Any], List[str]]:
        """
        Returns (fresh resolved lines, fresh unresolved lines, warnings).
        """
        handler = {
            SourceType.STI: SourceRecordService._recorded_transfers,
            SourceType.STA: SourceRecordService._recorded_adjustments,
            SourceType.GDI: SourceRecordService._recorded_dispatches,
            SourceType.PA: SourceRecordService._recorded_processes,
        }[result.source_type]

        ghost_lines = [c.line for c in result.ghost_candidates if c.line is not None]
        recorded = handler(db, result.lines + ghost_lines)

        fresh, fresh_ghosts, recorded_lines = [], [], []
        for bucket, lines in ((fresh, result.lines), (fresh_ghosts, ghost_lines)):
            for line in lines:
                key = SourceRecordService.natural_key(result.source_type, line)
                owner = recorded.get(key)
                if owner is None:
                    bucket.append(line)
                else:
                    recorded_lines.append((key, line, owner))

        if result.source_type == SourceType.PA:
            warnings = SourceRecordService.refresh_processes(db, summary, [line for _, line, _ in recorded_lines])
        else:
            warnings = [
                f"{result.source_type.value} {'/'.join(map(str, key))} already recorded under summary {owner}"
                for key, _, owner in recorded_lines
            ]

        if recorded_lines:
            logger.info(f"{result.source_type.value}: {len(recorded_lines)} lines already recorded, not counted again")
        return fresh, fresh_ghosts, warnings

    @staticmethod
    def natural_key(source_type: SourceType, line) -> tuple:
        if source_type == SourceType.STI:
            return (line.sti_number, line.batch_number, line.transaction_number)
        if source_type == SourceType.PA:
            return (line.process_number,)
        return line.natural_key

    @staticmethod
    def _recorded_transfers(db: Session, lines: List[Any]) -> Dict[tuple, int]:
        numbers = sorted({line.sti_number for line in lines})
        recorded = {}
        for chunk in _chunks(numbers):
            rows = db.query(
                StockTransferInstruction.sti_number,
                InstructedBatch.batch_number,
                InstructedBatch.transaction_number,
                InstructedBatch.summary_id,
            ).join(
                InstructedBatch, InstructedBatch.sti_id == StockTransferInstruction.id
            ).filter(
                StockTransferInstruction.sti_number.in_(chunk),
                InstructedBatch.delivered_qty > 0,
            ).all()
            for sti_number, batch, transaction, summary_id in rows:
                recorded[(sti_number, batch, transaction)] = summary_id
        return recorded

    @staticmethod
    def _recorded_adjustments(db: Session, lines: List[Any]) -> Dict[tuple, int]:
        batches = sorted({line.batch_number for line in lines})
        recorded = {}
        for chunk in _chunks(batches):
            for row in db.query(AdjustmentRecord).filter(AdjustmentRecord.batch_number.in_(chunk)):
                key = (row.batch_number, row.grade, round(row.quantity, 4), row.adjustment_date)
                recorded[key] = row.summary_id
        return recorded

    @staticmethod
    def _recorded_dispatches(db: Session, lines: List[Any]) -> Dict[tuple, int]:
        batches = sorted({line.batch_number for line in lines})
        recorded = {}
        for chunk in _chunks(batches):
            for row in db.query(OutboundRecord).filter(OutboundRecord.batch_number.in_(chunk)):
                key = (row.ticket_number, row.dispatch_number, row.dc_number, row.grade, row.batch_number)
                recorded[key] = row.summary_id
        return recorded

    @staticmethod
    def _recorded_processes(db: Session, runs: List[Any]) -> Dict[tuple, int]:
        numbers = sorted({run.process_number for run in runs})
        recorded = {}
        for chunk in _chunks(numbers):
            for number, summary_id in db.query(ProcessRecord.process_number, ProcessRecord.summary_id).filter(
                ProcessRecord.process_number.in_(chunk)
            ):
                recorded[(number,)] = summary_id
        return recorded

    @staticmethod
    def refresh_processes(db: Session, summary: DailySummary, runs: List[Any]) -> List[str]:
        """
        Re-uploaded processes update the stored record in place. A changed
        process flags its owning summary NEEDS_RECOMPUTE; the ledger of that
        day picks the correction up on recompute.
        """
        if not runs:
            return []
        stored = {}
        for chunk in _chunks(sorted({run.process_number for run in runs})):
            for record in db.query(ProcessRecord).filter(ProcessRecord.process_number.in_(chunk)):
                stored[record.process_number] = record

        warnings = []
        for run in runs:
            record = stored[run.process_number]
            strategy_lines, grade_lines = SourceRecordService.process_lines(run)
            if SourceRecordService._process_content(record, record.strategy_lines) == \
                    SourceRecordService._process_content(run, strategy_lines):
                warnings.append(f"PA {run.process_number} already recorded under summary {record.summary_id}")
                continue
            if abs(run.conservation_gap) > settings.CONSERVATION_EPSILON:
                warnings.append(
                    f"PA {run.process_number} correction skipped: inputs {run.input_qty:.2f} != outputs "
                    f"{run.output_qty:.2f} + milling {run.milling_loss:.2f} + loss {run.processing_loss:.2f}"
                )
                continue

            record.process_type = run.process_type
            record.issue_date = run.issue_date
            record.processing_date = run.processing_date
            record.input_qty = run.input_qty
            record.output_qty = run.output_qty
            record.milling_loss = run.milling_loss
            record.processing_loss = run.processing_loss
            record.strategy_lines = strategy_lines
            record.grade_lines = grade_lines
            if record.summary_id != summary.id:
                record.summary.status = SummaryStatus.NEEDS_RECOMPUTE.value
            logger.info(f"Process {run.process_number} updated under summary {record.summary_id}")
            warnings.append(
                f"PA {run.process_number} updated under summary {record.summary_id}, flagged for recompute"
            )
        return warnings

    @staticmethod
    def _process_content(process, strategy_lines) -> tuple:
        lines = sorted(
            (
                line.batch_number, line.grade, line.strategy or settings.UNDEFINED_STRATEGY,
                round(line.input_qty or 0.0, 4), round(line.output_qty or 0.0, 4),
            )
            for line in strategy_lines
        )
        return (
            process.process_type, process.issue_date, process.processing_date,
            round(process.milling_loss or 0.0, 4), round(process.processing_loss or 0.0, 4),
            tuple(lines),
        )

    # ========== Write ==========

    @staticmethod
    def write(db: Session, summary: DailySummary, staged: StagedApplication, ghost_lines: List[Any], result: FeedResult):
        if staged.source_type == SourceType.STI:
            SourceRecordService._write_transfers(db, summary, staged.accepted + ghost_lines, result)
        elif staged.source_type == SourceType.STA:
            for line in staged.accepted + ghost_lines:
                summary.adjustments.append(AdjustmentRecord(
                    adjustment_date=line.adjustment_date,
                    batch_number=line.batch_number,
                    grade=line.grade,
                    strategy=line.strategy or settings.UNDEFINED_STRATEGY,
                    quantity=line.quantity,
                    reason=line.reason,
                ))
        elif staged.source_type == SourceType.GDI:
            for line in staged.accepted + ghost_lines:
                summary.outbounds.append(OutboundRecord(
                    dispatch_date=line.dispatch_date,
                    ticket_number=line.ticket_number,
                    dispatch_number=line.dispatch_number,
                    dc_number=line.dc_number,
                    grade=line.grade,
                    strategy=line.strategy or settings.UNDEFINED_STRATEGY,
                    batch_number=line.batch_number,
                    quantity=line.quantity,
                ))
        elif staged.source_type == SourceType.PA:
            for run in staged.accepted:
                summary.processes.append(SourceRecordService.process_record(run))

    @staticmethod
    def process_record(run) -> ProcessRecord:
        strategy_lines, grade_lines = SourceRecordService.process_lines(run)
        return ProcessRecord(
            process_number=run.process_number,
            process_type=run.process_type,
            issue_date=run.issue_date,
            processing_date=run.processing_date,
            input_qty=run.input_qty,
            output_qty=run.output_qty,
            milling_loss=run.milling_loss,
            processing_loss=run.processing_loss,
            strategy_lines=strategy_lines,
            grade_lines=grade_lines,
        )

    @staticmethod
    def process_lines(run) -> Tuple[List[StrategyProcessing], List[GradeProcessing]]:
        """Per-batch lines with their share of the losses, and the per-grade rollup"""
        losses = allocate_losses(run)
        strategy_lines, grade_lines = [], []

        per_grade = defaultdict(lambda: [0.0, 0.0, 0.0, 0.0])
        for line in run.inputs:
            milling, processing = losses.get((line.batch_number, line.grade), (0.0, 0.0))
            strategy_lines.append(StrategyProcessing(
                batch_number=line.batch_number,
                grade=line.grade,
                strategy=line.strategy or settings.UNDEFINED_STRATEGY,
                input_qty=line.quantity,
                milling_loss_qty=milling,
                processing_loss_qty=processing,
            ))
            totals = per_grade[line.grade]
            totals[0] += line.quantity
            totals[2] += milling
            totals[3] += processing
        for line in run.outputs:
            strategy_lines.append(StrategyProcessing(
                batch_number=line.batch_number,
                grade=line.grade,
                strategy=line.strategy or settings.UNDEFINED_STRATEGY,
                output_qty=line.quantity,
            ))
            per_grade[line.grade][1] += line.quantity

        for grade in sorted(per_grade):
            input_qty, output_qty, milling, processing = per_grade[grade]
            grade_lines.append(GradeProcessing(
                grade=grade,
                input_qty=input_qty,
                output_qty=output_qty,
                milling_loss_qty=milling,
                processing_loss_qty=processing,
            ))
        return strategy_lines, grade_lines

    @staticmethod
    def _write_transfers(db: Session, summary: DailySummary, lines: List[Any], result: FeedResult):
        pending_lines = result.pending_lines if isinstance(result, TransferFeedResult) else []
        numbers = sorted({line.sti_number for line in lines + pending_lines})

        headers: Dict[str, StockTransferInstruction] = {}
        for chunk in _chunks(numbers):
            for header in db.query(StockTransferInstruction).filter(StockTransferInstruction.sti_number.in_(chunk)):
                headers[header.sti_number] = header

        def header_for(line) -> StockTransferInstruction:
            header = headers.get(line.sti_number)
            if header is None:
                header = StockTransferInstruction(sti_number=line.sti_number, instructed_date=line.instructed_date)
                db.add(header)
                headers[line.sti_number] = header
            elif header.instructed_date is None:
                header.instructed_date = line.instructed_date
            return header

        def batch_row(header, line):
            for row in header.batches:
                if row.batch_number == line.batch_number and row.transaction_number == line.transaction_number:
                    return row
            return None

        for line in lines:
            header = header_for(line)
            row = batch_row(header, line)
            if row is None:
                row = InstructedBatch(batch_number=line.batch_number, transaction_number=line.transaction_number)
                header.batches.append(row)
            # A pending row picked up by a later delivery moves to this summary
            SourceRecordService._fill_batch(row, line)
            row.summary = summary

        for line in pending_lines:
            header = header_for(line)
            if batch_row(header, line) is None:
                row = InstructedBatch(batch_number=line.batch_number, transaction_number=line.transaction_number)
                SourceRecordService._fill_batch(row, line)
                header.batches.append(row)
                row.summary = summary

        if isinstance(result, TransferFeedResult):
            SourceRecordService.sync_pending_batches(db, result.file_statuses, headers)
        for header in headers.values():
            SourceRecordService.refresh_header_status(header)

    @staticmethod
    def _fill_batch(row: InstructedBatch, line):
        row.grade = line.grade
        row.strategy = line.strategy or settings.UNDEFINED_STRATEGY
        row.instructed_qty = line.instructed_qty
        row.delivered_qty = line.delivered_qty
        row.loss_gain_qty = line.loss_gain_qty
        row.balance_to_transfer = line.balance_qty
        row.status = line.status
        row.from_location = line.from_location
        row.storage_due_date = line.storage_due_date
        row.arrival_date = line.arrival_date

    @staticmethod
    def sync_pending_batches(db: Session, file_statuses: Dict[tuple, str], headers: Dict[str, StockTransferInstruction]) -> int:
        """Pending batches that the file now reports as Completed are marked completed"""
        if not file_statuses:
            return 0
        pending = db.query(InstructedBatch).filter(
            InstructedBatch.status != BatchTransferStatus.COMPLETED.value
        ).all()
        updated = 0
        for row in pending:
            if file_statuses.get((row.batch_number, row.transaction_number)) == TransferStatus.COMPLETED.value:
                row.status = BatchTransferStatus.COMPLETED.value
                headers.setdefault(row.instruction.sti_number, row.instruction)
                updated += 1
        if updated:
            logger.info(f"Marked {updated} pending instructed batches completed")
        return updated

    @staticmethod
    def refresh_header_status(header: StockTransferInstruction):
        statuses = {row.status for row in header.batches}
        if not statuses:
            return
        if statuses == {BatchTransferStatus.COMPLETED.value}:
            header.status = TransferStatus.COMPLETED.value
        elif statuses == {BatchTransferStatus.FULLY_PENDING.value}:
            header.status = TransferStatus.PENDING.value
        else:
            header.status = TransferStatus.PARTIALLY_PENDING.value
