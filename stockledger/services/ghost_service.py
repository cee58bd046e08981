"""
Ghost Service - batches consumed or dispatched without a known origin
Separate read path: never touches activity records or takes a summary lock
"""
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
import logging

from sqlalchemy.orm import Session

from stockledger.core.config import settings
from stockledger.feeds.base import normalize_key
from stockledger.feeds.snapshot import StockSnapshot
from stockledger.models import (
    AdjustmentRecord, DailySummary, GhostBatch, InstructedBatch, MissingHedgeBatch,
    OutboundRecord, ProcessRecord, StrategyProcessing, SummaryStatus, TradeBatch,
)

logger = logging.getLogger(__name__)

PROCESSING_INPUT = "PROCESSING_INPUT"
DISPATCH = "DISPATCH"


@dataclass
class GhostBatchDetected:
    """Outcome of one detection pass for a single batch"""
    batch_number: str
    sources: Tuple[str, ...]
    inferred_quantity: float
    is_new: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_number": self.batch_number,
            "sources": list(self.sources),
            "inferred_quantity": round(self.inferred_quantity, 4),
            "is_new": self.is_new,
        }


def _now() -> datetime:
    return datetime.now(timezone.utc)


class GhostService:

    # ========== Ghost Detection ==========

    @staticmethod
    def consumed_batches(db: Session) -> Dict[str, Dict[str, float]]:
        """batch -> {source: quantity} over processing inputs and dispatches still UNDEFINED"""
        undefined = settings.UNDEFINED_STRATEGY
        seen: Dict[str, Dict[str, float]] = defaultdict(lambda: defaultdict(float))
        inputs = db.query(StrategyProcessing.batch_number, StrategyProcessing.input_qty).filter(
            StrategyProcessing.input_qty > 0, StrategyProcessing.strategy == undefined
        )
        for batch, qty in inputs:
            seen[batch][PROCESSING_INPUT] += qty or 0.0
        dispatches = db.query(OutboundRecord.batch_number, OutboundRecord.quantity).filter(
            OutboundRecord.strategy == undefined
        )
        for batch, qty in dispatches:
            seen[batch][DISPATCH] += qty or 0.0
        return seen

    @staticmethod
    def recorded_strategies(db: Session) -> Dict[str, str]:
        """Strategies already resolved on recorded processing and dispatch lines"""
        undefined = settings.UNDEFINED_STRATEGY
        recorded = {}
        for model in (StrategyProcessing, OutboundRecord):
            for batch, strategy in db.query(model.batch_number, model.strategy).filter(model.strategy != undefined):
                recorded[batch] = strategy
        return recorded

    @staticmethod
    def known_strategies(db: Session, snapshot: Optional[StockSnapshot] = None) -> Dict[str, str]:
        known = {batch: strategy for batch, strategy in db.query(TradeBatch.batch_number, TradeBatch.strategy)}
        if snapshot is not None:
            known.update(snapshot.batch_strategies)
        return known

    @staticmethod
    def find_ghost_batches(db: Session, snapshot: Optional[StockSnapshot] = None) -> List[GhostBatchDetected]:
        """
        Batches consumed by processing or dispatched with an UNDEFINED strategy
        that neither the snapshot (when given) nor trade records resolve.

        Idempotent: one ghost row per batch, quantities refreshed on every run.
        Persisted ghosts that became resolvable are confirmed, not deleted; a
        confirmed ghost is reopened only when unresolved lines show up again.
        """
        known = GhostService.known_strategies(db, snapshot)
        consumed = GhostService.consumed_batches(db)
        existing = {row.batch_number: row for row in db.query(GhostBatch)}
        now = _now()

        detected = []
        for batch in sorted(consumed):
            if batch in known:
                continue
            sources = tuple(sorted(consumed[batch]))
            quantity = sum(consumed[batch].values())
            row = existing.get(batch)
            if row is None:
                row = GhostBatch(batch_number=batch, first_seen_at=now)
                db.add(row)
                existing[batch] = row
            row.sources = ",".join(sources)
            row.inferred_quantity = quantity
            row.last_seen_at = now
            row.resolved_strategy = None
            row.resolved_at = None
            detected.append(GhostBatchDetected(batch, sources, quantity, is_new=row.id is None))

        resolvable = {**GhostService.recorded_strategies(db), **known}
        open_batches = {d.batch_number for d in detected}
        confirmed = 0
        for batch, row in existing.items():
            if row.resolved_at is None and batch not in open_batches and batch in resolvable:
                row.resolved_strategy = resolvable[batch]
                row.resolved_at = now
                confirmed += 1

        db.commit()
        new_count = sum(1 for d in detected if d.is_new)
        logger.info(f"Ghost scan: {len(detected)} ghost batches ({new_count} new), {confirmed} confirmed")
        return detected

    @staticmethod
    def find_missing_hedge_batches(db: Session) -> List[MissingHedgeBatch]:
        """Traded batches without a hedge level; rows resolve once the hedge arrives"""
        existing = {row.batch_number: row for row in db.query(MissingHedgeBatch)}
        now = _now()
        missing = []
        for trade in db.query(TradeBatch).order_by(TradeBatch.batch_number):
            row = existing.get(trade.batch_number)
            if trade.hedge_level is None:
                if row is None:
                    row = MissingHedgeBatch(batch_number=trade.batch_number, first_seen_at=now)
                    db.add(row)
                row.strategy = trade.strategy
                row.quantity = trade.quantity
                row.last_seen_at = now
                row.resolved_at = None
                missing.append(row)
            elif row is not None and row.resolved_at is None:
                row.resolved_at = now
        db.commit()
        logger.info(f"Missing hedge scan: {len(missing)} batches without hedge level")
        return missing

    @staticmethod
    def list_ghosts(db: Session, include_resolved: bool = False) -> List[GhostBatch]:
        query = db.query(GhostBatch)
        if not include_resolved:
            query = query.filter(GhostBatch.resolved_at.is_(None))
        return query.order_by(GhostBatch.batch_number).all()

    @staticmethod
    def list_missing_hedge(db: Session, include_resolved: bool = False) -> List[MissingHedgeBatch]:
        query = db.query(MissingHedgeBatch)
        if not include_resolved:
            query = query.filter(MissingHedgeBatch.resolved_at.is_(None))
        return query.order_by(MissingHedgeBatch.batch_number).all()

    @staticmethod
    def delete_ghost(db: Session, ghost_id: int) -> bool:
        """Operator action; the engine itself never deletes ghosts"""
        row = db.query(GhostBatch).filter(GhostBatch.id == ghost_id).first()
        if not row:
            return False
        batch_number = row.batch_number
        db.delete(row)
        db.commit()
        logger.info(f"Deleted ghost batch {batch_number}")
        return True

    # ========== Backfill ==========

    @staticmethod
    def update_undefined_strategies(db: Session, strategy_map: Mapping[str, str]) -> Dict[str, Any]:
        """
        Replace UNDEFINED strategies of recorded lines whose batch now has an
        allocation. Touched summaries are flagged NEEDS_RECOMPUTE; their
        activity records change only through recompute.
        """
        undefined = settings.UNDEFINED_STRATEGY
        allocations = {normalize_key(k): normalize_key(v) for k, v in strategy_map.items() if normalize_key(k) and normalize_key(v)}
        updated: Dict[str, int] = {}
        touched_summaries = set()

        if allocations:
            batches = list(allocations)
            for name, model in (
                ("outbounds", OutboundRecord),
                ("strategy_processing", StrategyProcessing),
                ("instructed_batches", InstructedBatch),
                ("adjustments", AdjustmentRecord),
            ):
                rows = db.query(model).filter(model.strategy == undefined, model.batch_number.in_(batches)).all()
                for row in rows:
                    row.strategy = allocations[row.batch_number]
                    if isinstance(row, StrategyProcessing):
                        touched_summaries.add(row.process.summary_id)
                    else:
                        touched_summaries.add(row.summary_id)
                updated[name] = len(rows)

            now = _now()
            for ghost in db.query(GhostBatch).filter(
                GhostBatch.batch_number.in_(batches), GhostBatch.resolved_at.is_(None)
            ):
                ghost.resolved_strategy = allocations[ghost.batch_number]
                ghost.resolved_at = now

            if touched_summaries:
                db.query(DailySummary).filter(DailySummary.id.in_(touched_summaries)).update(
                    {"status": SummaryStatus.NEEDS_RECOMPUTE.value}, synchronize_session=False
                )
            db.commit()

        logger.info(f"Backfilled UNDEFINED strategies: {updated}, summaries to recompute: {sorted(touched_summaries)}")
        return {
            "updated": updated,
            "summaries_needing_recompute": sorted(touched_summaries),
        }

    # ========== Trade Records ==========

    @staticmethod
    def upsert_trade_batches(db: Session, trades: Iterable[Mapping[str, Any]]) -> Dict[str, int]:
        existing = {row.batch_number: row for row in db.query(TradeBatch)}
        created = updated = 0
        for trade in trades:
            batch = normalize_key(trade.get("batch_number"))
            strategy = normalize_key(trade.get("strategy"))
            if not batch or not strategy:
                continue
            row = existing.get(batch)
            if row is None:
                row = TradeBatch(batch_number=batch, strategy=strategy)
                db.add(row)
                existing[batch] = row
                created += 1
            else:
                updated += 1
            row.strategy = strategy
            row.grade = normalize_key(trade.get("grade")) or row.grade
            for attr in ("quantity", "hedge_level", "cost_usd_50", "diff_usc_lb"):
                if trade.get(attr) is not None:
                    setattr(row, attr, trade[attr])
        db.commit()
        logger.info(f"Trade batches: {created} created, {updated} updated")
        return {"created": created, "updated": updated}

    @staticmethod
    def batch_history(db: Session, batch_number: str) -> Optional[Dict[str, Any]]:
        """Every recorded movement of a batch, or None when nothing mentions it"""
        batch = normalize_key(batch_number)

        def day(summary_id) -> Optional[str]:
            summary = db.get(DailySummary, summary_id)
            return summary.date.isoformat() if summary else None

        transfers = [
            {
                "sti_number": row.instruction.sti_number,
                "summary_date": day(row.summary_id),
                "arrival_date": row.arrival_date.isoformat() if row.arrival_date else None,
                "grade": row.grade,
                "strategy": row.strategy,
                "delivered_qty": row.delivered_qty,
                "loss_gain_qty": row.loss_gain_qty,
                "status": row.status,
            }
            for row in db.query(InstructedBatch).filter(InstructedBatch.batch_number == batch)
        ]
        adjustments = [
            {
                "summary_date": day(row.summary_id),
                "adjustment_date": row.adjustment_date.isoformat(),
                "grade": row.grade,
                "strategy": row.strategy,
                "quantity": row.quantity,
                "reason": row.reason,
            }
            for row in db.query(AdjustmentRecord).filter(AdjustmentRecord.batch_number == batch)
        ]
        processes = [
            {
                "process_number": line.process.process_number,
                "processing_date": line.process.processing_date.isoformat() if line.process.processing_date else None,
                "grade": line.grade,
                "strategy": line.strategy,
                "input_qty": line.input_qty,
                "output_qty": line.output_qty,
            }
            for line in db.query(StrategyProcessing).join(ProcessRecord).filter(StrategyProcessing.batch_number == batch)
        ]
        outbounds = [
            {
                "summary_date": day(row.summary_id),
                "dispatch_date": row.dispatch_date.isoformat(),
                "dispatch_number": row.dispatch_number,
                "grade": row.grade,
                "strategy": row.strategy,
                "quantity": row.quantity,
            }
            for row in db.query(OutboundRecord).filter(OutboundRecord.batch_number == batch)
        ]
        trade = db.query(TradeBatch).filter(TradeBatch.batch_number == batch).first()
        ghost = db.query(GhostBatch).filter(GhostBatch.batch_number == batch).first()

        if not (transfers or adjustments or processes or outbounds or trade or ghost):
            return None
        return {
            "batch_number": batch,
            "trade": {
                "strategy": trade.strategy,
                "grade": trade.grade,
                "quantity": trade.quantity,
                "hedge_level": trade.hedge_level,
            } if trade else None,
            "ghost": {
                "sources": ghost.sources.split(","),
                "inferred_quantity": ghost.inferred_quantity,
                "resolved_strategy": ghost.resolved_strategy,
            } if ghost else None,
            "transfers": transfers,
            "adjustments": adjustments,
            "processes": processes,
            "outbounds": outbounds,
        }
