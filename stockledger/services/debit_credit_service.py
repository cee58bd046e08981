"""
Debit/Credit Service - turns normalized feed lines into staged ledger deltas
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Tuple
import logging

from stockledger.core.config import settings
from stockledger.feeds.processing import ProcessRun
from stockledger.models import SourceType
from .ledger_service import LedgerDelta

logger = logging.getLogger(__name__)


@dataclass
class StagedApplication:
    """Delta of one source plus the lines it was built from, validated before any write"""
    source_type: SourceType
    delta: LedgerDelta
    accepted: List[Any] = field(default_factory=list)
    rejected: List[Any] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def total(self) -> float:
        return sum(self.delta.totals("grade").values())


def allocate_losses(run: ProcessRun) -> Dict[Tuple[str, str], Tuple[float, float]]:
    """
    Milling and processing loss of a run spread over its input lines by share
    of total input. Keyed by (batch, grade) -> (milling, processing).
    """
    total_input = run.input_qty
    if total_input <= 0:
        return {}
    allocation = {}
    for line in run.inputs:
        share = line.quantity / total_input
        allocation[(line.batch_number, line.grade)] = (
            share * run.milling_loss,
            share * run.processing_loss,
        )
    return allocation


class DebitCreditService:
    """
    Applies the direction rules of each feed:
        STI  credits inbound_qty with the gross moved quantity and loss_gain_qty with transit loss/gain
        STA  adds the signed quantity to stock_adjustment_qty
        GDI  debits through outbound_qty
        PA   debits to_processing_qty per input line, credits from_processing_qty per output line
    """

    def __init__(self, epsilon: float = None):
        self.epsilon = settings.CONSERVATION_EPSILON if epsilon is None else epsilon

    def stage(self, source_type: SourceType, lines: Iterable[Any]) -> StagedApplication:
        handler = {
            SourceType.STI: self.stage_transfers,
            SourceType.STA: self.stage_adjustments,
            SourceType.GDI: self.stage_dispatches,
            SourceType.PA: self.stage_processes,
        }[source_type]
        staged = handler(list(lines))
        staged.delta.validate(self.epsilon)
        return staged

    def stage_transfers(self, lines: List[Any]) -> StagedApplication:
        staged = StagedApplication(SourceType.STI, LedgerDelta(SourceType.STI))
        for line in lines:
            if line.delivered_qty <= 0:
                continue
            staged.delta.add(line.grade, line.strategy, "inbound_qty", line.inbound_qty)
            staged.delta.add(line.grade, line.strategy, "loss_gain_qty", line.loss_gain_qty)
            staged.accepted.append(line)
        return staged

    def stage_adjustments(self, lines: List[Any]) -> StagedApplication:
        staged = StagedApplication(SourceType.STA, LedgerDelta(SourceType.STA))
        for line in lines:
            staged.delta.add(line.grade, line.strategy, "stock_adjustment_qty", line.quantity)
            staged.accepted.append(line)
        return staged

    def stage_dispatches(self, lines: List[Any]) -> StagedApplication:
        staged = StagedApplication(SourceType.GDI, LedgerDelta(SourceType.GDI))
        for line in lines:
            if line.quantity <= 0:
                continue
            staged.delta.add(line.grade, line.strategy, "outbound_qty", line.quantity)
            staged.accepted.append(line)
        return staged

    def stage_processes(self, runs: List[ProcessRun]) -> StagedApplication:
        """
        Each run is staged on its own delta and merged only when it balances,
        so a run is folded in whole or not at all. Lines with an unresolved
        strategy are left out of the run's mutation.
        """
        staged = StagedApplication(SourceType.PA, LedgerDelta(SourceType.PA))
        for run in runs:
            gap = run.conservation_gap
            if abs(gap) > self.epsilon:
                message = (
                    f"process {run.process_number} skipped: inputs {run.input_qty:.2f} != outputs "
                    f"{run.output_qty:.2f} + milling {run.milling_loss:.2f} + loss {run.processing_loss:.2f}"
                )
                logger.warning(message)
                staged.warnings.append(message)
                staged.rejected.append(run)
                continue

            run_delta = LedgerDelta(SourceType.PA)
            losses = allocate_losses(run)
            for line in run.inputs:
                if line.strategy is None:
                    continue
                milling, processing = losses.get((line.batch_number, line.grade), (0.0, 0.0))
                run_delta.add(line.grade, line.strategy, "to_processing_qty", line.quantity)
                run_delta.add(line.grade, line.strategy, "milling_loss_qty", milling)
                run_delta.add(line.grade, line.strategy, "processing_loss_qty", processing)
            for line in run.outputs:
                if line.strategy is None:
                    continue
                run_delta.add(line.grade, line.strategy, "from_processing_qty", line.quantity)

            staged.delta.merge(run_delta)
            staged.accepted.append(run)
        return staged

    def stage_process_records(self, lines: Iterable[Any]) -> StagedApplication:
        """Rebuild the PA delta from persisted per-batch processing lines"""
        staged = StagedApplication(SourceType.PA, LedgerDelta(SourceType.PA))
        for line in lines:
            staged.delta.add(line.grade, line.strategy, "to_processing_qty", line.input_qty)
            staged.delta.add(line.grade, line.strategy, "from_processing_qty", line.output_qty)
            staged.delta.add(line.grade, line.strategy, "milling_loss_qty", line.milling_loss_qty)
            staged.delta.add(line.grade, line.strategy, "processing_loss_qty", line.processing_loss_qty)
            staged.accepted.append(line)
        staged.delta.validate(self.epsilon)
        return staged
