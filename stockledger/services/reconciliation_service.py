"""
Reconciliation Service - closes a day against the XBS snapshot
Records regrade discrepancies, never explains them
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

from stockledger.core.config import settings
from stockledger.core.exceptions import ReconciliationWarning
from stockledger.feeds.snapshot import StockSnapshot
from .ledger_service import ActivityLedger, ActivityState, GRADE, STRATEGY

logger = logging.getLogger(__name__)


@dataclass
class Discrepancy:
    dimension: str
    key: str
    computed_closing: float
    xbs_closing_stock: float
    regrade_discrepancy: float
    tolerance: float

    @property
    def exceeds_tolerance(self) -> bool:
        return abs(self.regrade_discrepancy) > self.tolerance

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "computed_closing": round(self.computed_closing, 4),
            "xbs_closing_stock": round(self.xbs_closing_stock, 4),
            "regrade_discrepancy": round(self.regrade_discrepancy, 4),
            "tolerance": round(self.tolerance, 4),
            "exceeds_tolerance": self.exceeds_tolerance,
        }


@dataclass
class ReconciliationResult:
    summary_id: int
    grades: List[Discrepancy] = field(default_factory=list)
    strategies: List[Discrepancy] = field(default_factory=list)
    warnings: List[ReconciliationWarning] = field(default_factory=list)
    added_keys: List[str] = field(default_factory=list)

    @property
    def total_discrepancy(self) -> float:
        return sum(d.regrade_discrepancy for d in self.grades)

    def discrepancy_for(self, dimension: str, key: str) -> Optional[Discrepancy]:
        entries = self.grades if dimension == GRADE else self.strategies
        for entry in entries:
            if entry.key == key:
                return entry
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary_id": self.summary_id,
            "total_regrade_discrepancy": round(self.total_discrepancy, 4),
            "grades": [d.to_dict() for d in self.grades],
            "strategies": [d.to_dict() for d in self.strategies],
            "warnings": [str(w) for w in self.warnings],
            "added_keys": self.added_keys,
        }


class ReconciliationService:
    """
    Compares ledger closing balances with the snapshot.

    computed_closing = opening + inbound + from_processing - to_processing
                       - outbound + stock_adjustment + loss_gain
    regrade_discrepancy = xbs_closing_stock - computed_closing
    """

    @staticmethod
    def tolerance_for(state: ActivityState, tolerance_qty: float, tolerance_ratio: float) -> float:
        return max(tolerance_qty, tolerance_ratio * state.movement_volume)

    @staticmethod
    def close(
        ledger: ActivityLedger,
        snapshot: StockSnapshot,
        tolerance_qty: Optional[float] = None,
        tolerance_ratio: Optional[float] = None,
    ) -> ReconciliationResult:
        """
        Store xbs_closing_stock and regrade_discrepancy on every record.

        Discrepancies over tolerance come back as warnings; the day closes regardless.
        """
        tolerance_qty = settings.RECONCILIATION_TOLERANCE_QTY if tolerance_qty is None else tolerance_qty
        tolerance_ratio = settings.RECONCILIATION_TOLERANCE_RATIO if tolerance_ratio is None else tolerance_ratio

        result = ReconciliationResult(summary_id=ledger.summary_id)
        for dimension, balances, target in (
            (GRADE, snapshot.grade_balances, result.grades),
            (STRATEGY, snapshot.strategy_balances, result.strategies),
        ):
            # Stock the ledger never saw still has to close
            for key in balances:
                if key not in ledger.view(dimension):
                    ledger.ensure_key(dimension, key)
                    result.added_keys.append(f"{dimension}:{key}")
                    logger.warning(f"Summary {ledger.summary_id}: {dimension} {key} only present in closing snapshot")

            for key in sorted(ledger.view(dimension)):
                state = ledger.view(dimension)[key]
                computed = state.computed_closing
                state.xbs_closing_stock = float(balances.get(key, 0.0))
                state.regrade_discrepancy = state.xbs_closing_stock - computed

                entry = Discrepancy(
                    dimension=dimension,
                    key=key,
                    computed_closing=computed,
                    xbs_closing_stock=state.xbs_closing_stock,
                    regrade_discrepancy=state.regrade_discrepancy,
                    tolerance=ReconciliationService.tolerance_for(state, tolerance_qty, tolerance_ratio),
                )
                target.append(entry)
                if entry.exceeds_tolerance:
                    warning = ReconciliationWarning(dimension, key, entry.regrade_discrepancy, entry.tolerance)
                    result.warnings.append(warning)
                    logger.warning(f"Summary {ledger.summary_id}: {warning}")

        logger.info(
            f"Closed summary {ledger.summary_id}: total discrepancy {result.total_discrepancy:.2f}, "
            f"{len(result.warnings)} over tolerance"
        )
        return result
