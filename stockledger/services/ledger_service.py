"""
Ledger Service - per-grade and per-strategy activity records of one day
"""
from collections import defaultdict
from dataclasses import dataclass, fields as dataclass_fields
from datetime import date
from typing import Dict, Mapping, Optional, Set
import math
import logging

from sqlalchemy.orm import Session

from stockledger.core.config import settings
from stockledger.core.exceptions import (
    ConservationError, SourceAlreadyAppliedError, UnknownGradeOrStrategy,
)
from stockledger.feeds.snapshot import StockSnapshot
from stockledger.models import (
    DailySummary, GradeActivity, StrategyActivity, SourceApplication, SourceType,
)

logger = logging.getLogger(__name__)

GRADE = "grade"
STRATEGY = "strategy"

# Activity fields each source owns; a forced re-application zeroes these first
SOURCE_FIELDS = {
    SourceType.STI: ("inbound_qty", "loss_gain_qty"),
    SourceType.STA: ("stock_adjustment_qty",),
    SourceType.PA: ("to_processing_qty", "from_processing_qty", "milling_loss_qty", "processing_loss_qty"),
    SourceType.GDI: ("outbound_qty",),
}

OPENING_POLICIES = ("previous_close", "snapshot")


@dataclass
class ActivityState:
    key: str
    opening_qty: float = 0.0
    to_processing_qty: float = 0.0
    from_processing_qty: float = 0.0
    loss_gain_qty: float = 0.0
    milling_loss_qty: float = 0.0
    processing_loss_qty: float = 0.0
    inbound_qty: float = 0.0
    outbound_qty: float = 0.0
    stock_adjustment_qty: float = 0.0
    xbs_closing_stock: float = 0.0
    regrade_discrepancy: float = 0.0

    @property
    def computed_closing(self) -> float:
        return (
            self.opening_qty
            + self.inbound_qty
            + self.from_processing_qty
            - self.to_processing_qty
            - self.outbound_qty
            + self.stock_adjustment_qty
            + self.loss_gain_qty
        )

    @property
    def movement_volume(self) -> float:
        return (
            abs(self.opening_qty) + self.inbound_qty + self.from_processing_qty + self.to_processing_qty
            + self.outbound_qty + abs(self.stock_adjustment_qty) + abs(self.loss_gain_qty)
        )

    def as_dict(self) -> Dict[str, float]:
        return {f.name: getattr(self, f.name) for f in dataclass_fields(self) if f.name != "key"}


QTY_FIELDS = tuple(f.name for f in dataclass_fields(ActivityState) if f.name != "key")


class LedgerDelta:
    """
    Staged mutation of one source. Every movement is recorded against its
    grade and its strategy together, so both views carry the same totals.
    """

    def __init__(self, source_type: SourceType):
        self.source_type = source_type
        self.grades: Dict[str, Dict[str, float]] = defaultdict(lambda: defaultdict(float))
        self.strategies: Dict[str, Dict[str, float]] = defaultdict(lambda: defaultdict(float))

    def add(self, grade: str, strategy: str, field: str, qty: float):
        if field not in SOURCE_FIELDS[self.source_type]:
            raise ConservationError(f"{self.source_type.value} cannot move {field}")
        if qty == 0:
            return
        self.grades[grade][field] += qty
        self.strategies[strategy][field] += qty

    def merge(self, other: "LedgerDelta"):
        for target, source in ((self.grades, other.grades), (self.strategies, other.strategies)):
            for key, values in source.items():
                for field, qty in values.items():
                    target[key][field] += qty

    def totals(self, dimension: str) -> Dict[str, float]:
        entries = self.grades if dimension == GRADE else self.strategies
        totals = defaultdict(float)
        for values in entries.values():
            for field, qty in values.items():
                totals[field] += qty
        return dict(totals)

    def validate(self, epsilon: float = None):
        """
        Every staged quantity must be finite, and the grade and strategy views
        must net to the same quantity per field. add() and merge() write both
        views together, so the second check only fails when a view is edited
        directly; it is repeated here so nothing reaches apply() unchecked.
        """
        epsilon = settings.CONSERVATION_EPSILON if epsilon is None else epsilon
        for dimension, entries in ((GRADE, self.grades), (STRATEGY, self.strategies)):
            for key, values in entries.items():
                for field, qty in values.items():
                    if not math.isfinite(qty):
                        raise ConservationError(
                            f"{self.source_type.value} {field}: {dimension} {key} has non-finite quantity {qty}"
                        )
        grade_totals = self.totals(GRADE)
        strategy_totals = self.totals(STRATEGY)
        for field in set(grade_totals) | set(strategy_totals):
            gap = grade_totals.get(field, 0.0) - strategy_totals.get(field, 0.0)
            if abs(gap) > epsilon:
                raise ConservationError(
                    f"{self.source_type.value} {field}: grade view and strategy view differ by {gap:.4f}"
                )

    @property
    def is_empty(self) -> bool:
        return not self.grades and not self.strategies

    def to_dict(self):
        return {
            "source_type": self.source_type.value,
            "grades": {k: dict(v) for k, v in sorted(self.grades.items())},
            "strategies": {k: dict(v) for k, v in sorted(self.strategies.items())},
        }


class ActivityLedger:
    """In-memory activity records of one summary, mutated by staged deltas"""

    def __init__(
        self,
        summary_id: int,
        target_date: date,
        grades: Optional[Dict[str, ActivityState]] = None,
        strategies: Optional[Dict[str, ActivityState]] = None,
        applied_sources: Optional[Set[SourceType]] = None,
    ):
        self.summary_id = summary_id
        self.target_date = target_date
        self.grades = grades or {}
        self.strategies = strategies or {}
        self.applied_sources = set(applied_sources or ())

    @classmethod
    def initialize(
        cls,
        summary_id: int,
        snapshot: StockSnapshot,
        target_date: date,
        previous_closing: Optional[Mapping[str, Mapping[str, float]]] = None,
        policy: str = None,
    ) -> "ActivityLedger":
        """
        One record per grade and strategy of the snapshot, every flow at zero.

        Opening balance policy:
            previous_close: opening is the prior summary's XBS closing stock for
                the key (0 when absent). Keys the prior day closed with stock are
                carried even if today's snapshot no longer lists them, so
                opening(d+1) == closing(d) holds for every key.
            snapshot: opening is the snapshot balance; the snapshot is taken as
                the start-of-day report.
        """
        policy = policy or settings.OPENING_BALANCE_POLICY
        if policy not in OPENING_POLICIES:
            raise ValueError(f"Unknown opening balance policy: {policy}")

        previous_closing = previous_closing or {GRADE: {}, STRATEGY: {}}
        views = {}
        for dimension, balances in ((GRADE, snapshot.grade_balances), (STRATEGY, snapshot.strategy_balances)):
            prior = previous_closing.get(dimension, {})
            keys = set(balances)
            if policy == "previous_close":
                keys |= {key for key, qty in prior.items() if qty}
            views[dimension] = {
                key: ActivityState(
                    key=key,
                    opening_qty=float(balances.get(key, 0.0) if policy == "snapshot" else prior.get(key, 0.0)),
                )
                for key in sorted(keys)
            }

        logger.info(
            f"Initialized ledger for summary {summary_id} ({target_date}) with policy {policy}: "
            f"{len(views[GRADE])} grades, {len(views[STRATEGY])} strategies"
        )
        return cls(summary_id, target_date, views[GRADE], views[STRATEGY])

    @property
    def is_initialized(self) -> bool:
        return bool(self.grades or self.strategies)

    def view(self, dimension: str) -> Dict[str, ActivityState]:
        return self.grades if dimension == GRADE else self.strategies

    def ensure_key(self, dimension: str, key: str, opening_qty: float = 0.0) -> ActivityState:
        states = self.view(dimension)
        if key not in states:
            states[key] = ActivityState(key=key, opening_qty=opening_qty)
        return states[key]

    def ensure_keys(self, delta: LedgerDelta):
        for key in delta.grades:
            self.ensure_key(GRADE, key)
        for key in delta.strategies:
            self.ensure_key(STRATEGY, key)

    def reset_source(self, source_type: SourceType):
        for states in (self.grades, self.strategies):
            for state in states.values():
                for field in SOURCE_FIELDS[source_type]:
                    setattr(state, field, 0.0)
        self.applied_sources.discard(source_type)

    def apply(self, delta: LedgerDelta, force: bool = False):
        """
        Fold a staged delta into the records.

        Raises SourceAlreadyAppliedError on a second application without force,
        and UnknownGradeOrStrategy before touching anything when a key is missing.
        """
        source = delta.source_type
        if source in self.applied_sources and not force:
            raise SourceAlreadyAppliedError(self.summary_id, source.value)

        missing_grades = set(delta.grades) - set(self.grades)
        missing_strategies = set(delta.strategies) - set(self.strategies)
        if missing_grades or missing_strategies:
            raise UnknownGradeOrStrategy(missing_grades, missing_strategies)

        if force:
            self.reset_source(source)

        for states, entries in ((self.grades, delta.grades), (self.strategies, delta.strategies)):
            for key, values in entries.items():
                state = states[key]
                for field, qty in values.items():
                    setattr(state, field, getattr(state, field) + qty)

        self.applied_sources.add(source)
        logger.info(f"Applied {source.value} to summary {self.summary_id}: {delta.totals(GRADE)}")

    def totals(self, dimension: str = GRADE) -> Dict[str, float]:
        totals = {field: 0.0 for field in QTY_FIELDS}
        for state in self.view(dimension).values():
            for field in QTY_FIELDS:
                totals[field] += getattr(state, field)
        return totals


class LedgerService:

    @staticmethod
    def previous_closing(db: Session, target_date: date) -> Dict[str, Dict[str, float]]:
        """XBS closing stock of the closest earlier summary, per grade and strategy"""
        previous = db.query(DailySummary).filter(
            DailySummary.date < target_date
        ).order_by(DailySummary.date.desc()).first()
        if not previous:
            return {GRADE: {}, STRATEGY: {}}
        if not previous.is_closed:
            logger.warning(f"Previous summary {previous.id} ({previous.date}) is not closed, opening from its last XBS stock")
        return {
            GRADE: {row.grade: row.xbs_closing_stock for row in previous.grade_activities},
            STRATEGY: {row.strategy: row.xbs_closing_stock for row in previous.strategy_activities},
        }

    @staticmethod
    def load(db: Session, summary: DailySummary) -> ActivityLedger:
        def to_state(row) -> ActivityState:
            return ActivityState(key=row.key, **{field: getattr(row, field) or 0.0 for field in QTY_FIELDS})

        applied = {
            SourceType(app.source_type)
            for app in db.query(SourceApplication).filter(SourceApplication.summary_id == summary.id)
        }
        return ActivityLedger(
            summary.id,
            summary.date,
            grades={row.grade: to_state(row) for row in summary.grade_activities},
            strategies={row.strategy: to_state(row) for row in summary.strategy_activities},
            applied_sources=applied,
        )

    @staticmethod
    def save(summary: DailySummary, ledger: ActivityLedger):
        """Upsert every record of the ledger; rows absent from the ledger are removed"""
        for model, key_attr, rows, states in (
            (GradeActivity, "grade", summary.grade_activities, ledger.grades),
            (StrategyActivity, "strategy", summary.strategy_activities, ledger.strategies),
        ):
            existing = {getattr(row, key_attr): row for row in rows}
            for key, state in states.items():
                row = existing.pop(key, None)
                if row is None:
                    row = model(summary_id=summary.id, **{key_attr: key})
                    rows.append(row)
                for field in QTY_FIELDS:
                    setattr(row, field, round(getattr(state, field), 6))
            for row in existing.values():
                rows.remove(row)

    @staticmethod
    def refresh_summary_totals(summary: DailySummary, ledger: ActivityLedger):
        totals = ledger.totals(GRADE)
        summary.total_opening_qty = totals["opening_qty"]
        summary.total_to_processing_qty = totals["to_processing_qty"]
        summary.total_from_processing_qty = totals["from_processing_qty"]
        summary.total_loss_gain_qty = totals["loss_gain_qty"]
        summary.total_milling_loss_qty = totals["milling_loss_qty"]
        summary.total_processing_loss_qty = totals["processing_loss_qty"]
        summary.total_inbound_qty = totals["inbound_qty"]
        summary.total_outbound_qty = totals["outbound_qty"]
        summary.total_stock_adjustment_qty = totals["stock_adjustment_qty"]
        summary.total_xbs_closing_stock = totals["xbs_closing_stock"]
        summary.total_regrade_discrepancy = totals["regrade_discrepancy"]

