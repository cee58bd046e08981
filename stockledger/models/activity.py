"""
Activity Models - per-grade and per-strategy daily movement
"""
from sqlalchemy import Column, String, Integer, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from stockledger.core import Base
from .base import IdMixin, TimestampMixin, qty_column

ACTIVITY_FIELDS = (
    "opening_qty",
    "to_processing_qty",
    "from_processing_qty",
    "loss_gain_qty",
    "milling_loss_qty",
    "processing_loss_qty",
    "inbound_qty",
    "outbound_qty",
    "stock_adjustment_qty",
    "xbs_closing_stock",
    "regrade_discrepancy",
)


class ActivityColumnsMixin:
    opening_qty = qty_column()
    to_processing_qty = qty_column()
    from_processing_qty = qty_column()
    loss_gain_qty = qty_column()
    # Attribution only, already reflected in to/from processing
    milling_loss_qty = qty_column()
    processing_loss_qty = qty_column()
    inbound_qty = qty_column()
    outbound_qty = qty_column()
    stock_adjustment_qty = qty_column()
    xbs_closing_stock = qty_column()
    regrade_discrepancy = qty_column()


class GradeActivity(Base, IdMixin, TimestampMixin, ActivityColumnsMixin):
    __tablename__ = "daily_grade_activities"
    __table_args__ = (UniqueConstraint("summary_id", "grade", name="uq_grade_activity"),)

    summary_id = Column(Integer, ForeignKey("daily_summaries.id", ondelete="CASCADE"), nullable=False, index=True)
    grade = Column(String(100), nullable=False)

    summary = relationship("DailySummary", back_populates="grade_activities")

    @property
    def key(self) -> str:
        return self.grade


class StrategyActivity(Base, IdMixin, TimestampMixin, ActivityColumnsMixin):
    __tablename__ = "daily_strategy_activities"
    __table_args__ = (UniqueConstraint("summary_id", "strategy", name="uq_strategy_activity"),)

    summary_id = Column(Integer, ForeignKey("daily_summaries.id", ondelete="CASCADE"), nullable=False, index=True)
    strategy = Column(String(100), nullable=False)

    summary = relationship("DailySummary", back_populates="strategy_activities")

    @property
    def key(self) -> str:
        return self.strategy
