"""
Daily Summary Models - one row per calendar date plus the applied-source markers
"""
from sqlalchemy import Column, String, Date, DateTime, Integer, Float, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
import enum

from stockledger.core import Base
from .base import IdMixin, TimestampMixin, qty_column


class SummaryStatus(str, enum.Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    NEEDS_RECOMPUTE = "NEEDS_RECOMPUTE"


class SourceType(str, enum.Enum):
    STI = "STI"   # stock transfer instructions (inbound)
    STA = "STA"   # stock adjustments
    PA = "PA"     # processing analysis
    GDI = "GDI"   # goods dispatch (outbound)


class DailySummary(Base, IdMixin, TimestampMixin):
    __tablename__ = "daily_summaries"

    date = Column(Date, unique=True, nullable=False, index=True)
    status = Column(String(20), default=SummaryStatus.OPEN.value, nullable=False)

    # Aggregates over the grade view
    total_opening_qty = qty_column()
    total_to_processing_qty = qty_column()
    total_from_processing_qty = qty_column()
    total_loss_gain_qty = qty_column()
    total_milling_loss_qty = qty_column()
    total_processing_loss_qty = qty_column()
    total_inbound_qty = qty_column()
    total_outbound_qty = qty_column()
    total_stock_adjustment_qty = qty_column()
    total_xbs_closing_stock = qty_column()
    total_regrade_discrepancy = qty_column()

    # Snapshot totals used to close the day
    blocked_for_processing_qty = qty_column()
    work_in_progress_qty = qty_column()

    closed_at = Column(DateTime(timezone=True))

    grade_activities = relationship("GradeActivity", back_populates="summary", cascade="all, delete-orphan")
    strategy_activities = relationship("StrategyActivity", back_populates="summary", cascade="all, delete-orphan")
    applications = relationship("SourceApplication", back_populates="summary", cascade="all, delete-orphan")
    processes = relationship("ProcessRecord", back_populates="summary", cascade="all, delete-orphan")
    outbounds = relationship("OutboundRecord", back_populates="summary", cascade="all, delete-orphan")
    adjustments = relationship("AdjustmentRecord", back_populates="summary", cascade="all, delete-orphan")
    instructed_batches = relationship("InstructedBatch", back_populates="summary", cascade="all, delete-orphan")

    @property
    def is_closed(self) -> bool:
        return self.status == SummaryStatus.CLOSED.value


class SourceApplication(Base, IdMixin):
    """Marks a source feed as folded into a summary's ledger"""
    __tablename__ = "source_applications"
    __table_args__ = (UniqueConstraint("summary_id", "source_type", name="uq_source_application"),)

    summary_id = Column(Integer, ForeignKey("daily_summaries.id", ondelete="CASCADE"), nullable=False, index=True)
    source_type = Column(String(10), nullable=False)
    since_date = Column(Date)
    row_count = Column(Integer, default=0, nullable=False)
    total_qty = Column(Float, default=0.0, nullable=False)
    warning_count = Column(Integer, default=0, nullable=False)
    applied_at = Column(DateTime(timezone=True), nullable=False)

    summary = relationship("DailySummary", back_populates="applications")
