"""
Processing Models - milling runs and their per-batch lines
"""
from sqlalchemy import Column, String, Date, Integer, ForeignKey
from sqlalchemy.orm import relationship

from stockledger.core import Base
from .base import IdMixin, TimestampMixin, qty_column


class ProcessRecord(Base, IdMixin, TimestampMixin):
    __tablename__ = "daily_processes"

    process_number = Column(String(50), unique=True, nullable=False, index=True)
    summary_id = Column(Integer, ForeignKey("daily_summaries.id", ondelete="CASCADE"), nullable=False, index=True)
    process_type = Column(String(100))
    issue_date = Column(Date)
    processing_date = Column(Date, index=True)

    input_qty = qty_column()
    output_qty = qty_column()
    milling_loss = qty_column()
    processing_loss = qty_column()

    summary = relationship("DailySummary", back_populates="processes")
    grade_lines = relationship("GradeProcessing", back_populates="process", cascade="all, delete-orphan")
    strategy_lines = relationship("StrategyProcessing", back_populates="process", cascade="all, delete-orphan")


class GradeProcessing(Base, IdMixin):
    """Per-grade totals of one process"""
    __tablename__ = "daily_grade_processing"

    process_id = Column(Integer, ForeignKey("daily_processes.id", ondelete="CASCADE"), nullable=False, index=True)
    grade = Column(String(100), nullable=False)
    input_qty = qty_column()
    output_qty = qty_column()
    milling_loss_qty = qty_column()
    processing_loss_qty = qty_column()

    process = relationship("ProcessRecord", back_populates="grade_lines")


class StrategyProcessing(Base, IdMixin):
    """One batch line of a process, with its resolved strategy"""
    __tablename__ = "daily_strategy_processing"

    process_id = Column(Integer, ForeignKey("daily_processes.id", ondelete="CASCADE"), nullable=False, index=True)
    batch_number = Column(String(50), nullable=False, index=True)
    grade = Column(String(100), nullable=False)
    strategy = Column(String(100), nullable=False)
    input_qty = qty_column()
    output_qty = qty_column()
    milling_loss_qty = qty_column()
    processing_loss_qty = qty_column()

    process = relationship("ProcessRecord", back_populates="strategy_lines")
