"""
Stock Adjustment Models
"""
from sqlalchemy import Column, String, Date, Integer, ForeignKey, Text
from sqlalchemy.orm import relationship

from stockledger.core import Base
from .base import IdMixin, TimestampMixin, qty_column


class AdjustmentRecord(Base, IdMixin, TimestampMixin):
    __tablename__ = "stock_adjustments"

    summary_id = Column(Integer, ForeignKey("daily_summaries.id", ondelete="CASCADE"), nullable=False, index=True)
    adjustment_date = Column(Date, nullable=False, index=True)
    batch_number = Column(String(50), nullable=False, index=True)
    grade = Column(String(100), nullable=False)
    strategy = Column(String(100), nullable=False)
    quantity = qty_column()  # Signed
    reason = Column(Text)

    summary = relationship("DailySummary", back_populates="adjustments")
