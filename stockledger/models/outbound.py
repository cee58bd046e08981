"""
Outbound Models - goods dispatch lines
"""
from sqlalchemy import Column, String, Date, Integer, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from stockledger.core import Base
from .base import IdMixin, TimestampMixin, qty_column


class OutboundRecord(Base, IdMixin, TimestampMixin):
    __tablename__ = "daily_outbounds"
    __table_args__ = (
        UniqueConstraint("ticket_number", "dispatch_number", "dc_number", "grade", "batch_number", name="uq_outbound_line"),
    )

    summary_id = Column(Integer, ForeignKey("daily_summaries.id", ondelete="CASCADE"), nullable=False, index=True)
    dispatch_date = Column(Date, nullable=False, index=True)
    ticket_number = Column(String(50), nullable=False)
    dispatch_number = Column(String(50), nullable=False)
    dc_number = Column(String(50), nullable=False)
    grade = Column(String(100), nullable=False)
    strategy = Column(String(100), nullable=False)
    batch_number = Column(String(50), nullable=False, index=True)
    quantity = qty_column()

    summary = relationship("DailySummary", back_populates="outbounds")
