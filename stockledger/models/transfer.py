"""
Stock Transfer Models - STI headers and their instructed batches
"""
from sqlalchemy import Column, String, Date, Integer, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
import enum

from stockledger.core import Base
from .base import IdMixin, TimestampMixin, qty_column


class TransferStatus(str, enum.Enum):
    PENDING = "Pending"
    PARTIALLY_PENDING = "Partially Pending"
    COMPLETED = "Completed"


class BatchTransferStatus(str, enum.Enum):
    COMPLETED = "completed"
    PARTIALLY_DELIVERED = "partially_delivered"
    FULLY_PENDING = "fully_pending"


class StockTransferInstruction(Base, IdMixin, TimestampMixin):
    __tablename__ = "stock_transfer_instructions"

    sti_number = Column(String(50), unique=True, nullable=False, index=True)
    instructed_date = Column(Date)
    status = Column(String(20), default=TransferStatus.PENDING.value, nullable=False)

    batches = relationship("InstructedBatch", back_populates="instruction", cascade="all, delete-orphan")


class InstructedBatch(Base, IdMixin, TimestampMixin):
    __tablename__ = "instructed_batches"
    __table_args__ = (UniqueConstraint("sti_id", "batch_number", "transaction_number", name="uq_instructed_batch"),)

    sti_id = Column(Integer, ForeignKey("stock_transfer_instructions.id", ondelete="CASCADE"), nullable=False, index=True)
    summary_id = Column(Integer, ForeignKey("daily_summaries.id", ondelete="CASCADE"), nullable=False, index=True)
    batch_number = Column(String(50), nullable=False, index=True)
    transaction_number = Column(String(50))
    grade = Column(String(100), nullable=False)
    strategy = Column(String(100), nullable=False)

    instructed_qty = qty_column()
    delivered_qty = qty_column()
    loss_gain_qty = qty_column()
    balance_to_transfer = qty_column()
    status = Column(String(30), default=BatchTransferStatus.FULLY_PENDING.value, nullable=False)

    from_location = Column(String(100))
    storage_due_date = Column(Date)
    arrival_date = Column(Date, index=True)

    instruction = relationship("StockTransferInstruction", back_populates="batches")
    summary = relationship("DailySummary", back_populates="instructed_batches")

    @property
    def inbound_qty(self) -> float:
        return (self.delivered_qty or 0.0) - (self.loss_gain_qty or 0.0)
