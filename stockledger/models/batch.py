"""
Batch Models - known trade records and the needs-resolution sets
"""
from sqlalchemy import Column, String, Float, DateTime
from datetime import datetime

from stockledger.core import Base
from .base import IdMixin, TimestampMixin, qty_column


class TradeBatch(Base, IdMixin, TimestampMixin):
    """Trade/purchase record of a batch"""
    __tablename__ = "trade_batches"

    batch_number = Column(String(50), unique=True, nullable=False, index=True)
    strategy = Column(String(100), nullable=False)
    grade = Column(String(100))
    quantity = qty_column()
    hedge_level = Column(Float)  # Null until hedged
    cost_usd_50 = Column(Float)
    diff_usc_lb = Column(Float)


class GhostBatch(Base, IdMixin):
    """Batch referenced by processing or dispatch with no snapshot or trade record"""
    __tablename__ = "ghost_batches"

    batch_number = Column(String(50), unique=True, nullable=False, index=True)
    sources = Column(String(100), nullable=False)  # e.g. "PROCESSING_INPUT,DISPATCH"
    inferred_quantity = qty_column()
    first_seen_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    last_seen_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    resolved_strategy = Column(String(100))
    resolved_at = Column(DateTime(timezone=True))


class MissingHedgeBatch(Base, IdMixin):
    """Traded batch without a hedge level allocation"""
    __tablename__ = "missing_hedge_batches"

    batch_number = Column(String(50), unique=True, nullable=False, index=True)
    strategy = Column(String(100))
    quantity = qty_column()
    first_seen_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    last_seen_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    resolved_at = Column(DateTime(timezone=True))
