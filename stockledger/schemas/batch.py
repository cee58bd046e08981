"""
Batch Schemas
"""
from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime


class TradeBatchIn(BaseModel):
    batch_number: str
    strategy: str
    grade: Optional[str] = None
    quantity: Optional[float] = None
    hedge_level: Optional[float] = None
    cost_usd_50: Optional[float] = None
    diff_usc_lb: Optional[float] = None


class TradeBatchUpsert(BaseModel):
    trades: List[TradeBatchIn]


class GhostBatchResponse(BaseModel):
    id: int
    batch_number: str
    sources: str
    inferred_quantity: float
    first_seen_at: datetime
    last_seen_at: datetime
    resolved_strategy: Optional[str] = None
    resolved_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MissingHedgeResponse(BaseModel):
    id: int
    batch_number: str
    strategy: Optional[str] = None
    quantity: float
    first_seen_at: datetime
    last_seen_at: datetime
    resolved_at: Optional[datetime] = None

    class Config:
        from_attributes = True
