"""
Stock Schemas
"""
from pydantic import BaseModel, Field
from typing import Optional, Dict
import datetime as dt

from stockledger.feeds.snapshot import StockSnapshot


class StockDataPayload(BaseModel):
    """JSON form of an XBS snapshot, as returned by /stock-movement"""
    blocked_for_processing: float = 0.0
    work_in_progress: float = 0.0
    total_closing_balance: float = 0.0
    grades_closing_balances: Dict[str, float] = Field(default_factory=dict)
    strategies_closing_balances: Dict[str, float] = Field(default_factory=dict)
    batch_strategies: Dict[str, str] = Field(default_factory=dict)

    def to_snapshot(self) -> StockSnapshot:
        return StockSnapshot.from_payload(self.model_dump())


class UpdateStockActivitiesRequest(BaseModel):
    summary_id: int
    stock_data: StockDataPayload
    close: bool = True
    tolerance_qty: Optional[float] = None


class SummaryCreate(BaseModel):
    date: Optional[dt.date] = None  # Defaults to today
