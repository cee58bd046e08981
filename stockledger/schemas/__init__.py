# Pydantic Schemas Package
from .stock import StockDataPayload, UpdateStockActivitiesRequest, SummaryCreate
from .batch import TradeBatchIn, TradeBatchUpsert, GhostBatchResponse, MissingHedgeResponse

__all__ = [
    "StockDataPayload", "UpdateStockActivitiesRequest", "SummaryCreate",
    "TradeBatchIn", "TradeBatchUpsert", "GhostBatchResponse", "MissingHedgeResponse",
]
