from .base import IdMixin, TimestampMixin
from .summary import DailySummary, SourceApplication, SourceType, SummaryStatus
from .activity import GradeActivity, StrategyActivity, ACTIVITY_FIELDS
from .process import ProcessRecord, GradeProcessing, StrategyProcessing
from .outbound import OutboundRecord
from .adjustment import AdjustmentRecord
from .transfer import StockTransferInstruction, InstructedBatch, TransferStatus, BatchTransferStatus
from .batch import TradeBatch, GhostBatch, MissingHedgeBatch

__all__ = [
    # Base
    "IdMixin", "TimestampMixin",
    # Summary
    "DailySummary", "SourceApplication", "SourceType", "SummaryStatus",
    # Activity
    "GradeActivity", "StrategyActivity", "ACTIVITY_FIELDS",
    # Processing
    "ProcessRecord", "GradeProcessing", "StrategyProcessing",
    # Outbound / Adjustment
    "OutboundRecord", "AdjustmentRecord",
    # Transfers
    "StockTransferInstruction", "InstructedBatch", "TransferStatus", "BatchTransferStatus",
    # Batches
    "TradeBatch", "GhostBatch", "MissingHedgeBatch",
]
