# Feeds Package - normalizers for the uploaded source files
from .base import (
    FeedNormalizer, FeedResult, GhostCandidate, ResolutionTable,
    normalize_key, parse_date, parse_qty,
)
from .tabular import read_rows
from .snapshot import SnapshotParser, StockSnapshot
from .transfers import TransferNormalizer, TransferLine, TransferFeedResult
from .adjustments import AdjustmentNormalizer, AdjustmentLine
from .dispatch import DispatchNormalizer, DispatchLine
from .processing import ProcessingNormalizer, ProcessRun, ProcessLine
from .allocations import AllocationParser, AllocationReport

__all__ = [
    "FeedNormalizer", "FeedResult", "GhostCandidate", "ResolutionTable",
    "normalize_key", "parse_date", "parse_qty", "read_rows",
    "SnapshotParser", "StockSnapshot",
    "TransferNormalizer", "TransferLine", "TransferFeedResult",
    "AdjustmentNormalizer", "AdjustmentLine",
    "DispatchNormalizer", "DispatchLine",
    "ProcessingNormalizer", "ProcessRun", "ProcessLine",
    "AllocationParser", "AllocationReport",
]
