# Services Package
from .ledger_service import ActivityLedger, LedgerDelta, LedgerService
from .debit_credit_service import DebitCreditService, StagedApplication
from .reconciliation_service import ReconciliationService, ReconciliationResult
from .record_service import SourceRecordService
from .summary_service import SummaryService
from .daily_run_service import DailyRunService
from .ghost_service import GhostService, GhostBatchDetected
from .report_service import ReportService

__all__ = [
    "ActivityLedger",
    "LedgerDelta",
    "LedgerService",
    "DebitCreditService",
    "StagedApplication",
    "ReconciliationService",
    "ReconciliationResult",
    "SourceRecordService",
    "SummaryService",
    "DailyRunService",
    "GhostService",
    "GhostBatchDetected",
    "ReportService",
]
