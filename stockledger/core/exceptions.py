"""
Ledger Exceptions - error taxonomy shared by feeds, services and the API
"""
from typing import Iterable, Optional


class LedgerError(Exception):
    """Base class for every error raised by the engine"""


class SchemaError(LedgerError):
    """Expected sheet or column is absent from an uploaded file"""


class SheetNotFoundError(SchemaError):
    def __init__(self, sheet):
        self.sheet = sheet
        super().__init__(f"Sheet '{sheet}' not found in uploaded file")


class EmptySheetError(LedgerError):
    def __init__(self, sheet):
        self.sheet = sheet
        super().__init__(f"Sheet '{sheet}' has no rows")


class ParseError(LedgerError):
    """A single row or cell could not be read. Collected, never raised past a normalizer."""

    def __init__(self, message: str, row: Optional[int] = None, field: Optional[str] = None):
        self.row = row
        self.field = field
        super().__init__(message)

    def __str__(self):
        prefix = f"row {self.row}: " if self.row is not None else ""
        return f"{prefix}{self.args[0]}"


class UnknownGradeOrStrategy(LedgerError):
    def __init__(self, grades: Iterable[str] = (), strategies: Iterable[str] = ()):
        self.grades = sorted(grades)
        self.strategies = sorted(strategies)
        parts = []
        if self.grades:
            parts.append(f"grades {', '.join(self.grades)}")
        if self.strategies:
            parts.append(f"strategies {', '.join(self.strategies)}")
        super().__init__(f"Ledger has no activity record for {' and '.join(parts)}")


class ConcurrentUpdateError(LedgerError):
    """Another request holds the summary, or the source was already folded in"""


class SourceAlreadyAppliedError(ConcurrentUpdateError):
    def __init__(self, summary_id: int, source_type: str):
        self.summary_id = summary_id
        self.source_type = source_type
        super().__init__(
            f"{source_type} already applied to summary {summary_id}; pass force=true to re-apply"
        )


class SummaryNotFoundError(LedgerError):
    def __init__(self, summary_id):
        self.summary_id = summary_id
        super().__init__(f"Daily summary {summary_id} not found")


class SummaryFinalizedError(LedgerError):
    def __init__(self, summary_id: int):
        self.summary_id = summary_id
        super().__init__(f"Daily summary {summary_id} is closed; pass force=true or recompute")


class ConservationError(LedgerError):
    """Staged mutation does not balance between the grade and strategy views"""


class ReconciliationWarning(UserWarning):
    """Closing discrepancy above tolerance. Returned with the result, the day still closes."""

    def __init__(self, dimension: str, key: str, discrepancy: float, tolerance: float):
        self.dimension = dimension
        self.key = key
        self.discrepancy = discrepancy
        self.tolerance = tolerance
        super().__init__(
            f"{dimension} {key}: regrade discrepancy {discrepancy:.2f} exceeds tolerance {tolerance:.2f}"
        )
