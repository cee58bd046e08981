"""
Base Feed Normalizer - shared row parsing, date filtering and aggregation
"""
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Union
import logging
import math

from dateutil.parser import parse as parse_datetime

from stockledger.core.exceptions import SchemaError, ParseError, EmptySheetError
from stockledger.models.summary import SourceType
from .tabular import Row, read_rows

logger = logging.getLogger(__name__)

# Spreadsheet serial day 0
EXCEL_EPOCH = date(1899, 12, 30)


def parse_date(value: Any) -> Optional[date]:
    """
    Convert a cell to a calendar date.

    Accepts datetime/date objects, Excel serial numbers and date strings.
    Returns None when the value cannot be read.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        if value <= 0:
            return None
        try:
            return EXCEL_EPOCH + timedelta(days=int(value))
        except OverflowError:
            return None
    text = str(value).strip()
    if not text:
        return None
    try:
        return EXCEL_EPOCH + timedelta(days=int(float(text)))
    except (ValueError, OverflowError):
        pass
    try:
        return parse_datetime(text).date()
    except (ValueError, OverflowError):
        return None


def parse_qty(value: Any, default: Optional[float] = None) -> Optional[float]:
    """Numeric cell or text; blanks, NaN and infinities read as default"""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        qty = float(value)
    else:
        text = str(value).strip().replace(",", "")
        if not text:
            return default
        try:
            qty = float(text)
        except ValueError:
            return default
    return qty if math.isfinite(qty) else default


def normalize_key(value: Any) -> Optional[str]:
    """Grade, strategy and batch keys are compared trimmed and upper-cased"""
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip().upper()
    return text or None


class ResolutionTable:
    """
    Immutable batch -> strategy lookup shared by every normalizer of one run.
    """

    def __init__(self, batch_strategies: Optional[Mapping[str, str]] = None):
        cleaned = {}
        for batch, strategy in (batch_strategies or {}).items():
            batch_key = normalize_key(batch)
            strategy_key = normalize_key(strategy)
            if batch_key and strategy_key:
                cleaned[batch_key] = strategy_key
        self._strategies = MappingProxyType(cleaned)

    def resolve(self, batch_number: Optional[str]) -> Optional[str]:
        if not batch_number:
            return None
        return self._strategies.get(normalize_key(batch_number))

    def merged_with(self, fallback: Mapping[str, str]) -> "ResolutionTable":
        """New table where entries of this table win over ``fallback``"""
        combined = dict(fallback)
        combined.update(self._strategies)
        return ResolutionTable(combined)

    @property
    def mapping(self) -> Mapping[str, str]:
        return self._strategies

    def __contains__(self, batch_number) -> bool:
        return normalize_key(batch_number) in self._strategies

    def __len__(self) -> int:
        return len(self._strategies)


@dataclass
class GhostCandidate:
    """A feed line whose batch has no strategy in the resolution table"""
    batch_number: str
    source: str
    grade: Optional[str] = None
    quantity: float = 0.0
    reference: Optional[str] = None
    line: Any = field(default=None, repr=False)


@dataclass
class FeedResult:
    """
    Typed, date-filtered output of one normalizer.

    ``by_grade`` / ``by_strategy`` aggregate the feed's primary quantity over
    resolved lines only, so both views always carry the same total.
    """
    source_type: SourceType
    since_date: Optional[date] = None
    lines: List[Any] = field(default_factory=list)
    by_grade: Dict[str, float] = field(default_factory=dict)
    by_strategy: Dict[str, float] = field(default_factory=dict)
    total: float = 0.0
    warnings: List[ParseError] = field(default_factory=list)
    ghost_candidates: List[GhostCandidate] = field(default_factory=list)
    rows_read: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.lines and not self.ghost_candidates

    @property
    def warning_messages(self) -> List[str]:
        return [str(w) for w in self.warnings]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_type": self.source_type.value,
            "since_date": self.since_date.isoformat() if self.since_date else None,
            "rows_read": self.rows_read,
            "lines": len(self.lines),
            "by_grade": self.by_grade,
            "by_strategy": self.by_strategy,
            "total": round(self.total, 4),
            "ghost_candidates": [c.batch_number for c in self.ghost_candidates],
            "warnings": self.warning_messages,
        }


def sorted_totals(totals: Mapping[str, float]) -> Dict[str, float]:
    return {key: totals[key] for key in sorted(totals)}


class FeedNormalizer:
    """
    Base normalizer. Subclasses declare their sheet layout and turn one
    permissive row into one typed line.
    """

    source_type: SourceType
    sheet: Union[str, int] = 0
    header_row: int = 0
    date_column: str = ""
    required_columns: tuple = ()

    def __init__(self, resolution: Optional[ResolutionTable] = None):
        self.resolution = resolution or ResolutionTable()

    def read(self, raw: bytes, filename: Optional[str] = None) -> List[Row]:
        try:
            return read_rows(raw, sheet=self.sheet, header_row=self.header_row, filename=filename)
        except EmptySheetError as e:
            logger.info(f"{self.source_type.value}: {e}")
            return []

    def load(self, raw: bytes, since_date: Optional[date], filename: Optional[str] = None) -> FeedResult:
        return self.normalize(self.read(raw, filename), since_date)

    def check_columns(self, rows: List[Row]):
        if not rows:
            return
        present = set()
        for row in rows:
            present.update(row.keys())
        missing = [c for c in self.required_columns if c not in present]
        if missing:
            raise SchemaError(
                f"{self.source_type.value} file is missing required columns: {', '.join(missing)}"
            )

    def row_number(self, index: int) -> int:
        """Spreadsheet row number of a data row, for operator-facing warnings"""
        return index + self.header_row + 2

    def in_window(self, row: Row, index: int, since_date: Optional[date], result: FeedResult) -> Optional[date]:
        """Parsed row date when it falls strictly after since_date, else None"""
        raw = row.get(self.date_column)
        row_date = parse_date(raw)
        if row_date is None:
            if raw not in (None, ""):
                result.warnings.append(
                    ParseError(f"unreadable {self.date_column} '{raw}'", row=self.row_number(index), field=self.date_column)
                )
            else:
                result.warnings.append(
                    ParseError(f"missing {self.date_column}", row=self.row_number(index), field=self.date_column)
                )
            return None
        if since_date is not None and row_date <= since_date:
            return None
        return row_date

    def normalize(self, rows: List[Row], since_date: Optional[date]) -> FeedResult:
        self.check_columns(rows)
        result = FeedResult(source_type=self.source_type, since_date=since_date, rows_read=len(rows))
        self.collect(rows, since_date, result)
        self.aggregate(result)
        if result.warnings:
            logger.warning(f"{self.source_type.value}: {len(result.warnings)} rows skipped or unreadable")
        logger.info(
            f"{self.source_type.value}: {len(result.lines)} lines after {since_date}, "
            f"total={result.total:.2f}, ghosts={len(result.ghost_candidates)}"
        )
        return result

    def collect(self, rows: List[Row], since_date: Optional[date], result: FeedResult):
        for index, row in enumerate(rows):
            row_date = self.in_window(row, index, since_date, result)
            if row_date is None:
                continue
            try:
                line = self.parse_row(row, row_date)
            except ParseError as e:
                e.row = self.row_number(index)
                result.warnings.append(e)
                continue
            if line is None:
                continue
            if getattr(line, "strategy", None) is None:
                result.ghost_candidates.append(self.ghost_for(line))
                continue
            result.lines.append(line)

    def parse_row(self, row: Row, row_date: date):
        """
        Return a typed line, None to drop silently, or raise ParseError.
        Feeds that group rows override collect() instead.
        """
        raise NotImplementedError(f"{type(self).__name__} does not parse single rows")

    def ghost_for(self, line) -> GhostCandidate:
        return GhostCandidate(
            batch_number=line.batch_number,
            source=self.source_type.value,
            grade=getattr(line, "grade", None),
            quantity=self.line_qty(line),
            line=line,
        )

    def line_qty(self, line) -> float:
        return line.quantity

    def aggregate(self, result: FeedResult):
        by_grade = defaultdict(float)
        by_strategy = defaultdict(float)
        for line in result.lines:
            qty = self.line_qty(line)
            by_grade[line.grade] += qty
            by_strategy[line.strategy] += qty
        result.by_grade = sorted_totals(by_grade)
        result.by_strategy = sorted_totals(by_strategy)
        result.total = sum(by_grade.values())


def require(row: Row, column: str) -> Any:
    value = row.get(column)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ParseError(f"missing {column}", field=column)
    return value


def require_key(row: Row, column: str) -> str:
    key = normalize_key(require(row, column))
    if key is None:
        raise ParseError(f"missing {column}", field=column)
    return key


def require_qty(row: Row, column: str) -> float:
    value = require(row, column)
    qty = parse_qty(value)
    if qty is None:
        raise ParseError(f"unreadable {column} '{value}'", field=column)
    return qty


