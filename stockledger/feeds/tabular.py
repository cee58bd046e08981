"""
Tabular decoding of uploaded spreadsheets into permissive row mappings
"""
import io
import logging
import zipfile
from typing import Any, Dict, List, Optional, Union

import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException

from stockledger.core.exceptions import SchemaError, SheetNotFoundError, EmptySheetError

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


def _unique_headers(raw_headers) -> List[str]:
    """
    Repeated header names get a numeric suffix: Qty., Qty._1, Qty._2
    """
    seen: Dict[str, int] = {}
    headers = []
    for i, value in enumerate(raw_headers):
        name = str(value).strip() if value is not None and not pd.isna(value) else f"__EMPTY_{i}"
        if name in seen:
            seen[name] += 1
            headers.append(f"{name}_{seen[name]}")
        else:
            seen[name] = 0
            headers.append(name)
    return headers


def _cell(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    return value


def _frame_to_rows(df: pd.DataFrame, sheet: Union[str, int], header_row: int) -> List[Row]:
    if df.empty or len(df.index) <= header_row:
        raise EmptySheetError(sheet)

    headers = _unique_headers(df.iloc[header_row].tolist())
    body = df.iloc[header_row + 1:]

    rows = []
    for values in body.itertuples(index=False, name=None):
        row = {header: _cell(value) for header, value in zip(headers, values)}
        if all(v is None or (isinstance(v, str) and not v.strip()) for v in row.values()):
            continue
        rows.append(row)
    return rows


def read_rows(
    raw: bytes,
    sheet: Union[str, int] = 0,
    header_row: int = 0,
    filename: Optional[str] = None,
) -> List[Row]:
    """
    Decode an uploaded file into a list of {header: value} rows.

    Args:
        raw: file content
        sheet: sheet name, or position for "first sheet" layouts
        header_row: zero-based row holding the column names
        filename: used to detect CSV uploads

    Raises:
        SheetNotFoundError: the workbook has no such sheet
        EmptySheetError: the sheet or CSV file has no header row
        SchemaError: the bytes are not a readable workbook
    """
    if filename and filename.lower().endswith(".csv"):
        try:
            df = pd.read_csv(io.BytesIO(raw), header=None, dtype=object, skip_blank_lines=False)
        except pd.errors.EmptyDataError as e:
            raise EmptySheetError(sheet) from e
        return _frame_to_rows(df, sheet, header_row)

    try:
        workbook = pd.ExcelFile(io.BytesIO(raw), engine="openpyxl")
    except (ValueError, zipfile.BadZipFile, InvalidFileException) as e:
        raise SchemaError(f"Uploaded file is not a readable workbook: {e}") from e
    sheet_names = workbook.sheet_names
    if isinstance(sheet, int):
        if sheet >= len(sheet_names):
            raise SheetNotFoundError(sheet)
        sheet_name = sheet_names[sheet]
    else:
        if sheet not in sheet_names:
            raise SheetNotFoundError(sheet)
        sheet_name = sheet

    df = workbook.parse(sheet_name=sheet_name, header=None, dtype=object)
    rows = _frame_to_rows(df, sheet_name, header_row)
    logger.debug(f"Decoded {len(rows)} rows from sheet '{sheet_name}'")
    return rows
