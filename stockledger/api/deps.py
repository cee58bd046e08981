"""
Request helpers shared by the upload and summary endpoints
"""
from datetime import date
from typing import Optional

from fastapi import HTTPException, UploadFile

from stockledger.feeds import SnapshotParser, StockSnapshot, parse_date


def read_upload(file: Optional[UploadFile], name: str) -> bytes:
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail=f"Missing {name} file")
    raw = file.file.read()
    if not raw:
        raise HTTPException(status_code=400, detail=f"Uploaded {name} file is empty")
    return raw


def parse_since_date(value: Optional[str]) -> Optional[date]:
    """Empty means no lower bound; anything else must be a readable date"""
    if value is None or not value.strip():
        return None
    since = parse_date(value.strip())
    if since is None:
        raise HTTPException(status_code=400, detail=f"Invalid sinceDate '{value}'")
    return since


def load_snapshot(file: Optional[UploadFile]) -> StockSnapshot:
    return SnapshotParser().load(read_upload(file, "current_stock"), filename=file.filename)
