"""
Upload API - one endpoint per source feed, plus the snapshot preview
"""
from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.orm import Session
from typing import Optional

from stockledger.core import get_db
from stockledger.models import SourceType
from stockledger.services import DailyRunService, SummaryService
from .deps import load_snapshot, parse_since_date, read_upload

router = APIRouter(tags=["Uploads"])


def _process_upload(
    db: Session,
    source_type: SourceType,
    file: Optional[UploadFile],
    current_stock: Optional[UploadFile],
    summary_id: int,
    since_date: Optional[str],
    force: bool,
):
    since = parse_since_date(since_date)
    raw = read_upload(file, source_type.value)
    SummaryService.get(db, summary_id)
    snapshot = load_snapshot(current_stock)

    # Parsing happens before the summary lock is taken
    result = DailyRunService.normalize(db, source_type, raw, since, snapshot, filename=file.filename)
    report = DailyRunService.apply_feed(db, summary_id, result, force=force)
    report["feed"] = result.to_dict()
    return report


@router.post("/process-sti")
def process_sti(
    file: UploadFile = File(None),
    current_stock: UploadFile = File(None),
    summary_id: int = Form(...),
    sinceDate: Optional[str] = Form(None),
    force: bool = Form(False),
    db: Session = Depends(get_db),
):
    """Stock transfer instructions: inbound and transit loss/gain"""
    return _process_upload(db, SourceType.STI, file, current_stock, summary_id, sinceDate, force)


@router.post("/process-sta")
def process_sta(
    file: UploadFile = File(None),
    current_stock: UploadFile = File(None),
    summary_id: int = Form(...),
    sinceDate: Optional[str] = Form(None),
    force: bool = Form(False),
    db: Session = Depends(get_db),
):
    """Stock adjustments, signed"""
    return _process_upload(db, SourceType.STA, file, current_stock, summary_id, sinceDate, force)


@router.post("/process-pa")
def process_pa(
    file: UploadFile = File(None),
    current_stock: UploadFile = File(None),
    summary_id: int = Form(...),
    sinceDate: Optional[str] = Form(None),
    force: bool = Form(False),
    db: Session = Depends(get_db),
):
    """Processing analysis: milling runs with input/output lines"""
    return _process_upload(db, SourceType.PA, file, current_stock, summary_id, sinceDate, force)


@router.post("/process-gdi")
def process_gdi(
    file: UploadFile = File(None),
    current_stock: UploadFile = File(None),
    summary_id: int = Form(...),
    sinceDate: Optional[str] = Form(None),
    force: bool = Form(False),
    db: Session = Depends(get_db),
):
    """Goods dispatch: outbound"""
    return _process_upload(db, SourceType.GDI, file, current_stock, summary_id, sinceDate, force)


@router.post("/stock-movement")
def stock_movement(current_stock: UploadFile = File(None)):
    """Parse an XBS current stock file and return its totals"""
    return load_snapshot(current_stock).to_dict()
