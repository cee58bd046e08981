"""
Summary API - daily summary lifecycle: create, initialize, close, recompute
"""
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from sqlalchemy.orm import Session
from datetime import date
from typing import Optional

from stockledger.core import get_db
from stockledger.schemas import SummaryCreate, UpdateStockActivitiesRequest
from stockledger.services import DailyRunService, SummaryService
from .deps import load_snapshot

router = APIRouter(prefix="/summaries", tags=["Summaries"])


@router.post("")
def create_summary(request: Optional[SummaryCreate] = None, db: Session = Depends(get_db)):
    """Create the summary of a date, or return the existing one"""
    target_date = (request.date if request else None) or date.today()
    summary, created = SummaryService.get_or_create(db, target_date)
    return {"created": created, **SummaryService.to_dict(db, summary)}


@router.get("")
def list_summaries(
    fromDate: Optional[date] = Query(None),
    toDate: Optional[date] = Query(None),
    db: Session = Depends(get_db),
):
    return [SummaryService.to_dict(db, s) for s in SummaryService.list_summaries(db, fromDate, toDate)]


@router.get("/today")
def today_summary(db: Session = Depends(get_db)):
    summary = SummaryService.get_by_date(db, date.today())
    if not summary:
        raise HTTPException(status_code=404, detail="No summary for today")
    return SummaryService.to_dict(db, summary)


@router.get("/{summary_id}")
def get_summary(summary_id: int, db: Session = Depends(get_db)):
    summary = SummaryService.get(db, summary_id)
    return SummaryService.to_dict(db, summary, include_activities=True)


@router.delete("/{summary_id}")
def delete_summary(summary_id: int, db: Session = Depends(get_db)):
    SummaryService.delete(db, summary_id)
    return {"deleted": summary_id}


@router.post("/{summary_id}/initialize")
def initialize_summary(
    summary_id: int,
    current_stock: UploadFile = File(None),
    force: bool = Form(False),
    db: Session = Depends(get_db),
):
    """Seed one activity record per grade and strategy of the snapshot"""
    snapshot = load_snapshot(current_stock)
    return DailyRunService.initialize(db, summary_id, snapshot, force=force)


@router.post("/{summary_id}/close")
def close_summary(
    summary_id: int,
    current_stock: UploadFile = File(None),
    tolerance: Optional[float] = Form(None),
    force: bool = Form(False),
    db: Session = Depends(get_db),
):
    """Reconcile against the closing snapshot; discrepancies over tolerance come back as warnings"""
    snapshot = load_snapshot(current_stock)
    result = DailyRunService.close_day(db, summary_id, snapshot, tolerance_qty=tolerance, force=force)
    return result.to_dict()


@router.post("/{summary_id}/recompute")
def recompute_summary(
    summary_id: int,
    current_stock: UploadFile = File(None),
    tolerance: Optional[float] = Form(None),
    db: Session = Depends(get_db),
):
    """Rebuild the ledger from the summary's persisted records and close it again"""
    snapshot = load_snapshot(current_stock)
    return DailyRunService.recompute(db, summary_id, snapshot, tolerance_qty=tolerance)


# Mounted without the /summaries prefix
stock_activities_router = APIRouter(tags=["Summaries"])


@stock_activities_router.post("/update-stock-activities")
def update_stock_activities(request: UpdateStockActivitiesRequest, db: Session = Depends(get_db)):
    """Recompute from a JSON snapshot, as returned by /stock-movement"""
    return DailyRunService.recompute(
        db,
        request.summary_id,
        request.stock_data.to_snapshot(),
        close=request.close,
        tolerance_qty=request.tolerance_qty,
    )
