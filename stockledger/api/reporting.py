"""
Reporting API - dashboard, processes, upload windows and pending transfers
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from datetime import date
from typing import Optional

from stockledger.core import get_db
from stockledger.services import ReportService

router = APIRouter(tags=["Reporting"])


@router.get("/overall-summary")
def overall_summary(
    fromDate: Optional[date] = Query(None),
    toDate: Optional[date] = Query(None),
    db: Session = Depends(get_db),
):
    if fromDate and toDate and fromDate > toDate:
        raise HTTPException(status_code=400, detail="fromDate must not be after toDate")
    return ReportService.overall_summary(db, fromDate, toDate)


@router.get("/processes")
def list_processes(
    fromDate: Optional[date] = Query(None),
    toDate: Optional[date] = Query(None),
    db: Session = Depends(get_db),
):
    return ReportService.list_processes(db, fromDate, toDate)


@router.get("/processes/{process_id}")
def get_process(process_id: int, db: Session = Depends(get_db)):
    process = ReportService.get_process(db, process_id)
    if not process:
        raise HTTPException(status_code=404, detail=f"Process {process_id} not found")
    return process


@router.get("/last-update-dates")
def last_update_dates(db: Session = Depends(get_db)):
    """Latest recorded date per feed, to use as the next sinceDate"""
    return ReportService.last_update_dates(db)


@router.get("/sti/pending")
def pending_transfers(
    fromDate: Optional[date] = Query(None),
    toDate: Optional[date] = Query(None),
    db: Session = Depends(get_db),
):
    return ReportService.pending_transfers(db, fromDate, toDate)
