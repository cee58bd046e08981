"""
Batch API - ghost hunting, hedge gaps, strategy backfill and trade records
"""
from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from sqlalchemy.orm import Session
from typing import List

from stockledger.core import get_db
from stockledger.feeds import AllocationParser
from stockledger.schemas import GhostBatchResponse, MissingHedgeResponse, TradeBatchUpsert
from stockledger.services import GhostService
from .deps import load_snapshot, read_upload

router = APIRouter(prefix="/batches", tags=["Batches"])


@router.post("/ghost-hunt")
def ghost_hunt(current_stock: UploadFile = File(None), db: Session = Depends(get_db)):
    """
    Scan processing inputs and dispatches for batches with no origin.
    The snapshot file is optional; without it only trade records count as known.
    """
    snapshot = load_snapshot(current_stock) if current_stock is not None and current_stock.filename else None
    ghosts = GhostService.find_ghost_batches(db, snapshot)
    missing_hedge = GhostService.find_missing_hedge_batches(db)
    return {
        "ghost_batches": [g.to_dict() for g in ghosts],
        "missing_hedge_count": len(missing_hedge),
    }


@router.get("/ghosts", response_model=List[GhostBatchResponse])
def list_ghosts(include_resolved: bool = Query(False), db: Session = Depends(get_db)):
    return GhostService.list_ghosts(db, include_resolved)


@router.delete("/ghosts/{ghost_id}")
def delete_ghost(ghost_id: int, db: Session = Depends(get_db)):
    if not GhostService.delete_ghost(db, ghost_id):
        raise HTTPException(status_code=404, detail=f"Ghost batch {ghost_id} not found")
    return {"deleted": ghost_id}


@router.get("/missing-hedge", response_model=List[MissingHedgeResponse])
def list_missing_hedge(include_resolved: bool = Query(False), db: Session = Depends(get_db)):
    return GhostService.list_missing_hedge(db, include_resolved)


@router.post("/update-undefined-strategies")
def update_undefined_strategies(file: UploadFile = File(None), db: Session = Depends(get_db)):
    """Backfill UNDEFINED strategies from a Test Details Summary Report"""
    report = AllocationParser().load(read_upload(file, "allocation report"), filename=file.filename)
    outcome = GhostService.update_undefined_strategies(db, report.table.mapping)
    outcome["warnings"] = [str(w) for w in report.warnings]
    return outcome


@router.post("/trades")
def upsert_trades(request: TradeBatchUpsert, db: Session = Depends(get_db)):
    return GhostService.upsert_trade_batches(db, [t.model_dump() for t in request.trades])


@router.get("/{batch_number}/history")
def batch_history(batch_number: str, db: Session = Depends(get_db)):
    history = GhostService.batch_history(db, batch_number)
    if history is None:
        raise HTTPException(status_code=404, detail=f"Batch {batch_number} not found")
    return history
