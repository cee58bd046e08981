"""
API Router - JSON Endpoints
"""
from fastapi import APIRouter
from datetime import datetime

from stockledger.api.uploads import router as uploads_router
from stockledger.api.summaries import router as summaries_router, stock_activities_router
from stockledger.api.batches import router as batches_router
from stockledger.api.reporting import router as reporting_router

api_router = APIRouter(tags=["API"])

# Include sub-routers
api_router.include_router(uploads_router)
api_router.include_router(summaries_router)
api_router.include_router(stock_activities_router)
api_router.include_router(batches_router)
api_router.include_router(reporting_router)

# ===================== HEALTH & STATUS =====================

@api_router.get("/status")
async def api_status():
    return {"status": "ok", "version": "1.0.0", "timestamp": datetime.now().isoformat()}
