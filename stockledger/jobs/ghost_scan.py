"""
Ghost Scan Scheduler - periodic ghost and missing-hedge detection
"""
import asyncio
from datetime import datetime
from typing import Dict
import logging

from stockledger.core.config import settings
from stockledger.core.database import SessionLocal
from stockledger.core.logging_config import configure_logging
from stockledger.services import GhostService

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler = None


class GhostScanScheduler:
    """
    Runs the ghost detectors on an interval. No snapshot is available to a
    scheduled scan, so only trade records count as known batches.
    """

    JOB_ID = "ghost_scan"

    def __init__(self, interval_hours: int = None):
        from apscheduler.schedulers.asyncio import AsyncIOScheduler
        self.scheduler = AsyncIOScheduler()
        self.interval_hours = interval_hours or settings.GHOST_SCAN_INTERVAL_HOURS
        self.is_running = False

    def start(self):
        """Start the scheduler"""
        if self.is_running:
            return
        from apscheduler.triggers.interval import IntervalTrigger
        self.scheduler.add_job(
            func=run_scan,
            trigger=IntervalTrigger(hours=self.interval_hours),
            id=self.JOB_ID,
            name="Ghost batch scan",
            next_run_time=datetime.now(),
            replace_existing=True,
            max_instances=1,  # Scans never overlap
        )
        self.scheduler.start()
        self.is_running = True
        logger.info(f"Ghost scan scheduler started, every {self.interval_hours}h")

    def stop(self):
        """Stop the scheduler"""
        if self.is_running:
            self.scheduler.shutdown(wait=False)
            self.is_running = False
            logger.info("Ghost scan scheduler stopped")


def run_scan() -> Dict[str, int]:
    """One detection pass over recorded processing inputs and dispatches"""
    db = SessionLocal()
    try:
        ghosts = GhostService.find_ghost_batches(db)
        missing_hedge = GhostService.find_missing_hedge_batches(db)
        stats = {
            "ghost_batches": len(ghosts),
            "new_ghost_batches": sum(1 for g in ghosts if g.is_new),
            "missing_hedge": len(missing_hedge),
        }
        logger.info(f"Scheduled ghost scan completed: {stats}")
        return stats
    except Exception:
        db.rollback()
        logger.exception("Scheduled ghost scan failed")
        raise
    finally:
        db.close()


# ========== Global Functions ==========

def get_scheduler() -> GhostScanScheduler:
    """Get or create the global scheduler instance"""
    global _scheduler
    if _scheduler is None:
        _scheduler = GhostScanScheduler()
    return _scheduler


def start_scheduler():
    """Start the global scheduler"""
    get_scheduler().start()


def stop_scheduler():
    """Stop the global scheduler"""
    global _scheduler
    if _scheduler:
        _scheduler.stop()
        _scheduler = None


# ========== CLI Commands ==========

async def _serve():
    start_scheduler()
    try:
        await asyncio.Event().wait()
    finally:
        stop_scheduler()


if __name__ == "__main__":
    """
    Run standalone:
    python -m stockledger.jobs.ghost_scan        # scheduler
    python -m stockledger.jobs.ghost_scan scan   # one pass
    """
    import sys

    configure_logging()

    if len(sys.argv) > 1 and sys.argv[1] == "scan":
        print(run_scan())
    else:
        print("Starting ghost scan scheduler...")
        print("Press Ctrl+C to stop")
        try:
            asyncio.run(_serve())
        except KeyboardInterrupt:
            print("Scheduler stopped")
