# Jobs Package - Scheduled background tasks
from .ghost_scan import GhostScanScheduler, get_scheduler, run_scan, start_scheduler, stop_scheduler

__all__ = ["GhostScanScheduler", "get_scheduler", "run_scan", "start_scheduler", "stop_scheduler"]
