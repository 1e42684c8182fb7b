"""Admin control surface exposed to the surrounding application."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .models import CycleSummary, MonitoringStatus, ScanLogEntry
from .repository import RepositoryError
from .scan_log import ScanLogger
from .scheduler import MonitoringScheduler, ScanSetupError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ControlResult:
    success: bool
    message: str
    summary: Optional[CycleSummary] = None


class MonitoringControl:
    def __init__(self, scheduler: MonitoringScheduler, scan_logger: Optional[ScanLogger] = None) -> None:
        self.scheduler = scheduler
        self.scan_logger = scan_logger or scheduler.scan_logger

    def start(self) -> ControlResult:
        if self.scheduler.running:
            return ControlResult(True, "Monitoring service already running")
        self.scheduler.start()
        return ControlResult(True, "Monitoring service started successfully")

    def stop(self) -> ControlResult:
        self.scheduler.stop()
        return ControlResult(True, "Monitoring service stopped successfully")

    def status(self) -> MonitoringStatus:
        return self.scheduler.status()

    def manual_scan(self) -> ControlResult:
        try:
            summary = self.scheduler.manual_scan()
        except ScanSetupError as e:
            logger.error("Manual scan could not start: %s", e)
            return ControlResult(False, str(e))

        if not summary.regions:
            return ControlResult(True, "No monitored regions to scan", summary)
        failed = summary.failed_regions
        message = (
            f"Scanned {len(summary.regions)} region(s): {summary.products_found} product(s), "
            f"{summary.new_restocks} new restock(s)"
        )
        if failed:
            message += f", {len(failed)} failed ({', '.join(r.region_code for r in failed)})"
        return ControlResult(not failed, message, summary)

    def scan_logs(self, region_id: Optional[int] = None, limit: Optional[int] = None) -> list[ScanLogEntry]:
        return self.scan_logger.recent(region_id=region_id, limit=limit)

    def clear_scan_logs(self) -> ControlResult:
        try:
            deleted = self.scan_logger.clear()
        except RepositoryError as e:
            logger.error("Clearing scan logs failed: %s", e)
            return ControlResult(False, f"Failed to clear scan logs: {e}")
        return ControlResult(True, f"Deleted {deleted} scan log entr{'y' if deleted == 1 else 'ies'}")


__all__ = ["ControlResult", "MonitoringControl"]
