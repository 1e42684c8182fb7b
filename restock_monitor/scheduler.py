"""Monitoring scheduler: lifecycle, periodic scan cycles and manual scans.

Only one scan cycle runs at a time. The periodic loop and `manual_scan()`
share one cycle lock: a periodic tick that finds a cycle in flight is
skipped, a manual scan waits for it. Regions of a cycle are scanned one
after another with a fixed pause between them.
"""

from __future__ import annotations

import datetime as _dt
import logging
import threading
import time
from typing import Callable, List, Optional

from .differ import StateDiffer
from .dispatcher import NotificationDispatcher
from .fetcher import BLOCKED, FetchError, RegionFetcher
from .models import (
    SCAN_BLOCKED,
    SCAN_FAILED,
    SCAN_SUCCESS,
    CycleSummary,
    MonitoringStatus,
    RawProduct,
    Region,
    RegionScanResult,
)
from .repository import Repository
from .scan_log import ScanLogger
from .utils import elapsed_ms, utcnow

logger = logging.getLogger(__name__)

TRIGGER_STARTUP = "startup"
TRIGGER_PERIODIC = "periodic"
TRIGGER_MANUAL = "manual"


class ScanSetupError(Exception):
    """The regions to scan could not be determined; the cycle did not run."""


class MonitoringScheduler:
    def __init__(
        self,
        repo: Repository,
        fetcher: RegionFetcher,
        *,
        dispatcher: Optional[NotificationDispatcher] = None,
        scan_logger: Optional[ScanLogger] = None,
        differ: Optional[StateDiffer] = None,
        interval_seconds: float = 30,
        inter_region_delay: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], _dt.datetime] = utcnow,
    ) -> None:
        self.repo = repo
        self.fetcher = fetcher
        self.dispatcher = dispatcher
        self.scan_logger = scan_logger or ScanLogger(repo)
        self.differ = differ or StateDiffer(repo)
        self.interval_seconds = interval_seconds
        self.inter_region_delay = inter_region_delay
        self._sleep = sleep
        self._clock = clock

        self._cycle_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._running = False
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        self._started_monotonic: Optional[float] = None

        self._restocks_total = 0
        self._cycles_completed = 0
        self._regions_monitored = 0
        self._last_started: Optional[_dt.datetime] = None
        self._last_finished: Optional[_dt.datetime] = None
        self._last_ok: Optional[bool] = None
        self._last_error: Optional[str] = None

    # ---- lifecycle ----------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Run one cycle right away, then keep cycling every `interval_seconds`.

        Calling start() while running does nothing. Cycle failures are
        logged and reflected in status(), never raised.
        """
        with self._state_lock:
            if self._running:
                logger.info("Monitoring scheduler already running")
                return
            self._running = True
            self._started_monotonic = time.monotonic()
            stop_event = threading.Event()
            self._stop_event = stop_event

        logger.info(
            "Starting monitoring scheduler (interval=%ss, inter-region delay=%ss)",
            self.interval_seconds, self.inter_region_delay,
        )
        self._run_guarded(TRIGGER_STARTUP)

        with self._state_lock:
            if stop_event.is_set():
                logger.info("Scheduler stopped during its first cycle; periodic loop not armed")
                return
            thread = threading.Thread(
                target=self._loop, args=(stop_event,), name="restock-scheduler", daemon=True
            )
            self._thread = thread
        thread.start()
        logger.info("Monitoring scheduler started")

    def stop(self) -> None:
        """Prevent further cycles. A cycle already in progress runs to completion."""
        with self._state_lock:
            if not self._running:
                return
            self._running = False
            if self._stop_event is not None:
                self._stop_event.set()
            self._started_monotonic = None
        logger.info("Monitoring scheduler stopped")

    def join(self, timeout: Optional[float] = None) -> None:
        """Block until the periodic loop exits (after stop())."""
        thread = self._thread
        if thread is not None:
            thread.join(timeout)

    def _loop(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.interval_seconds):
            if not self._cycle_lock.acquire(blocking=False):
                logger.warning("Previous scan cycle still running; skipping this tick")
                continue
            try:
                self._run_cycle_locked(TRIGGER_PERIODIC, self.repo.load_active_regions)
            except Exception:
                logger.exception("Periodic scan cycle failed")
            finally:
                self._cycle_lock.release()
        logger.debug("Scheduler loop exited")

    def _run_guarded(self, trigger: str) -> Optional[CycleSummary]:
        try:
            return self.run_cycle(trigger)
        except Exception:
            logger.exception("%s scan cycle failed", trigger.capitalize())
            return None

    # ---- cycles -------------------------------------------------------------

    def run_cycle(self, trigger: str = TRIGGER_PERIODIC) -> CycleSummary:
        """Scan every active region once (waits for an in-flight cycle)."""
        with self._cycle_lock:
            return self._run_cycle_locked(trigger, self.repo.load_active_regions)

    def manual_scan(self) -> CycleSummary:
        """Scan, once, every region at least one user actively monitors.

        Works whether or not the scheduler is running. Raises
        ScanSetupError when the target regions cannot be loaded.
        """
        logger.info("Manual scan requested")
        with self._cycle_lock:
            return self._run_cycle_locked(TRIGGER_MANUAL, self.repo.load_monitored_regions)

    def _run_cycle_locked(self, trigger: str, load_regions: Callable[[], List[Region]]) -> CycleSummary:
        summary = CycleSummary(trigger=trigger, started_at=self._clock())
        with self._state_lock:
            self._last_started = summary.started_at

        try:
            regions = load_regions()
        except Exception as e:
            summary.finished_at = self._clock()
            with self._state_lock:
                self._last_finished = summary.finished_at
                self._last_ok = False
                self._last_error = f"could not load regions: {e}"
            raise ScanSetupError(f"could not load regions to scan: {e}") from e

        logger.info("%s cycle: scanning %d region(s)", trigger.capitalize(), len(regions))
        with self._state_lock:
            self._regions_monitored = len(regions)
        for i, region in enumerate(regions):
            if i and self.inter_region_delay > 0:
                self._sleep(self.inter_region_delay)
            summary.regions.append(self.scan_region(region))

        summary.finished_at = self._clock()
        failed = summary.failed_regions
        with self._state_lock:
            self._cycles_completed += 1
            self._last_finished = summary.finished_at
            self._last_ok = not failed
            self._last_error = (
                "; ".join(f"{r.region_code}: {r.error or r.status}" for r in failed) if failed else None
            )
        logger.info(
            "%s cycle finished: %d region(s), %d product(s), %d restock(s), %d failed",
            trigger.capitalize(), len(summary.regions), summary.products_found,
            summary.new_restocks, len(failed),
        )
        return summary

    # ---- per-region pipeline --------------------------------------------------

    def scan_region(self, region: Region) -> RegionScanResult:
        """Fetch, reconcile, notify and log one region. Never raises."""
        started = time.monotonic()
        logger.info("Scanning region %s (%s)", region.name, region.code)

        try:
            scraped = self.fetcher.fetch_region_products(region)
        except FetchError as e:
            status = SCAN_BLOCKED if e.kind == BLOCKED else SCAN_FAILED
            logger.error("Fetch failed for region %s: %s", region.code, e)
            return self._finish(region, status, started, error=str(e))
        except Exception as e:
            logger.exception("Unexpected fetcher error for region %s", region.code)
            return self._finish(region, SCAN_FAILED, started, error=str(e) or e.__class__.__name__)

        try:
            diff = self.differ.reconcile(region, scraped)
            with self._state_lock:
                self._restocks_total += diff.new_restocks
            if self.dispatcher is not None:
                for t in diff.notifiable:
                    self.dispatcher.dispatch(region, t.product, t.restock)
        except Exception as e:
            logger.exception("Scan of region %s aborted", region.code)
            return self._finish(region, SCAN_FAILED, started, error=str(e) or e.__class__.__name__)

        if diff.new_restocks:
            logger.info("Found %d new restock(s) in %s", diff.new_restocks, region.name)
        return self._finish(
            region, SCAN_SUCCESS, started,
            products_found=diff.products_found, new_restocks=diff.new_restocks, scraped=scraped,
        )

    def _finish(
        self,
        region: Region,
        status: str,
        started: float,
        *,
        products_found: int = 0,
        new_restocks: int = 0,
        error: Optional[str] = None,
        scraped: Optional[List[RawProduct]] = None,
    ) -> RegionScanResult:
        duration = elapsed_ms(started)
        self.scan_logger.record(
            region, status,
            duration_ms=duration, products_found=products_found, new_restocks=new_restocks,
            error=error, scraped=scraped,
        )
        return RegionScanResult(
            region_id=region.id,
            region_code=region.code,
            status=status,
            products_found=products_found,
            new_restocks=new_restocks,
            duration_ms=duration,
            error=error,
        )

    # ---- status -------------------------------------------------------------

    def status(self) -> MonitoringStatus:
        with self._state_lock:
            uptime = None
            if self._running and self._started_monotonic is not None:
                uptime = elapsed_ms(self._started_monotonic)
            return MonitoringStatus(
                running=self._running,
                uptime_ms=uptime,
                regions_monitored=self._regions_monitored,
                restocks_detected_total=self._restocks_total,
                cycles_completed=self._cycles_completed,
                last_cycle_started_at=self._last_started,
                last_cycle_finished_at=self._last_finished,
                last_cycle_ok=self._last_ok,
                last_cycle_error=self._last_error,
            )

    def reset_stats(self) -> None:
        """Zero the restock counter and restart the uptime clock."""
        with self._state_lock:
            self._restocks_total = 0
            if self._running:
                self._started_monotonic = time.monotonic()


__all__ = [
    "MonitoringScheduler",
    "ScanSetupError",
    "TRIGGER_MANUAL",
    "TRIGGER_PERIODIC",
    "TRIGGER_STARTUP",
]
