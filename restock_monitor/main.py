from __future__ import annotations

import argparse
import logging
import signal
import threading
from typing import Optional, Sequence

from . import config
from .control import MonitoringControl
from .db import SQLiteRepository
from .dispatcher import NotificationDispatcher
from .emailer import SmtpEmailSender
from .fetcher import BrowserRegionFetcher, HttpRegionFetcher, RegionFetcher
from .models import CHANNEL_EMAIL, CHANNEL_PUSH
from .notifier import ChannelSender, WebhookSender
from .scan_log import ScanLogger
from .scheduler import MonitoringScheduler

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def build_fetcher() -> RegionFetcher:
    if config.FETCHER_BACKEND == "browser":
        return BrowserRegionFetcher(timeout_ms=config.BROWSER_TIMEOUT_MS)
    return HttpRegionFetcher(timeout=config.FETCH_TIMEOUT_SECONDS)


def build_sender() -> ChannelSender:
    senders = {CHANNEL_PUSH: WebhookSender(config.DISCORD_WEBHOOK_URL, attach_images=config.DISCORD_ATTACH_IMAGES)}
    if config.EMAIL_ENABLED:
        senders[CHANNEL_EMAIL] = SmtpEmailSender(
            config.EMAIL_SMTP_HOST,
            config.EMAIL_SMTP_PORT,
            config.EMAIL_USERNAME,
            config.EMAIL_PASSWORD,
            config.EMAIL_FROM,
            use_tls=config.EMAIL_USE_TLS,
            subject_prefix=config.EMAIL_SUBJECT_PREFIX,
        )
    else:
        logger.info("Email notifications disabled.")
    return ChannelSender(senders)


def build_control(repo: Optional[SQLiteRepository] = None) -> MonitoringControl:
    """Wire the engine from configuration."""
    repo = repo or SQLiteRepository(config.SQLITE_DB_PATH)
    scan_logger = ScanLogger(
        repo, store_snapshots=config.SCAN_LOG_SNAPSHOTS, query_limit=config.SCAN_LOG_QUERY_LIMIT
    )
    dispatcher = NotificationDispatcher(repo, build_sender(), default_channels=config.DEFAULT_CHANNELS)
    scheduler = MonitoringScheduler(
        repo,
        build_fetcher(),
        dispatcher=dispatcher,
        scan_logger=scan_logger,
        interval_seconds=config.SCAN_INTERVAL_SECONDS,
        inter_region_delay=config.INTER_REGION_DELAY_SECONDS,
    )
    return MonitoringControl(scheduler, scan_logger)


def _print_logs(control: MonitoringControl, limit: int = 20) -> None:
    for e in control.scan_logs(limit=limit):
        print(
            f"{e.created_at:%Y-%m-%d %H:%M:%S} region={e.region_id} {e.status:<7} "
            f"found={e.products_found} restocks={e.new_restocks} {e.duration_ms}ms"
            + (f" error={e.error_message}" if e.error_message else "")
        )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Initialise the database and run the monitoring scheduler."""
    parser = argparse.ArgumentParser(prog="restock-monitor", description="Regional restock monitor")
    parser.add_argument("--init-db", action="store_true", help="create the schema, seed regions and exit")
    parser.add_argument("--once", action="store_true", help="run a single manual scan and exit")
    parser.add_argument("--status", action="store_true", help="print the most recent scan logs and exit")
    args = parser.parse_args(argv)

    config.validate()
    setup_logging()

    logger.info("Initializing database at %s", config.SQLITE_DB_PATH)
    repo = SQLiteRepository(config.SQLITE_DB_PATH)
    repo.init_db()
    if config.SEED_DEFAULT_REGIONS:
        repo.seed_defaults()
    if args.init_db:
        return 0

    control = build_control(repo)
    if args.status:
        _print_logs(control)
        return 0
    if args.once:
        result = control.manual_scan()
        logger.info(result.message)
        return 0 if result.success else 1

    done = threading.Event()

    def _shutdown(signum, frame) -> None:
        logger.info("Received signal %s, shutting down", signum)
        done.set()

    signal.signal(signal.SIGTERM, _shutdown)
    control.start()
    try:
        while not done.wait(1):
            pass
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        control.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
