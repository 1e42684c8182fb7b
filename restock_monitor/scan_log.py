"""Append-only audit trail of per-region scan attempts."""

from __future__ import annotations

import json
import logging
from typing import Iterable, Optional

from .models import SCAN_BLOCKED, SCAN_FAILED, SCAN_SUCCESS, RawProduct, Region, ScanLogEntry
from .repository import Repository, RepositoryError

logger = logging.getLogger(__name__)

_STATUSES = (SCAN_SUCCESS, SCAN_FAILED, SCAN_BLOCKED)


def snapshot(products: Iterable[RawProduct]) -> str:
    """Serialize scraped items for the `product_details` column."""
    return json.dumps([p.to_dict() for p in products], ensure_ascii=False)


class ScanLogger:
    def __init__(self, repo: Repository, *, store_snapshots: bool = True, query_limit: int = 100) -> None:
        self.repo = repo
        self.store_snapshots = store_snapshots
        self.query_limit = query_limit

    def record(
        self,
        region: Region,
        status: str,
        *,
        duration_ms: int,
        products_found: int = 0,
        new_restocks: int = 0,
        error: Optional[str] = None,
        scraped: Optional[Iterable[RawProduct]] = None,
    ) -> Optional[ScanLogEntry]:
        """Write one entry; a storage failure is logged and yields None.

        Failed and blocked scans always carry zero counts.
        """
        if status not in _STATUSES:
            raise ValueError(f"unknown scan status: {status!r}")
        if status != SCAN_SUCCESS:
            products_found = new_restocks = 0
            scraped = None

        entry = ScanLogEntry(
            region_id=region.id,
            status=status,
            products_found=products_found,
            new_restocks=new_restocks,
            duration_ms=duration_ms,
            error_message=error,
            product_details=snapshot(scraped) if (scraped is not None and self.store_snapshots) else None,
        )
        try:
            return self.repo.insert_scan_log(entry)
        except RepositoryError:
            logger.exception("Could not write scan log for region %s (%s)", region.code, status)
            return None

    def recent(self, region_id: Optional[int] = None, limit: Optional[int] = None) -> list[ScanLogEntry]:
        """Newest entries first, capped at the configured query limit."""
        n = self.query_limit if limit is None else max(0, min(limit, self.query_limit))
        return self.repo.list_scan_logs(region_id=region_id, limit=n)

    def clear(self) -> int:
        deleted = self.repo.clear_scan_logs()
        logger.warning("Scan log history cleared (%d entries deleted)", deleted)
        return deleted


__all__ = ["ScanLogger", "snapshot"]
