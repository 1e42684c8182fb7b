"""Storage contract consumed by the monitoring engine."""

from __future__ import annotations

import datetime as _dt
from decimal import Decimal
from typing import Optional, Protocol

from .models import (
    MonitoringConfig,
    NotificationRecord,
    Product,
    ProductCategory,
    ProductFilter,
    RawProduct,
    Region,
    RestockEvent,
    ScanLogEntry,
    User,
)


class RepositoryError(Exception):
    """Raised when the backing store fails a read or write."""


class Repository(Protocol):
    def load_active_regions(self) -> list[Region]: ...

    def load_monitored_regions(self) -> list[Region]: ...

    def get_region(self, region_id: int) -> Optional[Region]: ...

    def load_categories(self) -> list[ProductCategory]: ...

    def find_product(self, region_id: int, external_id: str) -> Optional[Product]: ...

    def insert_product(self, region_id: int, raw: RawProduct, seen_at: _dt.datetime) -> Product: ...

    def mark_restocked(self, product_id: int, price: Optional[Decimal], seen_at: _dt.datetime) -> None: ...

    def mark_unavailable(self, product_id: int, seen_at: _dt.datetime) -> None: ...

    def touch_product(self, product_id: int, seen_at: _dt.datetime) -> None: ...

    def insert_restock_event(
        self, product_id: int, price: Optional[Decimal], detected_at: _dt.datetime
    ) -> RestockEvent: ...

    def update_restock_notified(self, restock_id: int, was_notified: bool, notification_count: int) -> None: ...

    def load_active_configs(self, region_id: int) -> list[MonitoringConfig]: ...

    def load_active_filters(self, user_id: int) -> list[ProductFilter]: ...

    def get_user(self, user_id: int) -> Optional[User]: ...

    def load_user_channels(self, user_id: int) -> list[str]: ...

    def insert_scan_log(self, entry: ScanLogEntry) -> ScanLogEntry: ...

    def list_scan_logs(self, region_id: Optional[int] = None, limit: int = 100) -> list[ScanLogEntry]: ...

    def clear_scan_logs(self) -> int: ...

    def insert_notification(
        self,
        user_id: int,
        product_id: int,
        restock_id: int,
        channel: str,
        filter_id: Optional[int] = None,
    ) -> NotificationRecord: ...

    def update_notification(
        self,
        notification_id: int,
        status: str,
        sent_at: Optional[_dt.datetime] = None,
        error_message: Optional[str] = None,
    ) -> None: ...


__all__ = ["Repository", "RepositoryError"]
