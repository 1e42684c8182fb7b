"""Record types shared by the monitoring engine."""

from __future__ import annotations

import datetime as _dt
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Any, Optional

# Scan log statuses
SCAN_SUCCESS = "success"
SCAN_FAILED = "failed"
SCAN_BLOCKED = "blocked"

# Notification delivery statuses
NOTIFY_PENDING = "pending"
NOTIFY_SENT = "sent"
NOTIFY_FAILED = "failed"

CHANNEL_EMAIL = "email"
CHANNEL_PUSH = "push"

# Diff classifications
NEW = "new"
RESTOCKED = "restocked"
UNCHANGED = "unchanged"
SOLD_OUT = "sold_out"


@dataclass(frozen=True)
class Region:
    id: int
    code: str
    name: str
    url: str
    currency: str
    is_active: bool = True


@dataclass(frozen=True)
class RawProduct:
    """One listing as reported by a page fetcher."""

    name: str
    product_url: str
    external_id: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = None
    currency: Optional[str] = None
    color: Optional[str] = None
    size: Optional[str] = None
    image_url: Optional[str] = None
    category_id: Optional[int] = None
    # category label as printed by the storefront (JSON-LD or tile attribute)
    category: Optional[str] = None
    is_available: bool = True

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["price"] = str(self.price) if self.price is not None else None
        return d


@dataclass(frozen=True)
class ProductCategory:
    id: int
    name: str
    slug: str
    is_active: bool = True


@dataclass
class Product:
    id: int
    region_id: int
    name: str
    product_url: str
    external_id: Optional[str] = None
    category_id: Optional[int] = None
    description: Optional[str] = None
    price: Optional[Decimal] = None
    currency: Optional[str] = None
    color: Optional[str] = None
    size: Optional[str] = None
    image_url: Optional[str] = None
    is_available: bool = True
    last_seen_at: Optional[_dt.datetime] = None


@dataclass
class RestockEvent:
    id: int
    product_id: int
    detected_at: _dt.datetime
    price: Optional[Decimal] = None
    was_notified: bool = False
    notification_count: int = 0


@dataclass(frozen=True)
class ProductFilter:
    id: int
    user_id: int
    category_id: Optional[int] = None
    colors: frozenset[str] = frozenset()
    sizes: frozenset[str] = frozenset()
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    keywords: Optional[str] = None
    notify_all_restocks: bool = False
    is_active: bool = True

    def describe(self) -> str:
        """Human readable summary used in notifications."""
        if self.notify_all_restocks:
            return "all restocks"
        parts: list[str] = []
        if self.category_id is not None:
            parts.append(f"category={self.category_id}")
        if self.colors:
            parts.append("colors=" + "/".join(sorted(self.colors)))
        if self.sizes:
            parts.append("sizes=" + "/".join(sorted(self.sizes)))
        if self.min_price is not None:
            parts.append(f"min={self.min_price}")
        if self.max_price is not None:
            parts.append(f"max={self.max_price}")
        if self.keywords:
            parts.append(f"keywords={self.keywords!r}")
        return ", ".join(parts) or "any product"


@dataclass(frozen=True)
class MonitoringConfig:
    id: int
    user_id: int
    region_id: int
    is_active: bool = True


@dataclass(frozen=True)
class User:
    id: int
    email: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class ScanLogEntry:
    region_id: int
    status: str
    products_found: int
    new_restocks: int
    duration_ms: int
    error_message: Optional[str] = None
    product_details: Optional[str] = None
    created_at: Optional[_dt.datetime] = None
    id: Optional[int] = None


@dataclass
class NotificationRecord:
    id: int
    user_id: int
    product_id: int
    restock_id: int
    channel: str
    status: str = NOTIFY_PENDING
    sent_at: Optional[_dt.datetime] = None
    error_message: Optional[str] = None
    filter_id: Optional[int] = None


@dataclass(frozen=True)
class NotificationPayload:
    """Everything an outbound sender needs to deliver one restock alert."""

    user: User
    channel: str
    product: Product
    region: Region
    restock: RestockEvent
    matched_filters: tuple[ProductFilter, ...]
    reason: str


@dataclass(frozen=True)
class DeliveryResult:
    delivered: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class RegionScanResult:
    region_id: int
    region_code: str
    status: str
    products_found: int = 0
    new_restocks: int = 0
    duration_ms: int = 0
    error: Optional[str] = None


@dataclass
class CycleSummary:
    trigger: str
    started_at: _dt.datetime
    finished_at: Optional[_dt.datetime] = None
    regions: list[RegionScanResult] = field(default_factory=list)

    @property
    def products_found(self) -> int:
        return sum(r.products_found for r in self.regions)

    @property
    def new_restocks(self) -> int:
        return sum(r.new_restocks for r in self.regions)

    @property
    def failed_regions(self) -> list[RegionScanResult]:
        return [r for r in self.regions if r.status != SCAN_SUCCESS]

    @property
    def ok(self) -> bool:
        return not self.failed_regions


@dataclass(frozen=True)
class MonitoringStatus:
    running: bool
    regions_monitored: int
    restocks_detected_total: int
    uptime_ms: Optional[int] = None
    cycles_completed: int = 0
    last_cycle_started_at: Optional[_dt.datetime] = None
    last_cycle_finished_at: Optional[_dt.datetime] = None
    last_cycle_ok: Optional[bool] = None
    last_cycle_error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        for key in ("last_cycle_started_at", "last_cycle_finished_at"):
            if d[key] is not None:
                d[key] = d[key].isoformat()
        return d
