"""Shared test fixtures for the restock monitor."""

from __future__ import annotations

import threading
from decimal import Decimal

import pytest

from restock_monitor.db import SQLiteRepository
from restock_monitor.models import DeliveryResult, RawProduct


class FakeFetcher:
    """RegionFetcher returning canned listings keyed by region code.

    A listing value that is an exception instance is raised instead.
    """

    def __init__(self, listings=None):
        self.listings = dict(listings or {})
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def fetch_region_products(self, region):
        with self._lock:
            self.calls.append(region.code)
        result = self.listings.get(region.code, [])
        if isinstance(result, BaseException):
            raise result
        return list(result)


class FakeSender:
    """NotificationSender recording payloads; fails or raises for chosen users."""

    def __init__(self, fail_users=(), raise_users=()):
        self.fail_users = set(fail_users)
        self.raise_users = set(raise_users)
        self.sent = []

    def send(self, payload):
        self.sent.append(payload)
        if payload.user.id in self.raise_users:
            raise RuntimeError("smtp down")
        if payload.user.id in self.fail_users:
            return DeliveryResult(delivered=False, error="mailbox full")
        return DeliveryResult(delivered=True)


def raw_product(external_id="X123", *, available=True, price="10000", **kwargs) -> RawProduct:
    defaults = dict(
        name=f"Birkin 25 {external_id}",
        product_url=f"https://www.hermes.com/us/en/product/birkin-25-{external_id}/",
        description="Togo leather bag",
        currency="USD",
    )
    defaults.update(kwargs)
    return RawProduct(
        external_id=external_id,
        is_available=available,
        price=Decimal(price) if price is not None else None,
        **defaults,
    )


@pytest.fixture
def make_raw():
    """Factory for scraped listings."""
    return raw_product


@pytest.fixture
def repo(tmp_path) -> SQLiteRepository:
    """Provide a repository on a temporary SQLite database."""
    r = SQLiteRepository(str(tmp_path / "test_monitor.db"))
    r.init_db()
    return r


@pytest.fixture
def region(repo):
    return repo.add_region("US", "United States", "https://www.hermes.com/us/en/", "USD")


@pytest.fixture
def region_uk(repo):
    return repo.add_region("UK", "United Kingdom", "https://www.hermes.com/uk/en/", "GBP")


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()
