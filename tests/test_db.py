"""Tests for the SQLite repository."""

from __future__ import annotations

import datetime as _dt
from decimal import Decimal

import pytest

from restock_monitor.db import DEFAULT_CATEGORIES, DEFAULT_REGIONS, SQLiteRepository
from restock_monitor.models import NOTIFY_SENT, SCAN_FAILED, SCAN_SUCCESS, ScanLogEntry
from restock_monitor.repository import RepositoryError


class TestSchema:
    def test_init_is_idempotent(self, repo):
        repo.init_db()
        repo.init_db()

    def test_seed_defaults_inserts_regions_once(self, repo):
        repo.seed_defaults()
        repo.seed_defaults()
        codes = [r.code for r in repo.load_active_regions()]
        assert len(codes) == len(DEFAULT_REGIONS)
        assert codes[0] == "US"
        assert "TH" in codes

    def test_seed_defaults_inserts_categories(self, repo):
        repo.seed_defaults()
        repo.seed_defaults()
        categories = repo.load_categories()
        assert len(categories) == len(DEFAULT_CATEGORIES)
        assert (categories[0].name, categories[0].slug) == ("Birkin", "birkin")

    def test_inactive_categories_are_not_loaded(self, repo):
        repo.add_category("Birkin", "birkin")
        repo.add_category("Haut a Courroies", "hac", is_active=False)
        assert [c.slug for c in repo.load_categories()] == ["birkin"]

    def test_creates_parent_directory(self, tmp_path):
        r = SQLiteRepository(str(tmp_path / "nested" / "dir" / "monitor.db"))
        r.init_db()
        assert (tmp_path / "nested" / "dir" / "monitor.db").exists()

    def test_sqlite_errors_become_repository_errors(self, tmp_path):
        r = SQLiteRepository(str(tmp_path / "empty.db"))
        with pytest.raises(RepositoryError):
            r.load_active_regions()


class TestRegions:
    def test_inactive_regions_are_not_loaded(self, repo, region):
        repo.add_region("FR", "France", "https://www.hermes.com/fr/fr/", "EUR", is_active=False)
        assert [r.code for r in repo.load_active_regions()] == ["US"]

    def test_monitored_regions_need_an_active_config(self, repo, region, region_uk):
        alice = repo.add_user("alice@example.com")
        bob = repo.add_user("bob@example.com")
        repo.add_monitoring_config(alice.id, region.id)
        repo.add_monitoring_config(bob.id, region.id)
        repo.add_monitoring_config(bob.id, region_uk.id, is_active=False)

        assert [r.code for r in repo.load_monitored_regions()] == ["US"]

    def test_resubscribing_reactivates_config(self, repo, region):
        user = repo.add_user("alice@example.com")
        first = repo.add_monitoring_config(user.id, region.id, is_active=False)
        second = repo.add_monitoring_config(user.id, region.id)
        assert first.id == second.id
        assert [c.user_id for c in repo.load_active_configs(region.id)] == [user.id]


class TestFilters:
    def test_colors_and_sizes_round_trip_as_sets(self, repo):
        user = repo.add_user("alice@example.com")
        f = repo.add_filter(
            user.id, colors=["Gold", "Black"], sizes=["25", "30"],
            min_price=Decimal("9000.50"), keywords="Birkin",
        )
        [loaded] = repo.load_active_filters(user.id)
        assert loaded == f
        assert loaded.colors == frozenset({"Gold", "Black"})
        assert loaded.sizes == frozenset({"25", "30"})
        assert loaded.min_price == Decimal("9000.50")
        assert loaded.max_price is None

    def test_update_replaces_color_set(self, repo):
        user = repo.add_user()
        f = repo.add_filter(user.id, colors=["Black"], category_id=1)
        updated = repo.update_filter(f.id, colors=["Gold"], category_id=2, max_price=Decimal("20000"))
        assert updated.colors == frozenset({"Gold"})
        assert updated.category_id == 2
        assert updated.max_price == Decimal("20000")

    def test_update_rejects_unknown_fields(self, repo):
        user = repo.add_user()
        f = repo.add_filter(user.id)
        with pytest.raises(ValueError):
            repo.update_filter(f.id, colour=["Gold"])

    def test_inactive_and_deleted_filters_are_not_loaded(self, repo):
        user = repo.add_user()
        keep = repo.add_filter(user.id, keywords="Kelly")
        repo.add_filter(user.id, keywords="Lindy", is_active=False)
        gone = repo.add_filter(user.id, keywords="Evelyne")
        assert repo.delete_filter(gone.id) is True
        assert [f.id for f in repo.load_active_filters(user.id)] == [keep.id]


class TestProducts:
    def test_insert_and_find_by_external_id(self, repo, region, make_raw):
        now = _dt.datetime(2026, 1, 1, tzinfo=_dt.timezone.utc)
        p = repo.insert_product(region.id, make_raw("X123", color="Gold"), now)
        found = repo.find_product(region.id, "X123")
        assert found == p
        assert found.price == Decimal("10000")
        assert found.last_seen_at == now
        assert repo.find_product(region.id, "NOPE") is None

    def test_find_is_scoped_to_region(self, repo, region, region_uk, make_raw):
        now = _dt.datetime.now(_dt.timezone.utc)
        repo.insert_product(region.id, make_raw("X123"), now)
        assert repo.find_product(region_uk.id, "X123") is None

    def test_mark_restocked_keeps_price_when_none_scraped(self, repo, region, make_raw):
        now = _dt.datetime.now(_dt.timezone.utc)
        p = repo.insert_product(region.id, make_raw("X1", available=False), now)
        repo.mark_restocked(p.id, None, now)
        after = repo.get_product(p.id)
        assert after.is_available is True
        assert after.price == Decimal("10000")


class TestRestocksAndNotifications:
    def test_restock_notified_fields_update(self, repo, region, make_raw):
        now = _dt.datetime.now(_dt.timezone.utc)
        p = repo.insert_product(region.id, make_raw(), now)
        event = repo.insert_restock_event(p.id, Decimal("10000"), now)
        repo.update_restock_notified(event.id, True, 3)

        loaded = repo.get_restock_event(event.id)
        assert loaded.was_notified is True
        assert loaded.notification_count == 3
        assert repo.count_restock_events() == 1
        assert [e.id for e in repo.list_restock_events(product_id=p.id)] == [event.id]

    def test_notification_lifecycle(self, repo, region, make_raw):
        now = _dt.datetime.now(_dt.timezone.utc)
        user = repo.add_user("alice@example.com", channels=["email", "push"])
        p = repo.insert_product(region.id, make_raw(), now)
        event = repo.insert_restock_event(p.id, p.price, now)
        record = repo.insert_notification(user.id, p.id, event.id, "push")
        repo.update_notification(record.id, NOTIFY_SENT, sent_at=now)

        [loaded] = repo.list_notifications(user_id=user.id)
        assert loaded.status == NOTIFY_SENT
        assert loaded.sent_at == now
        assert repo.load_user_channels(user.id) == ["email", "push"]

    def test_unknown_channel_is_rejected(self, repo, region, make_raw):
        now = _dt.datetime.now(_dt.timezone.utc)
        user = repo.add_user()
        p = repo.insert_product(region.id, make_raw(), now)
        event = repo.insert_restock_event(p.id, p.price, now)
        with pytest.raises(RepositoryError):
            repo.insert_notification(user.id, p.id, event.id, "sms")


class TestScanLogs:
    def _entry(self, region_id, status=SCAN_SUCCESS, minute=0):
        return ScanLogEntry(
            region_id=region_id, status=status, products_found=1, new_restocks=0, duration_ms=10,
            created_at=_dt.datetime(2026, 1, 1, 12, minute, tzinfo=_dt.timezone.utc),
        )

    def test_newest_first_and_region_filter(self, repo, region, region_uk):
        repo.insert_scan_log(self._entry(region.id, minute=1))
        repo.insert_scan_log(self._entry(region_uk.id, SCAN_FAILED, minute=2))
        repo.insert_scan_log(self._entry(region.id, minute=3))

        logs = repo.list_scan_logs()
        assert [l.created_at.minute for l in logs] == [3, 2, 1]
        assert all(l.region_id == region.id for l in repo.list_scan_logs(region_id=region.id))
        assert len(repo.list_scan_logs(limit=2)) == 2

    def test_clear_returns_deleted_count(self, repo, region):
        repo.insert_scan_log(self._entry(region.id))
        repo.insert_scan_log(self._entry(region.id))
        assert repo.clear_scan_logs() == 2
        assert repo.list_scan_logs() == []
