"""Tests for NotificationDispatcher fan-out and bookkeeping."""

from __future__ import annotations

from restock_monitor.differ import StateDiffer
from restock_monitor.dispatcher import NotificationDispatcher
from restock_monitor.models import NOTIFY_FAILED, NOTIFY_SENT


def _restock(repo, region, raw):
    [t] = StateDiffer(repo).reconcile(region, [raw]).transitions
    return t.product, t.restock


class TestDispatch:
    def test_only_matching_users_are_notified(self, repo, region, sender, make_raw):
        alice = repo.add_user("alice@example.com")
        bob = repo.add_user("bob@example.com")
        repo.add_monitoring_config(alice.id, region.id)
        repo.add_monitoring_config(bob.id, region.id)
        repo.add_filter(alice.id, notify_all_restocks=True)
        repo.add_filter(bob.id, keywords="Kelly")
        product, restock = _restock(repo, region, make_raw("X123"))

        outcome = NotificationDispatcher(repo, sender).dispatch(region, product, restock)

        assert outcome.recipients == 1
        assert [p.user.id for p in sender.sent] == [alice.id]
        [record] = repo.list_notifications()
        assert record.user_id == alice.id
        assert record.status == NOTIFY_SENT
        assert record.sent_at is not None

    def test_successful_delivery_marks_restock_notified(self, repo, region, sender, make_raw):
        alice = repo.add_user("alice@example.com", channels=["email", "push"])
        repo.add_monitoring_config(alice.id, region.id)
        f = repo.add_filter(alice.id, notify_all_restocks=True)
        product, restock = _restock(repo, region, make_raw())

        outcome = NotificationDispatcher(repo, sender).dispatch(region, product, restock)

        assert outcome.delivered == 2
        stored = repo.get_restock_event(restock.id)
        assert stored.was_notified is True
        assert stored.notification_count == 2
        assert {r.channel for r in repo.list_notifications()} == {"email", "push"}
        assert {r.filter_id for r in repo.list_notifications()} == {f.id}

    def test_failed_delivery_is_recorded_and_not_counted(self, repo, region, sender, make_raw):
        alice = repo.add_user("alice@example.com")
        repo.add_monitoring_config(alice.id, region.id)
        repo.add_filter(alice.id, notify_all_restocks=True)
        sender.fail_users = {alice.id}
        product, restock = _restock(repo, region, make_raw())

        outcome = NotificationDispatcher(repo, sender).dispatch(region, product, restock)

        assert outcome.failed == 1
        [record] = repo.list_notifications()
        assert record.status == NOTIFY_FAILED
        assert record.error_message == "mailbox full"
        stored = repo.get_restock_event(restock.id)
        assert stored.was_notified is False
        assert stored.notification_count == 0

    def test_sender_exception_fails_one_delivery_only(self, repo, region, sender, make_raw):
        alice = repo.add_user("alice@example.com")
        bob = repo.add_user("bob@example.com")
        for u in (alice, bob):
            repo.add_monitoring_config(u.id, region.id)
            repo.add_filter(u.id, notify_all_restocks=True)
        sender.raise_users = {alice.id}
        product, restock = _restock(repo, region, make_raw())

        outcome = NotificationDispatcher(repo, sender).dispatch(region, product, restock)

        assert (outcome.delivered, outcome.failed) == (1, 1)
        statuses = {r.user_id: r for r in repo.list_notifications()}
        assert statuses[alice.id].status == NOTIFY_FAILED
        assert statuses[alice.id].error_message == "smtp down"
        assert statuses[bob.id].status == NOTIFY_SENT
        assert repo.get_restock_event(restock.id).notification_count == 1

    def test_default_channels_apply_without_preferences(self, repo, region, sender, make_raw):
        alice = repo.add_user("alice@example.com")
        repo.add_monitoring_config(alice.id, region.id)
        repo.add_filter(alice.id, notify_all_restocks=True)
        product, restock = _restock(repo, region, make_raw())

        NotificationDispatcher(repo, sender, default_channels=("push",)).dispatch(region, product, restock)

        assert [p.channel for p in sender.sent] == ["push"]

    def test_inactive_subscription_is_skipped(self, repo, region, sender, make_raw):
        alice = repo.add_user("alice@example.com")
        repo.add_monitoring_config(alice.id, region.id, is_active=False)
        repo.add_filter(alice.id, notify_all_restocks=True)
        product, restock = _restock(repo, region, make_raw())

        outcome = NotificationDispatcher(repo, sender).dispatch(region, product, restock)

        assert outcome.recipients == 0
        assert sender.sent == []
        assert repo.list_notifications() == []

    def test_user_without_filters_gets_nothing(self, repo, region, sender, make_raw):
        alice = repo.add_user("alice@example.com")
        repo.add_monitoring_config(alice.id, region.id)
        product, restock = _restock(repo, region, make_raw())

        outcome = NotificationDispatcher(repo, sender).dispatch(region, product, restock)

        assert outcome.recipients == 0
        assert sender.sent == []

    def test_payload_carries_reason_and_region(self, repo, region, sender, make_raw):
        alice = repo.add_user("alice@example.com")
        repo.add_monitoring_config(alice.id, region.id)
        repo.add_filter(alice.id, keywords="birkin")
        product, restock = _restock(repo, region, make_raw())

        NotificationDispatcher(repo, sender).dispatch(region, product, restock)

        [payload] = sender.sent
        assert payload.region.code == "US"
        assert payload.user.email == "alice@example.com"
        assert "birkin" in payload.reason
