"""Fan a restock out to every subscribed user whose filters accept it."""

from __future__ import annotations

import datetime as _dt
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Protocol

from .matcher import FilterMatcher
from .models import (
    NOTIFY_FAILED,
    NOTIFY_SENT,
    DeliveryResult,
    NotificationPayload,
    NotificationRecord,
    Product,
    Region,
    RestockEvent,
    User,
)
from .repository import Repository
from .utils import utcnow

logger = logging.getLogger(__name__)


class NotificationSender(Protocol):
    def send(self, payload: NotificationPayload) -> DeliveryResult: ...


@dataclass
class DispatchOutcome:
    restock_id: int
    recipients: int = 0
    delivered: int = 0
    failed: int = 0
    records: list[NotificationRecord] = field(default_factory=list)


class NotificationDispatcher:
    """Resolve recipients for a restock and hand payloads to the sender.

    One notification record is written per (user, channel). The restock's
    `notification_count` grows by the number of successful deliveries and
    `was_notified` is only set when at least one delivery succeeded.
    """

    def __init__(
        self,
        repo: Repository,
        sender: NotificationSender,
        matcher: Optional[FilterMatcher] = None,
        default_channels: Iterable[str] = ("email",),
        clock: Callable[[], _dt.datetime] = utcnow,
    ) -> None:
        self.repo = repo
        self.sender = sender
        self.matcher = matcher or FilterMatcher(repo)
        self.default_channels = tuple(default_channels)
        self.clock = clock

    def _submit(self, payload: NotificationPayload) -> DeliveryResult:
        try:
            return self.sender.send(payload)
        except Exception as e:
            logger.exception("Sender raised for user %s via %s", payload.user.id, payload.channel)
            return DeliveryResult(delivered=False, error=str(e) or e.__class__.__name__)

    def _recipients(self, region: Region) -> list[int]:
        seen: dict[int, None] = {}
        for cfg in self.repo.load_active_configs(region.id):
            seen.setdefault(cfg.user_id, None)
        return list(seen)

    def dispatch(self, region: Region, product: Product, restock: RestockEvent) -> DispatchOutcome:
        outcome = DispatchOutcome(restock_id=restock.id)

        for user_id in self._recipients(region):
            match = self.matcher.match_user(user_id, product)
            if not match:
                continue
            outcome.recipients += 1
            user = self.repo.get_user(user_id) or User(id=user_id)
            channels = self.repo.load_user_channels(user_id) or list(self.default_channels)

            for channel in channels:
                record = self.repo.insert_notification(
                    user_id, product.id, restock.id, channel, filter_id=match.matched[0].id
                )
                payload = NotificationPayload(
                    user=user,
                    channel=channel,
                    product=product,
                    region=region,
                    restock=restock,
                    matched_filters=match.matched,
                    reason=match.reason,
                )
                result = self._submit(payload)
                if result.delivered:
                    record.status, record.sent_at = NOTIFY_SENT, self.clock()
                    self.repo.update_notification(record.id, NOTIFY_SENT, sent_at=record.sent_at)
                    outcome.delivered += 1
                else:
                    record.status, record.error_message = NOTIFY_FAILED, result.error or "delivery failed"
                    self.repo.update_notification(record.id, NOTIFY_FAILED, error_message=record.error_message)
                    outcome.failed += 1
                    logger.warning("Notification to user %s via %s failed: %s",
                                   user_id, channel, record.error_message)
                outcome.records.append(record)

        if outcome.delivered:
            restock.notification_count += outcome.delivered
            restock.was_notified = True
            self.repo.update_restock_notified(restock.id, True, restock.notification_count)

        logger.info(
            "Restock %s (%s): %d recipient(s), %d delivered, %d failed",
            restock.id, product.name, outcome.recipients, outcome.delivered, outcome.failed,
        )
        return outcome


__all__ = ["DispatchOutcome", "NotificationDispatcher", "NotificationSender"]
