"""Outbound notification senders.

`WebhookSender` delivers the "push" channel through a Discord webhook. If
`attach_images` is set, images are uploaded as attachments and referenced
via attachment://, which bypasses hotlink issues. `ChannelSender` routes a
payload to the sender registered for its channel.
"""
from __future__ import annotations

import io
import json
import logging
import mimetypes
from typing import Mapping, Optional
from urllib.parse import urlparse

import requests

from .dispatcher import NotificationSender
from .models import DeliveryResult, NotificationPayload
from .utils import BROWSER_USER_AGENT, HTTPError, get_http_session, retryable_request

logger = logging.getLogger(__name__)


@retryable_request
def _post(session: requests.Session, url: str, **kwargs) -> requests.Response:
    return session.post(url, **kwargs)


def _guess_filename_and_mime(url: str, fallback_name: str = "image") -> tuple[str, str]:
    """
    Guess a safe filename and mime type from a URL.
    Defaults to .jpg if unknown.
    """
    parsed = urlparse(url)
    name = (parsed.path.rsplit("/", 1)[-1] or fallback_name).split("?")[0].split("#")[0]
    if "." not in name:
        name += ".jpg"
    mime = mimetypes.guess_type(name)[0] or "image/jpeg"
    return name, mime


def _download_image_bytes(session: requests.Session, url: str, *, max_bytes: int = 8 * 1024 * 1024) -> tuple[bytes, str, str] | None:
    """
    Fetch image bytes (capped) and return (bytes, filename, mime).
    Returns None on failure; the caller falls back to the direct URL.
    """
    try:
        with session.get(url, headers={"User-Agent": BROWSER_USER_AGENT}, timeout=20, stream=True) as resp:
            if resp.status_code != 200:
                logger.debug("Image download failed (%s): HTTP %s", url, resp.status_code)
                return None
            data = io.BytesIO()
            total = 0
            for chunk in resp.iter_content(8192):
                if not chunk:
                    continue
                total += len(chunk)
                if total > max_bytes:
                    logger.debug("Image too large (> %d bytes): %s", max_bytes, url)
                    return None
                data.write(chunk)
            b = data.getvalue()
        filename, mime = _guess_filename_and_mime(url)
        return b, filename, mime
    except requests.RequestException:
        logger.warning("Failed to download image: %s", url, exc_info=True)
        return None


def format_price(payload: NotificationPayload) -> str:
    price = payload.restock.price if payload.restock.price is not None else payload.product.price
    if price is None:
        return "n/a"
    currency = payload.product.currency or payload.region.currency
    return f"{price:,.2f} {currency}"


def build_embed(payload: NotificationPayload, *, attachment_name: str | None = None) -> dict:
    product = payload.product
    desc_lines = [
        f"Region: {payload.region.name} ({payload.region.code})",
        f"Price: {format_price(payload)}",
    ]
    if product.color:
        desc_lines.append(f"Color: {product.color}")
    if product.size:
        desc_lines.append(f"Size: {product.size}")
    desc_lines.append(f"Matched: {payload.reason}")

    embed = {
        "title": f"Back in Stock: {product.name or 'Unknown product'}",
        "url": product.product_url,
        "description": "\n".join(desc_lines),
        "timestamp": payload.restock.detected_at.isoformat(),
    }

    img_url = (product.image_url or "").strip()
    if attachment_name:
        embed["image"] = {"url": f"attachment://{attachment_name}"}
    elif img_url:
        embed["image"] = {"url": img_url}
    return embed


class WebhookSender:
    """Send restock alerts to a Discord webhook."""

    def __init__(
        self,
        webhook_url: Optional[str],
        *,
        attach_images: bool = False,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.webhook_url = webhook_url
        self.attach_images = attach_images
        self.session = session or get_http_session()

    def send(self, payload: NotificationPayload) -> DeliveryResult:
        if not self.webhook_url:
            return DeliveryResult(delivered=False, error="Discord webhook URL is not configured")

        product = payload.product
        try:
            # Try attachment route if enabled and we have a URL to fetch
            if self.attach_images and product.image_url:
                dl = _download_image_bytes(self.session, product.image_url)
                if dl:
                    data, filename, mime = dl
                    body = {"embeds": [build_embed(payload, attachment_name=filename)]}
                    files = {"files[0]": (filename, data, mime)}
                    logger.info("Sending push (with attachment) for %s to user %s", product.name, payload.user.id)
                    _post(self.session, self.webhook_url, data={"payload_json": json.dumps(body)}, files=files, timeout=20)
                    return DeliveryResult(delivered=True)
                logger.debug("Falling back to direct image URL for product %s", product.id)

            body = {"embeds": [build_embed(payload)]}
            logger.info("Sending push for %s to user %s", product.name, payload.user.id)
            _post(self.session, self.webhook_url, json=body, timeout=20)
            return DeliveryResult(delivered=True)
        except (HTTPError, requests.RequestException) as e:
            return DeliveryResult(delivered=False, error=str(e))

    def close(self) -> None:
        self.session.close()


class ChannelSender:
    """Route each payload to the sender for its channel."""

    def __init__(self, senders: Mapping[str, NotificationSender]) -> None:
        self.senders = dict(senders)

    def send(self, payload: NotificationPayload) -> DeliveryResult:
        sender = self.senders.get(payload.channel)
        if sender is None:
            return DeliveryResult(delivered=False, error=f"no sender configured for channel {payload.channel!r}")
        return sender.send(payload)


__all__ = ["ChannelSender", "WebhookSender", "build_embed", "format_price"]
