"""Email notifier via SMTP.

Delivers the "email" channel to the subscribed user's address.
Supports STARTTLS (587) or SSL (465). Keep bodies short & link out.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Optional

from .models import DeliveryResult, NotificationPayload
from .notifier import format_price

logger = logging.getLogger(__name__)


def build_subject(payload: NotificationPayload, prefix: str = "[Restock]") -> str:
    return f"{prefix} Back in Stock ({payload.region.code}): {payload.product.name}"


def build_bodies(payload: NotificationPayload) -> tuple[str, str]:
    """Return (plain_text, html) bodies."""
    product = payload.product
    title = product.name or "Unknown product"
    greeting = f"Hi {payload.user.name}," if payload.user.name else "Hi,"

    lines = [f"Region: {payload.region.name}", f"Price: {format_price(payload)}"]
    if product.color:
        lines.append(f"Color: {product.color}")
    if product.size:
        lines.append(f"Size: {product.size}")
    lines.append(f"Matched: {payload.reason}")

    url = product.product_url
    img = product.image_url or ""

    # --- Plain text body
    plain = (
        f"{greeting}\n\nBack in Stock: {title}\n\n"
        + "\n".join(lines)
        + f"\n\nLink: {url}\n"
    )

    # --- HTML body (avoid nested f-strings)
    li_html = "".join("<li>{}</li>".format(l) for l in lines)
    img_html = '<p><img src="{}" alt="image" style="max-width:480px;"></p>'.format(img) if img else ""

    html = (
        "<html>"
        "<body>"
        "<p>{greeting}</p>"
        "<h3>Back in Stock: {title}</h3>"
        "<ul>{lis}</ul>"
        '<p><a href="{url}">Open product page</a></p>'
        "{img}"
        "</body>"
        "</html>"
    ).format(greeting=greeting, title=title, lis=li_html, url=url, img=img_html)

    return plain, html


class SmtpEmailSender:
    def __init__(
        self,
        host: str,
        port: int,
        username: Optional[str],
        password: Optional[str],
        from_addr: Optional[str],
        *,
        use_tls: bool = True,
        subject_prefix: str = "[Restock]",
        timeout: float = 20,
    ) -> None:
        self.host = host
        self.port = int(port)
        self.username = username
        self.password = password
        self.from_addr = from_addr or username
        self.use_tls = use_tls
        self.subject_prefix = subject_prefix
        self.timeout = timeout

    def build_message(self, payload: NotificationPayload) -> EmailMessage:
        plain, html = build_bodies(payload)
        msg = EmailMessage()
        msg["Subject"] = build_subject(payload, self.subject_prefix)
        msg["From"] = self.from_addr or ""
        msg["To"] = payload.user.email or ""
        msg.set_content(plain)
        msg.add_alternative(html, subtype="html")
        return msg

    def _deliver(self, msg: EmailMessage) -> None:
        if self.use_tls and self.port == 587:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as s:
                s.ehlo()
                s.starttls(context=ssl.create_default_context())
                s.login(self.username, self.password)
                s.send_message(msg)
        else:
            with smtplib.SMTP_SSL(self.host, self.port, context=ssl.create_default_context(), timeout=self.timeout) as s:
                s.login(self.username, self.password)
                s.send_message(msg)

    def send(self, payload: NotificationPayload) -> DeliveryResult:
        if not payload.user.email:
            return DeliveryResult(delivered=False, error=f"user {payload.user.id} has no email address")
        if not all((self.username, self.password, self.from_addr)):
            return DeliveryResult(delivered=False, error="email config incomplete; set EMAIL_USERNAME, EMAIL_PASSWORD, EMAIL_FROM")

        msg = self.build_message(payload)
        try:
            self._deliver(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("Failed to send email to %s: %s", payload.user.email, e)
            return DeliveryResult(delivered=False, error=str(e))
        logger.info("Email sent to %s (subject=%s)", payload.user.email, msg.get("Subject"))
        return DeliveryResult(delivered=True)


__all__ = ["SmtpEmailSender", "build_bodies", "build_subject"]
