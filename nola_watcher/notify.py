"""
Notify module for the NOLA News Watcher.

This module turns detected changes into alerts and delivers them.
Supports two notification channels:
- Log channel (always available when notifications are enabled)
- Email via SMTP with TLS (optional, enabled through environment variables)

Delivery is best effort: a channel that is unavailable or fails is logged
and skipped, and never interrupts a check.
"""

import os
import smtplib
import ssl
from dataclasses import dataclass
from datetime import datetime, timezone
from email.message import EmailMessage
from html import escape
from typing import List, Optional, Sequence, Tuple

from nola_watcher.compare import filter_changes
from nola_watcher.models import ChangeEvent, ChangeType, NewsRecord
from nola_watcher.utils import get_env_var, get_logger


# Module logger
logger = get_logger("notify")

TAG_SINGLE = "nola-news-single"
TAG_MULTIPLE = "nola-news-multiple"
TAG_STRUCTURE = "nola-news-structure"

SMTP_TIMEOUT = 30  # seconds


class NotificationUnavailable(Exception):
    """Raised when a channel cannot deliver notifications at all."""


class EmailNotificationError(Exception):
    """Raised when an email could not be sent."""


@dataclass(frozen=True)
class Notification:
    """
    An alert ready for delivery.

    Attributes:
        title: Short headline.
        body: Message text.
        tag: Grouping tag so a receiver can coalesce related alerts.
        records: The new records the alert is about.
    """
    title: str
    body: str
    tag: str
    records: Tuple[NewsRecord, ...] = ()


def build_notification(changes: Sequence[ChangeEvent]) -> Optional[Notification]:
    """
    Build a single alert for the records added in one check.

    One new record gets its own alert; several are grouped into one
    summary alert. Removals never raise an alert.

    Args:
        changes: Changes detected in one check.

    Returns:
        A Notification, or None if nothing was added.
    """
    added = [c.record for c in filter_changes(changes, ChangeType.ADDED)]

    if not added:
        return None

    if len(added) == 1:
        record = added[0]
        return Notification(
            title="New NOLA News Item",
            body=f"{record.title}\nFrom: {record.source}",
            tag=TAG_SINGLE,
            records=(record,),
        )

    return Notification(
        title="Multiple New NOLA News Items",
        body=f"{len(added)} new items detected. Check the monitor for details.",
        tag=TAG_MULTIPLE,
        records=tuple(added),
    )


def build_structure_notification(empty_cycles: int, target_url: str) -> Notification:
    """Alert that the listing page has yielded no items for a while."""
    return Notification(
        title="NOLA News Page Structure Changed?",
        body=(
            f"No news items were found on {target_url} in the last "
            f"{empty_cycles} checks. The page layout may have changed."
        ),
        tag=TAG_STRUCTURE,
    )


# =============================================================================
# Log Channel
# =============================================================================


class LogNotifier:
    """Delivers notifications to the application log."""

    name = "log"

    def send(self, notification: Notification) -> None:
        logger.info(f"[{notification.tag}] {notification.title}: {notification.body}")


# =============================================================================
# Email Channel
# =============================================================================


def get_email_credentials() -> Tuple[str, int, str, str, str, str]:
    """
    Get email credentials from environment variables.

    Returns:
        Tuple of (smtp_host, smtp_port, smtp_user, smtp_password, email_from, email_to).

    Raises:
        ValueError: If any required environment variable is not set.
    """
    smtp_host = get_env_var("SMTP_HOST", required=True)
    smtp_port_str = get_env_var("SMTP_PORT", required=True)
    smtp_user = get_env_var("SMTP_USER", required=True)
    smtp_password = get_env_var("SMTP_PASSWORD", required=True)
    email_from = get_env_var("EMAIL_FROM", required=True)
    email_to = get_env_var("EMAIL_TO", required=True)

    # get_env_var with required=True raises ValueError if None
    assert smtp_host is not None
    assert smtp_port_str is not None
    assert smtp_user is not None
    assert smtp_password is not None
    assert email_from is not None
    assert email_to is not None

    try:
        smtp_port = int(smtp_port_str)
    except ValueError:
        raise ValueError(f"SMTP_PORT must be a valid integer, got: {smtp_port_str}")

    return smtp_host, smtp_port, smtp_user, smtp_password, email_from, email_to


def is_email_configured() -> bool:
    """
    Check if email notification is configured.

    Returns:
        True if all email environment variables are set, False otherwise.
    """
    required_vars = [
        "SMTP_HOST", "SMTP_PORT", "SMTP_USER",
        "SMTP_PASSWORD", "EMAIL_FROM", "EMAIL_TO"
    ]

    for var in required_vars:
        value = os.environ.get(var)
        if not value or value.strip() == "":
            return False

    return True


def format_email_body_plain(notification: Notification) -> str:
    """
    Format the email body as plain text.

    Args:
        notification: The alert to describe.

    Returns:
        Plain text body listing every new record.
    """
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")

    lines = [
        notification.title.upper(),
        "=" * 50,
        "",
        f"Detection Time: {timestamp}",
        "",
        notification.body,
        "",
    ]

    if notification.records:
        lines.extend(["-" * 50, ""])

    for i, record in enumerate(notification.records, 1):
        lines.append(f"{i}. {record.title}")
        lines.append(f"   {record.date} | From {record.source}")
        lines.append(f"   {record.excerpt}")
        lines.append(f"   URL: {record.url}")
        lines.append("")

    lines.extend([
        "-" * 50,
        "",
        "This email was automatically sent by the NOLA News Watcher.",
    ])

    return "\n".join(lines)


def format_email_body_html(notification: Notification) -> str:
    """
    Format the email body as HTML.

    Args:
        notification: The alert to describe.

    Returns:
        HTML body with escaped titles and excerpts.
    """
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")

    html_lines = [
        "<!DOCTYPE html>",
        "<html>",
        "<head>",
        '  <meta charset="utf-8">',
        "  <style>",
        "    body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }",
        "    .header { background-color: #2c3e50; color: white; padding: 20px; }",
        "    .item { background-color: white; padding: 15px; margin: 10px 0; border-left: 4px solid #27ae60; }",
        "    .meta { font-size: 12px; color: #666; }",
        "    .footer { padding: 15px; font-size: 12px; color: #666; text-align: center; }",
        "  </style>",
        "</head>",
        "<body>",
        '  <div class="header">',
        f"    <h1>{escape(notification.title)}</h1>",
        f"    <p>Detection Time: {timestamp}</p>",
        "  </div>",
        f"  <p>{escape(notification.body).replace(chr(10), '<br>')}</p>",
    ]

    for record in notification.records:
        html_lines.extend([
            '  <div class="item">',
            f'    <a href="{escape(record.url, quote=True)}">{escape(record.title)}</a>',
            f'    <div class="meta">{escape(record.date)} | From {escape(record.source)}</div>',
            f"    <div>{escape(record.excerpt)}</div>",
            "  </div>",
        ])

    html_lines.extend([
        '  <div class="footer">',
        "    <p>This email was automatically sent by the NOLA News Watcher.</p>",
        "  </div>",
        "</body>",
        "</html>",
    ])

    return "\n".join(html_lines)


class EmailNotifier:
    """
    Delivers notifications by email via SMTP with TLS.

    Supports both:
    - Port 465: SMTP_SSL (implicit TLS)
    - Any other port: SMTP with STARTTLS (explicit TLS)
    """

    name = "email"

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run

    def send(self, notification: Notification) -> None:
        """
        Send one notification.

        Raises:
            NotificationUnavailable: If email is not configured.
            EmailNotificationError: If the message could not be sent.
        """
        if not is_email_configured():
            raise NotificationUnavailable("Email notifications not configured")

        try:
            smtp_host, smtp_port, smtp_user, smtp_password, email_from, email_to = get_email_credentials()
        except ValueError as e:
            raise EmailNotificationError(f"Email configuration error: {e}") from e

        msg = EmailMessage()
        msg["Subject"] = notification.title
        msg["From"] = email_from
        msg["To"] = email_to
        msg["Date"] = datetime.now(timezone.utc).strftime("%a, %d %b %Y %H:%M:%S +0000")
        msg.set_content(format_email_body_plain(notification))
        msg.add_alternative(format_email_body_html(notification), subtype="html")

        if self.dry_run:
            logger.info(f"[DRY RUN] Would send email to: {email_to}")
            logger.info(f"[DRY RUN] Subject: {notification.title}")
            return

        ssl_context = ssl.create_default_context()
        logger.info(f"Connecting to SMTP server: {smtp_host}:{smtp_port}")

        try:
            if smtp_port == 465:
                logger.debug("Using SMTP_SSL (implicit TLS) for port 465")
                with smtplib.SMTP_SSL(smtp_host, smtp_port, timeout=SMTP_TIMEOUT, context=ssl_context) as server:
                    server.login(smtp_user, smtp_password)
                    server.send_message(msg)
            else:
                logger.debug(f"Using SMTP with STARTTLS for port {smtp_port}")
                with smtplib.SMTP(smtp_host, smtp_port, timeout=SMTP_TIMEOUT) as server:
                    server.starttls(context=ssl_context)
                    server.login(smtp_user, smtp_password)
                    server.send_message(msg)
        except smtplib.SMTPAuthenticationError as e:
            raise EmailNotificationError(f"SMTP authentication failed: {e}") from e
        except smtplib.SMTPException as e:
            raise EmailNotificationError(f"SMTP error while sending email: {e}") from e
        except (ssl.SSLError, OSError) as e:
            raise EmailNotificationError(f"Connection error while sending email: {e}") from e

        logger.info(f"Email notification sent successfully to {email_to}")


# =============================================================================
# Dispatch
# =============================================================================


def default_channels(dry_run: bool = False) -> List[object]:
    """Channels used when none are given: the log, plus email if configured."""
    channels: List[object] = [LogNotifier()]
    if is_email_configured():
        channels.append(EmailNotifier(dry_run=dry_run))
    return channels


def dispatch_notification(
    notification: Optional[Notification],
    enabled: bool,
    channels: Optional[Sequence[object]] = None
) -> int:
    """
    Deliver a notification through every channel.

    Disabled notifications and unavailable channels are skipped silently;
    delivery errors are logged. Nothing is raised.

    Args:
        notification: The alert, or None when there is nothing to say.
        enabled: Whether the user has notifications turned on.
        channels: Objects with a ``send(notification)`` method.

    Returns:
        Number of channels that delivered the notification.
    """
    if notification is None:
        return 0

    if not enabled:
        logger.debug(f"Notifications disabled, skipping '{notification.title}'")
        return 0

    if channels is None:
        channels = default_channels()

    delivered = 0
    for channel in channels:
        name = getattr(channel, "name", type(channel).__name__)
        try:
            channel.send(notification)  # type: ignore[attr-defined]
            delivered += 1
        except NotificationUnavailable as e:
            logger.debug(f"Channel '{name}' unavailable: {e}")
        except EmailNotificationError as e:
            logger.error(f"Channel '{name}' failed: {e}")
        except Exception as e:
            logger.error(f"Unexpected error in channel '{name}': {e}")

    return delivered
