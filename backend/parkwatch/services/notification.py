"""
Availability change notifications.

Three delivery backends share the NotificationAdapter contract:
- EmailNotifier: SMTP, plain text with an HTML alternative
- ConsoleNotifier: writes the summary to the log (CLI / local runs)
- NtfyNotifier: push notification to an ntfy topic

The executor calls send_notification and records the outcome in the
notification log; a raised exception is recorded as a failed delivery.
"""
import asyncio
import html
import logging
import smtplib
from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import List, Optional

import httpx

from parkwatch.exceptions import ConfigurationError, NotificationError
from parkwatch.schemas import Availability, Search, SearchResult

logger = logging.getLogger(__name__)

MAX_CHANGES_IN_TEXT = 5
MAX_CURRENT_LISTED = 10


def build_notification_subject(search: Search, result: SearchResult) -> str:
    new_count = len(result.changes.new)
    removed_count = len(result.changes.removed)
    prefix = f"Holiday Park - {search.name}"

    if not new_count and not removed_count:
        return f"{prefix} - {len(result.availabilities)} available"
    if new_count and removed_count:
        return f"{prefix} - {new_count} new, {removed_count} removed"
    if new_count:
        return f"{prefix} - {new_count} new availabilities!"
    return f"{prefix} - {removed_count} no longer available"


def _format_row(availability: Availability) -> str:
    return (
        f"{availability.resort_name[:20]:<20} | "
        f"{availability.accommodation_type_name[:20]:<20} | "
        f"{availability.date_from} - {availability.date_to} | "
        f"{availability.nights:>2} nights | "
        f"{availability.price_total:.2f} zł"
    )


def _format_section(title: str, availabilities: List[Availability], limit: int) -> List[str]:
    lines = ["", title]
    lines.extend(_format_row(a) for a in availabilities[:limit])
    if len(availabilities) > limit:
        lines.append(f"... and {len(availabilities) - limit} more")
    return lines


def build_notification_body(search: Search, result: SearchResult) -> str:
    """Plain-text summary of a result."""
    lines = [
        f"Holiday Park Monitor - {search.name}",
        "",
        f"Total availabilities: {len(result.availabilities)}",
    ]
    if result.changes.new:
        lines.append(f"New: {len(result.changes.new)}")
    if result.changes.removed:
        lines.append(f"Removed: {len(result.changes.removed)}")
    lines.append(f"Checked at: {result.timestamp:%Y-%m-%d %H:%M} UTC")

    if result.changes.new:
        lines += _format_section("New availabilities:", result.changes.new, MAX_CHANGES_IN_TEXT)
    if result.changes.removed:
        lines += _format_section("No longer available:", result.changes.removed, MAX_CHANGES_IN_TEXT)

    if result.availabilities:
        lines += _format_section("Current availabilities:", result.availabilities, MAX_CURRENT_LISTED)
    else:
        lines += ["", "No availabilities found matching your criteria."]

    if result.changes.new:
        lines += ["", "Book:"]
        lines.extend(a.link for a in result.changes.new[:MAX_CHANGES_IN_TEXT])

    return "\n".join(lines) + "\n"


def _html_table(availabilities: List[Availability], css_class: str = "", with_link: bool = True) -> str:
    header = "<tr><th>Resort</th><th>Type</th><th>Dates</th><th>Nights</th><th>Price</th>"
    header += "<th></th></tr>" if with_link else "</tr>"

    rows = []
    for a in availabilities:
        cells = (
            f"<td>{html.escape(a.resort_name)}</td>"
            f"<td>{html.escape(a.accommodation_type_name)}</td>"
            f"<td>{a.date_from} - {a.date_to}</td>"
            f"<td>{a.nights}</td>"
            f"<td>{a.price_total:.2f} zł</td>"
        )
        if with_link:
            cells += f'<td><a href="{html.escape(a.link)}">Book</a></td>'
        rows.append(f'<tr class="{css_class}">{cells}</tr>')

    return f"<table>{header}{''.join(rows)}</table>"


def build_notification_html(search: Search, result: SearchResult) -> str:
    """HTML variant of the summary, used as the email alternative part."""
    parts = [
        f"<h1>Holiday Park Monitor - {html.escape(search.name)}</h1>",
        "<p>",
        f"Availabilities found: {len(result.availabilities)}<br>",
    ]
    if result.changes.new:
        parts.append(f"New: {len(result.changes.new)}<br>")
    if result.changes.removed:
        parts.append(f"No longer available: {len(result.changes.removed)}<br>")
    parts.append(f"Checked at: {result.timestamp:%Y-%m-%d %H:%M} UTC</p>")

    if result.changes.new:
        parts.append("<h2>New availabilities</h2>")
        parts.append(_html_table(result.changes.new, "new-row"))
    if result.changes.removed:
        parts.append("<h2>No longer available</h2>")
        parts.append(_html_table(result.changes.removed, "removed-row", with_link=False))

    if result.availabilities:
        shown = result.availabilities[:MAX_CURRENT_LISTED]
        parts.append(f"<h2>All availabilities (first {len(shown)})</h2>")
        parts.append(_html_table(shown))
        if len(result.availabilities) > len(shown):
            parts.append(f"<p><em>... and {len(result.availabilities) - len(shown)} more</em></p>")
    else:
        parts.append("<p><strong>No availabilities found matching your criteria.</strong></p>")

    date_ranges = ", ".join(f"{dr.date_from} to {dr.date_to}" for dr in search.date_ranges)
    parts.append(
        "<p><small>"
        f"Date ranges: {date_ranges}<br>"
        f"Stay lengths: {', '.join(str(n) for n in search.stay_lengths)} nights<br>"
        f"Resorts: {', '.join(map(str, search.resorts)) or 'All'}<br>"
        f"Types: {', '.join(map(str, search.accommodation_types)) or 'All'}"
        "</small></p>"
    )

    return "<html><body>" + "".join(parts) + "</body></html>"


class NotificationAdapter(ABC):
    """Delivery backend used by the search executor."""

    @abstractmethod
    async def send_notification(self, search: Search, result: SearchResult) -> None:
        """Deliver a result summary. Raises on delivery failure."""

    async def send_error(self, search: Search, error: Exception) -> None:
        """Tell the user a run failed. Best effort; never raises."""

    async def close(self) -> None:
        pass


class EmailNotifier(NotificationAdapter):
    """SMTP delivery. smtplib is blocking, so sends run in a worker thread."""

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int = 587,
        username: str = "",
        password: str = "",
        from_address: str = "",
        use_tls: bool = True,
        timeout: float = 30.0,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.username = username
        self.password = password
        self.from_address = from_address
        self.use_tls = use_tls
        self.timeout = timeout

    def _build_message(self, recipient: str, subject: str, text: str, html_body: Optional[str] = None) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.from_address
        msg["To"] = recipient
        msg.set_content(text)
        if html_body:
            msg.add_alternative(html_body, subtype="html")
        return msg

    def _deliver(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            if self.username:
                server.login(self.username, self.password)
            server.send_message(msg)

    async def send_notification(self, search: Search, result: SearchResult) -> None:
        recipient = search.notifications.email
        if not recipient:
            return

        msg = self._build_message(
            recipient,
            build_notification_subject(search, result),
            build_notification_body(search, result),
            build_notification_html(search, result),
        )

        try:
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {recipient}: {e}")
            raise NotificationError(f"Failed to send email: {e}") from e

        logger.info(f"Email sent to {recipient} for search {search.name}")

    async def send_error(self, search: Search, error: Exception) -> None:
        recipient = search.notifications.email
        if not recipient:
            return

        msg = self._build_message(
            recipient,
            f"Holiday Park - {search.name} - Error",
            (
                f"Error executing search: {search.name}\n\n"
                f"{error}\n\n"
                "The search will be retried on the next scheduled run.\n"
            ),
        )

        try:
            await asyncio.to_thread(self._deliver, msg)
            logger.info(f"Error email sent to {recipient}")
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send error email: {e}")


class ConsoleNotifier(NotificationAdapter):
    """Logs the summary instead of delivering it anywhere."""

    async def send_notification(self, search: Search, result: SearchResult) -> None:
        logger.info(
            "\n" + "=" * 80 + "\n"
            + build_notification_subject(search, result) + "\n"
            + "=" * 80 + "\n"
            + build_notification_body(search, result)
        )

    async def send_error(self, search: Search, error: Exception) -> None:
        logger.error(f"Error executing search {search.name}: {error}")


class NtfyNotifier(NotificationAdapter):
    """
    Push notifications via ntfy.

    Priority is "high" when new availabilities appeared, otherwise "default";
    the click action opens the first new offer's booking page.
    """

    PRIORITY_MAP = {
        "min": "1",
        "low": "2",
        "default": "3",
        "high": "4",
        "urgent": "5",
    }

    def __init__(self, ntfy_url: str, ntfy_topic: str):
        self.ntfy_url = ntfy_url.rstrip("/")
        self.ntfy_topic = ntfy_topic
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=10.0)
        return self._http_client

    async def close(self):
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def _send_to_ntfy(
        self,
        title: str,
        message: str,
        priority: str = "default",
        tags: Optional[List[str]] = None,
        click_url: Optional[str] = None,
    ) -> None:
        client = await self._get_client()
        url = f"{self.ntfy_url}/{self.ntfy_topic}"

        headers = {
            "Title": title,
            "Priority": self.PRIORITY_MAP.get(priority, "3"),
        }
        if tags:
            headers["Tags"] = ",".join(tags)
        if click_url:
            headers["Click"] = click_url

        try:
            response = await client.post(url, content=message.encode("utf-8"), headers=headers)
        except httpx.RequestError as e:
            logger.warning(f"Could not reach ntfy server at {self.ntfy_url}: {e}")
            raise NotificationError(f"ntfy unreachable: {e}") from e

        if response.status_code != 200:
            logger.error(f"ntfy returned {response.status_code}: {response.text}")
            raise NotificationError(f"ntfy returned {response.status_code}")

        logger.info(f"Notification sent: {title}")

    async def send_notification(self, search: Search, result: SearchResult) -> None:
        has_new = bool(result.changes.new)
        await self._send_to_ntfy(
            title=build_notification_subject(search, result),
            message=build_notification_body(search, result),
            priority="high" if has_new else "default",
            tags=["house", "white_check_mark"] if has_new else ["house"],
            click_url=result.changes.new[0].link if has_new else None,
        )

    async def send_error(self, search: Search, error: Exception) -> None:
        try:
            await self._send_to_ntfy(
                title=f"Holiday Park - {search.name} - Error",
                message=f"{error}\n\nThe search will be retried on the next scheduled run.",
                priority="low",
                tags=["warning"],
            )
        except NotificationError as e:
            logger.error(f"Failed to send error notification: {e}")


def build_notifier(settings) -> NotificationAdapter:
    """Pick the delivery backend named by settings.notification_backend."""
    backend = settings.notification_backend.lower()

    if backend == "email":
        if not settings.smtp_host or not settings.email_from:
            raise ConfigurationError(
                "NOTIFICATION_BACKEND=email requires SMTP_HOST and EMAIL_FROM"
            )
        return EmailNotifier(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            from_address=settings.email_from,
            use_tls=settings.smtp_use_tls,
        )
    if backend == "ntfy":
        return NtfyNotifier(ntfy_url=settings.ntfy_url, ntfy_topic=settings.ntfy_topic)
    if backend == "console":
        return ConsoleNotifier()

    raise ConfigurationError(f"Unknown notification backend: {settings.notification_backend}")
