"""Email notification helpers for sync health alerts."""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from typing import Iterable, List, Optional, Sequence

from backupwiz.core.config import Settings

logger = logging.getLogger(__name__)


class EmailNotificationService:
    """Lightweight SMTP helper for system notifications."""

    def __init__(self, settings: Settings):
        self._settings = settings

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def send_sync_health_alert(
        self,
        *,
        tenant_name: str,
        sync_type: str,
        level: str,
        message: str,
        minutes_since_success: Optional[int] = None,
        last_error: Optional[str] = None,
        recipients: Optional[Sequence[str]] = None,
    ) -> bool:
        """Send a sync health alert email.

        Args:
            tenant_name: Display name of the affected tenant.
            sync_type: Entity type whose sync is unhealthy.
            level: ``warning`` or ``critical``.
            message: One-line description of the problem.
            recipients: Override the default notification list.

        Returns False (and logs) when SMTP is not configured, there is nobody
        to send to, or delivery fails.
        """

        if not self._ready():
            logger.warning("SMTP configuration incomplete; health alert skipped for %s/%s", tenant_name, sync_type)
            return False

        to_addresses = self._resolve_recipients(recipients)
        if not to_addresses:
            logger.warning("No recipients configured for health alert; skipping email")
            return False

        subject = f"[{level.upper()}] {tenant_name}: {sync_type} sync"

        lines: List[str] = [
            f"Tenant: {tenant_name}",
            f"Sync type: {sync_type}",
            f"Status: {level.upper()}",
            message,
        ]
        if minutes_since_success is not None:
            lines.append(f"Minutes since last success: {minutes_since_success}")
        if last_error:
            lines.append(f"Last error: {last_error}")

        lines.append("\nSent automatically by BackupWiz")

        body_text = "\n".join(lines)
        body_html = "".join(
            [f"<p><strong>{sync_type} sync {level}</strong></p>"]
            + [f"<p>{line}</p>" for line in lines[:-1]]
            + ["<p><em>Sent automatically by BackupWiz</em></p>"]
        )

        email = self._build_message(subject, to_addresses, body_text, body_html)
        return await self._dispatch(email)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _ready(self) -> bool:
        settings = self._settings
        return bool(settings.SMTP_HOST and settings.SMTP_USERNAME and settings.SMTP_PASSWORD)

    def _resolve_recipients(self, override: Optional[Sequence[str]]) -> List[str]:
        recipients: Iterable[str] = override if override else self._settings.NOTIFICATION_EMAILS
        return [email.strip() for email in recipients if email]

    def _build_message(
        self,
        subject: str,
        to_addresses: Sequence[str],
        body_text: str,
        body_html: Optional[str] = None,
    ) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self._formatted_from_address
        message["To"] = ", ".join(sorted(set(to_addresses)))
        message.set_content(body_text)
        if body_html:
            message.add_alternative(body_html, subtype="html")
        return message

    @property
    def _formatted_from_address(self) -> str:
        from_email = self._settings.SMTP_FROM_EMAIL or self._settings.SMTP_USERNAME
        from_name = self._settings.SMTP_FROM_NAME or "BackupWiz Alerts"
        return formataddr((from_name, from_email))

    async def _dispatch(self, message: EmailMessage) -> bool:
        try:
            await asyncio.to_thread(self._send_sync, message)
            logger.info("Health alert email sent to %s", message["To"])
            return True
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send health alert email: %s", exc, exc_info=True)
            return False

    def _send_sync(self, message: EmailMessage) -> None:
        settings = self._settings
        host = settings.SMTP_HOST
        port = settings.SMTP_PORT or (465 if settings.SMTP_USE_SSL else 587)
        timeout = settings.SMTP_TIMEOUT

        if settings.SMTP_USE_SSL:
            smtp = smtplib.SMTP_SSL(host=host, port=port, timeout=timeout)
        else:
            smtp = smtplib.SMTP(host=host, port=port, timeout=timeout)
        try:
            if settings.SMTP_USE_TLS and not settings.SMTP_USE_SSL:
                smtp.starttls()

            smtp.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
            smtp.send_message(message)
        finally:
            try:
                smtp.quit()
            except smtplib.SMTPException:
                smtp.close()
