"""SMTP delivery of account e-mails."""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Optional

from ..config import MailSettings


LOGGER = logging.getLogger(__name__)


class MailDeliveryError(RuntimeError):
    """Raised when a message cannot be handed to the SMTP server."""


class Mailer:
    def __init__(self, settings: MailSettings) -> None:
        self._settings = settings

    @property
    def settings(self) -> MailSettings:
        return self._settings

    def send(self, recipient: str, subject: str, body: str, *, html: Optional[str] = None) -> None:
        settings = self._settings
        if not settings.configured:
            raise MailDeliveryError("SMTP is not configured")

        message = EmailMessage()
        message["From"] = settings.user
        message["To"] = recipient
        message["Subject"] = subject
        message.set_content(body)
        if html:
            message.add_alternative(html, subtype="html")

        context = ssl.create_default_context()
        try:
            # Port 465 speaks TLS from the first byte; others upgrade with STARTTLS.
            if settings.port == 465:
                with smtplib.SMTP_SSL(settings.host, settings.port, context=context) as server:
                    server.login(settings.user, settings.password)
                    server.send_message(message)
            else:
                with smtplib.SMTP(settings.host, settings.port) as server:
                    server.ehlo()
                    server.starttls(context=context)
                    server.login(settings.user, settings.password)
                    server.send_message(message)
        except (OSError, smtplib.SMTPException) as error:
            LOGGER.error("Failed to send '%s' to %s: %s", subject, recipient, error)
            raise MailDeliveryError(str(error)) from error
        LOGGER.info("Sent '%s' to %s", subject, recipient)

    def send_password_reset(self, recipient: str, name: str, token: str) -> str:
        """Mail the reset link for *token* and return the link."""

        link = f"{self._settings.public_url}/auth/forgot-password?token={token}"
        body = (
            f"Hello {name or ''},\n\n"
            "A password reset was requested for your backoffice account.\n"
            f"Open the link below within one hour to choose a new password:\n\n{link}\n\n"
            "If you did not request it, ignore this message.\n"
        )
        html = (
            f"<p>Hello {name or ''},</p>"
            "<p>A password reset was requested for your backoffice account.</p>"
            f'<p><a href="{link}">Reset your password</a> (valid for one hour).</p>'
            "<p>If you did not request it, ignore this message.</p>"
        )
        self.send(recipient, "Password reset", body, html=html)
        return link


__all__ = ["MailDeliveryError", "Mailer"]
