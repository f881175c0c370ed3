"""
Email transport - plain-text SMTP with STARTTLS.

Sending is blocking, so callers run it in a worker thread. When SMTP_HOST
is not configured every send is skipped with a warning.
"""
import logging
import smtplib
from email.mime.text import MIMEText
from typing import Optional

from taskboard.config import Settings, get_settings
from taskboard.exceptions import NotificationDeliveryError

logger = logging.getLogger(__name__)


class SmtpEmailSender:

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    @property
    def enabled(self) -> bool:
        return bool(self.settings.SMTP_HOST and self.settings.SMTP_PORT)

    def send_email(self, address: str, subject: str, body: str) -> bool:
        """Send one message. Returns False when email is not configured.

        Raises NotificationDeliveryError when the transport fails.
        """
        if not self.enabled:
            logger.warning("Email not configured (SMTP_HOST missing); skipping send to %s", address)
            return False

        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = self.settings.MAIL_FROM
        msg["To"] = address

        try:
            if self.settings.SMTP_PORT == 465:
                server = smtplib.SMTP_SSL(self.settings.SMTP_HOST, self.settings.SMTP_PORT, timeout=30)
            else:
                server = smtplib.SMTP(self.settings.SMTP_HOST, self.settings.SMTP_PORT, timeout=30)
            with server:
                if self.settings.SMTP_PORT != 465:
                    server.starttls()
                if self.settings.SMTP_USER and self.settings.SMTP_PASSWORD:
                    server.login(self.settings.SMTP_USER, self.settings.SMTP_PASSWORD)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationDeliveryError(address, e) from e

        logger.info(f"Email sent to {address}: {subject}")
        return True
