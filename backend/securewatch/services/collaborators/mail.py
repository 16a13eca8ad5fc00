"""
mail.py - SMTP mail transport.

Connection and protocol errors are raised (the dispatcher classifies them
as transient). A server that refuses every recipient yields a failed
DeliveryResult, which the handlers also treat as transient.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Optional, Sequence

from securewatch.config import settings
from securewatch.services.collaborators.base import DeliveryResult, MailTransport

logger = logging.getLogger(__name__)


class SmtpMailTransport(MailTransport):
    def __init__(
        self,
        host: str = settings.SMTP_HOST,
        port: int = settings.SMTP_PORT,
        username: Optional[str] = settings.SMTP_USER,
        password: Optional[str] = settings.SMTP_PASSWORD,
        use_tls: bool = settings.SMTP_USE_TLS,
        sender: str = settings.MAIL_FROM,
        timeout: float = settings.SMTP_TIMEOUT_SECONDS,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender = sender
        self.timeout = timeout

    def build_message(self, recipients: Sequence[str], subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = ", ".join(recipients)
        message["Subject"] = subject
        message["Message-ID"] = make_msgid(domain=self.sender.rpartition("@")[2] or None)
        message.set_content(body)
        return message

    def send(self, recipients: Sequence[str], subject: str, body: str) -> DeliveryResult:
        message = self.build_message(recipients, subject, body)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password or "")
                refused = smtp.send_message(message)
        except smtplib.SMTPRecipientsRefused as e:
            return DeliveryResult(False, error=f"All recipients refused: {sorted(e.recipients)}")
        except (smtplib.SMTPSenderRefused, smtplib.SMTPDataError) as e:
            return DeliveryResult(False, error=f"SMTP {e.smtp_code}: {e.smtp_error!r}")

        if refused:
            logger.warning("SMTP refused %d of %d recipients: %s", len(refused), len(recipients), sorted(refused))
        logger.info("Mail '%s' delivered to %d recipient(s)", subject, len(recipients) - len(refused))
        return DeliveryResult(True, message_id=message["Message-ID"])
