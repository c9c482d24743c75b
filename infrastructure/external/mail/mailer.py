"""
SMTP mailer for transactional emails (multipart text + HTML).

Runs inside Celery workers only; never called on the request path.
"""
from __future__ import annotations

import smtplib
from email.message import EmailMessage
from email.utils import formataddr

from core.config import MailSettings
from core.logging_config import get_logger


logger = get_logger(__name__)


class SMTPMailer:
    def __init__(self, settings: MailSettings):
        self.settings = settings

    def build_message(self, *, to: str, subject: str, text: str, html: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = formataddr((self.settings.from_name, self.settings.from_address))
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")
        return msg

    def send(self, *, to: str, subject: str, text: str, html: str) -> None:
        """Raises smtplib.SMTPException / OSError on delivery failure."""
        msg = self.build_message(to=to, subject=subject, text=text, html=html)
        cfg = self.settings
        with smtplib.SMTP(cfg.host, cfg.port, timeout=cfg.timeout) as smtp:
            if cfg.use_tls:
                smtp.starttls()
            if cfg.username and cfg.password:
                smtp.login(cfg.username, cfg.password)
            smtp.send_message(msg)
        logger.info("email_sent", to=to, subject=subject, host=cfg.host)
