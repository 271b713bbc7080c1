"""SMTP email notifier."""

from __future__ import annotations

import smtplib
from email.message import EmailMessage
from typing import Optional, Sequence

from scripts.alerting.errors import NotifyError
from scripts.alerting.notify.base import AlertMessage, Notifier
from scripts.alerting.notify.formatter import format_body, format_subject


class EmailNotifier(Notifier):
    CHANNEL = "email"

    def __init__(
        self,
        smtp_host: str,
        sender: str,
        recipients: Sequence[str],
        smtp_port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.sender = sender
        self.recipients = tuple(recipients)
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout_seconds = timeout_seconds

    def build_message(self, message: AlertMessage) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = format_subject(message)
        msg["From"] = self.sender
        msg["To"] = ", ".join(self.recipients)
        if message.decision.urgent:
            msg["X-Priority"] = "1"
            msg["Importance"] = "High"
        msg.set_content(format_body(message))
        return msg

    def send(self, message: AlertMessage) -> None:
        if not self.recipients:
            raise NotifyError("EmailNotifier has no recipients")

        msg = self.build_message(message)
        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout_seconds) as client:
            if self.use_tls:
                client.starttls()
            if self.username:
                client.login(self.username, self.password or "")
            client.send_message(msg)
