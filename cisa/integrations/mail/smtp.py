import asyncio
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Protocol

from cisa.core.config import get_settings


@dataclass
class OutgoingMail:
    to: str
    subject: str
    html: str
    text: str


class Mailer(Protocol):
    async def send(self, mail: OutgoingMail) -> None: ...


class SmtpMailer:
    def __init__(self) -> None:
        self.settings = get_settings()

    async def send(self, mail: OutgoingMail) -> None:
        await asyncio.to_thread(self._send_sync, mail)

    def _send_sync(self, mail: OutgoingMail) -> None:
        message = EmailMessage()
        message["From"] = self.settings.smtp_sender
        message["To"] = mail.to
        message["Subject"] = mail.subject
        message.set_content(mail.text)
        message.add_alternative(mail.html, subtype="html")
        with smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port, timeout=30) as smtp:
            if self.settings.smtp_starttls:
                smtp.starttls()
            if self.settings.smtp_user:
                smtp.login(self.settings.smtp_user, self.settings.smtp_password)
            smtp.send_message(message)


def get_mailer() -> Mailer:
    return SmtpMailer()
