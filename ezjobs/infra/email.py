"""
Outbound email contract.

Templating and SMTP transport live outside this service; jobs only hand a
sender the fields it needs.
"""

import logging
from typing import Protocol

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class EmailMessage(BaseModel):
    to: str
    subject: str
    html: str
    text: str | None = None


class SigningRequestEmail(BaseModel):
    recipient_email: str
    recipient_name: str
    document_title: str
    sender_name: str
    signing_url: str


class ReminderEmail(BaseModel):
    recipient_email: str
    recipient_name: str
    document_title: str
    sender_name: str
    signing_url: str
    days_remaining: int
    document_id: str
    signer_id: str


class EmailSender(Protocol):
    async def send_email(self, message: EmailMessage) -> None: ...

    async def send_signing_request(self, email: SigningRequestEmail) -> None: ...

    async def send_reminder(self, email: ReminderEmail) -> None: ...


class LoggingEmailSender:
    """Development sender: logs every message and keeps it in ``sent``."""

    def __init__(self):
        self.sent: list[BaseModel] = []

    async def send_email(self, message: EmailMessage) -> None:
        self.sent.append(message)
        logger.info("Email sent", extra={"to": message.to, "subject": message.subject})

    async def send_signing_request(self, email: SigningRequestEmail) -> None:
        self.sent.append(email)
        logger.info(
            "Signing request email sent",
            extra={"to": email.recipient_email, "document_title": email.document_title},
        )

    async def send_reminder(self, email: ReminderEmail) -> None:
        self.sent.append(email)
        logger.info(
            "Reminder email sent",
            extra={
                "to": email.recipient_email,
                "document_id": email.document_id,
                "days_remaining": email.days_remaining,
            },
        )
