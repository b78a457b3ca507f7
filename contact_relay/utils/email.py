from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol

import aiosmtplib

from ..exceptions.delivery import DeliveryError
from ..logger import get_logger
from ..schemas.contact import Envelope, Mailbox
from ..settings import Settings


logger = get_logger(__name__)

SUBJECT = "Submission"

# SMTP "service not available", used when no reply code was received at all
SERVICE_UNAVAILABLE = 421


class MailSender(Protocol):
    async def send(self, sender: str, recipient: str, raw: bytes) -> None:
        ...


def render_email(envelope: Envelope, sender: Mailbox) -> bytes:
    message = MIMEMultipart()
    message["From"] = str(sender)
    message["To"] = str(envelope.recipient)
    message["Reply-To"] = str(envelope.sender)
    message["Subject"] = SUBJECT
    message.attach(
        MIMEText(f"{envelope.sender.name or ''}\n{envelope.sender.address}\n\n{envelope.body}", "plain", "utf-8")
    )
    return message.as_bytes()


class SMTPMailSender:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    async def send(self, sender: str, recipient: str, raw: bytes) -> None:
        logger.debug(f"Sending email from {sender} to {recipient}")

        try:
            await aiosmtplib.send(
                raw,
                sender=sender,
                recipients=[recipient],
                hostname=self.settings.smtp_host,
                port=self.settings.smtp_port,
                username=self.settings.smtp_user or None,
                password=self.settings.smtp_password or None,
                use_tls=self.settings.smtp_tls,
                start_tls=self.settings.smtp_starttls,
            )
        except aiosmtplib.SMTPResponseException as e:
            raise DeliveryError(e.code, e.message) from e
        except (aiosmtplib.SMTPConnectError, aiosmtplib.SMTPTimeoutError, aiosmtplib.SMTPServerDisconnected) as e:
            raise DeliveryError(SERVICE_UNAVAILABLE, str(e)) from e
        except aiosmtplib.SMTPRecipientsRefused as e:
            code = e.recipients[0].code if e.recipients else None
            raise DeliveryError(code, str(e)) from e
        except OSError as e:
            raise DeliveryError(SERVICE_UNAVAILABLE, str(e)) from e
