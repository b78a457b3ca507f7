import math
import random

from .dispatch import QueueMessage
from ..exceptions.delivery import DeliveryError
from ..logger import get_logger
from ..schemas.contact import Mailbox
from ..settings import Settings
from ..utils.email import MailSender, render_email


logger = get_logger(__name__)

DEFAULT_BASE_DELAY_SECONDS = 30
MAX_JITTER_SECONDS = 5


def compute_backoff(base_delay_seconds: int, attempt: int) -> int:
    """Exponential backoff with up to `MAX_JITTER_SECONDS` of random jitter, rounded up to whole seconds."""

    base = base_delay_seconds or DEFAULT_BASE_DELAY_SECONDS
    return math.ceil(base * 2 ** (attempt - 1) + random.uniform(0, MAX_JITTER_SECONDS))  # noqa: S311


class DeliveryWorker:
    def __init__(self, settings: Settings, mail_sender: MailSender) -> None:
        self.sender = Mailbox(address=settings.sender_address, name=settings.sender_name)
        self.recipient_address = settings.recipient_address
        self.base_delay_seconds = settings.base_delay_seconds
        self.mail_sender = mail_sender

    async def handle_batch(self, messages: list[QueueMessage]) -> None:
        """
        Deliver every message of a batch.

        Permanent failures do not stop the remaining messages. They are raised together as an `ExceptionGroup`
        once the whole batch has been processed, leaving those messages unsettled for the queue to handle.
        """

        errors: list[Exception] = []
        for message in messages:
            try:
                await self.deliver(message)
            except Exception as e:
                errors.append(e)

        if errors:
            raise ExceptionGroup(f"{len(errors)} of {len(messages)} messages failed permanently", errors)

    async def deliver(self, message: QueueMessage) -> None:
        envelope = message.envelope
        logger.info(f"Sending email for {envelope.sender.address} (attempt {message.attempts})")

        try:
            raw = render_email(envelope, self.sender)
            await self.mail_sender.send(self.sender.address, self.recipient_address, raw)
        except Exception as e:
            status = e.status if isinstance(e, DeliveryError) else None
            logger.warning(f"Error sending email (attempt {message.attempts}, status {status}): {e}")

            if not (isinstance(e, DeliveryError) and e.retryable):
                logger.error(f"Email send failed permanently for {envelope.sender.address}")
                raise

            delay = compute_backoff(self.base_delay_seconds, message.attempts)
            logger.warning(f"Transient error, retrying in {delay}s")
            message.retry(delay)
            return

        logger.info(f"Email sent successfully for {envelope.sender.address}")
        message.ack()
