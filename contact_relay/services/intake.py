from collections.abc import Mapping
from typing import Protocol

from pydantic import ValidationError as PydanticValidationError

from .dispatch import DispatchQueue
from ..exceptions.contact import (
    EnqueueError,
    MissingFieldError,
    ValidationError,
    VerificationRejectedError,
    VerificationUnavailableError,
)
from ..logger import get_logger
from ..schemas.contact import Envelope, Mailbox, Submission, VerificationResult
from ..settings import Settings
from ..utils.turnstile import get_client_ip
from ..utils.utc import now_millis


logger = get_logger(__name__)

CHALLENGE_FIELD = "cf-turnstile-response"


class Verifier(Protocol):
    async def verify(self, token: str, remote_ip: str) -> VerificationResult:
        ...


class IntakeHandler:
    def __init__(self, settings: Settings, verifier: Verifier, queue: DispatchQueue) -> None:
        self.recipient = Mailbox(address=settings.recipient_address, name=settings.recipient_name)
        self.verifier = verifier
        self.queue = queue

    async def handle(self, form: Mapping[str, str | None], headers: Mapping[str, str]) -> str:
        """
        Validate and verify a contact form submission and queue it for delivery.

        Every check raises its own `APIException`; nothing is queued unless all of them pass.
        """

        submission = self.validate(form)
        await self.verify(submission, get_client_ip(headers))

        envelope = Envelope(
            sender=Mailbox(address=submission.email, name=submission.name),
            recipient=self.recipient,
            body=submission.message,
            enqueued_at_millis=now_millis(),
        )

        try:
            await self.queue.publish(envelope)
        except Exception as e:
            logger.error(f"Error queuing email for {submission.email}: {e!r}")
            raise EnqueueError(str(e))

        logger.info(f"Email queued for {submission.email} from {submission.name}")
        return "Email sent successfully."

    @staticmethod
    def validate(form: Mapping[str, str | None]) -> Submission:
        name, email, message, token = (form.get(key) for key in ("name", "email", "message", CHALLENGE_FIELD))
        if not (name and email and message and token):
            logger.info(f"Rejected submission with missing fields from {email or 'unknown'}")
            raise MissingFieldError

        try:
            return Submission(name=name, email=email, message=message, challenge_token=token)
        except PydanticValidationError:
            logger.info(f"Rejected submission with invalid fields from {email}")
            raise ValidationError

    async def verify(self, submission: Submission, remote_ip: str) -> None:
        try:
            result = await self.verifier.verify(submission.challenge_token, remote_ip)
        except VerificationUnavailableError:
            logger.error(f"Could not verify turnstile token from {submission.email}")
            raise

        if not result.success:
            logger.warning(f"Invalid turnstile token from {submission.email}: {result.error_codes}")
            raise VerificationRejectedError
