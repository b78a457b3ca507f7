from email.utils import formataddr
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


# header values must stay on a single line
SINGLE_LINE_REGEX = r"^[^\r\n]*$"


class Submission(BaseModel):
    name: str = Field(max_length=255, pattern=SINGLE_LINE_REGEX, description="Full name of the submitter")
    email: str = Field(max_length=254, pattern=SINGLE_LINE_REGEX, description="Email of the submitter")
    message: str = Field(max_length=1000, description="Content of the message")
    challenge_token: str = Field(description="Turnstile response")


class Mailbox(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str
    name: str | None = None

    def __str__(self) -> str:
        return formataddr((self.name, self.address))


class Envelope(BaseModel):
    model_config = ConfigDict(frozen=True)

    sender: Mailbox = Field(description="Submitter of the contact form")
    recipient: Mailbox = Field(description="Configured recipient of the message")
    body: str
    enqueued_at_millis: int


class QueueBody(BaseModel):
    type: Literal["send_contact_email"] = "send_contact_email"
    data: Envelope
    timestamp: int


class VerificationResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    error_codes: list[str] = Field([], alias="error-codes")
    challenge_ts: str | None = None
    hostname: str | None = None
    action: str | None = None
    cdata: str | None = None
