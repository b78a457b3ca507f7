"""Endpoints for the contact form"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import PlainTextResponse

from ..exceptions.contact import (
    EnqueueError,
    MissingFieldError,
    ValidationError,
    VerificationRejectedError,
    VerificationUnavailableError,
)
from ..redis import redis
from ..services.dispatch import DispatchQueue, RedisDispatchQueue
from ..services.intake import CHALLENGE_FIELD, IntakeHandler, Verifier
from ..settings import settings
from ..utils.docs import responses
from ..utils.turnstile import TurnstileVerifier


router = APIRouter(tags=["contact"])


def get_verifier() -> Verifier:
    return TurnstileVerifier(settings)


def get_queue() -> DispatchQueue:
    return RedisDispatchQueue(redis, settings.queue_name, max_retries=settings.queue_max_retries)


def get_intake_handler(
    verifier: Annotated[Verifier, Depends(get_verifier)], queue: Annotated[DispatchQueue, Depends(get_queue)]
) -> IntakeHandler:
    return IntakeHandler(settings, verifier, queue)


@router.post(
    settings.contact_path,
    response_class=PlainTextResponse,
    responses=responses(
        str, MissingFieldError, ValidationError, VerificationUnavailableError, VerificationRejectedError, EnqueueError
    ),
)
async def send_message(
    request: Request,
    handler: Annotated[IntakeHandler, Depends(get_intake_handler)],
    name: Annotated[str | None, Form()] = None,
    email: Annotated[str | None, Form()] = None,
    message: Annotated[str | None, Form()] = None,
    challenge_token: Annotated[str | None, Form(alias=CHALLENGE_FIELD)] = None,
) -> Any:
    """
    Queue a contact form message for delivery to the configured recipient.

    A valid turnstile response is required in the `cf-turnstile-response` field.
    """

    form = {"name": name, "email": email, "message": message, CHALLENGE_FIELD: challenge_token}
    return await handler.handle(form, request.headers)
