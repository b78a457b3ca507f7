from fastapi import status

from .api_exception import APIException


class MissingFieldError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Missing required fields"
    description = "One of name, email, message or the turnstile response is missing."


class ValidationError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Validation error"
    description = "One of the submitted fields exceeds its maximum length."


class VerificationUnavailableError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Validation error"
    description = "The turnstile response could not be verified."


class VerificationRejectedError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Invalid verification"
    description = "The turnstile response is invalid."


class EnqueueError(APIException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail = "Error"
    description = "The message could not be queued for delivery."

    def __init__(self, cause: str) -> None:
        self.detail = f"Error: {cause}"
        super().__init__()
