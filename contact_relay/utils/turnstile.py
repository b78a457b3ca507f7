from collections.abc import Mapping

import aiohttp
from pydantic import ValidationError

from ..exceptions.contact import VerificationUnavailableError
from ..logger import get_logger
from ..schemas.contact import VerificationResult
from ..settings import Settings


logger = get_logger(__name__)


def get_client_ip(headers: Mapping[str, str]) -> str:
    return headers.get("cf-connecting-ip") or headers.get("x-forwarded-for") or "unknown"


class TurnstileVerifier:
    def __init__(self, settings: Settings) -> None:
        self.secret = settings.turnstile_secret_key
        self.url = settings.turnstile_verify_url
        self.timeout = aiohttp.ClientTimeout(total=settings.turnstile_timeout)

    async def verify(self, token: str, remote_ip: str) -> VerificationResult:
        """
        Check a turnstile response against the siteverify endpoint.

        Raises `VerificationUnavailableError` if the endpoint cannot be reached or returns an unusable body.
        """

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(
                    self.url, data={"secret": self.secret, "response": token, "remoteip": remote_ip}
                ) as resp:
                    data = await resp.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            logger.error(f"Turnstile validation error: {e!r}")
            raise VerificationUnavailableError

        logger.debug(f"Turnstile response: {data}")
        try:
            return VerificationResult.model_validate(data)
        except ValidationError as e:
            logger.error(f"Malformed turnstile response: {e}")
            raise VerificationUnavailableError
