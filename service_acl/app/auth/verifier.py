"""
Client for the external identity verification endpoint.
"""

import time
from typing import Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from shared.logging import get_logger
from shared.errors import ExternalServiceError, InvalidCredentialError
from shared.metrics import MetricsCollector
from ..models import ClientIdentity, VerificationResponse


class VerificationClient:
    """Verifies a credential and returns the broker identity behind it."""

    def __init__(self, verification_url: str, timeout: float = 5.0,
                 metrics: Optional[MetricsCollector] = None):
        self.verification_url = verification_url
        self.timeout = timeout
        self.metrics = metrics
        self.logger = get_logger("acl.auth.verifier")

    async def verify(self, credential: str) -> ClientIdentity:
        """Verify a credential.

        Any rejection by the endpoint, including a malformed payload, raises
        InvalidCredentialError. Transport failures raise ExternalServiceError.
        """
        start_time = time.time()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    self.verification_url,
                    headers={"token": credential}
                )
        except httpx.TimeoutException:
            self.logger.error("Verification endpoint timeout")
            self._record("timeout", start_time)
            raise ExternalServiceError("verification", "Verification endpoint timeout")
        except httpx.RequestError as e:
            self.logger.error("Verification endpoint request error", error=str(e))
            self._record("error", start_time)
            raise ExternalServiceError("verification", "Verification endpoint unavailable")

        if response.status_code != 200:
            self.logger.warning(
                "Credential rejected",
                status_code=response.status_code
            )
            self._record("rejected", start_time)
            raise InvalidCredentialError(details={"status_code": response.status_code})

        try:
            payload = VerificationResponse.model_validate(response.json())
        except (ValueError, PydanticValidationError) as e:
            self.logger.warning("Malformed verification response", error=str(e))
            self._record("rejected", start_time)
            raise InvalidCredentialError("Malformed verification response")

        self._record("verified", start_time)
        return ClientIdentity(
            client_id=payload.client_id,
            username=payload.username,
            passhash=payload.passhash,
        )

    async def health_check(self) -> bool:
        """Check if the verification endpoint answers at all."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(self.verification_url)
                return response.status_code < 500
        except httpx.HTTPError:
            return False

    def _record(self, status: str, start_time: float):
        if self.metrics is None:
            return
        self.metrics.increment_counter("verification_requests_total", status=status)
        histogram = self.metrics.get_metric("verification_duration_seconds")
        if histogram is not None:
            histogram.observe(time.time() - start_time)
