"""
Unit tests for the verification client.
"""

import pytest
import httpx
from unittest.mock import AsyncMock, patch
import json

from shared.errors import ExternalServiceError, InvalidCredentialError
from shared.metrics import MetricsCollector
from service_acl.app.auth.verifier import VerificationClient
from service_acl.app.models import ClientIdentity

VERIFY_URL = "http://localhost:8010/auth/verify"


def _response(status_code, payload):
    return httpx.Response(
        status_code=status_code,
        content=json.dumps(payload),
        request=httpx.Request("GET", VERIFY_URL)
    )


class TestVerificationClient:
    """Test cases for VerificationClient."""

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("acl")

    @pytest.fixture
    def verifier(self, metrics):
        return VerificationClient(VERIFY_URL, timeout=1.0, metrics=metrics)

    @pytest.mark.asyncio
    async def test_verify_success(self, verifier, metrics):
        """Accepted credential yields the broker identity."""
        payload = {"client_id": "c1", "username": "alice", "passhash": "hash-1"}

        with patch('httpx.AsyncClient') as mock_client:
            get = AsyncMock(return_value=_response(200, payload))
            mock_client.return_value.__aenter__.return_value.get = get

            identity = await verifier.verify("tok-A")

        assert identity == ClientIdentity(client_id="c1", username="alice", passhash="hash-1")
        assert get.await_args.kwargs["headers"] == {"token": "tok-A"}
        assert metrics.get_sample_value("verification_requests_total", {"status": "verified"}) == 1.0

    @pytest.mark.asyncio
    async def test_verify_rejected(self, verifier, metrics):
        """Non-200 answers are invalid credentials."""
        with patch('httpx.AsyncClient') as mock_client:
            mock_client.return_value.__aenter__.return_value.get = AsyncMock(
                return_value=_response(401, {"error": "expired"})
            )

            with pytest.raises(InvalidCredentialError):
                await verifier.verify("tok-A")

        assert metrics.get_sample_value("verification_requests_total", {"status": "rejected"}) == 1.0

    @pytest.mark.asyncio
    async def test_verify_malformed_payload(self, verifier):
        """Missing identity fields are treated as a rejection."""
        with patch('httpx.AsyncClient') as mock_client:
            mock_client.return_value.__aenter__.return_value.get = AsyncMock(
                return_value=_response(200, {"client_id": "c1"})
            )

            with pytest.raises(InvalidCredentialError):
                await verifier.verify("tok-A")

    @pytest.mark.asyncio
    async def test_verify_timeout(self, verifier):
        """Timeouts are reported as an external service failure."""
        with patch('httpx.AsyncClient') as mock_client:
            mock_client.return_value.__aenter__.return_value.get = AsyncMock(
                side_effect=httpx.TimeoutException("Request timeout")
            )

            with pytest.raises(ExternalServiceError):
                await verifier.verify("tok-A")

    @pytest.mark.asyncio
    async def test_verify_connection_error(self, verifier):
        with patch('httpx.AsyncClient') as mock_client:
            mock_client.return_value.__aenter__.return_value.get = AsyncMock(
                side_effect=httpx.ConnectError("Connection failed")
            )

            with pytest.raises(ExternalServiceError):
                await verifier.verify("tok-A")
