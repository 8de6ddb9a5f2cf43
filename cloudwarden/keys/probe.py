"""
Credential probe — checks one key against its provider's account endpoint.

Never raises: decryption errors, provider errors, timeouts and anything else
become an unhealthy (or limited) HealthCheckResult so callers can fan out over
many keys without special-casing exceptions.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime

from cloudwarden.errors import ProviderError
from cloudwarden.interfaces import CloudProviderClient, SecretDecryptor
from cloudwarden.keys.classifier import ProbeOutcome, classify
from cloudwarden.keys.providers import get_profile, is_supported
from cloudwarden.models import Credential, HealthCheckResult, HealthStatus

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 20.0


class CredentialProbe:
    """Probe a single credential within a timeout."""

    def __init__(
        self,
        client: CloudProviderClient,
        decryptor: SecretDecryptor,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.client = client
        self.decryptor = decryptor
        self.timeout = timeout

    async def probe(self, credential: Credential) -> HealthCheckResult:
        if not is_supported(credential.provider):
            verdict = get_profile(credential.provider).classify_payload(None)
            return self._result(credential, verdict.status, verdict.reason)

        try:
            secret = self.decryptor.decrypt(credential.encrypted_secret)
        except Exception as e:
            logger.warning("Cannot decrypt credential %s: %s", credential.id, e)
            return self._result(credential, HealthStatus.UNHEALTHY, f"cannot decrypt secret: {e}")

        try:
            async with asyncio.timeout(self.timeout):
                payload = await self.client.get_account_info(credential.provider, secret)
            outcome = ProbeOutcome.ok(payload)
        except TimeoutError:
            logger.warning("Probe of credential %s timed out after %ss", credential.id, self.timeout)
            return self._result(
                credential,
                HealthStatus.UNHEALTHY,
                f"timed out after {self.timeout:g}s",
            )
        except ProviderError as e:
            outcome = ProbeOutcome.failed(e)
        except Exception as e:
            # Transport failures carry no status code
            outcome = ProbeOutcome.failed(ProviderError(str(e) or type(e).__name__))

        try:
            verdict = classify(credential.provider, outcome)
        except Exception as e:
            logger.warning("Cannot classify provider response for credential %s: %s", credential.id, e)
            return self._result(credential, HealthStatus.UNHEALTHY, f"unexpected provider response: {e}")
        logger.debug(
            "Probe %s (%s): %s %s",
            credential.id,
            credential.provider,
            verdict.status.value,
            verdict.reason or "",
        )
        return self._result(credential, verdict.status, verdict.reason)

    @staticmethod
    def _result(
        credential: Credential, status: HealthStatus, error: str | None
    ) -> HealthCheckResult:
        return HealthCheckResult(
            credential_id=credential.id,
            status=status,
            checked_at=datetime.now(UTC),
            error=error,
        )
