"""
Per-provider profiles.

Each supported provider gets one ProviderProfile subclass that knows how to
read its account payload and its error responses. The Provider tag selects
the profile; anything without a profile is classified by UnsupportedProfile,
which fails closed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from cloudwarden.errors import ProviderError
from cloudwarden.models import HealthStatus, Provider

# Substrings that mean "the key works but the provider is throttling/capping it"
LIMIT_MARKERS = ("rate limit", "ratelimit", "too many requests", "quota", "droplet_limit", "limit exceeded")


@dataclass(frozen=True)
class Classification:
    status: HealthStatus
    reason: str | None = None


HEALTHY = Classification(HealthStatus.HEALTHY)


def _mentions_limit(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in LIMIT_MARKERS)


class ProviderProfile:
    """Default precedence shared by every provider.

    Subclasses override the hooks to add provider-specific signals that must
    win over the generic status-code rules.
    """

    provider: str = ""
    instance_prefix: str = "auto"
    display_icon: str = "\U0001f511"  # key

    def classify_payload(self, payload: dict[str, Any] | None) -> Classification:
        return HEALTHY

    def classify_error(self, error: ProviderError) -> Classification:
        specific = self.classify_specific_error(error)
        if specific is not None:
            return specific

        code = error.status_code
        if code == 401:
            return Classification(HealthStatus.UNHEALTHY, "credential invalid or expired")
        if code in (403, 429):
            reason = "rate limited" if code == 429 else "insufficient permissions"
            return Classification(HealthStatus.LIMITED, f"{reason}: {error.message}")
        if _mentions_limit(error.message):
            return Classification(HealthStatus.LIMITED, error.message)
        return Classification(HealthStatus.UNHEALTHY, error.message or "unknown provider error")

    def classify_specific_error(self, error: ProviderError) -> Classification | None:
        return None


class DigitalOceanProfile(ProviderProfile):
    provider = Provider.DIGITALOCEAN
    instance_prefix = "do-auto"
    display_icon = "\U0001f30a"  # water wave

    def classify_payload(self, payload: dict[str, Any] | None) -> Classification:
        account = payload.get("account", payload) if isinstance(payload, dict) else payload
        status = account.get("status", "") if isinstance(account, dict) else account
        if isinstance(status, str) and status.lower() == "locked":
            return Classification(
                HealthStatus.UNHEALTHY, "account locked, contact DigitalOcean support"
            )
        return HEALTHY

    def classify_specific_error(self, error: ProviderError) -> Classification | None:
        message = error.message
        if error.status_code == 422 and "unprocessable_entity" in message:
            return Classification(
                HealthStatus.UNHEALTHY, "account locked, contact DigitalOcean support"
            )
        if error.status_code == 403 and "Forbidden" in message:
            return Classification(HealthStatus.UNHEALTHY, "access forbidden or account banned")
        return None


class LinodeProfile(ProviderProfile):
    # "inactive" accounts still answer the API normally; no payload signal
    provider = Provider.LINODE
    instance_prefix = "ln-auto"
    display_icon = "\U0001f30d"  # globe


class AzureProfile(ProviderProfile):
    provider = Provider.AZURE
    instance_prefix = "az-auto"
    display_icon = "☁️"  # cloud

    def classify_payload(self, payload: dict[str, Any] | None) -> Classification:
        if not isinstance(payload, dict):
            return HEALTHY
        state = payload.get("state") or payload.get("status")
        if state and str(state) != "Enabled":
            return Classification(HealthStatus.LIMITED, f"Azure subscription state: {state}")
        return HEALTHY


class UnsupportedProfile(ProviderProfile):
    def __init__(self, provider: str) -> None:
        self.provider = provider

    def classify_payload(self, payload: dict[str, Any] | None) -> Classification:
        return self._reject()

    def classify_error(self, error: ProviderError) -> Classification:
        return self._reject()

    def _reject(self) -> Classification:
        return Classification(HealthStatus.UNHEALTHY, f"unsupported provider: {self.provider}")


_PROFILES: dict[str, ProviderProfile] = {
    Provider.DIGITALOCEAN.value: DigitalOceanProfile(),
    Provider.LINODE.value: LinodeProfile(),
    Provider.AZURE.value: AzureProfile(),
}


def get_profile(provider: str) -> ProviderProfile:
    """Return the profile for a provider tag (UnsupportedProfile if unknown)."""
    return _PROFILES.get(str(provider), None) or UnsupportedProfile(str(provider))


def is_supported(provider: str) -> bool:
    return str(provider) in _PROFILES
