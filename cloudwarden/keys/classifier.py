"""
State classifier — maps (provider, probe outcome) to a health status.

Pure and total: every outcome for every provider tag resolves to exactly one
of healthy / unhealthy / limited, and identical input gives identical output.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from cloudwarden.errors import ProviderError
from cloudwarden.keys.providers import Classification, get_profile


@dataclass(frozen=True)
class ProbeOutcome:
    """Either the account payload of a successful call or the error it raised."""

    payload: dict[str, Any] | None = None
    error: ProviderError | None = None

    @classmethod
    def ok(cls, payload: dict[str, Any] | None) -> ProbeOutcome:
        return cls(payload=payload or {})

    @classmethod
    def failed(cls, error: ProviderError) -> ProbeOutcome:
        return cls(error=error)


def classify(provider: str, outcome: ProbeOutcome) -> Classification:
    """Classify one probe outcome for the given provider tag."""
    profile = get_profile(provider)
    if outcome.error is not None:
        return profile.classify_error(outcome.error)
    return profile.classify_payload(outcome.payload)
