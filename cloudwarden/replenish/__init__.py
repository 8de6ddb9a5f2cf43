"""Automatic instance replenishment: orchestrator, failure monitor and dedup guard."""

from cloudwarden.replenish.orchestrator import (
    ReplenishOrchestrator,
    ReplenishOutcome,
    ReplenishRequest,
)

__all__ = ["ReplenishOrchestrator", "ReplenishOutcome", "ReplenishRequest"]
