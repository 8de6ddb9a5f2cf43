"""
Fixtures for engine tests: fake collaborators wired into real engine objects.
"""

from __future__ import annotations

import pytest

from cloudwarden.config import Config, SweepConfig
from cloudwarden.interfaces import Destination
from cloudwarden.keys.batch import BatchRunner
from cloudwarden.keys.probe import CredentialProbe
from cloudwarden.notify.dispatcher import NotificationDispatcher
from cloudwarden.replenish.orchestrator import ReplenishOrchestrator
from tests.fakes import FakeClient, FakeDecryptor, FakeNotifier, FakeStore

OPERATOR = Destination(chat_id="999", label="operator")


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def decryptor() -> FakeDecryptor:
    return FakeDecryptor()


@pytest.fixture
def probe(client, decryptor) -> CredentialProbe:
    return CredentialProbe(client, decryptor, timeout=1.0)


@pytest.fixture
def runner(probe, store) -> BatchRunner:
    return BatchRunner(probe, store, width=2)


@pytest.fixture
def dispatcher(notifier, decryptor) -> NotificationDispatcher:
    return NotificationDispatcher(notifier, decryptor=decryptor, operator=OPERATOR)


@pytest.fixture
def orchestrator(store, client, decryptor, dispatcher) -> ReplenishOrchestrator:
    return ReplenishOrchestrator(store, client, decryptor, dispatcher)


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(
        workspace=tmp_path,
        sweep=SweepConfig(batch_width=2, probe_timeout=1.0, replenish_dedup_window=900),
        panel_url="https://panel.example.com",
    )
