"""
Root-level shared test fixtures.
"""

from __future__ import annotations

import pytest

from cloudwarden.config import reset_config


@pytest.fixture
def clean_env(monkeypatch):
    """Remove env vars that would leak into config tests."""
    for key in [
        "CLOUDWARDEN_WORKSPACE",
        "CLOUDWARDEN_DB_HOST",
        "CLOUDWARDEN_DB_PORT",
        "CLOUDWARDEN_DB_NAME",
        "CLOUDWARDEN_DB_USER",
        "CLOUDWARDEN_DB_PASSWORD",
        "CLOUDWARDEN_TELEGRAM_BOT_TOKEN",
        "CLOUDWARDEN_TELEGRAM_ADMIN_CHAT_ID",
        "TELEGRAM_BOT_TOKEN",
        "TELEGRAM_ADMIN_ID",
        "CLOUDWARDEN_SWEEP_CRON",
        "CLOUDWARDEN_TIMEZONE",
        "CLOUDWARDEN_BATCH_WIDTH",
        "CLOUDWARDEN_PROBE_TIMEOUT",
        "CLOUDWARDEN_CREATE_TIMEOUT",
        "CLOUDWARDEN_MAX_KEYS_PER_USER",
        "CLOUDWARDEN_MONITOR_INTERVAL",
        "CLOUDWARDEN_REPLENISH_DEDUP_WINDOW",
        "CLOUDWARDEN_PANEL_URL",
        "CLOUDWARDEN_HEALTH_PORT",
        "CLOUDWARDEN_PROVIDER_CLIENT",
    ]:
        monkeypatch.delenv(key, raising=False)
    reset_config()
    yield
    reset_config()
