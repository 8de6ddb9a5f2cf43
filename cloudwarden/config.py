"""
Centralized configuration for Cloudwarden.

All configuration is loaded from environment variables with sensible defaults.

Usage:
    from cloudwarden.config import get_config
    cfg = get_config()
    print(cfg.db.name)              # "cloudwarden"
    print(cfg.sweep.batch_width)    # 2
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

# Replenish monitoring may never run more often than this (seconds)
MIN_CHECK_INTERVAL = 60


@dataclass(frozen=True)
class DatabaseConfig:
    """PostgreSQL connection parameters."""

    host: str = ""  # empty = Unix socket (peer auth); set to 127.0.0.1 for TCP
    port: int = 5432
    name: str = "cloudwarden"
    user: str = "cloudwarden"
    password: str = ""

    @property
    def dict(self) -> dict[str, str | int]:
        """Return a psycopg2.connect() kwargs dict."""
        d: dict[str, str | int] = {
            "dbname": self.name,
            "port": self.port,
        }
        if self.host:
            d["host"] = self.host
        if self.user:
            d["user"] = self.user
        if self.password:
            d["password"] = self.password
        return d


@dataclass(frozen=True)
class TelegramConfig:
    """Operator-side Telegram bot. Users bring their own bot tokens."""

    bot_token: str = ""
    admin_chat_id: str = ""

    @property
    def operator_enabled(self) -> bool:
        return bool(self.bot_token and self.admin_chat_id)


@dataclass(frozen=True)
class SweepConfig:
    """Health sweep and replenish monitor scheduling."""

    cron: str = "0 */6 * * *"
    timezone: str = "UTC"
    batch_width: int = 2  # concurrent probes; kept small to fit the CPU budget
    probe_timeout: float = 20.0
    create_timeout: float = 120.0
    max_credentials_per_user: int = 15
    monitor_interval: int = 60
    replenish_dedup_window: int = 900


@dataclass(frozen=True)
class Config:
    """Top-level Cloudwarden configuration."""

    # Workspace (holds the vault master key)
    workspace: Path = field(default_factory=lambda: Path.home() / "cloudwarden")

    # Components
    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    sweep: SweepConfig = field(default_factory=SweepConfig)

    # Linked from notifications when a sweep had to be capped
    panel_url: str = ""

    # Health endpoint
    health_port: int = 18810

    # Import path ("module:attribute") of the production CloudProviderClient
    provider_client: str = ""


# Singleton
_config: Config | None = None


def get_config() -> Config:
    """Get or create the singleton config from environment variables."""
    global _config
    if _config is not None:
        return _config
    _config = _load_from_env()
    return _config


def _load_from_env() -> Config:
    """Load configuration from environment variables."""
    workspace = Path(os.environ.get("CLOUDWARDEN_WORKSPACE", Path.home() / "cloudwarden"))

    db = DatabaseConfig(
        host=os.environ.get("CLOUDWARDEN_DB_HOST", ""),
        port=int(os.environ.get("CLOUDWARDEN_DB_PORT", "5432")),
        name=os.environ.get("CLOUDWARDEN_DB_NAME", "cloudwarden"),
        user=os.environ.get("CLOUDWARDEN_DB_USER", os.environ.get("USER", "cloudwarden")),
        password=os.environ.get("CLOUDWARDEN_DB_PASSWORD", ""),
    )

    telegram = TelegramConfig(
        bot_token=os.environ.get("CLOUDWARDEN_TELEGRAM_BOT_TOKEN", "")
        or os.environ.get("TELEGRAM_BOT_TOKEN", ""),
        admin_chat_id=os.environ.get("CLOUDWARDEN_TELEGRAM_ADMIN_CHAT_ID", "")
        or os.environ.get("TELEGRAM_ADMIN_ID", ""),
    )

    sweep = SweepConfig(
        cron=os.environ.get("CLOUDWARDEN_SWEEP_CRON", "0 */6 * * *"),
        timezone=os.environ.get("CLOUDWARDEN_TIMEZONE", "UTC"),
        batch_width=max(1, int(os.environ.get("CLOUDWARDEN_BATCH_WIDTH", "2"))),
        probe_timeout=float(os.environ.get("CLOUDWARDEN_PROBE_TIMEOUT", "20")),
        create_timeout=float(os.environ.get("CLOUDWARDEN_CREATE_TIMEOUT", "120")),
        max_credentials_per_user=int(os.environ.get("CLOUDWARDEN_MAX_KEYS_PER_USER", "15")),
        monitor_interval=max(
            MIN_CHECK_INTERVAL,
            int(os.environ.get("CLOUDWARDEN_MONITOR_INTERVAL", "60")),
        ),
        replenish_dedup_window=int(os.environ.get("CLOUDWARDEN_REPLENISH_DEDUP_WINDOW", "900")),
    )

    return Config(
        workspace=workspace,
        db=db,
        telegram=telegram,
        sweep=sweep,
        panel_url=os.environ.get("CLOUDWARDEN_PANEL_URL", ""),
        health_port=int(os.environ.get("CLOUDWARDEN_HEALTH_PORT", "18810")),
        provider_client=os.environ.get("CLOUDWARDEN_PROVIDER_CLIENT", ""),
    )


def reset_config() -> None:
    """Reset the singleton config (for testing)."""
    global _config
    _config = None
