"""
Data models for Cloudwarden.

All models are plain dataclasses — no ORM. Rows coming out of PostgreSQL are
converted by cloudwarden.dal; fakes in tests build them directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class Provider(StrEnum):
    DIGITALOCEAN = "digitalocean"
    LINODE = "linode"
    AZURE = "azure"


class HealthStatus(StrEnum):
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    LIMITED = "limited"
    CHECKING = "checking"


# Statuses a probe can resolve to (unknown/checking are transient)
PROBE_STATUSES = (HealthStatus.HEALTHY, HealthStatus.UNHEALTHY, HealthStatus.LIMITED)


class CredentialGroup(StrEnum):
    PERSONAL = "personal"
    RENTAL = "rental"


class MonitorMode(StrEnum):
    INSTANCES = "instances"
    CREDENTIALS = "credentials"


class TriggerType(StrEnum):
    MANUAL = "manual"
    INSTANCE_DOWN = "instance_down"
    CREDENTIAL_INVALID = "credential_invalid"


class ReplenishStatus(StrEnum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class UserAccount:
    """A panel user. Telegram settings drive personal notifications."""

    id: int
    username: str
    notify_enabled: bool = False
    telegram_chat_id: str = ""
    telegram_bot_token: str = ""  # encrypted, decrypted by the vault


@dataclass
class Credential:
    """A stored provider API key. The secret stays encrypted until a probe needs it."""

    id: int
    user_id: int
    name: str
    provider: str
    encrypted_secret: str
    group: CredentialGroup = CredentialGroup.PERSONAL
    health_status: HealthStatus = HealthStatus.UNKNOWN
    last_checked: datetime | None = None
    error_message: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class HealthCheckResult:
    credential_id: int
    status: HealthStatus
    checked_at: datetime
    error: str | None = None


@dataclass
class BatchSummary:
    """Aggregate of one BatchRunner pass. Results keep input order."""

    total: int = 0
    healthy: int = 0
    unhealthy: int = 0
    limited: int = 0
    results: list[HealthCheckResult] = field(default_factory=list)

    def add(self, result: HealthCheckResult) -> None:
        self.results.append(result)
        self.total += 1
        if result.status == HealthStatus.HEALTHY:
            self.healthy += 1
        elif result.status == HealthStatus.LIMITED:
            self.limited += 1
        else:
            self.unhealthy += 1

    def counts(self) -> dict[str, int]:
        return {
            "total": self.total,
            "healthy": self.healthy,
            "unhealthy": self.unhealthy,
            "limited": self.limited,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.counts(),
            "results": [
                {
                    "credential_id": r.credential_id,
                    "status": r.status.value,
                    "error": r.error,
                    "checked_at": r.checked_at.isoformat(),
                }
                for r in self.results
            ],
        }


@dataclass
class InstanceMapping:
    """Which credential owns a monitored instance."""

    instance_id: str
    credential_id: int


@dataclass
class ReplenishConfig:
    """Per-user auto-replenish settings. At most one row per user."""

    user_id: int
    enabled: bool = False
    monitor_mode: MonitorMode = MonitorMode.INSTANCES
    monitored_instances: list[str] = field(default_factory=list)
    monitored_credentials: list[int] = field(default_factory=list)
    instance_mapping: list[InstanceMapping] = field(default_factory=list)
    template_id: int | None = None
    credential_group: CredentialGroup = CredentialGroup.PERSONAL
    check_interval: int = 300  # seconds
    notify: bool = True
    last_check_at: datetime | None = None

    @classmethod
    def defaults(cls, user_id: int) -> ReplenishConfig:
        """Disabled defaults used when a user never saved a config."""
        return cls(user_id=user_id)


@dataclass
class ReplenishTask:
    """A named watch rule. Several may run per user."""

    id: int
    user_id: int
    name: str
    enabled: bool = False
    template_id: int | None = None
    credential_ids: list[int] = field(default_factory=list)
    instance_ids: list[str] = field(default_factory=list)
    instance_mapping: list[InstanceMapping] = field(default_factory=list)
    auto_add_new_instance: bool = True
    check_interval: int = 5  # minutes
    last_check_at: datetime | None = None
    last_trigger_at: datetime | None = None


@dataclass
class InstanceTemplate:
    """Provisioning blueprint used when replenishing."""

    id: int
    user_id: int
    name: str
    provider: str
    region: str
    plan: str
    image: str
    disk_size: int | None = None
    enable_ipv6: bool = False
    root_password: str | None = None
    ssh_keys: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    user_data: str | None = None
    is_default: bool = False


@dataclass(frozen=True)
class InstanceSpec:
    """Parameters handed to CloudProviderClient.create_instance."""

    name: str
    region: str
    image: str
    size: str
    root_password: str
    disk_size: int | None = None
    enable_ipv6: bool = False
    ssh_keys: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    user_data: str | None = None


@dataclass(frozen=True)
class CreatedInstance:
    id: str
    name: str
    ipv4: str | None = None
    ipv6: str | None = None
    status: str = ""


@dataclass
class ReplenishLogEntry:
    """Audit record of one replenish attempt."""

    id: int
    user_id: int
    trigger_type: TriggerType
    status: ReplenishStatus = ReplenishStatus.PENDING
    task_id: int | None = None
    template_id: int | None = None
    original_instance_id: str | None = None
    original_instance_name: str | None = None
    original_credential_id: int | None = None
    new_instance_id: str | None = None
    new_instance_name: str | None = None
    new_credential_id: int | None = None
    new_ipv4: str | None = None
    new_ipv6: str | None = None
    root_password: str | None = None
    error_message: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
