"""
Collaborator protocols.

The engine never reaches for process-wide singletons: store, provider client,
notifier and decryptor are passed in. Production implementations live in
cloudwarden.dal, cloudwarden.vault.crypto and cloudwarden.notify.telegram;
the provider client is supplied by the deployment (see Config.provider_client).
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from cloudwarden.models import (
    CreatedInstance,
    Credential,
    HealthStatus,
    InstanceSpec,
    InstanceTemplate,
    ReplenishConfig,
    ReplenishLogEntry,
    ReplenishStatus,
    ReplenishTask,
    TriggerType,
    UserAccount,
)


@dataclass(frozen=True)
class Destination:
    """Where a notification goes. ``bot_token`` empty = operator bot."""

    chat_id: str
    bot_token: str = ""
    label: str = ""

    def __str__(self) -> str:
        return self.label or self.chat_id


class CredentialStore(Protocol):
    # Users and credentials
    def list_users(self) -> list[UserAccount]: ...

    def get_user(self, user_id: int) -> UserAccount | None: ...

    def get_credential(self, credential_id: int) -> Credential | None: ...

    def list_credentials(self, user_id: int) -> list[Credential]: ...

    def update_health(
        self,
        credential_id: int,
        status: HealthStatus,
        checked_at: datetime,
        error: str | None,
    ) -> None: ...

    # Replenish configuration
    def get_replenish_config(self, user_id: int) -> ReplenishConfig | None: ...

    def save_replenish_config(self, config: ReplenishConfig) -> None: ...

    def list_replenish_configs(self, *, enabled_only: bool = True) -> list[ReplenishConfig]: ...

    def list_replenish_tasks(
        self, *, enabled_only: bool = True, user_id: int | None = None
    ) -> list[ReplenishTask]: ...

    def get_replenish_task(self, task_id: int) -> ReplenishTask | None: ...

    def create_replenish_task(self, task: ReplenishTask) -> int: ...

    def update_replenish_task(self, task_id: int, **fields: Any) -> None: ...

    def delete_replenish_task(self, task_id: int) -> bool: ...

    # Templates
    def get_template(self, template_id: int) -> InstanceTemplate | None: ...

    def set_default_template(self, user_id: int, provider: str, template_id: int) -> bool: ...

    # Replenish log
    def create_replenish_log(
        self,
        *,
        user_id: int,
        trigger_type: TriggerType,
        template_id: int | None = None,
        task_id: int | None = None,
        original_instance_id: str | None = None,
        original_instance_name: str | None = None,
        original_credential_id: int | None = None,
    ) -> int: ...

    def finish_replenish_log(self, log_id: int, status: ReplenishStatus, **fields: Any) -> None: ...

    def list_replenish_logs(self, user_id: int, limit: int = 50) -> list[ReplenishLogEntry]: ...


class CloudProviderClient(Protocol):
    """Raw provider REST capability. Errors are raised as ProviderError."""

    async def get_account_info(self, provider: str, secret: str) -> dict[str, Any]: ...

    async def create_instance(
        self, provider: str, secret: str, spec: InstanceSpec
    ) -> CreatedInstance: ...

    async def list_instances(self, provider: str, secret: str) -> Sequence[dict[str, Any]]: ...


class Notifier(Protocol):
    """Outbound chat transport. Raises on delivery failure."""

    async def send(self, destination: Destination, message: str) -> None: ...


class SecretDecryptor(Protocol):
    def decrypt(self, encrypted: str | bytes) -> str: ...
