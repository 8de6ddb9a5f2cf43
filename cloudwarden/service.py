"""
Cloudwarden service — the surface the HTTP layer and the daemon call into.

Wires the engine pieces around one set of collaborators:

    service = CloudwardenService.from_config(get_config())
    result = await service.trigger_replenish(user_id=1, template_id=3)
    stats = service.get_health_stats(user_id=1)

Tests build it directly with fakes.
"""

from __future__ import annotations

import dataclasses
import importlib
import logging
from typing import Any

from cloudwarden.config import MIN_CHECK_INTERVAL, Config, get_config
from cloudwarden.errors import (
    AccessDenied,
    TaskNotFound,
    TemplateNotFound,
    ValidationError,
)
from cloudwarden.interfaces import (
    CloudProviderClient,
    CredentialStore,
    Destination,
    Notifier,
    SecretDecryptor,
)
from cloudwarden.keys.batch import BatchRunner
from cloudwarden.keys.probe import CredentialProbe
from cloudwarden.keys.sweep import ScheduledSweep, SweepReport
from cloudwarden.models import (
    CredentialGroup,
    HealthStatus,
    MonitorMode,
    ReplenishConfig,
    ReplenishLogEntry,
    ReplenishTask,
)
from cloudwarden.notify.dispatcher import NotificationDispatcher
from cloudwarden.replenish.guard import ReplenishGuard
from cloudwarden.replenish.monitor import MonitorReport, ReplenishMonitor
from cloudwarden.replenish.orchestrator import ReplenishOrchestrator, ReplenishRequest

logger = logging.getLogger(__name__)

MAX_BATCH_WIDTH = 10
MAX_LOG_LIMIT = 200

_EDITABLE_TASK_FIELDS = {
    "name",
    "enabled",
    "template_id",
    "credential_ids",
    "instance_mapping",
    "auto_add_new_instance",
    "check_interval",
}


def load_provider_client(path: str) -> CloudProviderClient:
    """Import ``module:attribute``; a class or factory is called with no arguments."""
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValueError(
            f"provider client must look like 'package.module:attribute', got {path!r} "
            "(set CLOUDWARDEN_PROVIDER_CLIENT)"
        )
    target = getattr(importlib.import_module(module_name), attr)
    return target() if callable(target) else target


def _require_positive(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"{field} must be a positive integer", field=field)
    return value


class CloudwardenService:
    def __init__(
        self,
        store: CredentialStore,
        client: CloudProviderClient,
        decryptor: SecretDecryptor,
        notifier: Notifier,
        *,
        config: Config | None = None,
        operator: Destination | None = None,
    ) -> None:
        self.config = config or get_config()
        self.store = store
        self.client = client
        self.decryptor = decryptor
        self.dispatcher = NotificationDispatcher(notifier, decryptor=decryptor, operator=operator)
        self.orchestrator = ReplenishOrchestrator(
            store, client, decryptor, self.dispatcher, create_timeout=self.config.sweep.create_timeout
        )
        self.monitor = ReplenishMonitor(
            store,
            client,
            decryptor,
            self.orchestrator,
            guard=ReplenishGuard(window=self.config.sweep.replenish_dedup_window),
            timeout=self.config.sweep.probe_timeout,
        )
        self.last_sweep: SweepReport | None = None

    @classmethod
    def from_config(cls, config: Config | None = None) -> CloudwardenService:
        """Production wiring: PostgreSQL store, vault key, Telegram, configured provider client."""
        from cloudwarden.dal import PostgresCredentialStore
        from cloudwarden.notify.telegram import TelegramNotifier
        from cloudwarden.vault.crypto import VaultDecryptor

        config = config or get_config()
        operator = None
        if config.telegram.operator_enabled:
            operator = Destination(chat_id=config.telegram.admin_chat_id, label="operator")

        return cls(
            PostgresCredentialStore(),
            load_provider_client(config.provider_client),
            VaultDecryptor.from_workspace(config.workspace),
            TelegramNotifier(default_token=config.telegram.bot_token),
            config=config,
            operator=operator,
        )

    def _runner(self, width: int | None = None) -> BatchRunner:
        probe = CredentialProbe(self.client, self.decryptor, timeout=self.config.sweep.probe_timeout)
        return BatchRunner(probe, self.store, width=width or self.config.sweep.batch_width)

    # ─── Replenish ───────────────────────────────────────────────────────

    async def trigger_replenish(
        self, user_id: int, template_id: int, credential_id: int | None = None
    ) -> dict[str, Any]:
        """Manual replenish. Returns {log_id, instance, root_password, credential_id}."""
        _require_positive(user_id, "user_id")
        _require_positive(template_id, "template_id")
        if credential_id is not None:
            _require_positive(credential_id, "credential_id")

        outcome = await self.orchestrator.trigger(
            ReplenishRequest(user_id=user_id, template_id=template_id, credential_id=credential_id)
        )
        return outcome.to_dict()

    # ─── Health ──────────────────────────────────────────────────────────

    async def run_health_sweep(self, user_id: int, batch_width: int | None = None) -> dict[str, Any]:
        """Probe every credential of one user now. Returns the batch summary."""
        _require_positive(user_id, "user_id")
        if batch_width is not None:
            _require_positive(batch_width, "batch_width")
            if batch_width > MAX_BATCH_WIDTH:
                raise ValidationError(f"batch_width must be <= {MAX_BATCH_WIDTH}", field="batch_width")

        credentials = self.store.list_credentials(user_id)
        summary = await self._runner(batch_width).run(credentials)
        return summary.to_dict()

    def get_health_stats(self, user_id: int) -> dict[str, Any]:
        """Counts per persisted health status plus the latest check time."""
        credentials = self.store.list_credentials(user_id)
        stats: dict[str, Any] = {"total": len(credentials)}
        for status in HealthStatus:
            stats[status.value] = sum(1 for c in credentials if c.health_status == status)
        checked = [c.last_checked for c in credentials if c.last_checked is not None]
        stats["last_checked"] = max(checked).isoformat() if checked else None
        return stats

    async def run_sweep(self) -> SweepReport:
        sweep = ScheduledSweep(
            self.store,
            self._runner,
            self.dispatcher,
            max_credentials_per_user=self.config.sweep.max_credentials_per_user,
            panel_url=self.config.panel_url,
        )
        self.last_sweep = await sweep.run()
        return self.last_sweep

    async def run_monitor(self) -> MonitorReport:
        return await self.monitor.run_once()

    # ─── Configuration ───────────────────────────────────────────────────

    def get_replenish_config(self, user_id: int) -> ReplenishConfig:
        return self.store.get_replenish_config(user_id) or ReplenishConfig.defaults(user_id)

    def save_replenish_config(self, config: ReplenishConfig) -> ReplenishConfig:
        """Validate and persist. Returns the normalized config."""
        _require_positive(config.user_id, "user_id")
        if isinstance(config.check_interval, bool) or not isinstance(config.check_interval, int):
            raise ValidationError("check_interval must be an integer", field="check_interval")
        if config.check_interval < MIN_CHECK_INTERVAL:
            raise ValidationError(
                f"check_interval must be at least {MIN_CHECK_INTERVAL} seconds", field="check_interval"
            )
        try:
            mode = MonitorMode(config.monitor_mode)
        except ValueError:
            raise ValidationError(f"unknown monitor mode {config.monitor_mode!r}", field="monitor_mode") from None
        try:
            group = CredentialGroup(config.credential_group)
        except ValueError:
            raise ValidationError(
                f"unknown credential group {config.credential_group!r}", field="credential_group"
            ) from None

        if config.template_id is not None:
            self._owned_template(config.user_id, config.template_id)
        elif config.enabled:
            raise ValidationError("a template is required to enable auto replenish", field="template_id")

        owned = {c.id for c in self.store.list_credentials(config.user_id)}
        referenced = set(config.monitored_credentials) | {m.credential_id for m in config.instance_mapping}
        foreign = sorted(referenced - owned)
        if foreign:
            raise ValidationError(f"credentials not owned by this user: {foreign}", field="monitored_credentials")

        normalized = dataclasses.replace(config, monitor_mode=mode, credential_group=group)
        self.store.save_replenish_config(normalized)
        logger.info("Saved replenish config for user %s (enabled=%s)", config.user_id, config.enabled)
        return normalized

    def set_default_template(self, user_id: int, template_id: int) -> None:
        template = self._owned_template(user_id, template_id)
        if not self.store.set_default_template(user_id, template.provider, template.id):
            raise TemplateNotFound(f"template {template_id} not found", field="template_id")

    # ─── Tasks ───────────────────────────────────────────────────────────

    def list_replenish_tasks(self, user_id: int) -> list[ReplenishTask]:
        _require_positive(user_id, "user_id")
        return self.store.list_replenish_tasks(enabled_only=False, user_id=user_id)

    def get_replenish_task(self, user_id: int, task_id: int) -> ReplenishTask:
        task = self.store.get_replenish_task(task_id)
        if task is None:
            raise TaskNotFound(f"replenish task {task_id} not found", field="task_id")
        if task.user_id != user_id:
            raise AccessDenied(f"replenish task {task_id} is not owned by this user", field="task_id")
        return task

    def create_replenish_task(self, task: ReplenishTask) -> ReplenishTask:
        """Validate and insert. ``task.id`` is ignored; the stored task is returned."""
        _require_positive(task.user_id, "user_id")
        normalized = self._validate_task(task)
        task_id = self.store.create_replenish_task(normalized)
        logger.info("Created replenish task %s for user %s (enabled=%s)", task_id, task.user_id, task.enabled)
        return dataclasses.replace(normalized, id=task_id)

    def update_replenish_task(self, user_id: int, task_id: int, **fields: Any) -> ReplenishTask:
        """Partial update. The merged task is validated as a whole."""
        unknown = set(fields) - _EDITABLE_TASK_FIELDS
        if unknown:
            raise ValidationError(f"unknown replenish task fields: {sorted(unknown)}")
        current = self.get_replenish_task(user_id, task_id)
        updated = self._validate_task(dataclasses.replace(current, **fields))
        changes = {name: getattr(updated, name) for name in fields}
        if "instance_mapping" in fields:
            changes["instance_ids"] = updated.instance_ids
        self.store.update_replenish_task(task_id, **changes)
        return updated

    def toggle_replenish_task(self, user_id: int, task_id: int, enabled: bool | None = None) -> ReplenishTask:
        """Flip ``enabled``, or set it when given."""
        current = self.get_replenish_task(user_id, task_id)
        target = (not current.enabled) if enabled is None else enabled
        if not isinstance(target, bool):
            raise ValidationError("enabled must be a boolean", field="enabled")
        return self.update_replenish_task(user_id, task_id, enabled=target)

    def delete_replenish_task(self, user_id: int, task_id: int) -> None:
        self.get_replenish_task(user_id, task_id)
        if not self.store.delete_replenish_task(task_id):
            raise TaskNotFound(f"replenish task {task_id} not found", field="task_id")
        logger.info("Deleted replenish task %s of user %s", task_id, user_id)

    async def check_replenish_task(self, user_id: int, task_id: int) -> MonitorReport:
        """Run one task's check now."""
        self.get_replenish_task(user_id, task_id)
        return await self.monitor.check_task(task_id)

    def _validate_task(self, task: ReplenishTask) -> ReplenishTask:
        name = task.name.strip() if isinstance(task.name, str) else ""
        if not name:
            raise ValidationError("task name cannot be empty", field="name")
        interval = _require_positive(task.check_interval, "check_interval")
        if task.template_id is not None:
            self._owned_template(task.user_id, task.template_id)
        elif task.enabled:
            raise ValidationError("a template is required to enable a replenish task", field="template_id")

        owned = {c.id for c in self.store.list_credentials(task.user_id)}
        referenced = set(task.credential_ids) | {m.credential_id for m in task.instance_mapping}
        foreign = sorted(referenced - owned)
        if foreign:
            raise ValidationError(f"credentials not owned by this user: {foreign}", field="credential_ids")

        return dataclasses.replace(
            task,
            name=name,
            check_interval=interval,
            instance_ids=[m.instance_id for m in task.instance_mapping],
        )

    def list_replenish_logs(self, user_id: int, limit: int = 50) -> list[ReplenishLogEntry]:
        _require_positive(limit, "limit")
        return self.store.list_replenish_logs(user_id, limit=min(limit, MAX_LOG_LIMIT))

    def _owned_template(self, user_id: int, template_id: int):
        template = self.store.get_template(template_id)
        if template is None:
            raise TemplateNotFound(f"template {template_id} not found", field="template_id")
        if template.user_id != user_id:
            raise AccessDenied(f"template {template_id} is not owned by this user", field="template_id")
        return template
