"""
Replenish monitor — the failure-detection hook that feeds the orchestrator.

Each tick walks every enabled ReplenishTask and every enabled per-user
ReplenishConfig whose interval has elapsed. ``check_task`` runs one task on
demand, ignoring its interval:

- instance watching: each monitored instance is looked up with the credential
  it is mapped to. An instance missing from the provider's listing, or a
  listing that fails, counts as down and gets an ``instance_down`` replenish.
  The replacement takes over the dead instance's slot in the mapping.
- credential watching: each monitored credential whose persisted health is
  ``unhealthy`` gets a ``credential_invalid`` replenish.

Automatic triggers go through a ReplenishGuard so one failure is replaced
once per dedup window. A failure on one task, user or instance is logged and
the tick carries on.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from cloudwarden.config import MIN_CHECK_INTERVAL
from cloudwarden.errors import TaskNotFound, ValidationError
from cloudwarden.interfaces import CloudProviderClient, CredentialStore, SecretDecryptor
from cloudwarden.models import (
    HealthStatus,
    InstanceMapping,
    MonitorMode,
    ReplenishConfig,
    ReplenishTask,
    TriggerType,
)
from cloudwarden.replenish.guard import ReplenishGuard
from cloudwarden.replenish.orchestrator import (
    ReplenishOrchestrator,
    ReplenishOutcome,
    ReplenishRequest,
)

logger = logging.getLogger(__name__)


@dataclass
class MonitorReport:
    checked: int = 0
    triggered: int = 0
    suppressed: int = 0
    outcomes: list[ReplenishOutcome] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)


def _is_due(last_check_at: datetime | None, interval_seconds: int, now: datetime) -> bool:
    if last_check_at is None:
        return True
    interval = max(interval_seconds, MIN_CHECK_INTERVAL)
    return now - last_check_at >= timedelta(seconds=interval)


def _remap(
    mapping: list[InstanceMapping],
    replacements: dict[str, InstanceMapping | None],
) -> list[InstanceMapping]:
    """Swap replaced instances for their successors; None drops the entry."""
    updated = []
    for entry in mapping:
        if entry.instance_id not in replacements:
            updated.append(entry)
        elif replacements[entry.instance_id] is not None:
            updated.append(replacements[entry.instance_id])
    return updated


class ReplenishMonitor:
    def __init__(
        self,
        store: CredentialStore,
        client: CloudProviderClient,
        decryptor: SecretDecryptor,
        orchestrator: ReplenishOrchestrator,
        *,
        guard: ReplenishGuard | None = None,
        timeout: float = 20.0,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.store = store
        self.client = client
        self.decryptor = decryptor
        self.orchestrator = orchestrator
        self.guard = guard or ReplenishGuard()
        self.timeout = timeout
        self.clock = clock

    async def run_once(self) -> MonitorReport:
        report = MonitorReport()
        now = self.clock()

        for task in self.store.list_replenish_tasks(enabled_only=True):
            if not _is_due(task.last_check_at, task.check_interval * 60, now):
                continue
            try:
                await self._check_task(task, now, report)
            except Exception as e:
                logger.error("Replenish task %s check failed: %s", task.id, e, exc_info=True)
                report.failures.append(f"task {task.id}: {e}")

        for config in self.store.list_replenish_configs(enabled_only=True):
            if not _is_due(config.last_check_at, config.check_interval, now):
                continue
            try:
                await self._check_config(config, now, report)
            except Exception as e:
                logger.error("Replenish config for user %s failed: %s", config.user_id, e, exc_info=True)
                report.failures.append(f"user {config.user_id}: {e}")

        if report.triggered or report.failures:
            logger.info(
                "Replenish monitor: %d checked, %d triggered, %d suppressed, %d failures",
                report.checked,
                report.triggered,
                report.suppressed,
                len(report.failures),
            )
        return report

    # ─── Tasks ──────────────────────────────────────────────────────────

    async def check_task(self, task_id: int) -> MonitorReport:
        """Check one task now, regardless of its interval."""
        task = self.store.get_replenish_task(task_id)
        if task is None:
            raise TaskNotFound(f"Replenish task {task_id} not found")
        if not task.enabled:
            raise ValidationError("Replenish task is disabled, enable it first", field="enabled")
        if task.template_id is None:
            raise ValidationError("Replenish task has no template", field="template_id")
        if self.store.get_template(task.template_id) is None:
            raise ValidationError(f"Template {task.template_id} no longer exists", field="template_id")
        if not task.instance_mapping:
            raise ValidationError("Replenish task watches no instances", field="instance_mapping")

        report = MonitorReport()
        await self._check_task(task, self.clock(), report)
        logger.info(
            "Replenish task %s checked on demand: %d checked, %d triggered, %d suppressed",
            task.id,
            report.checked,
            report.triggered,
            report.suppressed,
        )
        return report

    async def _check_task(self, task: ReplenishTask, now: datetime, report: MonitorReport) -> None:
        fields: dict = {"last_check_at": now}
        if task.template_id is None or not task.instance_mapping:
            logger.debug("Replenish task %s has no template or no instances, skipping", task.id)
            self.store.update_replenish_task(task.id, **fields)
            return

        replacements: dict[str, InstanceMapping | None] = {}
        for entry in task.instance_mapping:
            report.checked += 1
            if not await self._instance_down(task.user_id, entry):
                continue
            outcome = await self._replenish(
                ReplenishRequest(
                    user_id=task.user_id,
                    template_id=task.template_id,
                    trigger_type=TriggerType.INSTANCE_DOWN,
                    candidate_ids=tuple(task.credential_ids) or None,
                    task_id=task.id,
                    task_name=task.name,
                    original_instance_id=entry.instance_id,
                    original_credential_id=entry.credential_id,
                ),
                f"instance:{entry.instance_id}",
                report,
            )
            if outcome is None:
                continue
            fields["last_trigger_at"] = now
            if task.auto_add_new_instance:
                replacements[entry.instance_id] = InstanceMapping(str(outcome.instance.id), outcome.credential_id)
            else:
                replacements[entry.instance_id] = None

        if replacements:
            mapping = _remap(task.instance_mapping, replacements)
            fields["instance_mapping"] = mapping
            fields["instance_ids"] = [m.instance_id for m in mapping]
        self.store.update_replenish_task(task.id, **fields)

    # ─── Per-user config ────────────────────────────────────────────────

    async def _check_config(self, config: ReplenishConfig, now: datetime, report: MonitorReport) -> None:
        if config.template_id is None:
            logger.warning("Replenish enabled for user %s without a template, skipping", config.user_id)
            self.store.save_replenish_config(dataclasses.replace(config, last_check_at=now))
            return

        if config.monitor_mode == MonitorMode.CREDENTIALS:
            await self._check_credentials(config, report)
            self.store.save_replenish_config(dataclasses.replace(config, last_check_at=now))
            return

        watched = set(config.monitored_instances)
        mapping = [m for m in config.instance_mapping if not watched or m.instance_id in watched]
        replacements: dict[str, InstanceMapping | None] = {}
        for entry in mapping:
            report.checked += 1
            if not await self._instance_down(config.user_id, entry):
                continue
            outcome = await self._replenish(
                ReplenishRequest(
                    user_id=config.user_id,
                    template_id=config.template_id,
                    trigger_type=TriggerType.INSTANCE_DOWN,
                    original_instance_id=entry.instance_id,
                    original_credential_id=entry.credential_id,
                ),
                f"instance:{entry.instance_id}",
                report,
            )
            if outcome is not None:
                replacements[entry.instance_id] = InstanceMapping(str(outcome.instance.id), outcome.credential_id)

        updated = dataclasses.replace(config, last_check_at=now)
        if replacements:
            updated.instance_mapping = _remap(config.instance_mapping, replacements)
            updated.monitored_instances = [
                replacements[i].instance_id if replacements.get(i) else i for i in config.monitored_instances
            ]
        self.store.save_replenish_config(updated)

    async def _check_credentials(self, config: ReplenishConfig, report: MonitorReport) -> None:
        for credential_id in config.monitored_credentials:
            report.checked += 1
            credential = self.store.get_credential(credential_id)
            if credential is None or credential.user_id != config.user_id:
                logger.warning("Monitored credential %s of user %s is gone", credential_id, config.user_id)
                continue
            if credential.health_status != HealthStatus.UNHEALTHY:
                continue
            await self._replenish(
                ReplenishRequest(
                    user_id=config.user_id,
                    template_id=config.template_id,
                    trigger_type=TriggerType.CREDENTIAL_INVALID,
                    original_credential_id=credential.id,
                ),
                f"credential:{credential.id}",
                report,
            )

    # ─── Shared ─────────────────────────────────────────────────────────

    async def _instance_down(self, user_id: int, entry: InstanceMapping) -> bool:
        credential = self.store.get_credential(entry.credential_id)
        if credential is None or credential.user_id != user_id:
            logger.warning(
                "Cannot check instance %s: credential %s missing or not owned by user %s",
                entry.instance_id,
                entry.credential_id,
                user_id,
            )
            return False

        try:
            secret = self.decryptor.decrypt(credential.encrypted_secret)
            async with asyncio.timeout(self.timeout):
                instances = await self.client.list_instances(credential.provider, secret)
        except Exception as e:
            logger.warning(
                "Listing instances with credential %s failed, treating %s as down: %s",
                credential.id,
                entry.instance_id,
                e,
            )
            return True

        present = any(str(i.get("id")) == str(entry.instance_id) for i in instances)
        if not present:
            logger.info(
                "Instance %s is missing from %s listing (%d instances)",
                entry.instance_id,
                credential.provider,
                len(instances),
            )
        return not present

    async def _replenish(
        self, request: ReplenishRequest, target: str, report: MonitorReport
    ) -> ReplenishOutcome | None:
        if not self.guard.try_acquire(request.user_id, target):
            report.suppressed += 1
            return None

        report.triggered += 1
        try:
            outcome = await self.orchestrator.trigger(request)
        except Exception as e:
            logger.error("Automatic replenish for user %s (%s) failed: %s", request.user_id, target, e)
            report.failures.append(f"user {request.user_id} {target}: {e}")
            return None
        finally:
            self.guard.release(request.user_id, target)

        report.outcomes.append(outcome)
        return outcome
