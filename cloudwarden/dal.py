"""
Cloudwarden Data Access Layer — PostgreSQL implementation of CredentialStore.

Rows come back through RealDictCursor and are converted to the dataclasses
in cloudwarden.models. JSONB columns hold id lists and instance mappings.

Usage:
    from cloudwarden.dal import PostgresCredentialStore

    store = PostgresCredentialStore()
    for credential in store.list_credentials(user_id=1):
        ...
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from psycopg2.extras import Json, RealDictCursor

from cloudwarden.db.connection import get_connection
from cloudwarden.models import (
    Credential,
    CredentialGroup,
    HealthStatus,
    InstanceMapping,
    InstanceTemplate,
    MonitorMode,
    ReplenishConfig,
    ReplenishLogEntry,
    ReplenishStatus,
    ReplenishTask,
    TriggerType,
    UserAccount,
)

logger = logging.getLogger(__name__)

_TASK_COLUMNS = {
    "name",
    "enabled",
    "template_id",
    "credential_ids",
    "instance_ids",
    "instance_mapping",
    "auto_add_new_instance",
    "check_interval",
    "last_check_at",
    "last_trigger_at",
}

_LOG_COLUMNS = {
    "new_instance_id",
    "new_instance_name",
    "new_credential_id",
    "new_ipv4",
    "new_ipv6",
    "root_password",
    "error_message",
    "details",
}

_JSON_COLUMNS = {"credential_ids", "instance_ids", "instance_mapping", "details"}


# ─── Row conversion ──────────────────────────────────────────────────────


def _mapping_from_json(raw: list[dict] | None) -> list[InstanceMapping]:
    return [InstanceMapping(str(m["instance_id"]), int(m["credential_id"])) for m in raw or []]


def _mapping_to_json(mapping: list[InstanceMapping]) -> Json:
    return Json([{"instance_id": m.instance_id, "credential_id": m.credential_id} for m in mapping])


def _json_value(column: str, value: Any) -> Any:
    if column == "instance_mapping":
        return _mapping_to_json(value)
    if column in _JSON_COLUMNS:
        return Json(value)
    return value


def _user(row: dict) -> UserAccount:
    return UserAccount(
        id=row["id"],
        username=row["username"],
        notify_enabled=row["notify_enabled"],
        telegram_chat_id=row["telegram_chat_id"] or "",
        telegram_bot_token=row["telegram_bot_token"] or "",
    )


def _credential(row: dict) -> Credential:
    return Credential(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        provider=row["provider"],
        encrypted_secret=row["encrypted_secret"],
        group=CredentialGroup(row["key_group"]),
        health_status=HealthStatus(row["health_status"]),
        last_checked=row["last_checked"],
        error_message=row["error_message"],
        created_at=row["created_at"],
    )


def _config(row: dict) -> ReplenishConfig:
    return ReplenishConfig(
        user_id=row["user_id"],
        enabled=row["enabled"],
        monitor_mode=MonitorMode(row["monitor_mode"]),
        monitored_instances=[str(i) for i in row["monitored_instances"] or []],
        monitored_credentials=[int(i) for i in row["monitored_credentials"] or []],
        instance_mapping=_mapping_from_json(row["instance_mapping"]),
        template_id=row["template_id"],
        credential_group=CredentialGroup(row["key_group"]),
        check_interval=row["check_interval"],
        notify=row["notify"],
        last_check_at=row["last_check_at"],
    )


def _task(row: dict) -> ReplenishTask:
    return ReplenishTask(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        enabled=row["enabled"],
        template_id=row["template_id"],
        credential_ids=[int(i) for i in row["credential_ids"] or []],
        instance_ids=[str(i) for i in row["instance_ids"] or []],
        instance_mapping=_mapping_from_json(row["instance_mapping"]),
        auto_add_new_instance=row["auto_add_new_instance"],
        check_interval=row["check_interval"],
        last_check_at=row["last_check_at"],
        last_trigger_at=row["last_trigger_at"],
    )


def _template(row: dict) -> InstanceTemplate:
    return InstanceTemplate(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        provider=row["provider"],
        region=row["region"],
        plan=row["plan"],
        image=row["image"],
        disk_size=row["disk_size"],
        enable_ipv6=row["enable_ipv6"],
        root_password=row["root_password"],
        ssh_keys=list(row["ssh_keys"] or []),
        tags=list(row["tags"] or []),
        user_data=row["user_data"],
        is_default=row["is_default"],
    )


def _log(row: dict) -> ReplenishLogEntry:
    return ReplenishLogEntry(
        id=row["id"],
        user_id=row["user_id"],
        trigger_type=TriggerType(row["trigger_type"]),
        status=ReplenishStatus(row["status"]),
        task_id=row["task_id"],
        template_id=row["template_id"],
        original_instance_id=row["original_instance_id"],
        original_instance_name=row["original_instance_name"],
        original_credential_id=row["original_credential_id"],
        new_instance_id=row["new_instance_id"],
        new_instance_name=row["new_instance_name"],
        new_credential_id=row["new_credential_id"],
        new_ipv4=row["new_ipv4"],
        new_ipv6=row["new_ipv6"],
        root_password=row["root_password"],
        error_message=row["error_message"],
        details=row["details"] or {},
        created_at=row["created_at"],
    )


class PostgresCredentialStore:
    """CredentialStore over the tables in db/migrations/001_initial.sql."""

    def _fetchall(self, sql: str, params: tuple = ()) -> list[dict]:
        with get_connection() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(sql, params)
            return cur.fetchall()

    def _fetchone(self, sql: str, params: tuple = ()) -> dict | None:
        with get_connection() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(sql, params)
            return cur.fetchone()

    # ─── Users & credentials ─────────────────────────────────────────────

    def list_users(self) -> list[UserAccount]:
        return [_user(r) for r in self._fetchall("SELECT * FROM users ORDER BY id")]

    def get_user(self, user_id: int) -> UserAccount | None:
        row = self._fetchone("SELECT * FROM users WHERE id = %s", (user_id,))
        return _user(row) if row else None

    def get_credential(self, credential_id: int) -> Credential | None:
        row = self._fetchone("SELECT * FROM credentials WHERE id = %s", (credential_id,))
        return _credential(row) if row else None

    def list_credentials(self, user_id: int) -> list[Credential]:
        rows = self._fetchall("SELECT * FROM credentials WHERE user_id = %s ORDER BY id", (user_id,))
        return [_credential(r) for r in rows]

    def update_health(
        self,
        credential_id: int,
        status: HealthStatus,
        checked_at: datetime,
        error: str | None,
    ) -> None:
        with get_connection() as conn, conn.cursor() as cur:
            cur.execute(
                """
                UPDATE credentials
                SET health_status = %s, last_checked = %s, error_message = %s
                WHERE id = %s
                """,
                (HealthStatus(status).value, checked_at, error, credential_id),
            )

    # ─── Replenish config & tasks ────────────────────────────────────────

    def get_replenish_config(self, user_id: int) -> ReplenishConfig | None:
        row = self._fetchone("SELECT * FROM replenish_config WHERE user_id = %s", (user_id,))
        return _config(row) if row else None

    def save_replenish_config(self, config: ReplenishConfig) -> None:
        with get_connection() as conn, conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO replenish_config (
                    user_id, enabled, monitor_mode, monitored_instances, monitored_credentials,
                    instance_mapping, template_id, key_group, check_interval, notify,
                    last_check_at, updated_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, NOW())
                ON CONFLICT (user_id) DO UPDATE SET
                    enabled = EXCLUDED.enabled,
                    monitor_mode = EXCLUDED.monitor_mode,
                    monitored_instances = EXCLUDED.monitored_instances,
                    monitored_credentials = EXCLUDED.monitored_credentials,
                    instance_mapping = EXCLUDED.instance_mapping,
                    template_id = EXCLUDED.template_id,
                    key_group = EXCLUDED.key_group,
                    check_interval = EXCLUDED.check_interval,
                    notify = EXCLUDED.notify,
                    last_check_at = EXCLUDED.last_check_at,
                    updated_at = NOW()
                """,
                (
                    config.user_id,
                    config.enabled,
                    MonitorMode(config.monitor_mode).value,
                    Json(list(config.monitored_instances)),
                    Json(list(config.monitored_credentials)),
                    _mapping_to_json(config.instance_mapping),
                    config.template_id,
                    CredentialGroup(config.credential_group).value,
                    config.check_interval,
                    config.notify,
                    config.last_check_at,
                ),
            )

    def list_replenish_configs(self, *, enabled_only: bool = True) -> list[ReplenishConfig]:
        sql = "SELECT * FROM replenish_config"
        if enabled_only:
            sql += " WHERE enabled"
        return [_config(r) for r in self._fetchall(sql + " ORDER BY user_id")]

    def list_replenish_tasks(
        self, *, enabled_only: bool = True, user_id: int | None = None
    ) -> list[ReplenishTask]:
        clauses, params = [], []
        if enabled_only:
            clauses.append("enabled")
        if user_id is not None:
            clauses.append("user_id = %s")
            params.append(user_id)
        sql = "SELECT * FROM replenish_tasks"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        return [_task(r) for r in self._fetchall(sql + " ORDER BY id", tuple(params))]

    def get_replenish_task(self, task_id: int) -> ReplenishTask | None:
        row = self._fetchone("SELECT * FROM replenish_tasks WHERE id = %s", (task_id,))
        return _task(row) if row else None

    def create_replenish_task(self, task: ReplenishTask) -> int:
        with get_connection() as conn, conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO replenish_tasks (
                    user_id, name, enabled, template_id, credential_ids, instance_ids,
                    instance_mapping, auto_add_new_instance, check_interval
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING id
                """,
                (
                    task.user_id,
                    task.name,
                    task.enabled,
                    task.template_id,
                    Json(task.credential_ids),
                    Json(task.instance_ids),
                    _mapping_to_json(task.instance_mapping),
                    task.auto_add_new_instance,
                    task.check_interval,
                ),
            )
            return cur.fetchone()[0]

    def update_replenish_task(self, task_id: int, **fields: Any) -> None:
        unknown = set(fields) - _TASK_COLUMNS
        if unknown:
            raise ValueError(f"Unknown replenish task fields: {sorted(unknown)}")
        if not fields:
            return
        assignments = ", ".join(f"{column} = %s" for column in fields)
        values = [_json_value(column, value) for column, value in fields.items()]
        with get_connection() as conn, conn.cursor() as cur:
            cur.execute(f"UPDATE replenish_tasks SET {assignments} WHERE id = %s", (*values, task_id))

    def delete_replenish_task(self, task_id: int) -> bool:
        with get_connection() as conn, conn.cursor() as cur:
            cur.execute("DELETE FROM replenish_tasks WHERE id = %s", (task_id,))
            return cur.rowcount > 0

    # ─── Templates ───────────────────────────────────────────────────────

    def get_template(self, template_id: int) -> InstanceTemplate | None:
        row = self._fetchone("SELECT * FROM instance_templates WHERE id = %s", (template_id,))
        return _template(row) if row else None

    def set_default_template(self, user_id: int, provider: str, template_id: int) -> bool:
        """Clear the previous default for (user, provider), then mark this one. One transaction."""
        with get_connection() as conn, conn.cursor() as cur:
            cur.execute(
                "SELECT 1 FROM instance_templates WHERE id = %s AND user_id = %s AND provider = %s",
                (template_id, user_id, provider),
            )
            if cur.fetchone() is None:
                return False
            cur.execute(
                """
                UPDATE instance_templates SET is_default = FALSE, updated_at = NOW()
                WHERE user_id = %s AND provider = %s AND is_default AND id <> %s
                """,
                (user_id, provider, template_id),
            )
            cur.execute(
                "UPDATE instance_templates SET is_default = TRUE, updated_at = NOW() WHERE id = %s",
                (template_id,),
            )
            return True

    # ─── Replenish log ───────────────────────────────────────────────────

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
    ) -> int:
        with get_connection() as conn, conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO replenish_logs (
                    user_id, trigger_type, template_id, task_id, original_instance_id,
                    original_instance_name, original_credential_id, status
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, 'pending')
                RETURNING id
                """,
                (
                    user_id,
                    TriggerType(trigger_type).value,
                    template_id,
                    task_id,
                    original_instance_id,
                    original_instance_name,
                    original_credential_id,
                ),
            )
            return cur.fetchone()[0]

    def finish_replenish_log(self, log_id: int, status: ReplenishStatus, **fields: Any) -> None:
        """Move a pending log to its terminal status. A log is only finished once."""
        unknown = set(fields) - _LOG_COLUMNS
        if unknown:
            raise ValueError(f"Unknown replenish log fields: {sorted(unknown)}")
        assignments = ["status = %s", "finished_at = %s"]
        values: list[Any] = [ReplenishStatus(status).value, datetime.now(UTC)]
        for column, value in fields.items():
            assignments.append(f"{column} = %s")
            values.append(_json_value(column, value))
        with get_connection() as conn, conn.cursor() as cur:
            cur.execute(
                f"UPDATE replenish_logs SET {', '.join(assignments)} WHERE id = %s AND status = 'pending'",
                (*values, log_id),
            )
            if cur.rowcount == 0:
                logger.warning("Replenish log %s was not pending, left unchanged", log_id)

    def list_replenish_logs(self, user_id: int, limit: int = 50) -> list[ReplenishLogEntry]:
        rows = self._fetchall(
            "SELECT * FROM replenish_logs WHERE user_id = %s ORDER BY created_at DESC, id DESC LIMIT %s",
            (user_id, limit),
        )
        return [_log(r) for r in rows]
