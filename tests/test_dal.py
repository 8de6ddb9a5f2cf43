"""Tests for cloudwarden.dal — PostgresCredentialStore over mocked connections."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import MagicMock, patch

import pytest

from cloudwarden.dal import PostgresCredentialStore
from cloudwarden.models import (
    CredentialGroup,
    HealthStatus,
    InstanceMapping,
    MonitorMode,
    ReplenishConfig,
    ReplenishStatus,
    ReplenishTask,
    TriggerType,
)

NOW = datetime(2026, 4, 2, 10, 0, tzinfo=UTC)


@pytest.fixture
def cur():
    return MagicMock()


@pytest.fixture
def conn(cur):
    mock_conn = MagicMock()
    mock_conn.cursor.return_value.__enter__ = MagicMock(return_value=cur)
    mock_conn.cursor.return_value.__exit__ = MagicMock(return_value=False)
    with patch("cloudwarden.dal.get_connection") as mock_get_conn:
        mock_get_conn.return_value.__enter__ = MagicMock(return_value=mock_conn)
        mock_get_conn.return_value.__exit__ = MagicMock(return_value=False)
        yield mock_conn


@pytest.fixture
def store(conn) -> PostgresCredentialStore:
    return PostgresCredentialStore()


def _credential_row(**overrides):
    row = {
        "id": 3,
        "user_id": 1,
        "name": "prod",
        "provider": "linode",
        "encrypted_secret": "b64",
        "key_group": "rental",
        "health_status": "limited",
        "last_checked": NOW,
        "error_message": "rate limited",
        "created_at": NOW,
    }
    row.update(overrides)
    return row


class TestCredentials:
    def test_get_credential(self, store, cur):
        cur.fetchone.return_value = _credential_row()
        credential = store.get_credential(3)
        assert credential.group is CredentialGroup.RENTAL
        assert credential.health_status is HealthStatus.LIMITED
        assert cur.execute.call_args[0][1] == (3,)

    def test_get_missing(self, store, cur):
        cur.fetchone.return_value = None
        assert store.get_credential(99) is None

    def test_list_in_store_order(self, store, cur):
        cur.fetchall.return_value = [_credential_row(id=1), _credential_row(id=2)]
        assert [c.id for c in store.list_credentials(1)] == [1, 2]
        assert "ORDER BY id" in cur.execute.call_args[0][0]

    def test_update_health(self, store, cur):
        store.update_health(3, HealthStatus.UNHEALTHY, NOW, "credential invalid or expired")
        assert cur.execute.call_args[0][1] == ("unhealthy", NOW, "credential invalid or expired", 3)


class TestReplenishConfig:
    def test_roundtrip_row(self, store, cur):
        cur.fetchone.return_value = {
            "user_id": 1,
            "enabled": True,
            "monitor_mode": "instances",
            "monitored_instances": [101],
            "monitored_credentials": [],
            "instance_mapping": [{"instance_id": 101, "credential_id": "3"}],
            "template_id": 4,
            "key_group": "personal",
            "check_interval": 120,
            "notify": False,
            "last_check_at": None,
        }
        config = store.get_replenish_config(1)
        assert config.monitor_mode is MonitorMode.INSTANCES
        assert config.monitored_instances == ["101"]
        assert config.instance_mapping == [InstanceMapping("101", 3)]
        assert config.notify is False

    def test_save_upserts(self, store, cur):
        store.save_replenish_config(
            ReplenishConfig(user_id=1, enabled=True, template_id=4, instance_mapping=[InstanceMapping("i-1", 3)])
        )
        sql, params = cur.execute.call_args[0]
        assert "ON CONFLICT (user_id)" in sql
        assert params[0] == 1
        assert params[5].adapted == [{"instance_id": "i-1", "credential_id": 3}]


class TestTasks:
    def test_update_rejects_unknown_columns(self, store, cur):
        with pytest.raises(ValueError, match="user_id"):
            store.update_replenish_task(1, user_id=2)
        cur.execute.assert_not_called()

    def test_update_serializes_mapping(self, store, cur):
        store.update_replenish_task(
            5, last_check_at=NOW, instance_mapping=[InstanceMapping("new-1", 2)], instance_ids=["new-1"]
        )
        sql, params = cur.execute.call_args[0]
        assert sql.startswith("UPDATE replenish_tasks SET last_check_at = %s, instance_mapping = %s")
        assert params[1].adapted == [{"instance_id": "new-1", "credential_id": 2}]
        assert params[2].adapted == ["new-1"]
        assert params[-1] == 5

    def test_create_returns_id(self, store, cur):
        cur.fetchone.return_value = (8,)
        task = ReplenishTask(
            id=0,
            user_id=1,
            name="web pool",
            enabled=True,
            template_id=4,
            credential_ids=[3],
            instance_ids=["i-1"],
            instance_mapping=[InstanceMapping("i-1", 3)],
        )
        assert store.create_replenish_task(task) == 8
        sql, params = cur.execute.call_args[0]
        assert "RETURNING id" in sql
        assert params[:4] == (1, "web pool", True, 4)
        assert params[4].adapted == [3]
        assert params[6].adapted == [{"instance_id": "i-1", "credential_id": 3}]
        assert params[-1] == 5

    def test_get_converts_row(self, store, cur):
        cur.fetchone.return_value = {
            "id": 8,
            "user_id": 1,
            "name": "web pool",
            "enabled": False,
            "template_id": None,
            "credential_ids": ["3"],
            "instance_ids": [101],
            "instance_mapping": [{"instance_id": 101, "credential_id": "3"}],
            "auto_add_new_instance": True,
            "check_interval": 5,
            "last_check_at": None,
            "last_trigger_at": None,
        }
        task = store.get_replenish_task(8)
        assert task.credential_ids == [3]
        assert task.instance_ids == ["101"]
        assert task.instance_mapping == [InstanceMapping("101", 3)]

    def test_get_missing(self, store, cur):
        cur.fetchone.return_value = None
        assert store.get_replenish_task(8) is None

    def test_list_filters_by_user(self, store, cur):
        cur.fetchall.return_value = []
        store.list_replenish_tasks(enabled_only=False, user_id=1)
        sql, params = cur.execute.call_args[0]
        assert "WHERE user_id = %s" in sql
        assert params == (1,)

    def test_list_enabled_for_all_users(self, store, cur):
        cur.fetchall.return_value = []
        store.list_replenish_tasks()
        sql, params = cur.execute.call_args[0]
        assert sql == "SELECT * FROM replenish_tasks WHERE enabled ORDER BY id"
        assert params == ()

    @pytest.mark.parametrize("rowcount, deleted", [(1, True), (0, False)])
    def test_delete(self, store, cur, rowcount, deleted):
        cur.rowcount = rowcount
        assert store.delete_replenish_task(8) is deleted
        sql, params = cur.execute.call_args[0]
        assert sql.startswith("DELETE FROM replenish_tasks")
        assert params == (8,)


class TestTemplates:
    def test_set_default_in_one_transaction(self, store, cur, conn):
        cur.fetchone.return_value = (1,)
        assert store.set_default_template(1, "digitalocean", 7) is True
        statements = [c[0][0] for c in cur.execute.call_args_list]
        assert len(statements) == 3
        assert "is_default = FALSE" in statements[1]
        assert "is_default = TRUE" in statements[2]
        assert conn.cursor.call_count == 1

    def test_set_default_unknown_template(self, store, cur):
        cur.fetchone.return_value = None
        assert store.set_default_template(1, "digitalocean", 7) is False
        assert cur.execute.call_count == 1


class TestReplenishLog:
    def test_create_returns_id(self, store, cur):
        cur.fetchone.return_value = (12,)
        log_id = store.create_replenish_log(user_id=1, trigger_type=TriggerType.INSTANCE_DOWN, template_id=2)
        assert log_id == 12
        sql, params = cur.execute.call_args[0]
        assert "'pending'" in sql
        assert params[:3] == (1, "instance_down", 2)

    def test_finish_only_pending(self, store, cur):
        cur.rowcount = 1
        store.finish_replenish_log(12, ReplenishStatus.FAILED, error_message="quota exceeded")
        sql, params = cur.execute.call_args[0]
        assert "status = 'pending'" in sql
        assert params[0] == "failed"
        assert params[2] == "quota exceeded"
        assert params[-1] == 12

    def test_finish_rejects_unknown_fields(self, store):
        with pytest.raises(ValueError):
            store.finish_replenish_log(12, ReplenishStatus.SUCCESS, user_id=2)
