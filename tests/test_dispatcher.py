"""Tests for NotificationDispatcher and message formatting."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from cloudwarden.interfaces import Destination
from cloudwarden.models import (
    BatchSummary,
    CreatedInstance,
    Credential,
    HealthCheckResult,
    HealthStatus,
    InstanceTemplate,
    TriggerType,
    UserAccount,
)
from cloudwarden.notify.dispatcher import NotificationDispatcher
from cloudwarden.notify.messages import (
    format_operator_summary,
    format_replenish_failure,
    format_replenish_success,
    format_unhealthy_alert,
    format_user_sweep_summary,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _summary(*statuses: HealthStatus) -> BatchSummary:
    summary = BatchSummary()
    for i, status in enumerate(statuses, start=1):
        error = None if status == HealthStatus.HEALTHY else f"error {i}"
        summary.add(HealthCheckResult(i, status, NOW, error))
    return summary


class TestDispatcher:
    @pytest.mark.asyncio
    async def test_success_result(self, dispatcher, notifier):
        result = await dispatcher.send(Destination("1"), "hi")
        assert result.delivered is True
        assert result.error is None
        assert notifier.sent_to("1") == ["hi"]

    @pytest.mark.asyncio
    async def test_failure_is_returned_not_raised(self, dispatcher, notifier):
        notifier.fail_for.add("1")
        result = await dispatcher.send(Destination("1"), "hi")
        assert result.delivered is False
        assert "unreachable" in result.error

    @pytest.mark.asyncio
    async def test_send_many_attempts_every_recipient(self, dispatcher, notifier):
        notifier.fail_for.update({"1", "3"})
        results = await dispatcher.send_many([(Destination(str(i)), f"m{i}") for i in range(1, 6)])
        assert [r.delivered for r in results] == [False, True, False, True, True]
        assert [d.chat_id for d in notifier.attempts] == ["1", "2", "3", "4", "5"]


class TestUserDestination:
    def test_opted_out(self, dispatcher):
        user = UserAccount(1, "a", notify_enabled=False, telegram_chat_id="5")
        assert dispatcher.user_destination(user) is None

    def test_no_chat(self, dispatcher):
        assert dispatcher.user_destination(UserAccount(1, "a", notify_enabled=True)) is None

    def test_operator_bot_when_no_personal_token(self, dispatcher):
        destination = dispatcher.user_destination(UserAccount(1, "a", notify_enabled=True, telegram_chat_id="5"))
        assert destination == Destination(chat_id="5", bot_token="", label="a")

    def test_personal_token_is_decrypted(self, dispatcher):
        user = UserAccount(1, "a", notify_enabled=True, telegram_chat_id="5", telegram_bot_token="enc:123:abc")
        assert dispatcher.user_destination(user).bot_token == "123:abc"

    def test_undecryptable_token(self, dispatcher):
        user = UserAccount(1, "a", notify_enabled=True, telegram_chat_id="5", telegram_bot_token="junk")
        assert dispatcher.user_destination(user) is None


class TestMessages:
    def test_user_summary_counts_and_rate(self):
        credentials = {
            1: Credential(1, 1, "prod", "digitalocean", "enc:x"),
            2: Credential(2, 1, "<b>spare</b>", "linode", "enc:y"),
        }
        text = format_user_sweep_summary(
            "alice", _summary(HealthStatus.HEALTHY, HealthStatus.UNHEALTHY), credentials, now=NOW
        )
        assert "alice" in text
        assert "Checked: 2" in text
        assert "Health rate: 50.0%" in text
        assert "prod (digitalocean)" in text
        assert "&lt;b&gt;spare&lt;/b&gt;" in text
        assert "error 2" in text
        assert "2026-03-01 12:00 UTC" in text

    def test_user_summary_cap_note(self):
        text = format_user_sweep_summary(
            "bob", _summary(HealthStatus.HEALTHY), {}, skipped=4, panel_url="https://panel.example.com"
        )
        assert "4 more key(s)" in text
        assert "https://panel.example.com" in text

    def test_user_summary_lists_at_most_three_problems(self):
        text = format_user_sweep_summary("c", _summary(*[HealthStatus.LIMITED] * 5), {})
        assert "... and 2 more" in text

    def test_operator_summary(self):
        text = format_operator_summary(
            [("alice", _summary(HealthStatus.HEALTHY)), ("bob", _summary(HealthStatus.UNHEALTHY))],
            failed_users=["carol"],
        )
        assert "Users: 2" in text
        assert "Health rate: 50.0%" in text
        assert "bob: 1" in text
        assert "carol" in text

    def test_operator_summary_with_no_keys(self):
        assert "Health rate: n/a" in format_operator_summary([])

    def test_unhealthy_alert(self):
        result = HealthCheckResult(3, HealthStatus.UNHEALTHY, NOW, "credential invalid or expired")
        text = format_unhealthy_alert([("alice", Credential(3, 1, "old", "azure", "enc:z"), result)])
        assert "Count: 1" in text
        assert "old (azure)" in text
        assert "credential invalid or expired" in text

    def test_replenish_messages(self):
        template = InstanceTemplate(1, 1, "web", "digitalocean", "fra1", "s-1vcpu-1gb", "ubuntu")
        instance = CreatedInstance("42", "do-auto-1", ipv4="198.51.100.7", ipv6="2001:db8::7")
        ok = format_replenish_success(
            trigger_type=TriggerType.INSTANCE_DOWN,
            template=template,
            instance=instance,
            root_password="Pw",
            original_instance="old-box",
            task_name="edge nodes",
        )
        assert "instance down" in ok
        assert "198.51.100.7" in ok
        assert "2001:db8::7" in ok
        assert "old-box" in ok
        assert "edge nodes" in ok

        failed = format_replenish_failure(trigger_type=TriggerType.MANUAL, error="quota <exceeded>")
        assert "quota &lt;exceeded&gt;" in failed
