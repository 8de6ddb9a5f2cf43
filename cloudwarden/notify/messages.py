"""
Message formatting for sweep reports and replenish outcomes.

Everything here returns Telegram HTML. Values that come from users or
providers (names, error text) are escaped; the layout is plain tags only so
the plain-text fallback in the transport still reads well.
"""

from __future__ import annotations

import html
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime

from cloudwarden.keys.providers import get_profile
from cloudwarden.models import (
    BatchSummary,
    CreatedInstance,
    Credential,
    HealthCheckResult,
    HealthStatus,
    InstanceTemplate,
    TriggerType,
)

# How many keys of each kind a personal report lists by name
MAX_LISTED_HEALTHY = 5
MAX_LISTED_PROBLEMS = 3
MAX_ALERT_ENTRIES = 10
MAX_ALERT_USERS = 5

TRIGGER_LABELS = {
    TriggerType.MANUAL: "manual",
    TriggerType.INSTANCE_DOWN: "instance down",
    TriggerType.CREDENTIAL_INVALID: "credential invalid",
}


def _esc(value: object) -> str:
    return html.escape(str(value), quote=False)


def _stamp(now: datetime | None) -> str:
    return (now or datetime.now(UTC)).strftime("%Y-%m-%d %H:%M UTC")


def _rate(healthy: int, total: int) -> str:
    if total == 0:
        return "n/a"
    return f"{healthy * 100 / total:.1f}%"


def _key_line(credential: Credential | None, result: HealthCheckResult, *, with_error: bool) -> str:
    if credential is None:
        label = f"#{result.credential_id}"
        icon = "\U0001f511"
    else:
        label = f"{credential.name} ({credential.provider})"
        icon = get_profile(credential.provider).display_icon
    line = f"  {icon} {_esc(label)}"
    if with_error and result.error:
        line += f"\n      <i>{_esc(result.error)}</i>"
    return line


def format_user_sweep_summary(
    username: str,
    summary: BatchSummary,
    credentials: Mapping[int, Credential],
    *,
    skipped: int = 0,
    panel_url: str = "",
    now: datetime | None = None,
) -> str:
    """Personal report for one user after a scheduled sweep."""
    lines = [
        "\U0001f50d <b>Key health report</b>",
        "",
        f"\U0001f464 User: {_esc(username)}",
        f"⏰ Time: {_stamp(now)}",
        "",
        f"Checked: {summary.total}",
        f"✅ Healthy: {summary.healthy}",
        f"❌ Unhealthy: {summary.unhealthy}",
        f"⚠️ Limited: {summary.limited}",
        f"Health rate: {_rate(summary.healthy, summary.total)}",
    ]

    healthy = [r for r in summary.results if r.status == HealthStatus.HEALTHY]
    if healthy:
        lines += ["", "<b>Healthy keys</b>"]
        lines += [_key_line(credentials.get(r.credential_id), r, with_error=False) for r in healthy[:MAX_LISTED_HEALTHY]]
        if len(healthy) > MAX_LISTED_HEALTHY:
            lines.append(f"  ... and {len(healthy) - MAX_LISTED_HEALTHY} more")

    for status, title in ((HealthStatus.LIMITED, "Limited keys"), (HealthStatus.UNHEALTHY, "Unhealthy keys")):
        matching = [r for r in summary.results if r.status == status]
        if not matching:
            continue
        lines += ["", f"<b>{title}</b>"]
        lines += [_key_line(credentials.get(r.credential_id), r, with_error=True) for r in matching[:MAX_LISTED_PROBLEMS]]
        if len(matching) > MAX_LISTED_PROBLEMS:
            lines.append(f"  ... and {len(matching) - MAX_LISTED_PROBLEMS} more")

    if skipped:
        lines += ["", f"ℹ️ {skipped} more key(s) were not checked in this run (per-user cap)."]
        if panel_url:
            lines.append(f"Check them from the panel: {_esc(panel_url)}")

    return "\n".join(lines)


def format_operator_summary(
    per_user: Sequence[tuple[str, BatchSummary]],
    *,
    failed_users: Sequence[str] = (),
    now: datetime | None = None,
) -> str:
    """Consolidated report across every user of one sweep."""
    total = sum(s.total for _, s in per_user)
    healthy = sum(s.healthy for _, s in per_user)
    unhealthy = sum(s.unhealthy for _, s in per_user)
    limited = sum(s.limited for _, s in per_user)

    lines = [
        "\U0001f4ca <b>Scheduled health sweep</b>",
        "",
        f"⏰ Time: {_stamp(now)}",
        f"\U0001f465 Users: {len(per_user)}",
        f"Checked: {total}",
        f"✅ Healthy: {healthy}",
        f"❌ Unhealthy: {unhealthy}",
        f"⚠️ Limited: {limited}",
        f"Health rate: {_rate(healthy, total)}",
    ]

    offenders = sorted(
        ((name, s.unhealthy) for name, s in per_user if s.unhealthy),
        key=lambda item: item[1],
        reverse=True,
    )
    if offenders:
        lines += ["", "<b>Unhealthy keys by user</b>"]
        lines += [f"  {_esc(name)}: {count}" for name, count in offenders[:MAX_ALERT_USERS]]

    if failed_users:
        lines += ["", f"❗ Sweep failed for: {_esc(', '.join(failed_users))}"]

    return "\n".join(lines)


def format_unhealthy_alert(
    entries: Sequence[tuple[str, Credential | None, HealthCheckResult]],
    *,
    now: datetime | None = None,
) -> str:
    """High-priority alert listing unhealthy keys as (username, credential, result)."""
    lines = [
        "\U0001f6a8 <b>Unhealthy keys detected</b>",
        "",
        f"⏰ Time: {_stamp(now)}",
        f"Count: {len(entries)}",
        "",
    ]
    for username, credential, result in entries[:MAX_ALERT_ENTRIES]:
        lines.append(f"{_esc(username)}:" + _key_line(credential, result, with_error=True))
    if len(entries) > MAX_ALERT_ENTRIES:
        lines.append(f"... and {len(entries) - MAX_ALERT_ENTRIES} more")
    return "\n".join(lines)


def format_replenish_success(
    *,
    trigger_type: TriggerType,
    template: InstanceTemplate,
    instance: CreatedInstance,
    root_password: str,
    original_instance: str | None = None,
    task_name: str | None = None,
    now: datetime | None = None,
) -> str:
    lines = [
        "\U0001f680 <b>Auto replenish succeeded</b>",
        "",
        f"⏰ Time: {_stamp(now)}",
        f"Trigger: {TRIGGER_LABELS.get(trigger_type, str(trigger_type))}",
    ]
    if task_name:
        lines.append(f"\U0001f4cb Task: {_esc(task_name)}")
    if original_instance:
        lines.append(f"♻️ Replaced: {_esc(original_instance)}")
    lines += [
        f"☁️ Provider: {_esc(template.provider)}",
        f"\U0001f30d Region: {_esc(template.region)}",
        f"\U0001f4bb Plan: {_esc(template.plan)}",
        f"\U0001f3f7️ New instance: {_esc(instance.name or instance.id)}",
    ]
    if instance.ipv4:
        lines.append(f"IPv4: <code>{_esc(instance.ipv4)}</code>")
    if instance.ipv6:
        lines.append(f"IPv6: <code>{_esc(instance.ipv6)}</code>")
    lines.append(f"\U0001f510 Root password: <code>{_esc(root_password)}</code>")
    return "\n".join(lines)


def format_replenish_failure(
    *,
    trigger_type: TriggerType,
    error: str,
    template: InstanceTemplate | None = None,
    original_instance: str | None = None,
    task_name: str | None = None,
    now: datetime | None = None,
) -> str:
    lines = [
        "\U0001f534 <b>Auto replenish failed</b>",
        "",
        f"⏰ Time: {_stamp(now)}",
        f"Trigger: {TRIGGER_LABELS.get(trigger_type, str(trigger_type))}",
    ]
    if task_name:
        lines.append(f"\U0001f4cb Task: {_esc(task_name)}")
    if original_instance:
        lines.append(f"Original instance: {_esc(original_instance)}")
    if template is not None:
        lines.append(f"Template: {_esc(template.name)} ({_esc(template.provider)}, {_esc(template.region)})")
    lines.append(f"⚠️ Error: {_esc(error)}")
    return "\n".join(lines)
