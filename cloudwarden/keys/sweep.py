"""
Scheduled sweep — health-checks every user's keys and reports the results.

One user at a time: their credentials (capped per user) go through a
BatchRunner, the opted-in user gets a personal report, and at the end the
operator gets a consolidated report plus a separate alert when any key came
back unhealthy. Failures are contained per user and per recipient.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from cloudwarden.interfaces import CredentialStore
from cloudwarden.keys.batch import BatchRunner
from cloudwarden.models import BatchSummary, Credential, HealthStatus, UserAccount
from cloudwarden.notify.dispatcher import DeliveryResult, NotificationDispatcher
from cloudwarden.notify.messages import (
    format_operator_summary,
    format_unhealthy_alert,
    format_user_sweep_summary,
)

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None
    summaries: dict[int, BatchSummary] = field(default_factory=dict)
    usernames: dict[int, str] = field(default_factory=dict)
    skipped: dict[int, int] = field(default_factory=dict)
    failed_users: dict[int, str] = field(default_factory=dict)
    deliveries: list[DeliveryResult] = field(default_factory=list)

    @property
    def totals(self) -> dict[str, int]:
        totals = {"total": 0, "healthy": 0, "unhealthy": 0, "limited": 0}
        for summary in self.summaries.values():
            for key, value in summary.counts().items():
                totals[key] += value
        return totals

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "users": len(self.summaries),
            **self.totals,
            "failed_users": sorted(self.failed_users),
            "notifications_sent": sum(1 for d in self.deliveries if d.delivered),
            "notifications_failed": sum(1 for d in self.deliveries if not d.delivered),
        }


class ScheduledSweep:
    def __init__(
        self,
        store: CredentialStore,
        runner_factory: Callable[[], BatchRunner],
        dispatcher: NotificationDispatcher,
        *,
        max_credentials_per_user: int = 15,
        panel_url: str = "",
    ) -> None:
        self.store = store
        self.runner_factory = runner_factory
        self.dispatcher = dispatcher
        self.max_credentials_per_user = max_credentials_per_user
        self.panel_url = panel_url

    async def run(self) -> SweepReport:
        report = SweepReport()
        users = self.store.list_users()
        logger.info("Health sweep started for %d users", len(users))

        credentials: dict[int, Credential] = {}
        for user in users:
            checked = await self._sweep_user(user, report, credentials)
            if checked:
                await self._notify_user(user, report, credentials)

        await self._notify_operator(report, credentials)

        report.finished_at = datetime.now(UTC)
        totals = report.totals
        logger.info(
            "Health sweep finished: %d users, %d keys (%d healthy, %d unhealthy, %d limited), %d user failures",
            len(report.summaries),
            totals["total"],
            totals["healthy"],
            totals["unhealthy"],
            totals["limited"],
            len(report.failed_users),
        )
        return report

    async def _sweep_user(
        self, user: UserAccount, report: SweepReport, credentials: dict[int, Credential]
    ) -> bool:
        """Probe one user's keys. Returns False when there was nothing to report."""
        try:
            owned = self.store.list_credentials(user.id)
            if not owned:
                return False
            batch = owned[: self.max_credentials_per_user]
            credentials.update((c.id, c) for c in batch)
            summary = await self.runner_factory().run(batch)
        except Exception as e:
            logger.error("Health sweep failed for user %s: %s", user.id, e, exc_info=True)
            report.usernames[user.id] = user.username
            report.failed_users[user.id] = str(e)
            return False

        report.usernames[user.id] = user.username
        report.summaries[user.id] = summary
        if len(owned) > len(batch):
            report.skipped[user.id] = len(owned) - len(batch)
        return True

    async def _notify_user(
        self, user: UserAccount, report: SweepReport, credentials: dict[int, Credential]
    ) -> None:
        destination = self.dispatcher.user_destination(user)
        if destination is None:
            return
        try:
            message = format_user_sweep_summary(
                user.username,
                report.summaries[user.id],
                credentials,
                skipped=report.skipped.get(user.id, 0),
                panel_url=self.panel_url,
            )
        except Exception as e:
            logger.error("Cannot format sweep report for user %s: %s", user.id, e)
            return
        report.deliveries.append(await self.dispatcher.send(destination, message))

    async def _notify_operator(self, report: SweepReport, credentials: dict[int, Credential]) -> None:
        operator = self.dispatcher.operator
        if operator is None:
            return

        messages: list[str] = []
        per_user = [(report.usernames[uid], summary) for uid, summary in report.summaries.items()]
        failed = [report.usernames.get(uid, str(uid)) for uid in report.failed_users]
        try:
            messages.append(format_operator_summary(per_user, failed_users=failed))
        except Exception as e:
            logger.error("Cannot format operator sweep summary: %s", e, exc_info=True)

        unhealthy = [
            (report.usernames[uid], credentials.get(r.credential_id), r)
            for uid, summary in report.summaries.items()
            for r in summary.results
            if r.status == HealthStatus.UNHEALTHY
        ]
        if unhealthy:
            try:
                messages.append(format_unhealthy_alert(unhealthy))
            except Exception as e:
                logger.error("Cannot format unhealthy key alert: %s", e, exc_info=True)

        report.deliveries.extend(await self.dispatcher.send_many((operator, m) for m in messages))
