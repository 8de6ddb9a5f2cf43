"""
Notification dispatcher — best-effort delivery with explicit results.

A failed send is logged and returned as ``DeliveryResult(delivered=False)``;
it is never raised. Callers that fan out to many recipients therefore always
attempt every one of them.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from cloudwarden.interfaces import Destination, Notifier, SecretDecryptor
from cloudwarden.models import UserAccount

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    destination: Destination
    delivered: bool
    error: str | None = None


class NotificationDispatcher:
    def __init__(
        self,
        notifier: Notifier,
        *,
        decryptor: SecretDecryptor | None = None,
        operator: Destination | None = None,
    ) -> None:
        self.notifier = notifier
        self.decryptor = decryptor
        self.operator = operator

    async def send(self, destination: Destination, message: str) -> DeliveryResult:
        try:
            await self.notifier.send(destination, message)
        except Exception as e:
            logger.error("Notification to %s failed: %s", destination, e)
            return DeliveryResult(destination, delivered=False, error=str(e) or type(e).__name__)
        logger.debug("Notification delivered to %s", destination)
        return DeliveryResult(destination, delivered=True)

    async def send_many(self, deliveries: Iterable[tuple[Destination, str]]) -> list[DeliveryResult]:
        """Send each (destination, message) in order; one failure never stops the rest."""
        return [await self.send(destination, message) for destination, message in deliveries]

    def user_destination(self, user: UserAccount) -> Destination | None:
        """Resolve where a user's personal notifications go.

        None when the user has not opted in or has no chat configured. A
        personal bot token is decrypted here; an undecryptable token also
        yields None rather than falling back to the operator bot.
        """
        if not user.notify_enabled or not user.telegram_chat_id:
            return None

        token = ""
        if user.telegram_bot_token:
            if self.decryptor is None:
                logger.warning("User %s has a bot token but no decryptor is configured", user.id)
                return None
            try:
                token = self.decryptor.decrypt(user.telegram_bot_token)
            except Exception as e:
                logger.warning("Cannot decrypt bot token for user %s: %s", user.id, e)
                return None

        return Destination(chat_id=user.telegram_chat_id, bot_token=token, label=user.username)
