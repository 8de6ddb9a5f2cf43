"""Notifications: formatting, best-effort dispatch and the Telegram transport."""

from cloudwarden.notify.dispatcher import DeliveryResult, NotificationDispatcher

__all__ = ["DeliveryResult", "NotificationDispatcher"]
